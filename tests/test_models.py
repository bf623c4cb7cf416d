import warnings

from sqlalchemy import inspect
from sqlalchemy.orm import configure_mappers

from models.account import Account
from models.audit import ApiKeyChange, BalanceAdjustment, CommissionEntry
from models.partner import Partner, PartnerWithdrawal
from models.rental import ActiveRental, RentalHistory


def test_mappers_configure_without_warnings():
    with warnings.catch_warnings():
        warnings.simplefilter("error")
        configure_mappers()


def test_no_deprecated_loader_strategies():
    for model in (Account, Partner, PartnerWithdrawal, ActiveRental, RentalHistory,
                  CommissionEntry, ApiKeyChange, BalanceAdjustment):
        lazies = {rel.lazy for rel in inspect(model).relationships}
        assert "noload" not in lazies, model.__name__
