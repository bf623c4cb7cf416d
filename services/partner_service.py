"""
Partner management: registration, reporting, pricing and payouts.
"""
import secrets
from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from config.constants import SERVICE_CATALOG
from config.settings import settings
from database.connection import run_transaction
from models.account import Account
from models.audit import CommissionEntry
from models.partner import MarkupKind, Partner, PartnerStatus, PartnerWithdrawal
from services.commission import markup
from utils.exceptions import Conflict, Forbidden, InsufficientFunds, InvalidInput, NotFound
from utils.logger import app_logger


@dataclass
class PartnerStats:
    partner: Partner
    recent_sales: List[CommissionEntry]
    withdrawals: List[PartnerWithdrawal]


def generate_partner_code() -> str:
    return secrets.token_hex(4).upper()


def partner_to_dict(partner: Partner) -> dict:
    return {
        "id": partner.id,
        "code": partner.code,
        "accountId": partner.account_id,
        "markupKind": partner.markup_kind,
        "markupValue": partner.markup_value,
        "salesCount": partner.sales_count,
        "salesVolume": partner.sales_volume,
        "commissionEarned": partner.commission_earned,
        "pendingBalance": partner.pending_balance,
        "withdrawableBalance": partner.withdrawable_balance,
        "status": partner.status,
    }


class PartnerService:

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    @staticmethod
    def validate_rule(kind: str, value: int) -> None:
        if kind == MarkupKind.PERCENTAGE.value:
            if not 0 <= value <= settings.PARTNER_MAX_PERCENT:
                raise InvalidInput(f"Percentage markup must be between 0 and {settings.PARTNER_MAX_PERCENT}")
        elif kind == MarkupKind.FLAT.value:
            if not 0 <= value <= settings.PARTNER_MAX_FLAT:
                raise InvalidInput(f"Flat markup must be between 0 and {settings.PARTNER_MAX_FLAT}")
        else:
            raise InvalidInput("Markup kind must be 'percentage' or 'flat'")

    async def register(self, account: Account, kind: str, value: int, code: Optional[str] = None) -> Partner:
        """
        Creates the account's partner record. An account holds at most one,
        and referred accounts are refused unless PARTNER_ALLOW_REFERRED is set.
        """
        self.validate_rule(kind, value)
        if account.referred_by and not settings.PARTNER_ALLOW_REFERRED:
            raise Forbidden("Referred accounts cannot become partners")

        async def create(session: AsyncSession) -> Partner:
            if await self._by_account(session, account.id) is not None:
                raise Conflict("Partner already registered for this account")
            partner_code = code or generate_partner_code()
            if await session.scalar(select(Partner.id).where(Partner.code == partner_code)) is not None:
                raise Conflict("Partner code already taken")
            partner = Partner(
                code=partner_code,
                account_id=account.id,
                markup_kind=kind,
                markup_value=value,
                sales_count=0,
                sales_volume=0,
                commission_earned=0,
                pending_balance=0,
                withdrawable_balance=0,
                status=PartnerStatus.ACTIVE.value,
            )
            session.add(partner)
            await session.flush()
            return partner

        try:
            partner = await run_transaction(self.session_factory, create)
        except IntegrityError as e:
            raise Conflict("Partner already registered for this account") from e

        app_logger.info(f"Account {account.id} registered as partner {partner.id} ({kind}:{value}, code {partner.code})")
        return partner

    async def get_for_account(self, account: Account) -> Partner:
        async with self.session_factory() as session:
            partner = await self._by_account(session, account.id)
        if partner is None:
            raise NotFound("Partner not found")
        return partner

    async def stats(self, account: Account, limit: int = 50) -> PartnerStats:
        partner = await self.get_for_account(account)
        async with self.session_factory() as session:
            sales = await session.scalars(
                select(CommissionEntry)
                .where(CommissionEntry.partner_id == partner.id)
                .order_by(CommissionEntry.id.desc())
                .limit(limit)
            )
            withdrawals = await session.scalars(
                select(PartnerWithdrawal)
                .where(PartnerWithdrawal.partner_id == partner.id)
                .order_by(PartnerWithdrawal.id.desc())
            )
            return PartnerStats(partner=partner, recent_sales=list(sales), withdrawals=list(withdrawals))

    async def prices(self, account: Account) -> dict:
        """The catalog as the partner's customers see it."""
        partner = await self.get_for_account(account)
        result = {}
        for key, offer in SERVICE_CATALOG.items():
            commission = markup(partner.markup_kind, partner.markup_value, offer.price)
            result[key] = {
                "name": offer.name,
                "country": offer.country,
                "flag": offer.flag,
                "basePrice": offer.price,
                "commission": commission,
                "finalPrice": offer.price + commission,
            }
        return result

    async def withdraw(self, account: Account, amount: int) -> PartnerWithdrawal:
        if amount <= 0:
            raise InvalidInput("Invalid amount")
        partner = await self.get_for_account(account)

        async def request_payout(session: AsyncSession) -> PartnerWithdrawal:
            result = await session.execute(
                update(Partner)
                .where(Partner.id == partner.id, Partner.withdrawable_balance >= amount)
                .values(withdrawable_balance=Partner.withdrawable_balance - amount)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise InsufficientFunds("Withdrawal exceeds withdrawable balance")
            withdrawal = PartnerWithdrawal(partner_id=partner.id, amount=amount, status="requested")
            session.add(withdrawal)
            await session.flush()
            return withdrawal

        withdrawal = await run_transaction(self.session_factory, request_payout)
        app_logger.info(f"Partner {partner.id} requested withdrawal {withdrawal.id} of {amount}")
        return withdrawal

    # --- Administration ---

    async def settle(self, partner_id: int) -> Partner:
        """Moves everything pending into the withdrawable balance."""
        async def move(session: AsyncSession) -> Partner:
            result = await session.execute(
                update(Partner)
                .where(Partner.id == partner_id)
                .values(
                    withdrawable_balance=Partner.withdrawable_balance + Partner.pending_balance,
                    pending_balance=0,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise NotFound("Partner not found")
            return await session.scalar(select(Partner).where(Partner.id == partner_id).execution_options(populate_existing=True))

        partner = await run_transaction(self.session_factory, move)
        app_logger.info(f"Settled partner {partner_id}; withdrawable now {partner.withdrawable_balance}")
        return partner

    async def set_status(self, partner_id: int, status: str) -> Partner:
        if status not in (PartnerStatus.ACTIVE.value, PartnerStatus.SUSPENDED.value):
            raise InvalidInput("Status must be 'active' or 'suspended'")

        async def change(session: AsyncSession) -> Partner:
            partner = await session.get(Partner, partner_id)
            if partner is None:
                raise NotFound("Partner not found")
            partner.status = status
            return partner

        partner = await run_transaction(self.session_factory, change)
        app_logger.info(f"Partner {partner_id} status set to {status}")
        return partner

    @staticmethod
    async def _by_account(session: AsyncSession, account_id: str) -> Optional[Partner]:
        return await session.scalar(select(Partner).where(Partner.account_id == account_id))
