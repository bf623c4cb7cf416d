"""
Commission engine: partner resolution, markup pricing and sale attribution.
"""
from dataclasses import dataclass
from typing import Optional
from urllib.parse import parse_qs, urlparse

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from models.account import Account
from models.audit import CommissionEntry
from models.partner import MarkupKind, Partner
from utils.logger import app_logger

# Query parameters that carry a partner code in a referring URL.
REFERER_CODE_PARAMS = ("ref", "partner", "reseller")


@dataclass(frozen=True)
class PriceQuote:
    base_price: int
    commission: int
    final_price: int
    partner_id: Optional[int] = None
    partner_code: Optional[str] = None

    @property
    def commissioned(self) -> bool:
        return self.partner_id is not None and self.commission > 0


def markup(kind: str, value: int, base_price: int) -> int:
    """
    Integer markup for a partner rule, rounded half up so the customer charge
    and the partner payout always reconcile.

    >>> markup("percentage", 15, 52)
    8
    """
    if kind == MarkupKind.PERCENTAGE.value:
        return (base_price * value + 50) // 100
    if kind == MarkupKind.FLAT.value:
        return value
    raise ValueError(f"Unknown markup kind: {kind}")


def code_from_referer(referer: Optional[str]) -> Optional[str]:
    if not referer:
        return None
    query = parse_qs(urlparse(referer).query)
    for name in REFERER_CODE_PARAMS:
        values = query.get(name)
        if values and values[0].strip():
            return values[0].strip()
    return None


def pick_code(explicit: Optional[str], stored: Optional[str], referer: Optional[str]) -> Optional[str]:
    """Explicit parameter first, then the account's stored referrer, then the Referer URL."""
    for candidate in (explicit, stored, code_from_referer(referer)):
        if candidate and candidate.strip():
            return candidate.strip()
    return None


async def find_partner(session: AsyncSession, code: Optional[str]) -> Optional[Partner]:
    if not code:
        return None
    return await session.scalar(select(Partner).where(Partner.code == code))


async def quote(
        session: AsyncSession,
        account: Account,
        base_price: int,
        explicit_code: Optional[str] = None,
        referer: Optional[str] = None,
) -> PriceQuote:
    """
    Prices a purchase for 'account'.

    Unknown or suspended partners and the buyer's own partner record all
    fall back to the base price without an error.
    """
    code = pick_code(explicit_code, account.referred_by, referer)
    partner = await find_partner(session, code)

    if partner is None:
        if code:
            app_logger.debug(f"Partner code '{code}' did not resolve; charging base price.")
        return PriceQuote(base_price=base_price, commission=0, final_price=base_price)
    if not partner.is_active:
        app_logger.info(f"Partner {partner.id} is {partner.status}; charging base price.")
        return PriceQuote(base_price=base_price, commission=0, final_price=base_price)
    if partner.account_id == account.id:
        app_logger.info(f"Self-referral by account {account.id} ignored.")
        return PriceQuote(base_price=base_price, commission=0, final_price=base_price)

    commission = markup(partner.markup_kind, partner.markup_value, base_price)
    return PriceQuote(
        base_price=base_price,
        commission=commission,
        final_price=base_price + commission,
        partner_id=partner.id,
        partner_code=partner.code,
    )


async def attribute_sale(
        session: AsyncSession,
        price: PriceQuote,
        account_id: str,
        service_key: str,
        provider_txn_id: str,
) -> None:
    """Credits the partner's pending earnings and appends a commission entry."""
    if not price.commissioned:
        return

    await session.execute(
        update(Partner)
        .where(Partner.id == price.partner_id)
        .values(
            pending_balance=Partner.pending_balance + price.commission,
            commission_earned=Partner.commission_earned + price.commission,
            sales_count=Partner.sales_count + 1,
            sales_volume=Partner.sales_volume + price.final_price,
        )
        .execution_options(synchronize_session=False)
    )
    session.add(CommissionEntry(
        partner_id=price.partner_id,
        account_id=account_id,
        service_key=service_key,
        base_price=price.base_price,
        commission=price.commission,
        final_price=price.final_price,
        provider_txn_id=provider_txn_id,
    ))
    app_logger.info(f"Attributed commission {price.commission} to partner {price.partner_id} for txn {provider_txn_id}")


async def remember_referrer(session: AsyncSession, account_id: str, code: Optional[str]) -> bool:
    """
    Stores 'code' as the account's referrer unless one is already stored.

    :return: True when the code was written.
    """
    if not code:
        return False
    result = await session.execute(
        update(Account)
        .where(Account.id == account_id, Account.referred_by.is_(None))
        .values(referred_by=code)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1
