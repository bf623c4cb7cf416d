"""
Rental state machine: none -> active -> {success | cancelled | expired}.

The provider is not transactional with the wallet, so every operation talks
to the provider outside the database transaction and then applies all local
effects of the transition (ledger, slot, history, commission) in one
transaction. Expiry is evaluated lazily on the next poll or cancel.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Tuple

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from config.constants import (
    SERVICE_CATALOG,
    STATUS_ACTIVE,
    STATUS_CANCELLED,
    STATUS_EXPIRED,
    STATUS_SUCCESS,
    ServiceOffer,
)
from config.settings import settings
from database.connection import run_transaction
from models.account import Account
from models.base import utcnow
from models.rental import ActiveRental, RentalHistory
from services import commission, ledger
from services.provider_service import NumberProviderService, extract_otp
from utils.exceptions import (
    CannotCancel,
    InsufficientFunds,
    InvalidService,
    NotFound,
    ProviderError,
    RentalInProgress,
)
from utils.logger import app_logger


@dataclass
class AcquireResult:
    txn_id: str
    phone_number: str
    offer: ServiceOffer
    price: int
    expires_in: int
    new_balance: int


@dataclass
class PollResult:
    status: str
    raw: Optional[str] = None
    otp: Optional[str] = None
    time_left: int = 0


@dataclass
class CancelResult:
    status: str
    refund_amount: int
    time_left: int
    new_balance: Optional[int] = None


class RentalService:

    def __init__(
            self,
            session_factory: async_sessionmaker,
            provider: NumberProviderService,
            clock: Callable[[], datetime] = utcnow,
            ttl_seconds: int = None,
    ):
        self.session_factory = session_factory
        self.provider = provider
        self.clock = clock
        self.ttl = timedelta(seconds=ttl_seconds or settings.RENTAL_TTL_SECONDS)

    # --- Acquire ---

    async def acquire(
            self,
            account: Account,
            service_key: str,
            ref_code: Optional[str] = None,
            referer: Optional[str] = None,
    ) -> AcquireResult:
        offer = SERVICE_CATALOG.get(service_key)
        if offer is None:
            raise InvalidService()

        async with self.session_factory() as session:
            if await session.get(ActiveRental, account.id) is not None:
                raise RentalInProgress()
            price = await commission.quote(session, account, offer.price, ref_code, referer)
            balance = await ledger.get_balance(session, account.id)

        if balance < price.final_price:
            raise InsufficientFunds(
                f"Insufficient balance. Required: {price.final_price}, Available: {balance}",
                required=price.final_price,
                available=balance,
            )

        number = await self.provider.get_number(offer.code)
        started_at = self.clock()
        expires_at = started_at + self.ttl

        async def record(session: AsyncSession) -> int:
            new_balance = await ledger.debit(session, account.id, price.final_price)
            session.add(ActiveRental(
                account_id=account.id,
                provider_txn_id=number.txn_id,
                phone_number=number.phone_number,
                service_key=service_key,
                base_price=price.base_price,
                final_price=price.final_price,
                commission=price.commission,
                partner_id=price.partner_id,
                started_at=started_at,
                expires_at=expires_at,
                status=STATUS_ACTIVE,
            ))
            session.add(RentalHistory(
                account_id=account.id,
                provider_txn_id=number.txn_id,
                phone_number=number.phone_number,
                service_key=service_key,
                service_name=offer.name,
                country=offer.country,
                base_price=price.base_price,
                final_price=price.final_price,
                status=STATUS_ACTIVE,
                expires_at=expires_at,
            ))
            # Surfaces a concurrent slot write as an IntegrityError before commit.
            await session.flush()
            await commission.attribute_sale(session, price, account.id, service_key, number.txn_id)
            if account.referred_by is None and price.partner_code:
                await commission.remember_referrer(session, account.id, price.partner_code)
            return new_balance

        try:
            new_balance = await run_transaction(self.session_factory, record)
        except IntegrityError as e:
            await self._release_number(number.txn_id)
            raise RentalInProgress() from e
        except Exception:
            await self._release_number(number.txn_id)
            raise

        app_logger.info(
            f"Account {account.id} rented {number.phone_number} ({service_key}) "
            f"for {price.final_price}, txn {number.txn_id}"
        )
        return AcquireResult(
            txn_id=number.txn_id,
            phone_number=number.phone_number,
            offer=offer,
            price=price.final_price,
            expires_in=int(self.ttl.total_seconds()),
            new_balance=new_balance,
        )

    async def _release_number(self, txn_id: str) -> None:
        """Cancels a provider activation whose local charge did not commit."""
        try:
            await self.provider.cancel(txn_id)
            app_logger.warning(f"Released provider txn {txn_id} after a failed local commit.")
        except ProviderError as e:
            app_logger.error(f"Could not release provider txn {txn_id}: {e.message}. Manual reconciliation needed.")

    # --- Poll ---

    async def poll(self, account: Account, txn_id: str) -> PollResult:
        rental = await self._load_slot(account.id, txn_id)
        now = self.clock()

        if rental.is_expired(now):
            await self._expire(account.id, txn_id, now)
            return PollResult(status=STATUS_EXPIRED)

        raw = await self.provider.get_status(txn_id)
        otp = extract_otp(raw)
        if otp is None:
            return PollResult(status=STATUS_ACTIVE, raw=raw, time_left=rental.seconds_left(now))

        async def complete(session: AsyncSession) -> None:
            if not await self._clear_slot(session, account.id, txn_id):
                raise NotFound()
            await self._resolve_history(session, account.id, txn_id, status=STATUS_SUCCESS, otp=otp, completed_at=now)

        await run_transaction(self.session_factory, complete)
        app_logger.info(f"OTP received for account {account.id}, txn {txn_id}")
        return PollResult(status=STATUS_SUCCESS, raw=raw, otp=otp, time_left=rental.seconds_left(now))

    # --- Cancel ---

    async def cancel(self, account: Account, txn_id: str) -> CancelResult:
        rental = await self._load_slot(account.id, txn_id)

        raw = await self.provider.get_status(txn_id)
        otp = extract_otp(raw)
        if otp is not None:
            raise CannotCancel(otp=otp)

        now = self.clock()
        if rental.is_expired(now):
            await self._expire(account.id, txn_id, now)
            return CancelResult(status=STATUS_EXPIRED, refund_amount=0, time_left=0)

        time_left = rental.seconds_left(now)
        await self.provider.cancel(txn_id)

        # The partner keeps any commission paid on this sale.
        refund = rental.final_price

        async def refund_rental(session: AsyncSession) -> int:
            if not await self._clear_slot(session, account.id, txn_id):
                raise NotFound()
            new_balance = await ledger.credit(session, account.id, refund)
            await self._resolve_history(
                session, account.id, txn_id,
                status=STATUS_CANCELLED, cancelled_at=now, refund_amount=refund,
            )
            return new_balance

        new_balance = await run_transaction(self.session_factory, refund_rental)
        app_logger.info(f"Account {account.id} cancelled txn {txn_id}; refunded {refund}")
        return CancelResult(status=STATUS_CANCELLED, refund_amount=refund, time_left=time_left, new_balance=new_balance)

    # --- History ---

    async def active_rental(self, account: Account) -> Optional[ActiveRental]:
        async with self.session_factory() as session:
            return await session.get(ActiveRental, account.id)

    async def history(self, account: Account) -> Tuple[List[RentalHistory], Optional[ActiveRental]]:
        async with self.session_factory() as session:
            rows = await session.scalars(
                select(RentalHistory)
                .where(RentalHistory.account_id == account.id)
                .order_by(RentalHistory.id.desc())
            )
            active = await session.get(ActiveRental, account.id)
            return list(rows), active

    # --- Expiry ---

    async def expire_lapsed(self) -> int:
        """Expires every slot past its deadline. Used by the optional sweep worker."""
        now = self.clock()
        async with self.session_factory() as session:
            lapsed = (await session.execute(
                select(ActiveRental.account_id, ActiveRental.provider_txn_id)
                .where(ActiveRental.expires_at < now)
            )).all()

        expired = 0
        for account_id, txn_id in lapsed:
            if await self._expire(account_id, txn_id, now):
                expired += 1
        return expired

    async def _expire(self, account_id: str, txn_id: str, now: datetime) -> bool:
        async def work(session: AsyncSession) -> bool:
            if not await self._clear_slot(session, account_id, txn_id):
                return False
            await self._resolve_history(session, account_id, txn_id, status=STATUS_EXPIRED, cancelled_at=now)
            return True

        expired = await run_transaction(self.session_factory, work)
        if expired:
            app_logger.info(f"Rental txn {txn_id} of account {account_id} expired.")
        return expired

    # --- Helpers ---

    async def _load_slot(self, account_id: str, txn_id: str) -> ActiveRental:
        async with self.session_factory() as session:
            rental = await session.get(ActiveRental, account_id)
        if rental is None or rental.provider_txn_id != txn_id:
            raise NotFound()
        return rental

    @staticmethod
    async def _clear_slot(session: AsyncSession, account_id: str, txn_id: str) -> bool:
        """Deletes the slot only if it still holds 'txn_id', so a transition happens once."""
        result = await session.execute(
            delete(ActiveRental)
            .where(ActiveRental.account_id == account_id, ActiveRental.provider_txn_id == txn_id)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    @staticmethod
    async def _resolve_history(session: AsyncSession, account_id: str, txn_id: str, **values) -> None:
        await session.execute(
            update(RentalHistory)
            .where(
                RentalHistory.account_id == account_id,
                RentalHistory.provider_txn_id == txn_id,
                RentalHistory.status == STATUS_ACTIVE,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
