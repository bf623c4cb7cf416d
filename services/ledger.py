"""
Wallet ledger.

Every mutation is a single conditional UPDATE keyed by account id, so two
requests touching the same wallet serialize on that row in the database
and can never interleave a read and a write. Callers run these inside
database.connection.run_transaction so a mutation commits together with
whatever else belongs to the same unit of work.
"""
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from models.account import Account
from models.audit import BalanceAdjustment
from utils.exceptions import InsufficientFunds, InvalidInput, NotFound
from utils.logger import app_logger


async def get_balance(session: AsyncSession, account_id: str) -> int:
    balance = await session.scalar(select(Account.balance).where(Account.id == account_id))
    if balance is None:
        raise NotFound("Account not found")
    return balance


async def debit(session: AsyncSession, account_id: str, amount: int) -> int:
    """
    Charges 'amount' and counts one successful request.

    :return: The balance after the charge.
    :raises InsufficientFunds: When the wallet holds less than 'amount'.
    """
    if amount < 0:
        raise InvalidInput("Amount must not be negative")

    result = await session.execute(
        update(Account)
        .where(Account.id == account_id, Account.balance >= amount)
        .values(
            balance=Account.balance - amount,
            requests_count=Account.requests_count + 1,
            success_count=Account.success_count + 1,
            total_spent=Account.total_spent + amount,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        available = await get_balance(session, account_id)
        raise InsufficientFunds(
            f"Insufficient balance. Required: {amount}, Available: {available}",
            required=amount,
            available=available,
        )

    new_balance = await get_balance(session, account_id)
    app_logger.info(f"Debited {amount} from account {account_id}. New balance: {new_balance}")
    return new_balance


async def credit(session: AsyncSession, account_id: str, amount: int) -> int:
    """
    Refunds 'amount' and counts one failed request, which tells a refunded
    request apart from one that was never attempted.
    """
    if amount < 0:
        raise InvalidInput("Amount must not be negative")

    result = await session.execute(
        update(Account)
        .where(Account.id == account_id)
        .values(
            balance=Account.balance + amount,
            failed_count=Account.failed_count + 1,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise NotFound("Account not found")

    new_balance = await get_balance(session, account_id)
    app_logger.info(f"Credited {amount} to account {account_id}. New balance: {new_balance}")
    return new_balance


async def admin_adjust(session: AsyncSession, account_id: str, delta: int, reason: str, admin_id: str = None) -> int:
    """
    Applies an administrative adjustment and records it in the audit trail.
    A negative delta larger than the balance is refused.
    """
    result = await session.execute(
        update(Account)
        .where(Account.id == account_id, Account.balance + delta >= 0)
        .values(balance=Account.balance + delta)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        current = await get_balance(session, account_id)
        raise InsufficientFunds(f"Adjustment of {delta} would leave a negative balance ({current})")

    new_balance = await get_balance(session, account_id)
    session.add(BalanceAdjustment(
        account_id=account_id,
        delta=delta,
        reason=reason,
        admin_id=admin_id,
        balance_after=new_balance,
    ))
    app_logger.info(f"Admin {admin_id} adjusted account {account_id} by {delta} ({reason}). New balance: {new_balance}")
    return new_balance
