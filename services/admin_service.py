"""
Administrative surface: user management and system statistics.
"""
from datetime import timedelta
from typing import List, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from database.connection import run_transaction
from models.account import Account
from models.audit import ApiKeyChange, BalanceAdjustment
from models.base import as_utc, utcnow
from models.rental import ActiveRental, RentalHistory
from services import ledger
from services.account_service import AccountService
from services.identity_service import IdentityProviderService
from utils.exceptions import Forbidden, InvalidInput, NotFound
from utils.logger import app_logger, mask_key

ACTIVE_USER_WINDOW = timedelta(days=7)


def account_summary(account: Account) -> dict:
    """Account fields safe for admin listings; the API key is masked."""
    return {
        "uid": account.id,
        "email": account.email or "No email",
        "name": account.display_name or "User",
        "wallet": account.balance,
        "joined": as_utc(account.created_at).isoformat() if account.created_at else None,
        "apiKey": mask_key(account.api_key),
        "apiRequests": account.requests_count,
        "apiSuccess": account.success_count,
        "apiFailed": account.failed_count,
        "totalSpent": account.total_spent,
        "referredBy": account.referred_by,
        "isAdmin": account.is_admin,
    }


class AdminService:

    def __init__(
            self,
            session_factory: async_sessionmaker,
            accounts: AccountService,
            identity: IdentityProviderService,
    ):
        self.session_factory = session_factory
        self.accounts = accounts
        self.identity = identity

    async def get_account(self, account_id: str) -> Account:
        async with self.session_factory() as session:
            account = await session.get(Account, account_id)
        if account is None:
            raise NotFound("User not found")
        return account

    async def list_users(self) -> List[Account]:
        async with self.session_factory() as session:
            return list(await session.scalars(select(Account).order_by(Account.created_at.desc())))

    async def add_balance(self, admin: Account, account_id: str, amount: int, reason: Optional[str] = None) -> int:
        if amount <= 0:
            raise InvalidInput("Invalid amount")
        return await run_transaction(
            self.session_factory,
            lambda session: ledger.admin_adjust(session, account_id, amount, reason or "Admin added", admin.id),
        )

    async def remove_user(self, admin: Account, account_id: str) -> None:
        """Purges the account with its active rental, history and audit logs."""
        if account_id == admin.id:
            raise Forbidden("Cannot remove your own account")

        async def purge(session: AsyncSession) -> None:
            for model in (ActiveRental, RentalHistory, ApiKeyChange, BalanceAdjustment):
                await session.execute(delete(model).where(model.account_id == account_id))
            result = await session.execute(delete(Account).where(Account.id == account_id))
            if result.rowcount != 1:
                raise NotFound("User not found")

        await run_transaction(self.session_factory, purge)
        app_logger.warning(f"Admin {admin.id} removed account {account_id}")

    async def reset_password(self, account_id: str) -> str:
        account = await self.get_account(account_id)
        if not account.email:
            raise NotFound("User email not found")
        return await self.identity.send_password_reset(account.email)

    async def regenerate_api_key(self, admin: Account, account_id: str) -> str:
        account = await self.get_account(account_id)
        return await self.accounts.rotate_api_key(
            account, change_type="admin_forced", changed_by=admin.id, limited=False,
        )

    async def user_detail(self, account_id: str) -> dict:
        account = await self.get_account(account_id)
        async with self.session_factory() as session:
            history = await session.scalars(
                select(RentalHistory)
                .where(RentalHistory.account_id == account_id)
                .order_by(RentalHistory.id.desc())
                .limit(20)
            )
            adjustments = await session.scalars(
                select(BalanceAdjustment)
                .where(BalanceAdjustment.account_id == account_id)
                .order_by(BalanceAdjustment.id.desc())
                .limit(10)
            )
            key_changes = await session.scalars(
                select(ApiKeyChange)
                .where(ApiKeyChange.account_id == account_id)
                .order_by(ApiKeyChange.id.desc())
                .limit(5)
            )
            active = await session.get(ActiveRental, account_id)
            return {
                "user": account_summary(account),
                "active": active.to_dict() if active else None,
                "history": [row.to_dict() for row in history],
                "transactions": [row.to_dict() for row in adjustments],
                "apiKeyLogs": [row.to_dict() for row in key_changes],
            }

    async def stats(self) -> dict:
        async with self.session_factory() as session:
            totals = (await session.execute(
                select(
                    func.count(Account.id),
                    func.coalesce(func.sum(Account.balance), 0),
                    func.coalesce(func.sum(Account.requests_count), 0),
                    func.coalesce(func.sum(Account.success_count), 0),
                    func.coalesce(func.sum(Account.total_spent), 0),
                )
            )).one()
            recent_users = await session.scalar(
                select(func.count(Account.id)).where(Account.created_at >= utcnow() - ACTIVE_USER_WINDOW)
            )
            active_numbers = await session.scalar(select(func.count()).select_from(ActiveRental))

        total_users, total_balance, total_requests, total_success, total_spent = (int(v) for v in totals)
        return {
            "totalUsers": total_users,
            "totalBalance": total_balance,
            "totalRequests": total_requests,
            "totalSpent": total_spent,
            "activeUsers": recent_users or 0,
            "activeNumbers": active_numbers or 0,
            "averageBalance": round(total_balance / total_users) if total_users else 0,
            "averageSpent": round(total_spent / total_users) if total_users else 0,
            "successRate": round(total_success / total_requests * 100) if total_requests else 0,
        }

    async def update_user(self, admin: Account, account_id: str, updates: dict) -> dict:
        """
        Updates profile fields. A new wallet value is applied as an audited
        adjustment rather than overwritten.
        """
        if account_id == admin.id and updates.get("is_admin") is not None:
            raise Forbidden("Cannot change your own admin role")

        profile = {k: updates[k] for k in ("display_name", "email", "is_admin") if updates.get(k) is not None}
        wallet = updates.get("wallet")
        if not profile and wallet is None:
            raise InvalidInput("No valid updates provided")

        async def apply(session: AsyncSession) -> dict:
            current = await session.scalar(select(Account.balance).where(Account.id == account_id))
            if current is None:
                raise NotFound("User not found")
            applied = dict(profile)
            if profile:
                await session.execute(
                    update(Account).where(Account.id == account_id).values(**profile)
                    .execution_options(synchronize_session=False)
                )
            if wallet is not None and wallet != current:
                applied["wallet"] = await ledger.admin_adjust(
                    session, account_id, wallet - current, "Admin balance update", admin.id,
                )
            return applied

        applied = await run_transaction(self.session_factory, apply)
        app_logger.info(f"Admin {admin.id} updated account {account_id}: {sorted(applied)}")
        return applied
