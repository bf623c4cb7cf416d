"""
Identity resolution, registration and API key rotation.
"""
import secrets
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from config.settings import settings
from database.connection import run_transaction
from models.account import Account
from models.audit import ApiKeyChange
from security.rate_limit import RateLimiter
from services import commission
from services.identity_service import IdentityProviderService
from utils.exceptions import Conflict, Forbidden, NotFound, Unauthenticated
from utils.logger import app_logger, mask_key

BEARER_PREFIX = "Bearer "


def generate_api_key() -> str:
    return f"{settings.API_KEY_PREFIX}{secrets.token_hex(20)}"


class AccountService:

    def __init__(
            self,
            session_factory: async_sessionmaker,
            identity: IdentityProviderService,
            rotation_limiter: RateLimiter,
    ):
        self.session_factory = session_factory
        self.identity = identity
        self.rotation_limiter = rotation_limiter

    # --- Resolution ---

    async def resolve(self, api_key: Optional[str] = None, authorization: Optional[str] = None) -> Account:
        """
        Maps a credential to its account.

        The api_key parameter takes priority: when it is present it alone
        decides the outcome, even if a bearer header is also sent.
        """
        if api_key is not None:
            return await self.by_api_key(api_key)
        if authorization and authorization.startswith(BEARER_PREFIX):
            return await self.by_token(authorization[len(BEARER_PREFIX):].strip())
        raise Unauthenticated()

    async def by_api_key(self, api_key: str) -> Account:
        # Keys we could never have issued are rejected without a lookup.
        if not api_key or not api_key.startswith(settings.API_KEY_PREFIX):
            raise Unauthenticated("Invalid API key")
        async with self.session_factory() as session:
            account = await session.scalar(select(Account).where(Account.api_key == api_key))
        if account is None:
            raise Unauthenticated("Invalid API key")
        return account

    async def by_token(self, token: str) -> Account:
        if not token:
            raise Unauthenticated()
        claims = await self.identity.verify_token(token)
        async with self.session_factory() as session:
            account = await session.get(Account, claims.uid)
        if account is None:
            raise Unauthenticated("Invalid token")
        return account

    async def bearer_only(self, authorization: Optional[str]) -> Account:
        if not authorization or not authorization.startswith(BEARER_PREFIX):
            raise Unauthenticated()
        return await self.by_token(authorization[len(BEARER_PREFIX):].strip())

    @staticmethod
    def require_admin(account: Account) -> Account:
        if not account.is_admin:
            raise Forbidden()
        return account

    # --- Registration ---

    async def register(self, email: str, password: str, name: str, ref_code: Optional[str] = None) -> Account:
        """
        Creates the identity and the account record with a fresh API key.
        A supplied partner code is stored as the referrer only if it belongs
        to an active partner.

        An identity left without an account row by an earlier failed
        registration is picked up again when the password matches.
        """
        resumed = False
        try:
            claims = await self.identity.create_user(email, password, name)
        except Conflict:
            claims = await self.identity.sign_in(email, password)
            resumed = True

        async def create(session: AsyncSession) -> Account:
            if await session.get(Account, claims.uid) is not None:
                raise Conflict("Email already registered")
            if resumed:
                app_logger.warning(f"Identity {claims.uid} ({email}) had no account, completing its registration")
            referred_by = None
            partner = await commission.find_partner(session, ref_code)
            if partner is not None and partner.is_active:
                referred_by = partner.code
            account = Account(
                id=claims.uid,
                display_name=name,
                email=claims.email or email,
                balance=0,
                requests_count=0,
                success_count=0,
                failed_count=0,
                total_spent=0,
                api_key=generate_api_key(),
                referred_by=referred_by,
                is_admin=False,
            )
            session.add(account)
            await session.flush()
            return account

        try:
            account = await run_transaction(self.session_factory, create)
        except IntegrityError as e:
            raise Conflict("Account already exists") from e
        except Conflict:
            raise
        except Exception:
            if not resumed:
                app_logger.error(
                    f"Identity {claims.uid} ({email}) was created but its account was not; "
                    f"registering again with the same password will complete it"
                )
            raise

        app_logger.info(f"Registered account {account.id} ({email}), referred_by={account.referred_by}")
        return account

    # --- API key rotation ---

    async def rotate_api_key(
            self,
            account: Account,
            change_type: str,
            ip: Optional[str] = None,
            changed_by: Optional[str] = None,
            limited: bool = True,
    ) -> str:
        """
        Replaces the account's API key; the old key stops working at once.
        User-initiated rotations are limited per account.
        """
        if limited:
            await self.rotation_limiter.check(account.id, "Too many API key changes. Try again later.")

        new_key = generate_api_key()

        async def rotate(session: AsyncSession) -> str:
            old_key = await session.scalar(select(Account.api_key).where(Account.id == account.id))
            result = await session.execute(
                update(Account)
                .where(Account.id == account.id)
                .values(api_key=new_key)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise NotFound("User not found")
            session.add(ApiKeyChange(
                account_id=account.id,
                old_key_prefix=mask_key(old_key),
                new_key_prefix=mask_key(new_key),
                ip=ip,
                change_type=change_type,
                changed_by=changed_by or account.id,
            ))
            return old_key

        old_key = await run_transaction(self.session_factory, rotate)
        app_logger.info(f"API key for {account.id} rotated ({change_type}): {mask_key(old_key)} -> {mask_key(new_key)}")
        return new_key

    async def key_history(self, account: Account, limit: int = None) -> List[ApiKeyChange]:
        async with self.session_factory() as session:
            query = (
                select(ApiKeyChange)
                .where(ApiKeyChange.account_id == account.id)
                .order_by(ApiKeyChange.id.desc())
            )
            if limit:
                query = query.limit(limit)
            return list(await session.scalars(query))
