import itertools
import os
from datetime import datetime, timedelta, timezone

# Settings are read at import time, so the test environment goes first.
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("PROVIDER_API_KEY", "test-provider-key")
os.environ.setdefault("IDENTITY_API_KEY", "test-identity-key")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import fakeredis
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from api.app import create_app
from database.connection import init_db
from models.account import Account
from security.rate_limit import RateLimiter
from services.account_service import AccountService, generate_api_key
from services.admin_service import AdminService
from services.identity_service import IdentityClaims
from services.partner_service import PartnerService
from services.provider_service import ProviderNumber
from services.rental_service import RentalService
from utils.exceptions import Conflict, Unauthenticated


class Clock:
    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: int) -> None:
        self.now += timedelta(seconds=seconds)


class FakeProvider:
    """In-memory numbering provider. Statuses are set per txn id by the test."""

    def __init__(self):
        self._ids = itertools.count(1000)
        self.statuses = {}
        self.cancelled = []
        self.requested = []
        self.error = None
        self.on_issue = None

    async def get_number(self, country_code: str) -> ProviderNumber:
        self.requested.append(country_code)
        if self.error is not None:
            raise self.error
        txn_id = str(next(self._ids))
        number = ProviderNumber(txn_id=txn_id, phone_number=f"+91900000{txn_id}")
        self.statuses[txn_id] = "STATUS_WAIT_CODE"
        if self.on_issue is not None:
            await self.on_issue(number)
        return number

    async def get_status(self, txn_id: str) -> str:
        return self.statuses.get(txn_id, "NO_ACTIVATION")

    async def cancel(self, txn_id: str) -> str:
        self.cancelled.append(txn_id)
        return "ACCESS_CANCEL"


class FakeIdentity:
    """Identity provider double: bearer tokens map straight to uids."""

    def __init__(self):
        self.tokens = {}
        self.emails = set()
        self.passwords = {}
        self.uids = {}
        self.reset_requests = []
        self._uids = itertools.count(1)

    async def verify_token(self, id_token: str) -> IdentityClaims:
        uid = self.tokens.get(id_token)
        if uid is None:
            raise Unauthenticated("Invalid token")
        return IdentityClaims(uid=uid, email=None, email_verified=True)

    async def create_user(self, email: str, password: str, display_name: str) -> IdentityClaims:
        if email in self.emails:
            raise Conflict("Email already registered")
        self.emails.add(email)
        uid = f"uid-{next(self._uids)}"
        self.passwords[email] = password
        self.uids[email] = uid
        self.tokens[f"token-{uid}"] = uid
        return IdentityClaims(uid=uid, email=email)

    async def sign_in(self, email: str, password: str) -> IdentityClaims:
        if self.passwords.get(email) != password:
            raise Conflict("Email already registered")
        return IdentityClaims(uid=self.uids[email], email=email)

    async def send_password_reset(self, email: str) -> str:
        self.reset_requests.append(email)
        return email


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await init_db(bind=engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(bind=engine, class_=AsyncSession, autoflush=False, expire_on_commit=False)


@pytest.fixture
async def redis_conn():
    client = fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer(), decode_responses=True)
    yield client
    await client.aclose()


@pytest.fixture
def clock():
    return Clock(datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def identity():
    return FakeIdentity()


@pytest.fixture
def accounts(session_factory, identity, redis_conn):
    return AccountService(session_factory, identity, RateLimiter(redis_conn, 3, 3600, "key_rotation"))


@pytest.fixture
def rentals(session_factory, provider, clock):
    return RentalService(session_factory, provider, clock=clock, ttl_seconds=900)


@pytest.fixture
def partners(session_factory):
    return PartnerService(session_factory)


@pytest.fixture
def admin_service(session_factory, accounts, identity):
    return AdminService(session_factory, accounts, identity)


@pytest.fixture
def make_account(session_factory, identity):
    async def factory(account_id: str, balance: int = 0, is_admin: bool = False,
                      referred_by: str = None, email: str = None) -> Account:
        account = Account(
            id=account_id,
            display_name=account_id.title(),
            email=email or f"{account_id}@example.com",
            balance=balance,
            requests_count=0,
            success_count=0,
            failed_count=0,
            total_spent=0,
            api_key=generate_api_key(),
            referred_by=referred_by,
            is_admin=is_admin,
        )
        async with session_factory() as session:
            session.add(account)
            await session.commit()
        identity.tokens[f"token-{account_id}"] = account_id
        return account

    return factory


@pytest.fixture
def load_account(session_factory):
    async def loader(account_id: str) -> Account:
        async with session_factory() as session:
            return await session.get(Account, account_id)

    return loader


@pytest.fixture
def app(session_factory, redis_conn, provider, identity, clock):
    return create_app(
        session_factory=session_factory,
        redis_conn=redis_conn,
        provider=provider,
        identity=identity,
        clock=clock,
    )


@pytest.fixture
async def client(aiohttp_client, app):
    return await aiohttp_client(app)
