from typing import Awaitable, Callable, TypeVar

from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from config.settings import settings
from utils.exceptions import AppError, InternalError
from utils.logger import app_logger

T = TypeVar("T")

# 'pool_pre_ping=True' checks the health of connections before using them.
engine = create_async_engine(
    settings.DATABASE_URL,
    echo=False,  # Set to True to see generated SQL statements
    pool_pre_ping=True,
)

# 'expire_on_commit=False' is important for async code, as objects accessed
# after a commit might otherwise be expired and need re-fetching.
async_session_factory = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    autoflush=False,
    expire_on_commit=False,
)


async def run_transaction(
        session_factory: async_sessionmaker,
        work: Callable[[AsyncSession], Awaitable[T]],
        retries: int = None,
) -> T:
    """
    Runs 'work' inside a single transaction and commits it.

    Transient database failures (deadlocks, serialization failures, locked
    SQLite files) roll the whole unit back and run it again, up to 'retries'
    attempts. Application errors and integrity violations raised by 'work'
    roll back and propagate unchanged on the first attempt.
    """
    attempts = retries or settings.LEDGER_MAX_RETRIES
    for attempt in range(1, attempts + 1):
        async with session_factory() as session:
            try:
                async with session.begin():
                    return await work(session)
            except (AppError, IntegrityError):
                raise
            except (OperationalError, DBAPIError) as e:
                app_logger.warning(f"Transaction attempt {attempt}/{attempts} aborted: {e.__class__.__name__}")
                if attempt == attempts:
                    app_logger.error(f"Transaction failed after {attempts} attempts: {e}")
                    raise InternalError() from e


async def init_db(bind=None):
    """
    Creates all tables from the SQLAlchemy models.
    Production deployments should manage the schema with migrations instead.
    """
    # Imported here so every model is registered on the metadata.
    from models import account, audit, partner, rental  # noqa: F401
    from models.base import Base

    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
