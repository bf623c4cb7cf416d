from datetime import datetime, timezone

from sqlalchemy import Integer, DateTime
from sqlalchemy.orm import declarative_base, Mapped, mapped_column
from sqlalchemy.sql import func

# declarative_base() returns a new base class from which all mapped classes should inherit.
# This object is the registry for all our table models.
Base = declarative_base()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """SQLite hands timestamps back without tzinfo; treat those as UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        comment="The time the record was created (UTC)"
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
        comment="The time the record was last updated (UTC)"
    )


class BaseModel(TimestampMixin, Base):
    """
    An abstract base model that provides common fields for all other models.

    This includes an auto-incrementing primary key 'id' and
    'created_at' / 'updated_at' timestamps.

    Account and ActiveRental use their own primary keys and take only
    the timestamps through TimestampMixin.
    """
    __abstract__ = True  # This tells SQLAlchemy not to create a table for BaseModel itself.

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
