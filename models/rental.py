from __future__ import annotations
from datetime import datetime
from typing import Optional

from sqlalchemy import BigInteger, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from config.constants import STATUS_ACTIVE
from models.base import Base, BaseModel, TimestampMixin, as_utc


class ActiveRental(TimestampMixin, Base):
    """
    The single in-flight number of an account.

    Keyed by account id, so the database itself refuses a second active
    rental for the same account. The row is deleted on every terminal
    transition; RentalHistory keeps the record.
    """
    __tablename__ = "active_rentals"

    account_id: Mapped[str] = mapped_column(
        ForeignKey("accounts.id", ondelete="CASCADE"),
        primary_key=True,
    )

    # Activation id issued by the numbering provider.
    provider_txn_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)

    phone_number: Mapped[str] = mapped_column(String(30), nullable=False)

    # Key into SERVICE_CATALOG (e.g. 'india_115').
    service_key: Mapped[str] = mapped_column(String(50), nullable=False)

    base_price: Mapped[int] = mapped_column(BigInteger, nullable=False)
    final_price: Mapped[int] = mapped_column(BigInteger, nullable=False)
    commission: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    partner_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default=STATUS_ACTIVE)

    def seconds_left(self, now: datetime) -> int:
        return max(0, int((as_utc(self.expires_at) - now).total_seconds()))

    def is_expired(self, now: datetime) -> bool:
        return now > as_utc(self.expires_at)

    def to_dict(self) -> dict:
        return {
            "id": self.provider_txn_id,
            "number": self.phone_number,
            "service": self.service_key,
            "price": self.final_price,
            "status": self.status,
            "startTime": as_utc(self.started_at).isoformat(),
            "expiresAt": as_utc(self.expires_at).isoformat(),
        }

    def __repr__(self) -> str:
        return (
            f"<ActiveRental(account_id='{self.account_id}', txn='{self.provider_txn_id}', "
            f"number='{self.phone_number}', expires_at='{self.expires_at}')>"
        )


class RentalHistory(BaseModel):
    """
    Append-only log entry mirroring one rental from acquisition to resolution.
    """
    __tablename__ = "rental_history"

    account_id: Mapped[str] = mapped_column(
        ForeignKey("accounts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    provider_txn_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    phone_number: Mapped[str] = mapped_column(String(30), nullable=False)

    service_key: Mapped[str] = mapped_column(String(50), nullable=False)
    service_name: Mapped[str] = mapped_column(String(100), nullable=False)
    country: Mapped[str] = mapped_column(String(100), nullable=False)

    base_price: Mapped[int] = mapped_column(BigInteger, nullable=False)
    final_price: Mapped[int] = mapped_column(BigInteger, nullable=False)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default=STATUS_ACTIVE, index=True)

    otp: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    refund_amount: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)

    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    def to_dict(self) -> dict:
        return {
            "transactionId": self.provider_txn_id,
            "number": self.phone_number,
            "service": self.service_name,
            "country": self.country,
            "price": self.final_price,
            "status": self.status,
            "otp": self.otp,
            "refundAmount": self.refund_amount,
            "timestamp": as_utc(self.created_at).isoformat() if self.created_at else None,
            "expiresAt": as_utc(self.expires_at).isoformat(),
            "completedAt": as_utc(self.completed_at).isoformat() if self.completed_at else None,
            "cancelledAt": as_utc(self.cancelled_at).isoformat() if self.cancelled_at else None,
        }

    def __repr__(self) -> str:
        return f"<RentalHistory(id={self.id}, txn='{self.provider_txn_id}', status='{self.status}')>"
