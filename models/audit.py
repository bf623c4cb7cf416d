from __future__ import annotations
from typing import Optional

from sqlalchemy import BigInteger, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

from models.base import BaseModel, as_utc


class CommissionEntry(BaseModel):
    """One priced sale attributed to a partner."""
    __tablename__ = "commission_entries"

    partner_id: Mapped[int] = mapped_column(
        ForeignKey("partners.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # Not a foreign key: the entry outlives a purged buyer.
    account_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)

    service_key: Mapped[str] = mapped_column(String(50), nullable=False)
    base_price: Mapped[int] = mapped_column(BigInteger, nullable=False)
    commission: Mapped[int] = mapped_column(BigInteger, nullable=False)
    final_price: Mapped[int] = mapped_column(BigInteger, nullable=False)
    provider_txn_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)

    def to_dict(self) -> dict:
        return {
            "accountId": self.account_id,
            "service": self.service_key,
            "basePrice": self.base_price,
            "commission": self.commission,
            "finalPrice": self.final_price,
            "transactionId": self.provider_txn_id,
            "timestamp": as_utc(self.created_at).isoformat() if self.created_at else None,
        }


class ApiKeyChange(BaseModel):
    """Audit log entry for an API key rotation. Only key prefixes are stored."""
    __tablename__ = "api_key_changes"

    account_id: Mapped[str] = mapped_column(
        ForeignKey("accounts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    old_key_prefix: Mapped[str] = mapped_column(String(20), nullable=False)
    new_key_prefix: Mapped[str] = mapped_column(String(20), nullable=False)
    ip: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    # 'user_request', 'dashboard_request' or 'admin_forced'.
    change_type: Mapped[str] = mapped_column(String(30), nullable=False)
    changed_by: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    def to_dict(self) -> dict:
        return {
            "oldKey": self.old_key_prefix,
            "newKey": self.new_key_prefix,
            "ip": self.ip,
            "changeType": self.change_type,
            "changedBy": self.changed_by,
            "timestamp": as_utc(self.created_at).isoformat() if self.created_at else None,
        }


class BalanceAdjustment(BaseModel):
    """Audit trail of administrative wallet adjustments."""
    __tablename__ = "balance_adjustments"

    account_id: Mapped[str] = mapped_column(
        ForeignKey("accounts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    delta: Mapped[int] = mapped_column(BigInteger, nullable=False)
    reason: Mapped[str] = mapped_column(String(255), nullable=False)
    admin_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    # Balance right after the adjustment was applied.
    balance_after: Mapped[int] = mapped_column(BigInteger, nullable=False)

    def to_dict(self) -> dict:
        return {
            "amount": self.delta,
            "reason": self.reason,
            "addedBy": self.admin_id,
            "balanceAfter": self.balance_after,
            "timestamp": as_utc(self.created_at).isoformat() if self.created_at else None,
        }
