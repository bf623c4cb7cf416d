from __future__ import annotations
import enum

from sqlalchemy import BigInteger, CheckConstraint, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from models.base import BaseModel


class MarkupKind(str, enum.Enum):
    PERCENTAGE = "percentage"
    FLAT = "flat"


class PartnerStatus(str, enum.Enum):
    ACTIVE = "active"
    SUSPENDED = "suspended"


class Partner(BaseModel):
    """
    An account that earns a markup on purchases made with its referral code.

    Resellers, sellers and referrers are all partners; they differ only in
    their markup rule.
    """
    __tablename__ = "partners"
    __table_args__ = (
        CheckConstraint("pending_balance >= 0", name="ck_partners_pending_non_negative"),
        CheckConstraint("withdrawable_balance >= 0", name="ck_partners_withdrawable_non_negative"),
    )

    # The referral code buyers supply.
    code: Mapped[str] = mapped_column(String(32), unique=True, nullable=False, index=True)

    # One partner record per account.
    account_id: Mapped[str] = mapped_column(
        ForeignKey("accounts.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )

    markup_kind: Mapped[str] = mapped_column(String(20), nullable=False, default=MarkupKind.PERCENTAGE.value)
    markup_value: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    sales_count: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    sales_volume: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    commission_earned: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    # Commission lands in 'pending'; settlement moves it to 'withdrawable'.
    pending_balance: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    withdrawable_balance: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default=PartnerStatus.ACTIVE.value, index=True)

    @property
    def is_active(self) -> bool:
        return self.status == PartnerStatus.ACTIVE.value

    def __repr__(self) -> str:
        return f"<Partner(id={self.id}, code='{self.code}', markup={self.markup_kind}:{self.markup_value})>"


class PartnerWithdrawal(BaseModel):
    """A payout request raised by a partner against its withdrawable balance."""
    __tablename__ = "partner_withdrawals"

    partner_id: Mapped[int] = mapped_column(
        ForeignKey("partners.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="requested")

    def __repr__(self) -> str:
        return f"<PartnerWithdrawal(id={self.id}, partner_id={self.partner_id}, amount={self.amount})>"
