from __future__ import annotations
from typing import Optional

from sqlalchemy import BigInteger, Boolean, CheckConstraint, String
from sqlalchemy.orm import Mapped, mapped_column

from models.base import Base, TimestampMixin


class Account(TimestampMixin, Base):
    """
    A registered customer with a prepaid wallet and an API key.

    The primary key is the subject id issued by the identity provider, so a
    verified bearer token maps straight onto a row.
    """
    __tablename__ = "accounts"
    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_accounts_balance_non_negative"),
    )

    id: Mapped[str] = mapped_column(String(128), primary_key=True)

    display_name: Mapped[str] = mapped_column(String(255), nullable=False, default="User")

    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, index=True)

    # Wallet balance in whole currency units.
    balance: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    # --- Lifetime counters ---
    requests_count: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    success_count: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    failed_count: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    total_spent: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    # The single current API key. The unique index doubles as the lookup index.
    api_key: Mapped[Optional[str]] = mapped_column(String(64), unique=True, nullable=True, index=True)

    # Partner code this account was referred by. Written once, never overwritten.
    referred_by: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)

    is_admin: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    def __repr__(self) -> str:
        return f"<Account(id='{self.id}', email='{self.email}', balance={self.balance})>"
