"""Account model: one balance and subscription record per user."""

import enum
from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, CheckConstraint, DateTime, Enum, Integer, String
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from tokengate.core.database import Base


class PremiumPlan(str, enum.Enum):
    """Subscription plans. An account without a plan stores NULL."""

    MONTHLY = "monthly"
    YEARLY = "yearly"


class Account(Base):
    """
    Token balance and premium subscription for a user.

    The balance is mutated only by the token ledger and the premium fields
    only by the subscription lifecycle, always through conditional updates.
    """

    __tablename__ = "accounts"
    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_accounts_balance_non_negative"),
    )

    # Primary key: user id issued by the auth provider
    id: Mapped[str] = mapped_column(String(64), primary_key=True)

    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, index=True)
    full_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Token balance
    balance: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Premium subscription
    is_premium: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    premium_plan: Mapped[Optional[PremiumPlan]] = mapped_column(
        Enum(PremiumPlan), nullable=True
    )
    premium_expires_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    premium_order_id: Mapped[Optional[str]] = mapped_column(
        String(64), nullable=True
    )  # Last subscription order applied, for idempotent extension

    # Set when stored state breaks a ledger invariant
    ledger_frozen: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    frozen_reason: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), onupdate=func.now(), nullable=True
    )

    def __repr__(self) -> str:
        return (
            f"<Account(id={self.id}, balance={self.balance}, "
            f"premium={self.is_premium})>"
        )
