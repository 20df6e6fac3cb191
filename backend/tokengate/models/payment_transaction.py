"""Payment transaction model: one row per purchase attempt."""

import enum
from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Enum, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from tokengate.core.database import Base


class PaymentType(str, enum.Enum):
    """What a purchase buys."""

    SUBSCRIPTION = "subscription"
    TOKENS = "tokens"


class PaymentStatus(str, enum.Enum):
    """Settlement state. COMPLETED and FAILED are terminal."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not PaymentStatus.PENDING


class PaymentTransaction(Base):
    """
    Purchase attempt tracked from creation to gateway settlement.

    Status moves only from PENDING to COMPLETED or FAILED. The claim columns
    hold a short lease so that one notification at a time settles the row.
    """

    __tablename__ = "payment_transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    order_id: Mapped[str] = mapped_column(
        String(64), unique=True, nullable=False, index=True
    )
    user_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True
    )

    type: Mapped[PaymentType] = mapped_column(Enum(PaymentType), nullable=False)
    item: Mapped[str] = mapped_column(String(50), nullable=False)  # plan or package id
    gross_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    tokens_amount: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    status: Mapped[PaymentStatus] = mapped_column(
        Enum(PaymentStatus), nullable=False, default=PaymentStatus.PENDING, index=True
    )
    gateway_status: Mapped[Optional[str]] = mapped_column(
        String(32), nullable=True
    )  # Last transaction_status reported by the gateway

    # Gateway session
    gateway_token: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    redirect_url: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)

    # Settlement lease
    claim_token: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    claim_expires_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False, index=True
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    def __repr__(self) -> str:
        return (
            f"<PaymentTransaction(order_id={self.order_id}, type={self.type.value}, "
            f"status={self.status.value})>"
        )
