"""Ledger entry model: the immutable audit trail of balance changes."""

import enum
from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Enum, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from tokengate.core.database import Base


class LedgerEntryType(str, enum.Enum):
    """Ledger entry types for token operations."""

    PURCHASE = "purchase"  # Token package bought through the gateway
    BONUS = "bonus"  # Tokens bundled with a subscription or granted
    CONSUME = "consume"  # Paid feature invocation
    REFUND = "refund"  # Compensation for a failed feature invocation


class LedgerEntry(Base):
    """
    Immutable audit log for all balance mutations.

    This table is append-only. Never UPDATE or DELETE records.
    balance_after == balance_before + amount holds for every row.
    """

    __tablename__ = "ledger_entries"
    __table_args__ = (
        # At most one credit of each type per payment order
        UniqueConstraint("transaction_id", "type", name="uq_ledger_transaction_type"),
        # At most one consume and one refund per usage record
        UniqueConstraint("usage_id", "type", name="uq_ledger_usage_type"),
    )

    # Primary key (monotonic, used for replay ordering)
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    user_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True
    )

    type: Mapped[LedgerEntryType] = mapped_column(
        Enum(LedgerEntryType), nullable=False, index=True
    )
    amount: Mapped[int] = mapped_column(
        Integer, nullable=False
    )  # Positive for credits, negative for consume
    balance_before: Mapped[int] = mapped_column(Integer, nullable=False)
    balance_after: Mapped[int] = mapped_column(Integer, nullable=False)

    # External references
    transaction_id: Mapped[Optional[str]] = mapped_column(
        String(64), nullable=True, index=True
    )  # Payment order id for purchase/bonus credits
    usage_id: Mapped[Optional[str]] = mapped_column(
        String(36), nullable=True, index=True
    )

    description: Mapped[str] = mapped_column(String(255), nullable=False, default="")

    # Timestamp (immutable)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False, index=True
    )

    def __repr__(self) -> str:
        return (
            f"<LedgerEntry(id={self.id}, type={self.type.value}, amount={self.amount}, "
            f"{self.balance_before}->{self.balance_after})>"
        )
