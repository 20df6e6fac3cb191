"""Subscription extension model: one row per payment order applied to a subscription."""

from datetime import datetime

from sqlalchemy import DateTime, Enum, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from tokengate.core.database import Base
from tokengate.models.account import PremiumPlan


class SubscriptionExtension(Base):
    """
    Append-only record of subscription extensions settled by payment orders.

    The unique order id makes an extension at-most-once per order, the same
    way ledger credits are keyed by (transaction_id, type).
    """

    __tablename__ = "subscription_extensions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    order_id: Mapped[str] = mapped_column(
        String(64), unique=True, nullable=False, index=True
    )
    user_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    plan: Mapped[PremiumPlan] = mapped_column(Enum(PremiumPlan), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )  # Expiry right after this order was applied

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return (
            f"<SubscriptionExtension(order_id={self.order_id}, user_id={self.user_id}, "
            f"plan={self.plan.value})>"
        )
