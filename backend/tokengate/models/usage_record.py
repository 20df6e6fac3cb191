"""Usage record model: one row per successfully executed paid feature."""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from tokengate.core.database import Base


class UsageRecord(Base):
    """Paid feature invocation, funded by exactly one consume ledger entry."""

    __tablename__ = "usage_records"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    user_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True
    )

    feature_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    tokens_consumed: Mapped[int] = mapped_column(Integer, nullable=False)
    external_units_consumed: Mapped[Optional[int]] = mapped_column(
        Integer, nullable=True
    )  # e.g. LLM tokens reported by the model provider

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False, index=True
    )

    def __repr__(self) -> str:
        return (
            f"<UsageRecord(id={self.id}, feature={self.feature_id}, "
            f"tokens={self.tokens_consumed})>"
        )
