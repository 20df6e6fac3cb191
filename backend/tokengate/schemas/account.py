"""Pydantic schemas for account, ledger and entitlement endpoints."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from tokengate.models.account import PremiumPlan
from tokengate.models.ledger_entry import LedgerEntryType


class SubscriptionStatusResponse(BaseModel):
    """Resolved (expiry-checked) subscription status."""

    is_premium: bool = Field(description="True if the subscription is active now")
    plan: Optional[PremiumPlan] = Field(default=None)
    expires_at: Optional[datetime] = Field(default=None)
    days_remaining: int = Field(default=0, ge=0)


class ProfileResponse(BaseModel):
    """Account with its resolved subscription."""

    id: str
    email: Optional[str] = None
    full_name: Optional[str] = None
    balance: int
    subscription: SubscriptionStatusResponse


class LedgerEntryResponse(BaseModel):
    """Response model for a single ledger entry."""

    id: int
    type: LedgerEntryType
    amount: int = Field(description="Token change (positive=credit, negative=consume)")
    balance_before: int
    balance_after: int
    transaction_id: Optional[str] = None
    usage_id: Optional[str] = None
    description: str
    created_at: datetime

    class Config:
        from_attributes = True


class TokenSummaryResponse(BaseModel):
    """Current balance with recent ledger history."""

    balance: int
    logs: list[LedgerEntryResponse]


class UsageRecordResponse(BaseModel):
    """Response model for a paid feature invocation."""

    id: str
    feature_id: str
    category: str
    tokens_consumed: int
    external_units_consumed: Optional[int] = None
    created_at: datetime

    class Config:
        from_attributes = True


class AccessDecisionResponse(BaseModel):
    """Whether the caller may use a feature right now."""

    feature_id: str
    allowed: bool
    reason: Optional[str] = None
    required_tokens: int
    current_balance: int
    need_to_purchase: int = Field(default=0, ge=0)
    upgrade_required: bool = False
