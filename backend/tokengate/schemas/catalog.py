"""Pydantic schemas for the static feature and pricing catalog.

Catalog entries are frozen: they are configuration, keyed by a stable id,
and never mutated at runtime.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from tokengate.models.account import PremiumPlan


class FeatureConfig(BaseModel):
    """A paid AI feature and what it takes to use it."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(description="Stable feature identifier")
    name: str = Field(description="Human-readable feature name")
    category: str = Field(description="Feature group")
    description: str = Field(default="", description="Short description")
    is_premium: bool = Field(default=False, description="Requires an active subscription")
    token_cost: int = Field(ge=0, description="Tokens consumed per invocation")


class SubscriptionPlan(BaseModel):
    """Premium subscription plan."""

    model_config = ConfigDict(frozen=True)

    id: PremiumPlan = Field(description="Plan identifier")
    name: str = Field(description="Human-readable plan name")
    price: int = Field(ge=0, description="Price in IDR")
    bonus_tokens: int = Field(ge=0, description="Tokens credited on each payment")
    period_months: int = Field(ge=1, description="Length of one billing period")
    description: Optional[str] = Field(default=None)


class TokenPackage(BaseModel):
    """Token package available for purchase."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(description="Package identifier")
    name: str = Field(description="Human-readable package name")
    tokens: int = Field(ge=1, description="Number of tokens included")
    price: int = Field(ge=0, description="Price in IDR")

    @property
    def price_per_token(self) -> float:
        """Price per token in IDR."""
        return self.price / self.tokens


class PlansResponse(BaseModel):
    """Response containing all purchasable items."""

    subscriptions: list[SubscriptionPlan] = Field(description="Subscription plans")
    tokens: list[TokenPackage] = Field(description="Token packages")
    currency: str = Field(default="IDR", description="Currency for all prices")


class FeatureListResponse(BaseModel):
    """Response containing the feature catalog."""

    features: list[FeatureConfig]
    total: int
