"""Entitlement gate: may this user start this paid feature right now?

The check is advisory. It does not reserve tokens; the feature charges with
``TokenLedger.consume`` once its work is done, and ``consume`` re-checks the
balance atomically, so a request that slips past the gate concurrently with
another can fail at charge time but can never overdraw the account.
"""

import enum
import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from tokengate.core.catalog import get_feature
from tokengate.core.errors import InsufficientBalance, PremiumRequired, UnknownFeature
from tokengate.schemas.catalog import FeatureConfig
from tokengate.services.subscription_service import SubscriptionLifecycle
from tokengate.services.token_ledger import TokenLedger

logger = logging.getLogger(__name__)


class DenialReason(str, enum.Enum):
    PREMIUM_REQUIRED = "premium_required"
    INSUFFICIENT_TOKENS = "insufficient_tokens"


@dataclass(frozen=True)
class AccessDecision:
    """Outcome of an entitlement check."""

    feature_id: str
    allowed: bool
    required: int
    current: Optional[int] = None
    reason: Optional[DenialReason] = None

    @property
    def need_to_purchase(self) -> int:
        if self.current is None:
            return 0
        return max(0, self.required - self.current)


class EntitlementGate:
    """Read-only policy check composed from the ledger and the subscription."""

    def __init__(
        self,
        db: AsyncSession,
        ledger: Optional[TokenLedger] = None,
        lifecycle: Optional[SubscriptionLifecycle] = None,
    ):
        self.db = db
        self.ledger = ledger or TokenLedger(db)
        self.lifecycle = lifecycle or SubscriptionLifecycle(db)

    async def authorize(self, user_id: str, feature: FeatureConfig) -> AccessDecision:
        """Decide whether a user may invoke a feature.

        Premium features are checked against the resolved (expiry-checked)
        subscription, then the balance is compared with the feature cost.
        """
        if feature.is_premium:
            status = await self.lifecycle.resolve_status(user_id)
            if not status.active:
                logger.info(f"User {user_id} denied {feature.id}: premium required")
                return AccessDecision(
                    feature_id=feature.id,
                    allowed=False,
                    required=feature.token_cost,
                    reason=DenialReason.PREMIUM_REQUIRED,
                )

        current = await self.ledger.balance(user_id)
        if current < feature.token_cost:
            logger.info(
                f"User {user_id} denied {feature.id}: needs {feature.token_cost} "
                f"tokens, has {current}"
            )
            return AccessDecision(
                feature_id=feature.id,
                allowed=False,
                required=feature.token_cost,
                current=current,
                reason=DenialReason.INSUFFICIENT_TOKENS,
            )

        return AccessDecision(
            feature_id=feature.id,
            allowed=True,
            required=feature.token_cost,
            current=current,
        )

    async def authorize_feature_id(self, user_id: str, feature_id: str) -> AccessDecision:
        """Authorize by catalog id.

        Raises:
            UnknownFeature: If the feature id is not in the catalog
        """
        feature = get_feature(feature_id)
        if feature is None:
            raise UnknownFeature(feature_id)
        return await self.authorize(user_id, feature)

    async def ensure_authorized(self, user_id: str, feature: FeatureConfig) -> AccessDecision:
        """Like ``authorize`` but raises on denial.

        Raises:
            PremiumRequired: If the feature needs an active subscription
            InsufficientBalance: If the balance is below the feature cost
        """
        decision = await self.authorize(user_id, feature)
        if decision.reason is DenialReason.PREMIUM_REQUIRED:
            raise PremiumRequired(feature.id)
        if decision.reason is DenialReason.INSUFFICIENT_TOKENS:
            raise InsufficientBalance(required=decision.required, available=decision.current)
        return decision


def get_entitlement_gate(db: AsyncSession) -> EntitlementGate:
    """Factory function to create EntitlementGate."""
    return EntitlementGate(db)
