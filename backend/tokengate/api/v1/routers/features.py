"""API routes for the feature catalog and entitlement checks.

This module provides REST endpoints for:
- GET /api/v1/features - List features (optionally by category)
- GET /api/v1/features/{feature_id}/access - Check whether the user may use a feature
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from tokengate.api.deps import get_current_account, get_db
from tokengate.core.catalog import FEATURES, get_features_by_category
from tokengate.core.errors import UnknownFeature
from tokengate.models.account import Account
from tokengate.schemas.account import AccessDecisionResponse
from tokengate.schemas.catalog import FeatureListResponse
from tokengate.services.entitlement_gate import DenialReason, get_entitlement_gate

router = APIRouter(prefix="/features", tags=["features"])


@router.get("", response_model=FeatureListResponse)
async def list_features(
    category: Optional[str] = Query(default=None, description="Filter by category"),
) -> FeatureListResponse:
    """List catalog features."""
    features = get_features_by_category(category) if category else list(FEATURES)
    return FeatureListResponse(features=features, total=len(features))


@router.get("/{feature_id}/access", response_model=AccessDecisionResponse)
async def check_access(
    feature_id: str,
    current_account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
) -> AccessDecisionResponse:
    """Check premium status and balance for a feature without charging."""
    gate = get_entitlement_gate(db)

    try:
        decision = await gate.authorize_feature_id(current_account.id, feature_id)
    except UnknownFeature:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Feature not found",
        )

    return AccessDecisionResponse(
        feature_id=decision.feature_id,
        allowed=decision.allowed,
        reason=decision.reason.value if decision.reason else None,
        required_tokens=decision.required,
        current_balance=decision.current if decision.current is not None else 0,
        need_to_purchase=decision.need_to_purchase,
        upgrade_required=decision.reason is DenialReason.PREMIUM_REQUIRED,
    )
