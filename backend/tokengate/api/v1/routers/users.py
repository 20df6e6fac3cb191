"""API routes for the authenticated user's account.

This module provides REST endpoints for:
- GET /api/v1/users/me/profile - Account with resolved subscription
- GET /api/v1/users/me/tokens - Balance and ledger history
- GET /api/v1/users/me/transactions - Payment transactions
- GET /api/v1/users/me/usage - Paid feature usage
- GET /api/v1/users/me/subscription - Subscription status
"""

import logging

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from tokengate.api.deps import get_current_account, get_db
from tokengate.models.account import Account
from tokengate.schemas.account import (
    LedgerEntryResponse,
    ProfileResponse,
    SubscriptionStatusResponse,
    TokenSummaryResponse,
    UsageRecordResponse,
)
from tokengate.schemas.payment import PaymentTransactionResponse
from tokengate.services.payment_service import get_payment_reconciler
from tokengate.services.subscription_service import (
    SubscriptionStatus,
    get_subscription_lifecycle,
)
from tokengate.services.token_ledger import get_token_ledger

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/users", tags=["users"])


def _subscription_response(status: SubscriptionStatus) -> SubscriptionStatusResponse:
    return SubscriptionStatusResponse(
        is_premium=status.active,
        plan=status.plan,
        expires_at=status.expires_at,
        days_remaining=status.days_remaining,
    )


@router.get("/me/profile", response_model=ProfileResponse)
async def get_profile(
    current_account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
) -> ProfileResponse:
    """Get the current account, deactivating an expired subscription first."""
    status = await get_subscription_lifecycle(db).resolve_status(current_account.id)
    balance = await get_token_ledger(db).balance(current_account.id)

    return ProfileResponse(
        id=current_account.id,
        email=current_account.email,
        full_name=current_account.full_name,
        balance=balance,
        subscription=_subscription_response(status),
    )


@router.get("/me/tokens", response_model=TokenSummaryResponse)
async def get_tokens(
    limit: int = Query(default=50, ge=1, le=200),
    current_account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
) -> TokenSummaryResponse:
    """Get the token balance and recent ledger entries."""
    ledger = get_token_ledger(db)
    balance = await ledger.balance(current_account.id)
    entries = await ledger.history(current_account.id, limit=limit)

    return TokenSummaryResponse(
        balance=balance,
        logs=[LedgerEntryResponse.model_validate(entry) for entry in entries],
    )


@router.get("/me/transactions", response_model=list[PaymentTransactionResponse])
async def get_transactions(
    limit: int = Query(default=50, ge=1, le=200),
    current_account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
) -> list[PaymentTransactionResponse]:
    """Get the user's payment transactions."""
    transactions = await get_payment_reconciler(db).list_transactions(
        current_account.id, limit=limit
    )
    return [PaymentTransactionResponse.model_validate(tx) for tx in transactions]


@router.get("/me/usage", response_model=list[UsageRecordResponse])
async def get_usage(
    limit: int = Query(default=100, ge=1, le=500),
    current_account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
) -> list[UsageRecordResponse]:
    """Get the user's paid feature usage."""
    records = await get_token_ledger(db).usage_history(current_account.id, limit=limit)
    return [UsageRecordResponse.model_validate(record) for record in records]


@router.get("/me/subscription", response_model=SubscriptionStatusResponse)
async def get_subscription(
    current_account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
) -> SubscriptionStatusResponse:
    """Get the resolved subscription status."""
    status = await get_subscription_lifecycle(db).resolve_status(current_account.id)
    return _subscription_response(status)
