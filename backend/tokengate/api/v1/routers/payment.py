"""API routes for purchases and gateway notifications.

This module provides REST endpoints for:
- GET /api/v1/payment/plans - List subscription plans and token packages
- POST /api/v1/payment/create - Create a payment and gateway session
- POST /api/v1/payment/webhook - Handle Midtrans payment notifications
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from tokengate.api.deps import get_current_account, get_db, get_payment_gateway
from tokengate.core.errors import (
    GatewayUnavailable,
    InvalidItem,
    InvalidSignature,
    SettlementInProgress,
    UnknownTransaction,
)
from tokengate.models.account import Account
from tokengate.schemas.catalog import PlansResponse
from tokengate.schemas.payment import (
    CreatePaymentRequest,
    CreatePaymentResponse,
    NotificationResult,
    PaymentNotification,
)
from tokengate.services.midtrans_client import MidtransClient
from tokengate.services.payment_service import PaymentReconciler, get_payment_reconciler

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payment", tags=["payment"])


@router.get(
    "/plans",
    response_model=PlansResponse,
    summary="List plans and packages",
)
async def get_plans() -> PlansResponse:
    """Get available subscription plans and token packages."""
    return PaymentReconciler.get_plans()


@router.post(
    "/create",
    response_model=CreatePaymentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create payment",
    description="Create a pending transaction and a Midtrans Snap session",
)
async def create_payment(
    request: CreatePaymentRequest,
    current_account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
    gateway: MidtransClient = Depends(get_payment_gateway),
) -> CreatePaymentResponse:
    """Start a purchase for the authenticated user.

    Returns:
        CreatePaymentResponse with the order id and gateway redirect

    Raises:
        HTTPException: 400 for unknown items, 503 if the gateway is down
    """
    reconciler = get_payment_reconciler(db, gateway=gateway)

    try:
        return await reconciler.create_payment(current_account.id, request)
    except InvalidItem as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except GatewayUnavailable as e:
        logger.error(f"Payment creation failed for user {current_account.id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Payment gateway unavailable, please try again",
        )


@router.post(
    "/webhook",
    response_model=NotificationResult,
    summary="Midtrans notification",
    description="Handle asynchronous payment notifications from Midtrans",
)
async def payment_webhook(
    notification: PaymentNotification,
    db: AsyncSession = Depends(get_db),
) -> NotificationResult:
    """Apply a gateway notification.

    This endpoint is unauthenticated; the notification signature is the only
    proof of origin. Non-2xx responses make the gateway retry, which is safe.
    """
    reconciler = get_payment_reconciler(db)

    try:
        return await reconciler.handle_notification(notification)
    except InvalidSignature:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid signature",
        )
    except UnknownTransaction:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Transaction not found",
        )
    except SettlementInProgress:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Settlement in progress",
        )
