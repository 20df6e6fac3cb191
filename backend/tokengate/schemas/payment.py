"""Pydantic schemas for payment creation and gateway notifications."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from tokengate.models.payment_transaction import PaymentStatus, PaymentType


class CreatePaymentRequest(BaseModel):
    """Request to start a purchase."""

    type: PaymentType = Field(description="subscription or tokens")
    item: str = Field(min_length=1, description="Plan id or token package id")

    class Config:
        json_schema_extra = {
            "example": {
                "type": "tokens",
                "item": "medium",
            }
        }


class CreatePaymentResponse(BaseModel):
    """Gateway session the client should redirect the payer to."""

    order_id: str = Field(description="Order id used with the gateway")
    snap_token: str = Field(description="Gateway session token")
    redirect_url: str = Field(description="Gateway payment page URL")
    gross_amount: int = Field(description="Amount charged in IDR")


class PaymentNotification(BaseModel):
    """Inbound settlement notification posted by the gateway.

    Field names follow the gateway's payload.
    """

    order_id: str
    status_code: str
    gross_amount: str
    signature_key: str
    transaction_status: str
    fraud_status: Optional[str] = None
    transaction_id: Optional[str] = None
    payment_type: Optional[str] = None

    class Config:
        extra = "allow"


class NotificationResult(BaseModel):
    """Outcome of processing one notification."""

    success: bool = True
    order_id: str
    status: PaymentStatus
    applied: bool = Field(
        default=False, description="True only when this call applied the settlement"
    )
    message: Optional[str] = None


class PaymentTransactionResponse(BaseModel):
    """A purchase attempt as shown to its owner."""

    order_id: str
    type: PaymentType
    item: str
    gross_amount: int
    tokens_amount: Optional[int] = None
    status: PaymentStatus
    created_at: datetime
    completed_at: Optional[datetime] = None

    class Config:
        from_attributes = True
