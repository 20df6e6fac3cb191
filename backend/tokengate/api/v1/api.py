"""API v1 router aggregation."""

from fastapi import APIRouter

from tokengate.api.v1.routers import features, payment, users

api_router = APIRouter()

# Include all v1 routers
api_router.include_router(users.router)  # Account, balance and history
api_router.include_router(features.router)  # Catalog and entitlement checks
api_router.include_router(payment.router)  # Midtrans purchases and webhooks
