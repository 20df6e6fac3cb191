"""FastAPI application entry point.

This module configures the FastAPI application with:
- Logging
- CORS middleware for frontend communication
- API v1 router with all endpoints
- Exception handlers for store outages and frozen accounts
- Database lifecycle management
- Health check endpoints
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from tokengate.api.v1.api import api_router
from tokengate.core.config import settings
from tokengate.core.database import close_db, get_engine
from tokengate.core.errors import (
    AccountNotFound,
    ConstraintViolation,
    InsufficientBalance,
    InvariantViolation,
    PremiumRequired,
    StoreUnavailable,
)

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup/shutdown events."""
    logger.info(f"Starting {settings.PROJECT_NAME} API ({settings.ENVIRONMENT})...")
    if not settings.MIDTRANS_SERVER_KEY:
        logger.warning("MIDTRANS_SERVER_KEY is not set; payments will be rejected")

    yield  # Application is running

    logger.info(f"Shutting down {settings.PROJECT_NAME} API...")
    await close_db()
    logger.info("Database connections closed")


app = FastAPI(
    title="TokenGate API",
    description="Token ledger, premium subscriptions and Midtrans payment settlement",
    version=settings.VERSION,
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(StoreUnavailable)
async def store_unavailable_handler(request: Request, exc: StoreUnavailable):
    logger.error(f"Store unavailable during {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": "Service temporarily unavailable", "retryable": True},
        headers={"Retry-After": "5"},
    )


@app.exception_handler(ConstraintViolation)
async def constraint_violation_handler(request: Request, exc: ConstraintViolation):
    logger.error(f"Constraint violation during {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Request conflicts with stored data", "retryable": False},
    )


@app.exception_handler(InvariantViolation)
async def invariant_violation_handler(request: Request, exc: InvariantViolation):
    logger.critical(f"Invariant violation during {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Account is locked for review", "retryable": False},
    )


@app.exception_handler(AccountNotFound)
async def account_not_found_handler(request: Request, exc: AccountNotFound):
    return JSONResponse(
        status_code=status.HTTP_404_NOT_FOUND,
        content={"detail": str(exc), "retryable": False},
    )


@app.exception_handler(InsufficientBalance)
async def insufficient_balance_handler(request: Request, exc: InsufficientBalance):
    return JSONResponse(
        status_code=status.HTTP_402_PAYMENT_REQUIRED,
        content={
            "detail": str(exc),
            "required_tokens": exc.required,
            "current_balance": exc.available,
            "need_to_purchase": exc.shortfall,
            "retryable": False,
        },
    )


@app.exception_handler(PremiumRequired)
async def premium_required_handler(request: Request, exc: PremiumRequired):
    return JSONResponse(
        status_code=status.HTTP_403_FORBIDDEN,
        content={"detail": str(exc), "upgrade_required": True, "retryable": False},
    )


# Include API v1 router
app.include_router(api_router, prefix=settings.API_V1_PREFIX)


@app.get("/api/health")
async def health_check():
    """Health check endpoint.

    Returns basic health status. For database connectivity, use /api/v1/status.
    """
    return {"status": "ok", "service": "tokengate-backend"}


@app.get("/api/v1/status")
async def status_check():
    """API status endpoint with database connectivity."""
    database_status = "unknown"
    try:
        async with get_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))
        database_status = "connected"
    except Exception as e:
        database_status = f"error: {str(e)}"

    return {
        "status": "running",
        "version": settings.VERSION,
        "environment": settings.ENVIRONMENT,
        "services": {
            "database": database_status,
            "payment_gateway": "midtrans-production"
            if settings.MIDTRANS_IS_PRODUCTION
            else "midtrans-sandbox",
        },
    }
