"""API tests for the account, feature and payment endpoints.

Tests cover:
- Health check
- Bearer token authentication and lazy account creation
- Plans, features and entitlement checks
- Payment creation and error mapping
- Webhook handling end to end
- Error handlers for store outages and frozen accounts
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import pytest
import pytest_asyncio
from fastapi import status
from httpx import ASGITransport, AsyncClient
from jose import jwt

from tokengate.api.deps import get_db, get_payment_gateway
from tokengate.core.config import settings
from tokengate.core.errors import (
    ConstraintViolation,
    GatewayUnavailable,
    InvariantViolation,
    StoreUnavailable,
)
from tokengate.main import app
from tokengate.models.ledger_entry import LedgerEntryType
from tokengate.models.payment_transaction import PaymentStatus
from tokengate.services.midtrans_client import GatewaySession, compute_signature
from tokengate.services.stores import PaymentStore, ProfileStore
from tokengate.services.token_ledger import TokenLedger


def make_token(sub: str = "user-1", **claims) -> str:
    payload = {
        "sub": sub,
        "email": f"{sub}@example.com",
        "user_metadata": {"full_name": "Api User"},
        "exp": datetime.now(timezone.utc) + timedelta(hours=1),
    }
    payload.update(claims)
    return jwt.encode(payload, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def auth_headers(sub: str = "user-1") -> dict:
    return {"Authorization": f"Bearer {make_token(sub)}"}


def signed_notification(order_id: str, gross_amount: str, transaction_status="settlement"):
    return {
        "order_id": order_id,
        "status_code": "200",
        "gross_amount": gross_amount,
        "signature_key": compute_signature(
            order_id, "200", gross_amount, settings.MIDTRANS_SERVER_KEY
        ),
        "transaction_status": transaction_status,
        "fraud_status": "accept",
        "payment_type": "bank_transfer",
    }


@pytest.fixture
def mock_gateway():
    gateway = AsyncMock()
    gateway.create_session.return_value = GatewaySession(
        token="snap-token-abc",
        redirect_url="https://app.sandbox.midtrans.com/snap/v2/vtweb/snap-token-abc",
    )
    return gateway


@pytest_asyncio.fixture
async def client(session_factory, mock_gateway):
    """HTTP client against the app with the test database and gateway."""

    async def override_get_db():
        async with session_factory() as session:
            yield session

    # Save existing overrides
    original_overrides = app.dependency_overrides.copy()
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_payment_gateway] = lambda: mock_gateway

    try:
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as ac:
            yield ac
    finally:
        # Restore original overrides
        app.dependency_overrides = original_overrides


# ============================================================================
# Health and catalog
# ============================================================================


class TestPublicEndpoints:
    @pytest.mark.asyncio
    async def test_health(self, client):
        response = await client.get("/api/health")
        assert response.status_code == status.HTTP_200_OK
        assert response.json()["status"] == "ok"

    @pytest.mark.asyncio
    async def test_plans(self, client):
        response = await client.get("/api/v1/payment/plans")

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["currency"] == "IDR"
        assert {p["id"] for p in data["subscriptions"]} == {"monthly", "yearly"}
        assert len(data["tokens"]) == 4

    @pytest.mark.asyncio
    async def test_features(self, client):
        response = await client.get("/api/v1/features")

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["total"] == 16

    @pytest.mark.asyncio
    async def test_features_by_category(self, client):
        response = await client.get(
            "/api/v1/features", params={"category": "student-development"}
        )

        data = response.json()
        assert data["total"] == 4
        assert all(f["category"] == "student-development" for f in data["features"])


# ============================================================================
# Authentication
# ============================================================================


class TestAuthentication:
    @pytest.mark.asyncio
    async def test_missing_token(self, client):
        response = await client.get("/api/v1/users/me/profile")
        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    @pytest.mark.asyncio
    async def test_invalid_token(self, client):
        response = await client.get(
            "/api/v1/users/me/profile", headers={"Authorization": "Bearer not-a-jwt"}
        )
        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    @pytest.mark.asyncio
    async def test_expired_token(self, client):
        token = make_token(exp=datetime.now(timezone.utc) - timedelta(minutes=1))
        response = await client.get(
            "/api/v1/users/me/profile", headers={"Authorization": f"Bearer {token}"}
        )
        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    @pytest.mark.asyncio
    async def test_first_request_creates_account(self, client, db_session):
        response = await client.get("/api/v1/users/me/profile", headers=auth_headers())

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["id"] == "user-1"
        assert data["email"] == "user-1@example.com"
        assert data["full_name"] == "Api User"
        assert data["balance"] == 0
        assert data["subscription"]["is_premium"] is False

        account = await ProfileStore(db_session).get("user-1")
        assert account is not None


# ============================================================================
# Entitlement checks
# ============================================================================


class TestFeatureAccess:
    @pytest.mark.asyncio
    async def test_premium_feature_requires_upgrade(self, client):
        response = await client.get(
            "/api/v1/features/swot-self-analysis/access", headers=auth_headers()
        )

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["allowed"] is False
        assert data["reason"] == "premium_required"
        assert data["upgrade_required"] is True

    @pytest.mark.asyncio
    async def test_free_feature_needs_tokens(self, client):
        response = await client.get(
            "/api/v1/features/essay-idea-generator/access", headers=auth_headers()
        )

        data = response.json()
        assert data["allowed"] is False
        assert data["reason"] == "insufficient_tokens"
        assert data["need_to_purchase"] == 1
        assert data["current_balance"] == 0

    @pytest.mark.asyncio
    async def test_unknown_feature(self, client):
        response = await client.get(
            "/api/v1/features/no-such-feature/access", headers=auth_headers()
        )
        assert response.status_code == status.HTTP_404_NOT_FOUND


# ============================================================================
# Payments
# ============================================================================


class TestPaymentFlow:
    @pytest.mark.asyncio
    async def test_create_and_settle_token_purchase(self, client, db_session):
        create = await client.post(
            "/api/v1/payment/create",
            json={"type": "tokens", "item": "medium"},
            headers=auth_headers(),
        )

        assert create.status_code == status.HTTP_201_CREATED
        order = create.json()
        assert order["snap_token"] == "snap-token-abc"
        assert order["gross_amount"] == 9999

        webhook = await client.post(
            "/api/v1/payment/webhook",
            json=signed_notification(order["order_id"], "9999.00"),
        )

        assert webhook.status_code == status.HTTP_200_OK
        assert webhook.json()["applied"] is True

        replay = await client.post(
            "/api/v1/payment/webhook",
            json=signed_notification(order["order_id"], "9999.00"),
        )
        assert replay.json()["applied"] is False

        tokens = await client.get("/api/v1/users/me/tokens", headers=auth_headers())
        assert tokens.json()["balance"] == 10
        assert len(tokens.json()["logs"]) == 1
        assert tokens.json()["logs"][0]["type"] == "purchase"

        transactions = await client.get(
            "/api/v1/users/me/transactions", headers=auth_headers()
        )
        assert transactions.json()[0]["status"] == PaymentStatus.COMPLETED.value

        stored = await PaymentStore(db_session).get(order["order_id"])
        assert stored.status == PaymentStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_subscription_purchase(self, client):
        create = await client.post(
            "/api/v1/payment/create",
            json={"type": "subscription", "item": "yearly"},
            headers=auth_headers(),
        )
        order_id = create.json()["order_id"]

        await client.post(
            "/api/v1/payment/webhook", json=signed_notification(order_id, "390000.00")
        )

        subscription = await client.get(
            "/api/v1/users/me/subscription", headers=auth_headers()
        )
        data = subscription.json()
        assert data["is_premium"] is True
        assert data["plan"] == "yearly"
        assert data["days_remaining"] >= 365

        profile = await client.get("/api/v1/users/me/profile", headers=auth_headers())
        assert profile.json()["balance"] == 150

    @pytest.mark.asyncio
    async def test_usage_history(self, client, db_session, make_account):
        await make_account("user-1")
        ledger = TokenLedger(db_session)
        await ledger.add("user-1", 2, LedgerEntryType.BONUS)
        await ledger.consume("user-1", "essay-idea-generator", "asisten-lomba", 1)

        response = await client.get("/api/v1/users/me/usage", headers=auth_headers())

        assert response.status_code == status.HTTP_200_OK
        assert [u["feature_id"] for u in response.json()] == ["essay-idea-generator"]

    @pytest.mark.asyncio
    async def test_invalid_item(self, client):
        response = await client.post(
            "/api/v1/payment/create",
            json={"type": "tokens", "item": "gigantic"},
            headers=auth_headers(),
        )
        assert response.status_code == status.HTTP_400_BAD_REQUEST

    @pytest.mark.asyncio
    async def test_gateway_down(self, client, mock_gateway):
        mock_gateway.create_session.side_effect = GatewayUnavailable("timed out")

        response = await client.post(
            "/api/v1/payment/create",
            json={"type": "tokens", "item": "small"},
            headers=auth_headers(),
        )
        assert response.status_code == status.HTTP_503_SERVICE_UNAVAILABLE

    @pytest.mark.asyncio
    async def test_create_requires_auth(self, client):
        response = await client.post(
            "/api/v1/payment/create", json={"type": "tokens", "item": "small"}
        )
        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    @pytest.mark.asyncio
    async def test_webhook_invalid_signature(self, client):
        payload = signed_notification("TOKEN-1", "9999.00")
        payload["signature_key"] = "0" * 128

        response = await client.post("/api/v1/payment/webhook", json=payload)
        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    @pytest.mark.asyncio
    async def test_webhook_unknown_order(self, client):
        response = await client.post(
            "/api/v1/payment/webhook", json=signed_notification("TOKEN-404", "9999.00")
        )
        assert response.status_code == status.HTTP_404_NOT_FOUND


# ============================================================================
# Error handlers
# ============================================================================


class TestErrorHandlers:
    @pytest.mark.asyncio
    async def test_store_outage_is_503(self, client):
        with patch.object(
            ProfileStore, "get", new=AsyncMock(side_effect=StoreUnavailable("timed out"))
        ):
            response = await client.get("/api/v1/users/me/profile", headers=auth_headers())

        assert response.status_code == status.HTTP_503_SERVICE_UNAVAILABLE
        assert response.headers["retry-after"] == "5"
        assert response.json()["retryable"] is True

    @pytest.mark.asyncio
    async def test_frozen_account_is_500(self, client):
        with patch.object(
            TokenLedger,
            "balance",
            new=AsyncMock(side_effect=InvariantViolation("user-1", "negative balance -1")),
        ):
            response = await client.get("/api/v1/users/me/tokens", headers=auth_headers())

        assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
        assert response.json()["retryable"] is False

    @pytest.mark.asyncio
    async def test_constraint_violation_is_500_not_503(self, client):
        with patch.object(
            TokenLedger,
            "balance",
            new=AsyncMock(side_effect=ConstraintViolation("profile.update broke a constraint")),
        ):
            response = await client.get("/api/v1/users/me/tokens", headers=auth_headers())

        assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
        assert "Retry-After" not in response.headers
        assert response.json()["retryable"] is False
