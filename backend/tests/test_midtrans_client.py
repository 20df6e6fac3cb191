"""Tests for the Midtrans Snap client.

This module tests:
- Notification signature computation and verification
- Snap session creation against a mocked transport
- Gateway failures mapped to GatewayUnavailable
"""

import hashlib
import json

import httpx
import pytest

from tokengate.core.errors import GatewayUnavailable
from tokengate.services.midtrans_client import (
    PRODUCTION_SNAP_URL,
    SANDBOX_SNAP_URL,
    MidtransClient,
    compute_signature,
    verify_signature,
)

SERVER_KEY = "SB-Mid-server-abc"


# ============================================================================
# Signatures
# ============================================================================


class TestSignature:
    def test_compute_signature_is_sha512_of_concatenation(self):
        expected = hashlib.sha512(b"SUB-1200100000.00" + SERVER_KEY.encode()).hexdigest()
        assert compute_signature("SUB-1", "200", "100000.00", SERVER_KEY) == expected

    def test_verify_valid_signature(self):
        signature = compute_signature("TOKEN-9", "200", "9999.00", SERVER_KEY)
        assert verify_signature("TOKEN-9", "200", "9999.00", signature, SERVER_KEY) is True

    def test_verify_accepts_uppercase_hex(self):
        signature = compute_signature("TOKEN-9", "200", "9999.00", SERVER_KEY).upper()
        assert verify_signature("TOKEN-9", "200", "9999.00", signature, SERVER_KEY) is True

    def test_tampered_amount_rejected(self):
        signature = compute_signature("TOKEN-9", "200", "9999.00", SERVER_KEY)
        assert verify_signature("TOKEN-9", "200", "1.00", signature, SERVER_KEY) is False

    def test_wrong_key_rejected(self):
        signature = compute_signature("TOKEN-9", "200", "9999.00", "other-key")
        assert verify_signature("TOKEN-9", "200", "9999.00", signature, SERVER_KEY) is False

    def test_empty_signature_rejected(self):
        assert verify_signature("TOKEN-9", "200", "9999.00", "", SERVER_KEY) is False


# ============================================================================
# Session creation
# ============================================================================


def _client(handler, **kwargs) -> MidtransClient:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    kwargs.setdefault("server_key", SERVER_KEY)
    kwargs.setdefault("is_production", False)
    return MidtransClient(http_client=http_client, **kwargs)


async def _create(client: MidtransClient):
    return await client.create_session(
        order_id="TOKEN-1",
        gross_amount=9999,
        items=[{"id": "medium", "price": 9999, "quantity": 1, "name": "10 Tokens"}],
        customer={"email": "a@example.com", "first_name": "A"},
        callbacks={"finish": "http://localhost:5173/payment/success"},
    )


class TestCreateSession:
    @pytest.mark.asyncio
    async def test_success(self):
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["url"] = str(request.url)
            captured["auth"] = request.headers.get("authorization")
            captured["body"] = json.loads(request.content)
            return httpx.Response(
                201,
                json={"token": "snap-token", "redirect_url": "https://pay.example/snap"},
            )

        session = await _create(_client(handler))

        assert session.token == "snap-token"
        assert session.redirect_url == "https://pay.example/snap"
        assert captured["url"] == SANDBOX_SNAP_URL
        assert captured["auth"].startswith("Basic ")
        assert captured["body"]["transaction_details"] == {
            "order_id": "TOKEN-1",
            "gross_amount": 9999,
        }
        assert captured["body"]["callbacks"]["finish"].endswith("/payment/success")

    def test_production_url(self):
        client = MidtransClient(server_key=SERVER_KEY, is_production=True)
        assert client.snap_url == PRODUCTION_SNAP_URL

    @pytest.mark.asyncio
    async def test_missing_server_key(self):
        def handler(request):
            raise AssertionError("gateway must not be called")

        with pytest.raises(GatewayUnavailable):
            await _create(_client(handler, server_key=""))

    @pytest.mark.asyncio
    async def test_http_error_status(self):
        def handler(request):
            return httpx.Response(401, json={"error_messages": ["Access denied"]})

        with pytest.raises(GatewayUnavailable) as exc_info:
            await _create(_client(handler))

        assert exc_info.value.retryable is True

    @pytest.mark.asyncio
    async def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(GatewayUnavailable):
            await _create(_client(handler))

    @pytest.mark.asyncio
    async def test_response_without_token(self):
        def handler(request):
            return httpx.Response(201, json={"redirect_url": "https://pay.example"})

        with pytest.raises(GatewayUnavailable):
            await _create(_client(handler))

    @pytest.mark.asyncio
    async def test_invalid_json(self):
        def handler(request):
            return httpx.Response(200, content=b"<html>maintenance</html>")

        with pytest.raises(GatewayUnavailable):
            await _create(_client(handler))
