"""Midtrans Snap payment gateway client.

Implements the two gateway touch points:
1. Create a Snap transaction (session token + redirect URL) for an order
2. Compute and verify the signature of inbound payment notifications

Midtrans Snap documentation:
https://docs.midtrans.com/reference/backend-integration
"""

import hashlib
import hmac
import logging
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from tokengate.core.config import settings
from tokengate.core.errors import GatewayUnavailable

logger = logging.getLogger(__name__)

# Snap transaction endpoints
SANDBOX_SNAP_URL = "https://app.sandbox.midtrans.com/snap/v1/transactions"
PRODUCTION_SNAP_URL = "https://app.midtrans.com/snap/v1/transactions"


@dataclass
class GatewaySession:
    """Payment session returned by the gateway."""

    token: str
    redirect_url: str


def compute_signature(
    order_id: str,
    status_code: str,
    gross_amount: str,
    server_key: str,
) -> str:
    """Midtrans notification signature: SHA512(order_id + status_code + gross_amount + server_key)."""
    payload = f"{order_id}{status_code}{gross_amount}{server_key}"
    return hashlib.sha512(payload.encode("utf-8")).hexdigest()


def verify_signature(
    order_id: str,
    status_code: str,
    gross_amount: str,
    signature: str,
    server_key: str,
) -> bool:
    """Constant-time comparison of a notification signature."""
    expected = compute_signature(order_id, status_code, gross_amount, server_key)
    return hmac.compare_digest(expected, (signature or "").lower())


class MidtransClient:
    """Async client for the Snap transactions API."""

    def __init__(
        self,
        server_key: Optional[str] = None,
        is_production: Optional[bool] = None,
        timeout: Optional[float] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        """Initialize the client.

        Args:
            server_key: Midtrans server key (defaults to settings)
            is_production: Use the production endpoint (defaults to settings)
            timeout: Request timeout in seconds (defaults to settings)
            http_client: Optional pre-configured httpx client
        """
        self.server_key = server_key if server_key is not None else settings.MIDTRANS_SERVER_KEY
        production = settings.MIDTRANS_IS_PRODUCTION if is_production is None else is_production
        self.snap_url = PRODUCTION_SNAP_URL if production else SANDBOX_SNAP_URL
        self.timeout = settings.GATEWAY_TIMEOUT_SECONDS if timeout is None else timeout
        self._http_client = http_client

    async def create_session(
        self,
        order_id: str,
        gross_amount: int,
        items: list[dict[str, Any]],
        customer: dict[str, Any],
        callbacks: Optional[dict[str, str]] = None,
    ) -> GatewaySession:
        """Create a Snap transaction for an order.

        Args:
            order_id: Our globally unique order id
            gross_amount: Amount in IDR
            items: Item details (id, price, quantity, name)
            customer: Customer details (email, first_name)
            callbacks: Optional finish/error/pending redirect URLs

        Returns:
            GatewaySession with the Snap token and redirect URL

        Raises:
            GatewayUnavailable: If the gateway is not configured, times out,
                or does not return a session token
        """
        if not self.server_key:
            logger.error("Midtrans server key is not configured")
            raise GatewayUnavailable("Payment gateway is not configured")

        body: dict[str, Any] = {
            "transaction_details": {
                "order_id": order_id,
                "gross_amount": gross_amount,
            },
            "customer_details": customer,
            "item_details": items,
        }
        if callbacks:
            body["callbacks"] = callbacks

        try:
            response = await self._post(body)
            response.raise_for_status()
            data = response.json()
        except httpx.TimeoutException as e:
            logger.error(f"Midtrans timed out creating session for {order_id}: {e}")
            raise GatewayUnavailable("Payment gateway timed out") from e
        except httpx.HTTPStatusError as e:
            logger.error(
                f"Midtrans rejected session for {order_id}: "
                f"{e.response.status_code} {e.response.text}"
            )
            raise GatewayUnavailable(
                f"Payment gateway error: {e.response.status_code}"
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Midtrans request failed for {order_id}: {e}")
            raise GatewayUnavailable(f"Payment gateway request failed: {e}") from e

        token = data.get("token")
        redirect_url = data.get("redirect_url")
        if not token or not redirect_url:
            logger.error(f"Midtrans response for {order_id} has no session token: {data}")
            raise GatewayUnavailable("Payment gateway returned no session token")

        logger.info(f"Midtrans session created for order {order_id}")
        return GatewaySession(token=token, redirect_url=redirect_url)

    async def _post(self, body: dict[str, Any]) -> httpx.Response:
        kwargs = {
            "json": body,
            "auth": (self.server_key, ""),
            "headers": {"Accept": "application/json"},
            "timeout": self.timeout,
        }
        if self._http_client is not None:
            return await self._http_client.post(self.snap_url, **kwargs)
        async with httpx.AsyncClient() as client:
            return await client.post(self.snap_url, **kwargs)


def get_midtrans_client() -> MidtransClient:
    """Factory function to create MidtransClient from settings."""
    return MidtransClient()
