"""
Midtrans payment gateway client.

Two calls are used:
- Snap transaction creation (hosted checkout token + redirect url)
- Transaction status lookup (source of truth for reconciliation)

Webhook bodies are authenticated with the Midtrans signature:
sha512(order_id + status_code + gross_amount + server_key), hex encoded.
"""
import os
import hashlib
import hmac
import logging
import httpx
from typing import Dict, Any, Optional

logger = logging.getLogger(__name__)

SNAP_SANDBOX_URL = "https://app.sandbox.midtrans.com/snap/v1/transactions"
SNAP_PRODUCTION_URL = "https://app.midtrans.com/snap/v1/transactions"
API_SANDBOX_BASE = "https://api.sandbox.midtrans.com/v2"
API_PRODUCTION_BASE = "https://api.midtrans.com/v2"

REQUEST_TIMEOUT = 15.0


class PaymentGatewayError(Exception):
    """Gateway unreachable or answered with an error."""


def _is_production() -> bool:
    explicit = os.getenv("MIDTRANS_IS_PRODUCTION")
    if explicit is not None and explicit.strip():
        return explicit.strip().lower() in ("1", "true", "yes")
    return os.getenv("ENVIRONMENT") == "production"


def compute_signature(order_id: str, status_code: str, gross_amount: str, server_key: str) -> str:
    raw = f"{order_id}{status_code}{gross_amount}{server_key}"
    return hashlib.sha512(raw.encode("utf-8")).hexdigest()


class MidtransGateway:
    """Thin async wrapper over the Midtrans Snap and Core status APIs."""

    def __init__(self, server_key: Optional[str] = None, is_production: Optional[bool] = None):
        self._server_key = server_key
        self._is_production = is_production

    @property
    def server_key(self) -> str:
        # Read lazily so tests and .env loading order don't matter
        if self._server_key is not None:
            return self._server_key
        return (os.getenv("MIDTRANS_SERVER_KEY") or "").strip()

    @property
    def is_production(self) -> bool:
        if self._is_production is not None:
            return self._is_production
        return _is_production()

    @property
    def snap_url(self) -> str:
        return SNAP_PRODUCTION_URL if self.is_production else SNAP_SANDBOX_URL

    @property
    def api_base(self) -> str:
        return API_PRODUCTION_BASE if self.is_production else API_SANDBOX_BASE

    def _auth(self) -> httpx.BasicAuth:
        if not self.server_key:
            raise PaymentGatewayError("MIDTRANS_SERVER_KEY is not set")
        # Server key as username, empty password
        return httpx.BasicAuth(self.server_key, "")

    def verify_signature(self, notification: Dict[str, Any]) -> bool:
        """Constant-time comparison of the notification's signature_key."""
        provided = str(notification.get("signature_key") or "")
        if not provided or not self.server_key:
            return False
        expected = compute_signature(
            str(notification.get("order_id", "")),
            str(notification.get("status_code", "")),
            str(notification.get("gross_amount", "")),
            self.server_key,
        )
        return hmac.compare_digest(expected, provided)

    async def create_transaction(self, params: Dict[str, Any]) -> Dict[str, Any]:
        """
        Create a Snap transaction.

        Returns:
            {"token": ..., "redirect_url": ...}
        """
        try:
            async with httpx.AsyncClient() as client:
                response = await client.post(
                    self.snap_url,
                    json=params,
                    auth=self._auth(),
                    headers={"Accept": "application/json"},
                    timeout=REQUEST_TIMEOUT,
                )
        except httpx.HTTPError as e:
            logger.error(f"Midtrans: Snap request failed - {e}")
            raise PaymentGatewayError(str(e)) from e

        if response.status_code not in (200, 201):
            logger.error(f"Midtrans: Snap error {response.status_code} - {response.text}")
            raise PaymentGatewayError(f"Snap returned {response.status_code}")

        data = response.json()
        if not data.get("token"):
            raise PaymentGatewayError("Snap response missing token")
        return {"token": data["token"], "redirect_url": data.get("redirect_url")}

    async def get_status(self, order_id: str) -> Dict[str, Any]:
        """Fetch the authoritative transaction status for an order."""
        url = f"{self.api_base}/{order_id}/status"
        try:
            async with httpx.AsyncClient() as client:
                response = await client.get(
                    url,
                    auth=self._auth(),
                    headers={"Accept": "application/json"},
                    timeout=REQUEST_TIMEOUT,
                )
        except httpx.HTTPError as e:
            logger.error(f"Midtrans: status request failed for {order_id} - {e}")
            raise PaymentGatewayError(str(e)) from e

        if response.status_code != 200:
            logger.error(f"Midtrans: status error {response.status_code} for {order_id}")
            raise PaymentGatewayError(f"Status lookup returned {response.status_code}")

        data = response.json()
        # Core API reports errors in the body with HTTP 200. 407 is an
        # expired transaction and is a valid status, not an error.
        body_code = str(data.get("status_code", "200"))
        if body_code in ("401", "404") or body_code.startswith("5"):
            raise PaymentGatewayError(
                f"Status lookup for {order_id} returned {body_code}: {data.get('status_message')}"
            )
        return data


midtrans_gateway = MidtransGateway()
