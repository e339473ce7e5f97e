"""
Payment Gateway (Razorpay)
==========================
Signature helpers, the gateway port, an httpx client for the Razorpay REST API
and an in-memory gateway for tests and local runs.

pip install httpx
"""

import hashlib
import hmac
import uuid
from abc import ABC, abstractmethod
from typing import Dict, Optional

import httpx
import structlog

from config import settings
from schemas.commerce import GatewayOrder, GatewayPayment
from schemas.results import GatewayError


# =============================================================================
# SIGNATURES
# =============================================================================

def _hmac_hex(secret: str, message: bytes) -> str:
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()


def payment_signature(gateway_order_id: str, gateway_payment_id: str, secret: str) -> str:
    """HMAC-SHA256 of "<order_id>|<payment_id>" keyed with the API secret."""
    return _hmac_hex(secret, f"{gateway_order_id}|{gateway_payment_id}".encode())


def verify_payment_signature(
    gateway_order_id: str,
    gateway_payment_id: str,
    signature: str,
    secret: str,
) -> bool:
    expected = payment_signature(gateway_order_id, gateway_payment_id, secret)
    return hmac.compare_digest(expected, signature or "")


def webhook_signature(raw_body: bytes, secret: str) -> str:
    """HMAC-SHA256 over the raw request body keyed with the webhook secret."""
    return _hmac_hex(secret, raw_body)


def verify_webhook_signature(raw_body: bytes, signature: Optional[str], secret: str) -> bool:
    if not signature:
        return False
    return hmac.compare_digest(webhook_signature(raw_body, secret), signature)


# =============================================================================
# PORT
# =============================================================================

class IPaymentGateway(ABC):
    """Server-to-server gateway operations"""

    public_key: str = ""

    @abstractmethod
    async def create_order(
        self,
        amount: int,
        currency: str,
        receipt: str,
        notes: Optional[Dict[str, str]] = None,
    ) -> GatewayOrder:
        """Open a gateway order for `amount` minor units."""
        pass

    @abstractmethod
    async def fetch_payment(self, payment_id: str) -> GatewayPayment:
        """The gateway's authoritative record of a payment."""
        pass


# =============================================================================
# RAZORPAY CLIENT
# =============================================================================

class RazorpayGateway(IPaymentGateway):
    """Razorpay REST client over httpx"""

    def __init__(
        self,
        key_id: str = None,
        key_secret: str = None,
        base_url: str = None,
        timeout: float = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.public_key = key_id or settings.RAZORPAY_KEY_ID
        self._client = client or httpx.AsyncClient(
            base_url=base_url or settings.RAZORPAY_API_URL,
            auth=(self.public_key, key_secret or settings.RAZORPAY_KEY_SECRET),
            timeout=timeout or settings.GATEWAY_TIMEOUT_SECONDS,
        )
        self._logger = structlog.get_logger().bind(component="razorpay_gateway")

    async def close(self):
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> dict:
        try:
            response = await self._client.request(method, path, **kwargs)
            response.raise_for_status()
            return response.json()
        except httpx.TimeoutException as e:
            self._logger.error("gateway_timeout", path=path)
            raise GatewayError(f"Payment gateway timed out on {path}") from e
        except httpx.HTTPStatusError as e:
            self._logger.error("gateway_http_error",
                               path=path,
                               status_code=e.response.status_code,
                               body=e.response.text[:500])
            raise GatewayError(
                f"Payment gateway returned {e.response.status_code} on {path}"
            ) from e
        except httpx.HTTPError as e:
            self._logger.error("gateway_transport_error", path=path, error=str(e))
            raise GatewayError(f"Payment gateway unreachable: {e}") from e

    async def create_order(
        self,
        amount: int,
        currency: str,
        receipt: str,
        notes: Optional[Dict[str, str]] = None,
    ) -> GatewayOrder:
        data = await self._request("POST", "/orders", json={
            "amount": amount,
            "currency": currency,
            "receipt": receipt,
            "notes": notes or {},
        })
        self._logger.info("gateway_order_created", gateway_order_id=data["id"], amount=amount)
        return GatewayOrder(
            id=data["id"],
            amount=data["amount"],
            currency=data["currency"],
            receipt=data.get("receipt"),
            status=data.get("status", "created"),
        )

    async def fetch_payment(self, payment_id: str) -> GatewayPayment:
        data = await self._request("GET", f"/payments/{payment_id}")
        return GatewayPayment(
            id=data["id"],
            order_id=data.get("order_id"),
            amount=data["amount"],
            currency=data.get("currency", settings.CURRENCY),
            status=data["status"],
        )


# =============================================================================
# IN-MEMORY GATEWAY
# =============================================================================

class InMemoryPaymentGateway(IPaymentGateway):
    """Gateway double that keeps orders and payments in dicts."""

    def __init__(self, key_id: str = "rzp_test_local", key_secret: str = "local_secret"):
        self.public_key = key_id
        self.key_secret = key_secret
        self.orders: Dict[str, GatewayOrder] = {}
        self.payments: Dict[str, GatewayPayment] = {}
        self.available = True
        self.fetch_count = 0

    def _check(self):
        if not self.available:
            raise GatewayError("Payment gateway unreachable")

    async def create_order(
        self,
        amount: int,
        currency: str,
        receipt: str,
        notes: Optional[Dict[str, str]] = None,
    ) -> GatewayOrder:
        self._check()
        order = GatewayOrder(
            id=f"order_{uuid.uuid4().hex[:14]}",
            amount=amount,
            currency=currency,
            receipt=receipt,
        )
        self.orders[order.id] = order
        return order

    async def fetch_payment(self, payment_id: str) -> GatewayPayment:
        self._check()
        self.fetch_count += 1
        payment = self.payments.get(payment_id)
        if payment is None:
            raise GatewayError(f"Payment {payment_id} not found on gateway")
        return payment

    def pay(
        self,
        gateway_order_id: str,
        amount: Optional[int] = None,
        status: str = "captured",
    ) -> GatewayPayment:
        """Simulate the buyer paying; defaults to the full order amount."""
        order = self.orders[gateway_order_id]
        payment = GatewayPayment(
            id=f"pay_{uuid.uuid4().hex[:14]}",
            order_id=gateway_order_id,
            amount=order.amount if amount is None else amount,
            currency=order.currency,
            status=status,
        )
        self.payments[payment.id] = payment
        return payment

    def sign(self, gateway_order_id: str, gateway_payment_id: str) -> str:
        """Signature the checkout widget hands back to the client."""
        return payment_signature(gateway_order_id, gateway_payment_id, self.key_secret)
