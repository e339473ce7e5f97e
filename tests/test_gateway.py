"""Signature helpers, webhook idempotency keys and the Razorpay httpx client."""

import base64
import hashlib
import hmac
import json

import httpx
import pytest

from schemas.results import GatewayError
from services.gateway import (
    RazorpayGateway,
    payment_signature,
    verify_payment_signature,
    verify_webhook_signature,
    webhook_signature,
)
from services.idempotency import WebhookIdempotency, webhook_idempotency_key


# =============================================================================
# SIGNATURES
# =============================================================================

def test_payment_signature_matches_razorpay_scheme():
    expected = hmac.new(b"secret", b"order_1|pay_1", hashlib.sha256).hexdigest()

    assert payment_signature("order_1", "pay_1", "secret") == expected
    assert verify_payment_signature("order_1", "pay_1", expected, "secret")
    assert not verify_payment_signature("order_1", "pay_2", expected, "secret")
    assert not verify_payment_signature("order_1", "pay_1", "", "secret")


def test_webhook_signature_covers_exact_bytes():
    body = b'{"event":"payment.captured"}'
    signature = webhook_signature(body, "whsec")

    assert verify_webhook_signature(body, signature, "whsec")
    assert not verify_webhook_signature(body + b" ", signature, "whsec")
    assert not verify_webhook_signature(body, signature, "other")
    assert not verify_webhook_signature(body, None, "whsec")


# =============================================================================
# IDEMPOTENCY KEYS
# =============================================================================

def test_idempotency_key_fallbacks():
    payload = {
        "event": "payment.captured",
        "created_at": 1700000000,
        "payload": {"payment": {"entity": {"id": "pay_9"}}},
    }

    assert webhook_idempotency_key(payload, "evt_hdr") == "evt_hdr"
    assert webhook_idempotency_key({**payload, "id": "evt_body"}) == "evt_body"
    assert webhook_idempotency_key(payload) == "payment.captured:pay_9:1700000000"
    assert webhook_idempotency_key({"event": "payment.captured"}) is None


async def test_idempotency_store_round_trip(cache):
    idempotency = WebhookIdempotency(cache)

    assert not await idempotency.is_processed("evt_1")
    await idempotency.mark_processed("evt_1")

    assert await idempotency.is_processed("evt_1")
    assert await cache.get("webhook:evt_1") == "1"


async def test_idempotency_fails_open(cache):
    idempotency = WebhookIdempotency(cache)
    await idempotency.mark_processed("evt_1")
    cache.available = False

    assert not await idempotency.is_processed("evt_1")
    await idempotency.mark_processed("evt_2")


# =============================================================================
# RAZORPAY CLIENT
# =============================================================================

def razorpay_with(handler) -> RazorpayGateway:
    client = httpx.AsyncClient(
        base_url="https://api.razorpay.test/v1",
        auth=("rzp_key", "rzp_secret"),
        transport=httpx.MockTransport(handler),
    )
    return RazorpayGateway(key_id="rzp_key", client=client)


async def test_create_order_posts_minor_units():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["auth"] = request.headers["authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={
            "id": "order_abc",
            "entity": "order",
            "amount": seen["body"]["amount"],
            "currency": "INR",
            "receipt": seen["body"]["receipt"],
            "status": "created",
        })

    gateway = razorpay_with(handler)
    order = await gateway.create_order(185000, "INR", "ORD-20240101-ABCDEF", {"order_id": "o-1"})
    await gateway.close()

    assert order.id == "order_abc"
    assert order.amount == 185000
    assert seen["path"] == "/v1/orders"
    assert seen["body"]["notes"] == {"order_id": "o-1"}
    assert seen["auth"] == "Basic " + base64.b64encode(b"rzp_key:rzp_secret").decode()
    assert gateway.public_key == "rzp_key"


async def test_fetch_payment_maps_fields():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/v1/payments/pay_1"
        return httpx.Response(200, json={
            "id": "pay_1",
            "order_id": "order_abc",
            "amount": 185000,
            "currency": "INR",
            "status": "captured",
            "method": "upi",
        })

    gateway = razorpay_with(handler)
    payment = await gateway.fetch_payment("pay_1")

    assert payment.order_id == "order_abc"
    assert payment.is_captured


@pytest.mark.parametrize("handler", [
    lambda request: httpx.Response(500, json={"error": {"description": "boom"}}),
    lambda request: httpx.Response(401, json={"error": {"description": "auth"}}),
])
async def test_http_errors_become_gateway_errors(handler):
    gateway = razorpay_with(handler)

    with pytest.raises(GatewayError):
        await gateway.fetch_payment("pay_1")


async def test_transport_errors_become_gateway_errors():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    gateway = razorpay_with(handler)

    with pytest.raises(GatewayError):
        await gateway.create_order(100, "INR", "r")
