"""Shared fixtures: in-memory store, cache, gateway and notifier wired into a Checkout."""

import json
import time
from decimal import Decimal

import pytest

from pipeline import Checkout
from schemas.commerce import (
    CartItem,
    CreateOrderRequest,
    PaymentMethod,
    Product,
    ProductVariant,
    VerifyPaymentRequest,
)
from services.gateway import InMemoryPaymentGateway, webhook_signature
from services.notifications import InMemoryNotifier
from storage.memory import InMemoryCache, InMemoryStore

KEY_SECRET = "test_key_secret"
WEBHOOK_SECRET = "test_webhook_secret"

ADDRESS = {
    "name": "Asha Rao",
    "line1": "12 MG Road",
    "city": "Bengaluru",
    "pincode": "560001",
}


@pytest.fixture
def store():
    s = InMemoryStore()
    s.add_product(Product(id="prod-tee", name="Classic Tee", price=Decimal("500.00")))
    s.add_product(Product(id="prod-cap", name="Snapback", price=Decimal("300.00")))
    s.add_product(Product(id="prod-jacket", name="Bomber", price=Decimal("2600.00")))
    s.add_product(Product(id="prod-retired", name="Old Hoodie", price=Decimal("900.00"), is_active=False))

    s.add_variant(ProductVariant(id="var-a", product_id="prod-tee", size="M", color="black", stock=5, sku="TEE-M-BLK"))
    s.add_variant(ProductVariant(id="var-b", product_id="prod-cap", size="OS", color="red", stock=1, sku="CAP-OS-RED"))
    s.add_variant(ProductVariant(id="var-j", product_id="prod-jacket", size="L", color="olive", stock=10, sku="BMB-L-OLV"))
    s.add_variant(ProductVariant(id="var-old", product_id="prod-retired", size="S", color="grey", stock=4, sku="HOOD-S-GRY"))

    s.add_cart_item(CartItem(user_id="user-1", variant_id="var-a", quantity=3))
    s.add_cart_item(CartItem(user_id="user-1", variant_id="var-b", quantity=1))
    return s


@pytest.fixture
def cache():
    return InMemoryCache()


@pytest.fixture
def gateway():
    return InMemoryPaymentGateway(key_id="rzp_test_key", key_secret=KEY_SECRET)


@pytest.fixture
def notifier():
    return InMemoryNotifier()


@pytest.fixture
def checkout(store, cache, gateway, notifier):
    return Checkout(
        store,
        cache,
        gateway,
        notifier,
        key_secret=KEY_SECRET,
        webhook_secret=WEBHOOK_SECRET,
    )


@pytest.fixture
def place_order(checkout):
    """Create an order; defaults to the two-line scenario (3 x A, 1 x B)."""

    async def _place(user_id="user-1", items=None, method=PaymentMethod.RAZORPAY, email="asha@example.com"):
        request = CreateOrderRequest(
            items=items or [
                {"variant_id": "var-a", "quantity": 3},
                {"variant_id": "var-b", "quantity": 1},
            ],
            shipping_address=ADDRESS,
            payment_method=method,
            contact_email=email,
        )
        return await checkout.orders.create_order(user_id, request)

    return _place


@pytest.fixture
def pay(gateway):
    """Simulate checkout completion; returns (gateway payment, verify request)."""

    def _pay(create_result, amount=None, status="captured"):
        gateway_order_id = create_result.data["gateway"]["order_id"]
        payment = gateway.pay(gateway_order_id, amount=amount, status=status)
        request = VerifyPaymentRequest(
            razorpay_order_id=gateway_order_id,
            razorpay_payment_id=payment.id,
            razorpay_signature=gateway.sign(gateway_order_id, payment.id),
        )
        return payment, request

    return _pay


@pytest.fixture
def webhook_event():
    """Build a signed Razorpay webhook delivery; returns (raw body, signature)."""

    def _event(event, payment, status=None, secret=WEBHOOK_SECRET, event_id=None, **extra):
        entity = {
            "id": payment.id,
            "entity": "payment",
            "order_id": payment.order_id,
            "amount": payment.amount,
            "currency": payment.currency,
            "status": status or payment.status,
        }
        body = {
            "entity": "event",
            "event": event,
            "payload": {"payment": {"entity": entity}},
            "created_at": int(time.time()),
            **extra,
        }
        if event == "order.paid":
            body["payload"]["order"] = {"entity": {
                "id": payment.order_id,
                "amount_paid": payment.amount,
                "status": "paid",
            }}
        if event_id:
            body["id"] = event_id
        raw = json.dumps(body).encode()
        return raw, webhook_signature(raw, secret)

    return _event
