"""HTTP surface over in-memory backends."""

import json

import pytest
from fastapi.testclient import TestClient

from api.server import create_app
from services.gateway import webhook_signature

USER = {"X-User-Id": "user-1"}
ADMIN = {"X-Admin": "true"}
WEBHOOK_SECRET = "test_webhook_secret"

ORDER_BODY = {
    "items": [
        {"variant_id": "var-a", "quantity": 3},
        {"variant_id": "var-b", "quantity": 1},
    ],
    "shipping_address": {"line1": "12 MG Road", "city": "Bengaluru", "pincode": "560001"},
    "payment_method": "RAZORPAY",
    "contact_email": "asha@example.com",
}


@pytest.fixture
def client(checkout):
    with TestClient(create_app(checkout)) as c:
        yield c


@pytest.fixture
def created(client):
    response = client.post("/api/orders", json=ORDER_BODY, headers=USER)
    assert response.status_code == 201, response.text
    return response.json()["data"]


def verify_body(gateway, gateway_order_id, amount=None):
    payment = gateway.pay(gateway_order_id, amount=amount)
    return {
        "razorpay_order_id": gateway_order_id,
        "razorpay_payment_id": payment.id,
        "razorpay_signature": gateway.sign(gateway_order_id, payment.id),
    }


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert "X-Response-Time-Ms" in response.headers


def test_create_order_response_shape(created, store):
    assert set(created["order"]) == {"id", "order_number", "total_amount"}
    assert created["order"]["total_amount"] == "1850.00"
    assert created["gateway"]["amount"] == 185000
    assert created["gateway"]["currency"] == "INR"
    assert store.stock_of("var-a") == 5


def test_create_order_requires_user(client):
    response = client.post("/api/orders", json=ORDER_BODY)

    assert response.status_code == 401
    assert response.json() == {
        "success": False,
        "error": "UNAUTHENTICATED",
        "message": "Authentication required",
    }


@pytest.mark.parametrize("body", [
    {**ORDER_BODY, "items": []},
    {**ORDER_BODY, "shipping_address": {}},
    {**ORDER_BODY, "payment_method": "BARTER"},
    {**ORDER_BODY, "items": [{"variant_id": "var-a", "quantity": 0}]},
])
def test_invalid_order_bodies(client, body):
    response = client.post("/api/orders", json=body, headers=USER)

    assert response.status_code == 400
    assert response.json()["error"] == "VALIDATION_ERROR"


def test_insufficient_stock_is_400(client):
    body = {**ORDER_BODY, "items": [{"variant_id": "var-b", "quantity": 5}]}

    response = client.post("/api/orders", json=body, headers=USER)

    assert response.status_code == 400
    assert response.json()["error"] == "INSUFFICIENT_STOCK"


def test_gateway_outage_is_502(client, gateway):
    gateway.available = False

    response = client.post("/api/orders", json=ORDER_BODY, headers=USER)

    assert response.status_code == 502
    assert response.json()["error"] == "GATEWAY_ERROR"


def test_store_outage_is_503(client, store):
    store.available = False

    response = client.post("/api/orders", json=ORDER_BODY, headers=USER)

    assert response.status_code == 503
    assert response.json()["success"] is False


def test_verify_payment_flow(client, created, gateway, store):
    body = verify_body(gateway, created["gateway"]["order_id"])

    response = client.post("/api/orders/verify-payment", json=body, headers=USER)
    again = client.post("/api/orders/verify-payment", json=body, headers=USER)

    assert response.status_code == 200
    assert response.json()["data"]["order"]["status"] == "CONFIRMED"
    assert again.status_code == 200
    assert again.json()["data"]["already_processed"] is True
    assert store.stock_of("var-a") == 2
    assert store.stock_of("var-b") == 0


def test_verify_payment_errors(client, created, gateway):
    body = verify_body(gateway, created["gateway"]["order_id"])

    bad_signature = client.post(
        "/api/orders/verify-payment",
        json={**body, "razorpay_signature": "f" * 64},
        headers=USER,
    )
    other_user = client.post("/api/orders/verify-payment", json=body, headers={"X-User-Id": "user-2"})

    assert bad_signature.status_code == 400
    assert bad_signature.json()["error"] == "INVALID_SIGNATURE"
    assert other_user.status_code == 403


def test_amount_mismatch_is_400(client, created, gateway, store):
    body = verify_body(gateway, created["gateway"]["order_id"], amount=1)

    response = client.post("/api/orders/verify-payment", json=body, headers=USER)

    assert response.status_code == 400
    assert response.json()["error"] == "AMOUNT_MISMATCH"
    assert store.stock_of("var-a") == 5


def test_get_and_list_orders(client, created):
    order_id = created["order"]["id"]

    own = client.get(f"/api/orders/{order_id}", headers=USER)
    other = client.get(f"/api/orders/{order_id}", headers={"X-User-Id": "user-2"})
    missing = client.get("/api/orders/does-not-exist", headers=USER)
    listing = client.get("/api/orders", params={"page": 1, "limit": 5}, headers=USER)
    filtered = client.get("/api/orders", params={"status": "SHIPPED"}, headers=USER)

    assert own.status_code == 200
    assert own.json()["data"]["order"]["status"] == "PENDING"
    assert other.status_code == 403
    assert missing.status_code == 404
    assert listing.json()["data"]["pagination"]["total"] == 1
    assert filtered.json()["data"]["orders"] == []


def test_cancel_order(client, created, gateway, store):
    body = verify_body(gateway, created["gateway"]["order_id"])
    client.post("/api/orders/verify-payment", json=body, headers=USER)

    response = client.post(f"/api/orders/{created['order']['id']}/cancel", headers=USER)

    assert response.status_code == 200
    order = response.json()["data"]["order"]
    assert order["status"] == "CANCELLED"
    assert order["payment_status"] == "FAILED"
    assert store.stock_of("var-a") == 5


def test_admin_status_update_requires_admin(client, created, gateway):
    body = verify_body(gateway, created["gateway"]["order_id"])
    client.post("/api/orders/verify-payment", json=body, headers=USER)
    path = f"/api/admin/orders/{created['order']['id']}/status"

    denied = client.patch(path, json={"status": "SHIPPED"}, headers=USER)
    shipped = client.patch(path, json={"status": "SHIPPED", "tracking_number": "AWB9"}, headers=ADMIN)

    assert denied.status_code == 403
    assert shipped.status_code == 200
    assert shipped.json()["data"]["order"]["tracking_number"] == "AWB9"


def test_webhook_endpoint(client, created, gateway, store):
    payment = gateway.pay(created["gateway"]["order_id"])
    raw = json.dumps({
        "event": "payment.captured",
        "payload": {"payment": {"entity": {
            "id": payment.id,
            "order_id": payment.order_id,
            "amount": payment.amount,
            "status": "captured",
        }}},
        "created_at": 1700000000,
    }).encode()

    rejected = client.post(
        "/api/payments/webhook",
        content=raw,
        headers={"X-Razorpay-Signature": "deadbeef", "Content-Type": "application/json"},
    )
    accepted = client.post(
        "/api/payments/webhook",
        content=raw,
        headers={
            "X-Razorpay-Signature": webhook_signature(raw, WEBHOOK_SECRET),
            "X-Razorpay-Event-Id": "evt_http_1",
            "Content-Type": "application/json",
        },
    )

    assert rejected.status_code == 400
    assert rejected.json()["success"] is False
    assert accepted.status_code == 200
    assert accepted.json() == {"success": True, "message": "Webhook processed"}
    assert store.stock_of("var-a") == 2


def test_track_order_is_public(client, created, store):
    order = store.order(created["order"]["id"])

    found = client.post(
        "/api/orders/track",
        json={"order_id": order.order_number, "email": "ASHA@example.com"},
    )
    mismatch = client.post(
        "/api/orders/track",
        json={"order_id": order.id, "email": "someone@example.com"},
    )
    incomplete = client.post("/api/orders/track", json={"order_id": order.id})

    assert found.status_code == 200
    assert found.json()["data"]["order"]["id"] == order.id
    assert "shipping_address" not in found.json()["data"]["order"]
    assert mismatch.status_code == 404
    assert mismatch.json()["message"] == "Order details need to match"
    assert incomplete.status_code == 400
