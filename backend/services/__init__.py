# services/__init__.py
# ============================================================================
# STOREFRONT CHECKOUT — SERVICES MODULE
# ============================================================================
# Inventory ledger, order service, gateway client, COD gate, webhook
# idempotency, notifications and post-commit hooks
# ============================================================================

from services.inventory import InventoryLedger

from services.gateway import (
    IPaymentGateway,
    InMemoryPaymentGateway,
    RazorpayGateway,
    payment_signature,
    verify_payment_signature,
    verify_webhook_signature,
    webhook_signature,
)

from services.cod_gate import CODDecision, CODRiskGate

from services.idempotency import WebhookIdempotency, webhook_idempotency_key

from services.notifications import (
    INotifier,
    InMemoryNotifier,
    SendGridNotifier,
)

from services.data_hooks import (
    PostCommitHooks,
    clear_cart_hook,
    confirmation_hook,
    default_hooks,
)

from services.orders import OrderService

__all__ = [
    # Inventory
    "InventoryLedger",
    # Gateway
    "IPaymentGateway",
    "InMemoryPaymentGateway",
    "RazorpayGateway",
    "payment_signature",
    "verify_payment_signature",
    "verify_webhook_signature",
    "webhook_signature",
    # COD
    "CODDecision",
    "CODRiskGate",
    # Idempotency
    "WebhookIdempotency",
    "webhook_idempotency_key",
    # Notifications
    "INotifier",
    "InMemoryNotifier",
    "SendGridNotifier",
    # Hooks
    "PostCommitHooks",
    "clear_cart_hook",
    "confirmation_hook",
    "default_hooks",
    # Orders
    "OrderService",
]
