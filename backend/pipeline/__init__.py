# pipeline/__init__.py
# ============================================================================
# STOREFRONT CHECKOUT — PAYMENT PIPELINE
# ============================================================================
# Settlement shared by client verification and webhook ingestion, plus the
# Checkout container that wires every service together.
# ============================================================================

from pipeline.settlement import PaymentSettlement, SettlementOutcome
from pipeline.verification import PaymentVerificationService
from pipeline.webhooks import WebhookAck, WebhookIngestion, WebhookRouter
from pipeline.checkout import Checkout

__all__ = [
    # Settlement
    "PaymentSettlement",
    "SettlementOutcome",
    # Entry points
    "PaymentVerificationService",
    "WebhookAck",
    "WebhookIngestion",
    "WebhookRouter",
    # Wiring
    "Checkout",
]
