"""
Webhook Ingestion
=================
Razorpay webhook endpoint logic: signature check on the raw body, delivery
dedup, routing by event type, and the retry/ack classification the gateway
sees.

Status codes returned to the gateway:
    400  signature missing or wrong (never retried, nothing processed)
    500  transient failure (store down, gateway error, unexpected bug);
         no idempotency record is written so the retry reprocesses
    200  everything else, including payloads we refuse to act on
"""

import json
import uuid
from typing import Any, Awaitable, Callable, Dict, Optional

import structlog
from pydantic import BaseModel

from config import settings
from schemas.results import CommerceError, GatewayError, TransientError, ValidationFailed
from services.gateway import verify_webhook_signature
from services.idempotency import WebhookIdempotency, webhook_idempotency_key
from pipeline.settlement import PaymentSettlement

WebhookHandler = Callable[[Dict[str, Any], str], Awaitable[Optional[dict]]]


class WebhookAck(BaseModel):
    status_code: int = 200
    success: bool = True
    message: str = ""

    def body(self) -> dict:
        return {"success": self.success, "message": self.message}


# =============================================================================
# ROUTER
# =============================================================================

class WebhookRouter:
    """Maps gateway event names to handlers."""

    def __init__(self):
        self._handlers: Dict[str, WebhookHandler] = {}
        self._logger = structlog.get_logger().bind(component="webhook_router")

    def register(self, event_type: str):
        """Decorator to register handler for event type"""
        def decorator(handler: WebhookHandler):
            self._handlers[event_type] = handler
            self._logger.debug("handler_registered", event_type=event_type)
            return handler
        return decorator

    def handles(self, event_type: str) -> bool:
        return event_type in self._handlers

    async def route(self, event: Dict[str, Any], correlation_id: str) -> Optional[dict]:
        event_type = event.get("event", "unknown")
        handler = self._handlers.get(event_type)
        if not handler:
            self._logger.warning("no_handler", event_type=event_type)
            return None
        return await handler(event, correlation_id)

    @property
    def supported_events(self) -> list:
        return list(self._handlers.keys())


def _entity(event: Dict[str, Any], name: str) -> Dict[str, Any]:
    """`payload.<name>.entity`, or {} when any level is missing or not an object."""
    node: Any = event
    for part in ("payload", name, "entity"):
        node = node.get(part) if isinstance(node, dict) else None
    return node if isinstance(node, dict) else {}


def _is_id(value: Any) -> bool:
    return isinstance(value, str) and bool(value)


# =============================================================================
# INGESTION
# =============================================================================

class WebhookIngestion:
    """
    Server-side trigger for the same settlement the client verify call uses.

    Example:
        ack = await ingestion.ingest(raw_body, request.headers.get("X-Razorpay-Signature"))
        return JSONResponse(ack.body(), status_code=ack.status_code)
    """

    def __init__(
        self,
        settlement: PaymentSettlement,
        idempotency: WebhookIdempotency,
        webhook_secret: Optional[str] = None,
    ):
        self.settlement = settlement
        self.idempotency = idempotency
        self.webhook_secret = webhook_secret or settings.RAZORPAY_WEBHOOK_SECRET

        self.router = WebhookRouter()
        self._register_handlers()

        self._base_logger = structlog.get_logger()

    def _get_logger(self, correlation_id: str = None):
        return self._base_logger.bind(
            component="webhook_ingestion",
            correlation_id=correlation_id or str(uuid.uuid4()),
        )

    def _register_handlers(self):
        """Register webhook event handlers"""

        @self.router.register("payment.captured")
        async def handle_payment_captured(event: dict, correlation_id: str) -> dict:
            payment = _entity(event, "payment")
            if not _is_id(payment.get("order_id")) or not _is_id(payment.get("id")):
                raise ValidationFailed("payment.captured without payment entity")

            outcome = await self.settlement.settle(
                payment["order_id"],
                payment["id"],
                expected_amount=payment.get("amount"),
                correlation_id=correlation_id,
            )
            return {"order_id": outcome.order.id, "applied": outcome.applied}

        @self.router.register("order.paid")
        async def handle_order_paid(event: dict, correlation_id: str) -> dict:
            order = _entity(event, "order")
            payment = _entity(event, "payment")
            gateway_order_id = order.get("id") or payment.get("order_id")
            if not _is_id(gateway_order_id) or not _is_id(payment.get("id")):
                raise ValidationFailed("order.paid without order/payment entity")

            amount = payment.get("amount", order.get("amount_paid"))
            outcome = await self.settlement.settle(
                gateway_order_id,
                payment["id"],
                expected_amount=amount,
                correlation_id=correlation_id,
            )
            return {"order_id": outcome.order.id, "applied": outcome.applied}

        @self.router.register("payment.failed")
        async def handle_payment_failed(event: dict, correlation_id: str) -> dict:
            payment = _entity(event, "payment")
            if not _is_id(payment.get("order_id")):
                raise ValidationFailed("payment.failed without payment entity")

            outcome = await self.settlement.fail(
                payment["order_id"],
                payment["id"] if _is_id(payment.get("id")) else None,
                correlation_id=correlation_id,
            )
            return {"order_id": outcome.order.id, "applied": outcome.applied}

    async def ingest(
        self,
        raw_body: bytes,
        signature: Optional[str],
        event_id: Optional[str] = None,
    ) -> WebhookAck:
        """
        Process one webhook delivery.

        Args:
            raw_body: Request body exactly as received (the signature covers it)
            signature: X-Razorpay-Signature header
            event_id: X-Razorpay-Event-Id header, when sent

        Returns:
            WebhookAck carrying the HTTP status for the gateway
        """
        correlation_id = str(uuid.uuid4())
        log = self._get_logger(correlation_id)

        # Verify BEFORE parsing
        if not verify_webhook_signature(raw_body, signature, self.webhook_secret):
            log.warning("webhook_signature_invalid")
            return WebhookAck(status_code=400, success=False, message="Invalid signature")

        try:
            event = json.loads(raw_body)
        except (ValueError, UnicodeDecodeError) as e:
            log.warning("webhook_malformed", error=str(e))
            return WebhookAck(success=False, message="Malformed payload ignored")

        if not isinstance(event, dict) or not isinstance(event.get("event"), str) or not event["event"]:
            log.warning("webhook_malformed", error="missing event type")
            return WebhookAck(success=False, message="Malformed payload ignored")

        if "payload" in event and not isinstance(event["payload"], dict):
            log.warning("webhook_malformed", error="payload is not an object")
            return WebhookAck(success=False, message="Malformed payload ignored")

        event_type = event["event"]
        key = webhook_idempotency_key(event, event_id)
        if key is None:
            log.warning("webhook_malformed", event_type=event_type, error="no idempotency key")
            return WebhookAck(success=False, message="Malformed payload ignored")

        log = log.bind(event_type=event_type, idempotency_key=key)
        log.info("webhook_received")

        if await self.idempotency.is_processed(key):
            log.info("webhook_duplicate")
            return WebhookAck(message="Already processed")

        if not self.router.handles(event_type):
            log.info("webhook_event_ignored")
            await self.idempotency.mark_processed(key)
            return WebhookAck(message=f"Event {event_type} ignored")

        try:
            result = await self.router.route(event, correlation_id)
        except (TransientError, GatewayError) as e:
            log.error("webhook_retryable_failure", error=str(e))
            return WebhookAck(status_code=500, success=False, message="Temporary failure, retry later")
        except CommerceError as e:
            # Not recoverable by retrying; acknowledge to stop the retry storm
            log.error("webhook_rejected", error=e.kind.value, reason=e.message)
            return WebhookAck(success=False, message=e.message)
        except Exception as e:
            log.exception("webhook_handler_crashed", error=str(e))
            return WebhookAck(status_code=500, success=False, message="Internal error")

        await self.idempotency.mark_processed(key)
        log.info("webhook_processed", **(result or {}))
        return WebhookAck(message="Webhook processed")
