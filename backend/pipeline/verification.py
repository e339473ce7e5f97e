"""
Payment Verification
====================
Client-side confirmation after the gateway checkout closes. The client's
claims are never trusted on their own: the signature is recomputed and the
payment is re-fetched from the gateway before anything is committed.
"""

import uuid
from typing import Optional

import structlog

from config import settings
from schemas.commerce import PaymentStatus, VerifyPaymentRequest
from schemas.results import (
    AmountMismatch,
    CommerceError,
    InvalidSignature,
    NotFound,
    ServiceResult,
    Unauthorized,
    ValidationFailed,
)
from services.gateway import IPaymentGateway, verify_payment_signature
from pipeline.settlement import PaymentSettlement
from storage.ports import IStore


class PaymentVerificationService:
    """Verifies a client-reported payment and settles it."""

    def __init__(
        self,
        store: IStore,
        gateway: IPaymentGateway,
        settlement: PaymentSettlement,
        key_secret: Optional[str] = None,
    ):
        self.store = store
        self.gateway = gateway
        self.settlement = settlement
        self.key_secret = key_secret or settings.RAZORPAY_KEY_SECRET
        self._base_logger = structlog.get_logger()

    def _get_logger(self, correlation_id: str = None):
        return self._base_logger.bind(
            service="payment_verification",
            correlation_id=correlation_id or str(uuid.uuid4()),
        )

    async def verify(self, request: VerifyPaymentRequest, user_id: str) -> ServiceResult:
        correlation_id = str(uuid.uuid4())
        log = self._get_logger(correlation_id)
        log.info("payment_verification_requested",
                 gateway_order_id=request.razorpay_order_id,
                 gateway_payment_id=request.razorpay_payment_id,
                 user_id=user_id)

        try:
            return await self._verify(request, user_id, correlation_id)
        except CommerceError as e:
            log.warning("payment_verification_rejected", error=e.kind.value, reason=e.message)
            return ServiceResult.from_error(e)

    async def _verify(self, request: VerifyPaymentRequest, user_id: str, correlation_id: str) -> ServiceResult:
        log = self._get_logger(correlation_id)
        gateway_order_id = request.razorpay_order_id
        gateway_payment_id = request.razorpay_payment_id

        if not (gateway_order_id and gateway_payment_id and request.razorpay_signature):
            raise ValidationFailed("Missing payment verification details")

        if not verify_payment_signature(
            gateway_order_id, gateway_payment_id, request.razorpay_signature, self.key_secret
        ):
            log.warning("invalid_payment_signature", gateway_order_id=gateway_order_id)
            raise InvalidSignature("Invalid payment signature")

        async with self.store.transaction() as tx:
            payment = await tx.get_payment_by_gateway_order(gateway_order_id)
            order = await tx.get_order(payment.order_id) if payment else None
        if order is None:
            raise NotFound("Payment record not found")
        if order.user_id != user_id:
            raise Unauthorized("Not authorized to verify this payment")

        if order.payment_status == PaymentStatus.SUCCESS:
            log.info("payment_already_verified", order_id=order.id)
            return ServiceResult.ok(
                "Payment already verified",
                order=order.summary(),
                already_processed=True,
            )

        # Gateway is the source of truth for amount and capture state
        gateway_payment = await self.gateway.fetch_payment(gateway_payment_id)

        if gateway_payment.order_id != gateway_order_id:
            log.error("payment_order_mismatch",
                      order_id=order.id,
                      gateway_order_id=gateway_order_id,
                      payment_order_id=gateway_payment.order_id)
            raise AmountMismatch("Payment does not belong to this order")

        if gateway_payment.amount != order.amount_minor:
            log.error("amount_mismatch",
                      order_id=order.id,
                      expected=order.amount_minor,
                      received=gateway_payment.amount)
            raise AmountMismatch("Payment amount does not match order total")

        if not gateway_payment.is_captured:
            raise ValidationFailed(f"Payment not captured (status: {gateway_payment.status})")

        outcome = await self.settlement.settle(
            gateway_order_id,
            gateway_payment_id,
            signature=request.razorpay_signature,
            correlation_id=correlation_id,
        )

        log.info("payment_verified", order_id=outcome.order.id, applied=outcome.applied)
        return ServiceResult.ok(
            "Payment verified and order confirmed.",
            order=outcome.order.summary(),
            already_processed=not outcome.applied,
        )
