"""
Payment Settlement
==================
The guarded transitions shared by client verification and webhook ingestion.

Both entry points end up here. The "already SUCCESS" guard is evaluated inside
the same transaction as the stock decrement and status flip, so whichever
caller commits first wins and every later caller observes SUCCESS and no-ops.
No lock beyond the store transaction is needed.
"""

import uuid
from datetime import datetime
from typing import Optional

import structlog
from pydantic import BaseModel

from schemas.commerce import Order, OrderStatus, PaymentStatus
from schemas.results import AmountMismatch, InsufficientStock, NotFound, ValidationFailed
from services.data_hooks import PostCommitHooks
from services.inventory import InventoryLedger
from storage.ports import IStore


class SettlementOutcome(BaseModel):
    order: Order
    applied: bool  # False when the order was already in the target state


class PaymentSettlement:
    """Atomic commit / failure transitions for gateway orders."""

    def __init__(
        self,
        store: IStore,
        ledger: Optional[InventoryLedger] = None,
        hooks: Optional[PostCommitHooks] = None,
    ):
        self.store = store
        self.ledger = ledger or InventoryLedger()
        self.hooks = hooks or PostCommitHooks()
        self._base_logger = structlog.get_logger()

    def _get_logger(self, correlation_id: str = None):
        return self._base_logger.bind(
            component="payment_settlement",
            correlation_id=correlation_id or str(uuid.uuid4()),
        )

    async def settle(
        self,
        gateway_order_id: str,
        gateway_payment_id: str,
        signature: Optional[str] = None,
        expected_amount: Optional[int] = None,
        correlation_id: str = None,
    ) -> SettlementOutcome:
        """
        Commit a captured payment: decrement every line, flip the order to
        CONFIRMED/SUCCESS and fill the payment record, all in one transaction.

        Args:
            gateway_order_id: Gateway order the payment belongs to
            gateway_payment_id: Captured payment id
            signature: Client checkout signature, stored when present
            expected_amount: Amount in minor units reported by the caller;
                checked against the order total inside the transaction

        Raises:
            NotFound, AmountMismatch, InsufficientStock, ValidationFailed
        """
        log = self._get_logger(correlation_id)

        try:
            async with self.store.transaction() as tx:
                payment = await tx.get_payment_by_gateway_order(gateway_order_id, for_update=True)
                if payment is None:
                    raise NotFound(f"No payment record for gateway order {gateway_order_id}")

                order = await tx.get_order(payment.order_id, for_update=True)
                if order is None:
                    raise NotFound(f"Order {payment.order_id} not found")

                if order.payment_status == PaymentStatus.SUCCESS:
                    log.info("settlement_already_applied",
                             order_id=order.id,
                             gateway_payment_id=gateway_payment_id)
                    return SettlementOutcome(order=order, applied=False)

                if order.status == OrderStatus.CANCELLED:
                    log.error("payment_for_cancelled_order",
                              order_id=order.id,
                              gateway_payment_id=gateway_payment_id,
                              action="manual_refund_required")
                    raise ValidationFailed("Order was cancelled before the payment settled")

                if expected_amount is not None and expected_amount != order.amount_minor:
                    log.error("amount_mismatch",
                              order_id=order.id,
                              expected=order.amount_minor,
                              received=expected_amount)
                    raise AmountMismatch("Payment amount does not match order total")

                await self.ledger.decrement_lines(tx, order.items)

                order = await tx.save_order(order.transition_to(
                    OrderStatus.CONFIRMED,
                    payment_status=PaymentStatus.SUCCESS,
                    stock_committed=True,
                ))
                await tx.save_payment(payment.model_copy(update={
                    "gateway_payment_id": gateway_payment_id,
                    "gateway_signature": signature or payment.gateway_signature,
                    "status": PaymentStatus.SUCCESS,
                    "updated_at": datetime.utcnow(),
                }))
        except InsufficientStock as e:
            # Customer has paid; nothing was written, a human has to refund
            log.error("settlement_insufficient_stock",
                      gateway_order_id=gateway_order_id,
                      gateway_payment_id=gateway_payment_id,
                      variant_id=e.context.get("variant_id"),
                      action="manual_refund_required")
            raise

        log.info("payment_settled",
                 order_id=order.id,
                 order_number=order.order_number,
                 gateway_payment_id=gateway_payment_id)

        await self.hooks.run(order)
        return SettlementOutcome(order=order, applied=True)

    async def fail(
        self,
        gateway_order_id: str,
        gateway_payment_id: Optional[str] = None,
        correlation_id: str = None,
    ) -> SettlementOutcome:
        """
        Mark a payment failed: order CANCELLED/FAILED, payment record FAILED.
        No stock change, none was committed. A no-op once the order is paid
        or already cancelled.
        """
        log = self._get_logger(correlation_id)

        async with self.store.transaction() as tx:
            payment = await tx.get_payment_by_gateway_order(gateway_order_id, for_update=True)
            if payment is None:
                raise NotFound(f"No payment record for gateway order {gateway_order_id}")

            order = await tx.get_order(payment.order_id, for_update=True)
            if order is None:
                raise NotFound(f"Order {payment.order_id} not found")

            if order.payment_status == PaymentStatus.SUCCESS or order.status == OrderStatus.CANCELLED:
                log.info("payment_failure_ignored",
                         order_id=order.id,
                         status=order.status.value,
                         payment_status=order.payment_status.value)
                return SettlementOutcome(order=order, applied=False)

            order = await tx.save_order(order.transition_to(
                OrderStatus.CANCELLED,
                payment_status=PaymentStatus.FAILED,
            ))
            await tx.save_payment(payment.model_copy(update={
                "gateway_payment_id": gateway_payment_id or payment.gateway_payment_id,
                "status": PaymentStatus.FAILED,
                "updated_at": datetime.utcnow(),
            }))

        log.warning("payment_failed", order_id=order.id, gateway_payment_id=gateway_payment_id)
        return SettlementOutcome(order=order, applied=True)
