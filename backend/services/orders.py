"""
Order Service
=============
Order aggregate operations: create, read, list, public tracking, cancel,
admin status update.

Creation never touches stock. Stock is committed by payment settlement
(gateway orders) or when an admin confirms a COD order, and is restored on
cancellation only if it had been committed.

Example:
    orders = OrderService(store, gateway, cod_gate=CODRiskGate(cache))
    result = await orders.create_order(user_id, CreateOrderRequest(...))
    if not result.success:
        print(result.error, result.message)
"""

import math
import uuid
from collections import OrderedDict
from decimal import Decimal
from typing import Dict, List, Optional

import structlog

from config import settings
from schemas.commerce import (
    CANCELLABLE_STATUSES,
    FULFILMENT_SEQUENCE,
    CreateOrderRequest,
    Order,
    OrderItem,
    OrderStatus,
    PaymentMethod,
    PaymentRecord,
    PaymentStatus,
    TrackOrderRequest,
    UpdateOrderStatusRequest,
)
from schemas.results import (
    CommerceError,
    InsufficientStock,
    NotFound,
    ServiceResult,
    Unauthorized,
    ValidationFailed,
)
from services.cod_gate import CODRiskGate
from services.data_hooks import PostCommitHooks
from services.gateway import IPaymentGateway
from services.inventory import InventoryLedger
from storage.ports import IStore, IStoreTransaction

MAX_PAGE_SIZE = 100


def calculate_shipping(subtotal: Decimal) -> Decimal:
    if subtotal > settings.FREE_SHIPPING_ABOVE:
        return Decimal("0")
    return Decimal(settings.SHIPPING_COST)


def order_view(order: Order) -> dict:
    return order.model_dump(mode="json")


class OrderService:
    """Order lifecycle outside of payment settlement."""

    def __init__(
        self,
        store: IStore,
        gateway: IPaymentGateway,
        cod_gate: CODRiskGate,
        ledger: Optional[InventoryLedger] = None,
        hooks: Optional[PostCommitHooks] = None,
    ):
        self.store = store
        self.gateway = gateway
        self.cod_gate = cod_gate
        self.ledger = ledger or InventoryLedger()
        self.hooks = hooks or PostCommitHooks()

        self._base_logger = structlog.get_logger()

    def _get_logger(self, correlation_id: str = None):
        return self._base_logger.bind(
            service="orders",
            correlation_id=correlation_id or str(uuid.uuid4()),
        )

    # =========================================================================
    # CREATE
    # =========================================================================

    async def create_order(self, user_id: str, request: CreateOrderRequest) -> ServiceResult:
        log = self._get_logger()
        log.info("order_create_requested",
                 user_id=user_id,
                 lines=len(request.items),
                 payment_method=request.payment_method.value)

        try:
            items = await self._price_lines(request)

            subtotal = sum((item.line_total for item in items), Decimal("0"))
            shipping_cost = calculate_shipping(subtotal)
            order = Order(
                order_number=Order.generate_order_number(),
                user_id=user_id,
                items=items,
                subtotal=subtotal,
                shipping_cost=shipping_cost,
                total_amount=subtotal + shipping_cost,
                shipping_address=request.shipping_address,
                contact_email=request.contact_email,
                payment_method=request.payment_method,
            )

            gateway_order = None
            if order.payment_method == PaymentMethod.COD:
                decision = await self.cod_gate.can_place_cod_order(user_id, order.total_amount)
                if not decision.allowed:
                    log.warning("cod_denied", user_id=user_id, reason=decision.reason)
                    raise ValidationFailed(decision.reason)
            else:
                # Opened before the write transaction; an orphaned gateway order is harmless
                gateway_order = await self.gateway.create_order(
                    amount=order.amount_minor,
                    currency=settings.CURRENCY,
                    receipt=order.order_number,
                    notes={"order_id": order.id},
                )

            payment = PaymentRecord(
                order_id=order.id,
                gateway_order_id=gateway_order.id if gateway_order else None,
            )
            async with self.store.transaction() as tx:
                await tx.insert_order(order)
                await tx.insert_payment(payment)

        except CommerceError as e:
            log.warning("order_create_rejected", error=e.kind.value, reason=e.message)
            return ServiceResult.from_error(e)

        log.info("order_created",
                 order_id=order.id,
                 order_number=order.order_number,
                 total=str(order.total_amount),
                 gateway_order_id=payment.gateway_order_id)

        if order.payment_method == PaymentMethod.COD:
            await self.cod_gate.record_order_placed(user_id)
            await self.hooks.run(order)

        data = {
            "order": {
                "id": order.id,
                "order_number": order.order_number,
                "total_amount": str(order.total_amount),
            },
        }
        if gateway_order:
            data["gateway"] = {
                "order_id": gateway_order.id,
                "amount": gateway_order.amount,
                "currency": gateway_order.currency,
                "key": self.gateway.public_key,
            }
        message = (
            "Order placed. Pay on delivery."
            if order.payment_method == PaymentMethod.COD
            else "Order created successfully. Complete payment to confirm."
        )
        return ServiceResult.ok(message, **data)

    async def _price_lines(self, request: CreateOrderRequest) -> List[OrderItem]:
        """Validate lines against the catalog and capture unit prices."""
        quantities: Dict[str, int] = OrderedDict()
        for line in request.items:
            quantities[line.variant_id] = quantities.get(line.variant_id, 0) + line.quantity

        async with self.store.transaction() as tx:
            variants = {v.id: v for v in await tx.get_variants(list(quantities))}
            products = {
                p.id: p for p in await tx.get_products(list({v.product_id for v in variants.values()}))
            }

        items = []
        for variant_id, quantity in quantities.items():
            variant = variants.get(variant_id)
            if variant is None:
                raise NotFound(f"Variant {variant_id} not found.")

            product = products.get(variant.product_id)
            if product is None or not product.is_active:
                name = product.name if product else variant.product_id
                raise ValidationFailed(f"Product {name} is no longer available.")

            # Pre-check only; the authoritative check runs at settlement
            if variant.stock < quantity:
                raise InsufficientStock(
                    f"Insufficient stock for {product.name} ({variant.size}/{variant.color}). "
                    f"Available: {variant.stock}",
                    variant_id=variant_id,
                )

            items.append(OrderItem(variant_id=variant_id, quantity=quantity, price=product.price))
        return items

    # =========================================================================
    # READ
    # =========================================================================

    async def get_order(self, order_id: str, user_id: str, as_admin: bool = False) -> ServiceResult:
        async with self.store.transaction() as tx:
            order = await tx.get_order(order_id)
        if order is None:
            return ServiceResult.fail(NotFound.kind, "Order not found")
        if order.user_id != user_id and not as_admin:
            return ServiceResult.fail(Unauthorized.kind, "Not authorized to view this order")
        return ServiceResult.ok(order=order_view(order))

    async def list_orders(
        self,
        user_id: str,
        page: int = 1,
        limit: int = 10,
        status: Optional[OrderStatus] = None,
    ) -> ServiceResult:
        if page < 1 or not 1 <= limit <= MAX_PAGE_SIZE:
            return ServiceResult.fail(
                ValidationFailed.kind,
                f"page must be >= 1 and limit between 1 and {MAX_PAGE_SIZE}",
            )

        async with self.store.transaction() as tx:
            orders, total = await tx.list_orders(
                user_id, status=status, offset=(page - 1) * limit, limit=limit
            )

        return ServiceResult.ok(
            orders=[order_view(o) for o in orders],
            pagination={
                "page": page,
                "limit": limit,
                "total": total,
                "pages": math.ceil(total / limit),
            },
        )

    async def track_order(self, request: TrackOrderRequest) -> ServiceResult:
        """
        Public lookup by order id or order number. The email must match the
        one the order was placed with; only a limited view is returned.
        """
        async with self.store.transaction() as tx:
            order = await tx.find_order(request.order_id.strip())
            if order is None:
                return ServiceResult.fail(NotFound.kind, "Order not found")

            if not order.contact_email or order.contact_email.lower() != request.email.strip().lower():
                return ServiceResult.fail(NotFound.kind, "Order details need to match")

            variants = {v.id: v for v in await tx.get_variants([i.variant_id for i in order.items])}
            products = {
                p.id: p for p in await tx.get_products(list({v.product_id for v in variants.values()}))
            }

        def product_name(variant_id: str) -> Optional[str]:
            variant = variants.get(variant_id)
            product = products.get(variant.product_id) if variant else None
            return product.name if product else None

        return ServiceResult.ok(order={
            "id": order.id,
            "order_number": order.order_number,
            "status": order.status.value,
            "total_amount": str(order.total_amount),
            "created_at": order.created_at.isoformat(),
            "items": [
                {"product_name": product_name(item.variant_id), "quantity": item.quantity}
                for item in order.items
            ],
        })

    # =========================================================================
    # CANCEL
    # =========================================================================

    async def cancel_order(self, order_id: str, user_id: str, as_admin: bool = False) -> ServiceResult:
        log = self._get_logger()
        try:
            async with self.store.transaction() as tx:
                order = await tx.get_order(order_id, for_update=True)
                if order is None:
                    raise NotFound("Order not found")
                if order.user_id != user_id and not as_admin:
                    raise Unauthorized("Not authorized to cancel this order")
                order = await self._cancel_in_tx(tx, order)
        except CommerceError as e:
            log.warning("order_cancel_rejected", order_id=order_id, error=e.kind.value, reason=e.message)
            return ServiceResult.from_error(e)

        if order.payment_method == PaymentMethod.COD:
            await self.cod_gate.record_cancellation(order.user_id)

        log.info("order_cancelled",
                 order_id=order.id,
                 by_admin=as_admin,
                 payment_status=order.payment_status.value)
        return ServiceResult.ok("Order cancelled successfully", order=order_view(order))

    async def _cancel_in_tx(self, tx: IStoreTransaction, order: Order) -> Order:
        if order.status not in CANCELLABLE_STATUSES:
            raise ValidationFailed("Order cannot be cancelled at this stage")

        # Restore only what settlement (or COD confirmation) actually took
        if order.stock_committed:
            await self.ledger.increment_lines(tx, order.items)

        payment_status = (
            PaymentStatus.FAILED
            if order.payment_status == PaymentStatus.SUCCESS
            else order.payment_status
        )
        cancelled = order.transition_to(
            OrderStatus.CANCELLED,
            payment_status=payment_status,
            stock_committed=False,
        )
        return await tx.save_order(cancelled)

    # =========================================================================
    # ADMIN STATUS UPDATE
    # =========================================================================

    async def update_order_status(self, order_id: str, request: UpdateOrderStatusRequest) -> ServiceResult:
        """
        Admin transition. Forward moves only; CANCELLED goes through the
        cancellation path so stock and counters stay symmetric.
        """
        if request.status == OrderStatus.CANCELLED:
            return await self.cancel_order(order_id, user_id="", as_admin=True)

        log = self._get_logger()
        try:
            async with self.store.transaction() as tx:
                order = await tx.get_order(order_id, for_update=True)
                if order is None:
                    raise NotFound("Order not found")
                previous = order.status
                order = await self._advance_in_tx(tx, order, request)
        except CommerceError as e:
            log.warning("order_status_update_rejected",
                        order_id=order_id,
                        target=request.status.value,
                        error=e.kind.value,
                        reason=e.message)
            return ServiceResult.from_error(e)

        if order.payment_method == PaymentMethod.COD and order.status == OrderStatus.DELIVERED:
            await self.cod_gate.record_order_closed(order.user_id)

        log.info("order_status_updated",
                 order_id=order.id,
                 previous=previous.value,
                 status=order.status.value)
        return ServiceResult.ok("Order status updated successfully", order=order_view(order))

    async def _advance_in_tx(
        self,
        tx: IStoreTransaction,
        order: Order,
        request: UpdateOrderStatusRequest,
    ) -> Order:
        target = request.status
        if order.status == OrderStatus.CANCELLED:
            raise ValidationFailed("Cancelled orders cannot change status")
        if FULFILMENT_SEQUENCE.index(target) <= FULFILMENT_SEQUENCE.index(order.status):
            raise ValidationFailed(
                f"Cannot move order from {order.status.value} to {target.value}"
            )

        is_cod = order.payment_method == PaymentMethod.COD
        if not is_cod and order.payment_status != PaymentStatus.SUCCESS:
            raise ValidationFailed("Online orders must be paid before they can be advanced")

        changes = {}
        if request.tracking_number:
            changes["tracking_number"] = request.tracking_number

        if is_cod and not order.stock_committed:
            await self.ledger.decrement_lines(tx, order.items)
            changes["stock_committed"] = True

        if is_cod and target == OrderStatus.DELIVERED:
            changes["payment_status"] = PaymentStatus.SUCCESS
            payment = await tx.get_payment_by_order(order.id)
            if payment is not None:
                await tx.save_payment(payment.model_copy(update={"status": PaymentStatus.SUCCESS}))

        return await tx.save_order(order.transition_to(target, **changes))
