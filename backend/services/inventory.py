"""
Inventory Ledger
================
Per-variant stock counter. Both operations run inside the caller's
transaction; there is no separate reserve step.
"""

from typing import Iterable, List

import structlog

from schemas.commerce import OrderItem
from schemas.results import InsufficientStock, NotFound, ValidationFailed
from storage.ports import IStoreTransaction


def _lock_order(items: Iterable[OrderItem]) -> List[OrderItem]:
    return sorted(items, key=lambda item: item.variant_id)


class InventoryLedger:
    """Atomic stock decrement / increment on top of a store transaction."""

    def __init__(self):
        self._logger = structlog.get_logger().bind(component="inventory_ledger")

    async def decrement(self, tx: IStoreTransaction, variant_id: str, qty: int) -> int:
        """
        Remove `qty` units. Re-reads the variant under a row lock and raises
        InsufficientStock when it cannot cover the quantity, which aborts the
        enclosing transaction. Returns the remaining stock.
        """
        if qty < 1:
            raise ValidationFailed(f"Quantity must be positive, got {qty}")

        variant = await tx.get_variant(variant_id, for_update=True)
        if variant is None or variant.stock < qty:
            available = variant.stock if variant else 0
            self._logger.warning("insufficient_stock",
                                 variant_id=variant_id,
                                 requested=qty,
                                 available=available)
            raise InsufficientStock(
                f"Insufficient stock for variant {variant_id}. Available: {available}",
                variant_id=variant_id,
            )

        remaining = variant.stock - qty
        await tx.set_variant_stock(variant_id, remaining)
        return remaining

    async def increment(self, tx: IStoreTransaction, variant_id: str, qty: int) -> int:
        """Put `qty` units back. Only used to reverse a committed decrement."""
        if qty < 1:
            raise ValidationFailed(f"Quantity must be positive, got {qty}")

        variant = await tx.get_variant(variant_id, for_update=True)
        if variant is None:
            raise NotFound(f"Variant {variant_id} not found")

        restored = variant.stock + qty
        await tx.set_variant_stock(variant_id, restored)
        return restored

    async def decrement_lines(self, tx: IStoreTransaction, items: Iterable[OrderItem]) -> None:
        """
        Check every line first, then decrement all of them. Rows are locked in
        variant id order so two orders sharing variants cannot deadlock.
        """
        items = _lock_order(items)
        for item in items:
            variant = await tx.get_variant(item.variant_id, for_update=True)
            if variant is None or variant.stock < item.quantity:
                available = variant.stock if variant else 0
                self._logger.warning("insufficient_stock",
                                     variant_id=item.variant_id,
                                     requested=item.quantity,
                                     available=available)
                raise InsufficientStock(
                    f"Insufficient stock for variant {item.variant_id}. Available: {available}",
                    variant_id=item.variant_id,
                )

        for item in items:
            await self.decrement(tx, item.variant_id, item.quantity)

    async def increment_lines(self, tx: IStoreTransaction, items: Iterable[OrderItem]) -> None:
        for item in _lock_order(items):
            await self.increment(tx, item.variant_id, item.quantity)
