"""
In-Memory Adapters
==================
Store and cache implementations used by tests and local runs.
Swap for PostgresStore / RedisCache in production.

Transactions are serialized with a single asyncio.Lock and work on a private
copy of every table; the copy replaces the live tables only when the block
exits cleanly, so an exception leaves no partial writes behind.
"""

import asyncio
import fnmatch
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, List, Optional, Tuple

from schemas.commerce import (
    CartItem,
    Order,
    OrderStatus,
    PaymentRecord,
    Product,
    ProductVariant,
)
from schemas.results import TransientError
from storage.ports import ICache, IStore, IStoreTransaction


# =============================================================================
# STORE
# =============================================================================

class _Tables:
    def __init__(self):
        self.products: Dict[str, Product] = {}
        self.variants: Dict[str, ProductVariant] = {}
        self.orders: Dict[str, Order] = {}
        self.payments: Dict[str, PaymentRecord] = {}
        self.cart: List[CartItem] = []

    def copy(self) -> "_Tables":
        clone = _Tables()
        clone.products = dict(self.products)
        clone.variants = dict(self.variants)
        clone.orders = dict(self.orders)
        clone.payments = dict(self.payments)
        clone.cart = list(self.cart)
        return clone


class InMemoryTransaction(IStoreTransaction):
    """Transaction handle over a working copy of the tables."""

    def __init__(self, tables: _Tables):
        self._t = tables

    async def get_variant(self, variant_id: str, for_update: bool = False) -> Optional[ProductVariant]:
        variant = self._t.variants.get(variant_id)
        return variant.model_copy() if variant else None

    async def get_variants(self, variant_ids: List[str]) -> List[ProductVariant]:
        return [self._t.variants[v].model_copy() for v in variant_ids if v in self._t.variants]

    async def get_products(self, product_ids: List[str]) -> List[Product]:
        return [self._t.products[p].model_copy() for p in product_ids if p in self._t.products]

    async def set_variant_stock(self, variant_id: str, stock: int) -> None:
        if stock < 0:
            raise ValueError(f"stock for {variant_id} would go negative")
        variant = self._t.variants[variant_id]
        self._t.variants[variant_id] = variant.model_copy(update={"stock": stock})

    async def insert_order(self, order: Order) -> Order:
        if order.id in self._t.orders:
            raise ValueError(f"duplicate order id {order.id}")
        self._t.orders[order.id] = order.model_copy(deep=True)
        return order

    async def get_order(self, order_id: str, for_update: bool = False) -> Optional[Order]:
        order = self._t.orders.get(order_id)
        return order.model_copy(deep=True) if order else None

    async def find_order(self, reference: str) -> Optional[Order]:
        for order in self._t.orders.values():
            if reference in (order.id, order.order_number):
                return order.model_copy(deep=True)
        return None

    async def save_order(self, order: Order) -> Order:
        if order.id not in self._t.orders:
            raise KeyError(order.id)
        self._t.orders[order.id] = order.model_copy(deep=True)
        return order

    async def list_orders(
        self,
        user_id: str,
        status: Optional[OrderStatus] = None,
        offset: int = 0,
        limit: int = 10,
    ) -> Tuple[List[Order], int]:
        matching = [
            o for o in self._t.orders.values()
            if o.user_id == user_id and (status is None or o.status == status)
        ]
        matching.sort(key=lambda o: o.created_at, reverse=True)
        page = matching[offset:offset + limit]
        return [o.model_copy(deep=True) for o in page], len(matching)

    async def insert_payment(self, payment: PaymentRecord) -> PaymentRecord:
        for existing in self._t.payments.values():
            if existing.order_id == payment.order_id:
                raise ValueError(f"payment already exists for order {payment.order_id}")
            if payment.gateway_order_id and existing.gateway_order_id == payment.gateway_order_id:
                raise ValueError(f"duplicate gateway order id {payment.gateway_order_id}")
        self._t.payments[payment.id] = payment.model_copy()
        return payment

    async def get_payment_by_gateway_order(
        self, gateway_order_id: str, for_update: bool = False
    ) -> Optional[PaymentRecord]:
        for payment in self._t.payments.values():
            if payment.gateway_order_id == gateway_order_id:
                return payment.model_copy()
        return None

    async def get_payment_by_order(self, order_id: str) -> Optional[PaymentRecord]:
        for payment in self._t.payments.values():
            if payment.order_id == order_id:
                return payment.model_copy()
        return None

    async def save_payment(self, payment: PaymentRecord) -> PaymentRecord:
        if payment.id not in self._t.payments:
            raise KeyError(payment.id)
        self._t.payments[payment.id] = payment.model_copy()
        return payment

    async def clear_cart(self, user_id: str) -> int:
        before = len(self._t.cart)
        self._t.cart = [c for c in self._t.cart if c.user_id != user_id]
        return before - len(self._t.cart)


class InMemoryStore(IStore):
    """Serializable in-memory store"""

    def __init__(self):
        self._tables = _Tables()
        self._lock = asyncio.Lock()
        self.available = True
        self.commits = 0

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[InMemoryTransaction]:
        if not self.available:
            raise TransientError("store unavailable")
        async with self._lock:
            working = self._tables.copy()
            yield InMemoryTransaction(working)
            # Only reached when the block exited without raising.
            self._tables = working
            self.commits += 1

    # -- seeding / inspection helpers (not part of the port) ------------------

    def add_product(self, product: Product) -> Product:
        self._tables.products[product.id] = product
        return product

    def add_variant(self, variant: ProductVariant) -> ProductVariant:
        self._tables.variants[variant.id] = variant
        return variant

    def add_cart_item(self, item: CartItem) -> CartItem:
        self._tables.cart.append(item)
        return item

    def stock_of(self, variant_id: str) -> int:
        return self._tables.variants[variant_id].stock

    def order(self, order_id: str) -> Optional[Order]:
        return self._tables.orders.get(order_id)

    def payment_for(self, order_id: str) -> Optional[PaymentRecord]:
        for payment in self._tables.payments.values():
            if payment.order_id == order_id:
                return payment
        return None

    def cart_of(self, user_id: str) -> List[CartItem]:
        return [c for c in self._tables.cart if c.user_id == user_id]

    @property
    def order_count(self) -> int:
        return len(self._tables.orders)


# =============================================================================
# CACHE
# =============================================================================

class InMemoryCache(ICache):
    """Dict-backed cache with lazy TTL expiry"""

    def __init__(self):
        self._data: Dict[str, Tuple[str, Optional[float]]] = {}
        self._lock = asyncio.Lock()
        self.available = True

    def _check(self):
        if not self.available:
            raise ConnectionError("cache unavailable")

    def _live(self, key: str) -> Optional[Tuple[str, Optional[float]]]:
        entry = self._data.get(key)
        if entry is None:
            return None
        _, expires = entry
        if expires is not None and time.monotonic() >= expires:
            del self._data[key]
            return None
        return entry

    async def get(self, key: str) -> Optional[str]:
        self._check()
        async with self._lock:
            entry = self._live(key)
            return entry[0] if entry else None

    async def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        self._check()
        async with self._lock:
            expires = time.monotonic() + ttl_seconds if ttl_seconds else None
            self._data[key] = (str(value), expires)

    async def delete(self, key: str) -> bool:
        self._check()
        async with self._lock:
            return self._data.pop(key, None) is not None

    async def delete_by_pattern(self, pattern: str) -> int:
        self._check()
        async with self._lock:
            keys = [k for k in list(self._data) if fnmatch.fnmatchcase(k, pattern)]
            for k in keys:
                del self._data[k]
            return len(keys)

    async def exists(self, key: str) -> bool:
        self._check()
        async with self._lock:
            return self._live(key) is not None

    async def incr(self, key: str, amount: int = 1) -> int:
        self._check()
        async with self._lock:
            entry = self._live(key)
            current, expires = (int(entry[0]), entry[1]) if entry else (0, None)
            current += amount
            self._data[key] = (str(current), expires)
            return current

    async def expire(self, key: str, ttl_seconds: int) -> None:
        self._check()
        async with self._lock:
            entry = self._live(key)
            if entry:
                self._data[key] = (entry[0], time.monotonic() + ttl_seconds)

    def ttl_of(self, key: str) -> Optional[float]:
        """Seconds until expiry, None when the key has no TTL or is absent."""
        entry = self._data.get(key)
        if not entry or entry[1] is None:
            return None
        return entry[1] - time.monotonic()
