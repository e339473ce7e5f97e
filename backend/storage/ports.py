"""
Storage Ports
=============
Abstractions the checkout core talks to. The relational store is reached only
through `IStore.transaction()`, which yields a transaction-scoped handle with
the narrow read/write operations the core needs. The cache is a plain string
key/value port with TTLs.
"""

from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager
from typing import Awaitable, Callable, List, Optional, Tuple, TypeVar

from schemas.commerce import (
    Order,
    OrderStatus,
    PaymentRecord,
    Product,
    ProductVariant,
)

T = TypeVar("T")


# =============================================================================
# RELATIONAL STORE
# =============================================================================

class IStoreTransaction(ABC):
    """Operations available inside one ACID transaction."""

    # -- catalog ---------------------------------------------------------------

    @abstractmethod
    async def get_variant(self, variant_id: str, for_update: bool = False) -> Optional[ProductVariant]:
        pass

    @abstractmethod
    async def get_variants(self, variant_ids: List[str]) -> List[ProductVariant]:
        pass

    @abstractmethod
    async def get_products(self, product_ids: List[str]) -> List[Product]:
        pass

    @abstractmethod
    async def set_variant_stock(self, variant_id: str, stock: int) -> None:
        pass

    # -- orders ----------------------------------------------------------------

    @abstractmethod
    async def insert_order(self, order: Order) -> Order:
        pass

    @abstractmethod
    async def get_order(self, order_id: str, for_update: bool = False) -> Optional[Order]:
        pass

    @abstractmethod
    async def find_order(self, reference: str) -> Optional[Order]:
        """Order whose id or order number equals `reference`."""
        pass

    @abstractmethod
    async def save_order(self, order: Order) -> Order:
        """Persist mutable order fields (statuses, flags, tracking)."""
        pass

    @abstractmethod
    async def list_orders(
        self,
        user_id: str,
        status: Optional[OrderStatus] = None,
        offset: int = 0,
        limit: int = 10,
    ) -> Tuple[List[Order], int]:
        """Newest first. Returns (page, total_count)."""
        pass

    # -- payments --------------------------------------------------------------

    @abstractmethod
    async def insert_payment(self, payment: PaymentRecord) -> PaymentRecord:
        pass

    @abstractmethod
    async def get_payment_by_gateway_order(
        self, gateway_order_id: str, for_update: bool = False
    ) -> Optional[PaymentRecord]:
        pass

    @abstractmethod
    async def get_payment_by_order(self, order_id: str) -> Optional[PaymentRecord]:
        pass

    @abstractmethod
    async def save_payment(self, payment: PaymentRecord) -> PaymentRecord:
        pass

    # -- cart ------------------------------------------------------------------

    @abstractmethod
    async def clear_cart(self, user_id: str) -> int:
        pass


class IStore(ABC):
    """Transactional relational store."""

    @abstractmethod
    def transaction(self) -> AbstractAsyncContextManager[IStoreTransaction]:
        """
        Open a transaction. Leaving the block normally commits; an exception
        rolls back every write made through the handle.
        """
        pass

    async def run_in_transaction(self, fn: Callable[[IStoreTransaction], Awaitable[T]]) -> T:
        """Run `fn(tx)` inside a single transaction and return its result."""
        async with self.transaction() as tx:
            return await fn(tx)


# =============================================================================
# CACHE
# =============================================================================

class ICache(ABC):
    """Best-effort key/value cache over string keys."""

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        pass

    @abstractmethod
    async def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        pass

    @abstractmethod
    async def delete(self, key: str) -> bool:
        pass

    @abstractmethod
    async def delete_by_pattern(self, pattern: str) -> int:
        """Glob-style pattern, e.g. ``cod:*``."""
        pass

    @abstractmethod
    async def exists(self, key: str) -> bool:
        pass

    @abstractmethod
    async def incr(self, key: str, amount: int = 1) -> int:
        """Atomic add; a missing key counts as zero. Keeps any existing TTL."""
        pass

    @abstractmethod
    async def expire(self, key: str, ttl_seconds: int) -> None:
        pass
