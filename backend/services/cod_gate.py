"""
COD Risk Gate
=============
Counter-based admission check for cash-on-delivery orders. Counters live in
the cache only; every cache failure is logged and treated as "zero" / skipped
(fail-open). Losing them weakens the gate but never touches order data.
"""

from decimal import Decimal
from typing import Optional

import structlog
from pydantic import BaseModel

from config import settings
from storage.ports import ICache


def active_orders_key(user_id: str) -> str:
    return f"cod:active:{user_id}"


def cancellations_key(user_id: str) -> str:
    return f"cod:cancellations:{user_id}"


class CODDecision(BaseModel):
    allowed: bool
    reason: Optional[str] = None


class CODRiskGate:
    """Per-user COD limits"""

    MAX_ACTIVE_ORDERS = 3
    MAX_ORDER_VALUE = Decimal("5000")
    MAX_CANCELLATIONS = 2

    def __init__(
        self,
        cache: ICache,
        active_ttl: int = settings.COD_ACTIVE_TTL,
        cancellation_ttl: int = settings.COD_CANCELLATION_TTL,
    ):
        self.cache = cache
        self.active_ttl = active_ttl
        self.cancellation_ttl = cancellation_ttl
        self._logger = structlog.get_logger().bind(component="cod_gate")

    async def _read_counter(self, key: str) -> int:
        try:
            value = await self.cache.get(key)
            return int(value) if value else 0
        except (ValueError, ConnectionError, OSError) as e:
            self._logger.error("cod_counter_read_failed", key=key, error=str(e))
            return 0

    async def get_active_order_count(self, user_id: str) -> int:
        return await self._read_counter(active_orders_key(user_id))

    async def get_cancellation_count(self, user_id: str) -> int:
        return await self._read_counter(cancellations_key(user_id))

    async def can_place_cod_order(self, user_id: str, order_value: Decimal) -> CODDecision:
        active = await self.get_active_order_count(user_id)
        if active >= self.MAX_ACTIVE_ORDERS:
            return CODDecision(
                allowed=False,
                reason=f"Maximum {self.MAX_ACTIVE_ORDERS} active COD orders allowed",
            )

        if Decimal(order_value) > self.MAX_ORDER_VALUE:
            return CODDecision(
                allowed=False,
                reason=f"COD not available for orders above ₹{self.MAX_ORDER_VALUE}",
            )

        cancellations = await self.get_cancellation_count(user_id)
        if cancellations >= self.MAX_CANCELLATIONS:
            return CODDecision(
                allowed=False,
                reason="COD is not available for your account. Please use online payment.",
            )

        return CODDecision(allowed=True)

    # =========================================================================
    # COUNTER UPDATES
    # =========================================================================

    async def record_order_placed(self, user_id: str) -> None:
        key = active_orders_key(user_id)
        try:
            await self.cache.incr(key)
            await self.cache.expire(key, self.active_ttl)
        except (ConnectionError, OSError) as e:
            self._logger.error("cod_increment_failed", user_id=user_id, error=str(e))

    async def record_order_closed(self, user_id: str) -> None:
        """Delivered or cancelled: one fewer active COD order, floored at zero."""
        key = active_orders_key(user_id)
        try:
            count = await self.cache.incr(key, -1)
            if count < 0:
                await self.cache.set(key, "0", self.active_ttl)
        except (ConnectionError, OSError) as e:
            self._logger.error("cod_decrement_failed", user_id=user_id, error=str(e))

    async def record_cancellation(self, user_id: str) -> None:
        await self.record_order_closed(user_id)
        key = cancellations_key(user_id)
        try:
            await self.cache.incr(key)
            await self.cache.expire(key, self.cancellation_ttl)
        except (ConnectionError, OSError) as e:
            self._logger.error("cod_cancellation_increment_failed", user_id=user_id, error=str(e))
