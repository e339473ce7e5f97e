"""
Webhook Idempotency
===================
Remembers processed webhook deliveries for a day. This is a cache-level
short-circuit only; settlement stays idempotent on its own when the cache is
empty or down.
"""

from typing import Any, Dict, Optional

import structlog

from config import settings
from storage.ports import ICache


def _dig(data: Any, *path: str) -> Dict[str, Any]:
    """Walk nested dicts; anything that is not a dict along the way reads as {}."""
    for name in path:
        data = data.get(name) if isinstance(data, dict) else None
    return data if isinstance(data, dict) else {}


def webhook_idempotency_key(payload: Dict[str, Any], header_id: Optional[str] = None) -> Optional[str]:
    """
    Delivery key: the gateway's event id header when present, otherwise
    event + entity id + created_at from the payload. None when neither exists.
    """
    if header_id:
        return header_id
    if payload.get("id"):
        return str(payload["id"])

    event = payload.get("event")
    entity_id = _dig(payload, "payload", "payment", "entity").get("id")
    if not isinstance(event, str) or not event or not entity_id:
        return None

    parts = [event, str(entity_id)]
    if payload.get("created_at") is not None:
        parts.append(str(payload["created_at"]))
    return ":".join(parts)


class WebhookIdempotency:
    """Processed-delivery markers keyed `webhook:<key>`."""

    PREFIX = "webhook:"

    def __init__(self, cache: ICache, ttl_seconds: int = settings.WEBHOOK_IDEMPOTENCY_TTL):
        self.cache = cache
        self.ttl_seconds = ttl_seconds
        self._logger = structlog.get_logger().bind(component="webhook_idempotency")

    def _key(self, key: str) -> str:
        return f"{self.PREFIX}{key}"

    async def is_processed(self, key: str) -> bool:
        try:
            return await self.cache.exists(self._key(key))
        except ConnectionError as e:
            # Fail open: settlement re-checks payment state in its own transaction
            self._logger.error("idempotency_check_failed", key=key, error=str(e))
            return False

    async def mark_processed(self, key: str, result: str = "1") -> None:
        try:
            await self.cache.set(self._key(key), result, self.ttl_seconds)
        except ConnectionError as e:
            self._logger.error("idempotency_mark_failed", key=key, error=str(e))
