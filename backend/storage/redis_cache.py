"""
Redis Cache Adapter
===================
`ICache` over redis.asyncio. Values are stored as plain strings. Server and
connection errors surface as ConnectionError, same as the in-memory cache.

pip install redis
"""

from contextlib import contextmanager
from typing import Optional

import redis.asyncio as redis
import structlog
from redis.exceptions import RedisError

from config import settings
from storage.ports import ICache


class RedisCache(ICache):
    """Redis-backed cache"""

    def __init__(self, url: str = None, client: Optional[redis.Redis] = None):
        self._url = url or settings.REDIS_URL
        self._redis = client
        self._logger = structlog.get_logger().bind(component="redis_cache")

    async def initialize(self):
        """Open the connection pool and ping the server."""
        if self._redis is None:
            self._redis = redis.from_url(self._url, decode_responses=True)
        await self._redis.ping()
        self._logger.info("redis_connected", url=self._url.split("@")[-1])

    async def close(self):
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    @property
    def client(self) -> redis.Redis:
        if self._redis is None:
            raise RuntimeError("RedisCache.initialize() has not been awaited")
        return self._redis

    @contextmanager
    def _unavailable(self):
        try:
            yield
        except RedisError as e:
            raise ConnectionError(f"redis unavailable: {e}") from e

    async def get(self, key: str) -> Optional[str]:
        with self._unavailable():
            return await self.client.get(key)

    async def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        with self._unavailable():
            if ttl_seconds:
                await self.client.set(key, value, ex=ttl_seconds)
            else:
                await self.client.set(key, value)

    async def delete(self, key: str) -> bool:
        with self._unavailable():
            return bool(await self.client.delete(key))

    async def delete_by_pattern(self, pattern: str) -> int:
        with self._unavailable():
            # SCAN, never KEYS
            keys = [k async for k in self.client.scan_iter(match=pattern, count=500)]
            if not keys:
                return 0
            return await self.client.delete(*keys)

    async def exists(self, key: str) -> bool:
        with self._unavailable():
            return await self.client.exists(key) == 1

    async def incr(self, key: str, amount: int = 1) -> int:
        with self._unavailable():
            return await self.client.incrby(key, amount)

    async def expire(self, key: str, ttl_seconds: int) -> None:
        with self._unavailable():
            await self.client.expire(key, ttl_seconds)
