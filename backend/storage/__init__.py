# storage/__init__.py
# ============================================================================
# STOREFRONT CHECKOUT — STORAGE MODULE
# ============================================================================
# Ports for the transactional store and the cache, plus in-memory adapters.
# PostgresStore lives in database.py, RedisCache in storage.redis_cache.
# ============================================================================

from storage.ports import (
    ICache,
    IStore,
    IStoreTransaction,
)

from storage.memory import (
    InMemoryCache,
    InMemoryStore,
    InMemoryTransaction,
)

__all__ = [
    # Ports
    "ICache",
    "IStore",
    "IStoreTransaction",
    # In-memory adapters
    "InMemoryCache",
    "InMemoryStore",
    "InMemoryTransaction",
]
