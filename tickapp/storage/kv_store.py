"""Key/value stores for the stake manager's persisted records."""

import logging

from tickapp.storage import cache

logger = logging.getLogger(__name__)


class RedisKeyValueStore:
    """KeyValueStore over the shared Redis connection."""

    async def get(self, key: str) -> str | None:
        return await cache.get(key)

    async def set(self, key: str, value: str) -> bool:
        return await cache.set(key, value)

    async def remove(self, key: str) -> bool:
        return await cache.delete(key)


class MemoryKeyValueStore:
    """Process-local store, used when Redis is unavailable and in tests."""

    def __init__(self, data: dict[str, str] | None = None):
        self.data: dict[str, str] = dict(data or {})

    async def get(self, key: str) -> str | None:
        return self.data.get(key)

    async def set(self, key: str, value: str) -> bool:
        self.data[key] = value
        return True

    async def remove(self, key: str) -> bool:
        return self.data.pop(key, None) is not None


def create_store():
    """Redis-backed store when the cache is connected, else in-memory."""
    if cache.is_cache_available():
        return RedisKeyValueStore()
    logger.warning("Stake state will not survive a restart (no Redis)")
    return MemoryKeyValueStore()
