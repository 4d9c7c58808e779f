"""Redis connection layer.

Backs the stake manager's persisted records (settings, session stats, trade
history, balance). Every operation degrades to a warning and a
None/False result when Redis is unavailable, so the service keeps running
without durability.
"""

from __future__ import annotations

import logging

import redis.asyncio as redis
from redis.asyncio.connection import ConnectionPool

from tickapp.config import get_settings

logger = logging.getLogger(__name__)

# Global connection pool
_pool: ConnectionPool | None = None
_client: redis.Redis | None = None


# =============================================================================
# Connection management
# =============================================================================

async def init_cache(redis_url: str | None = None) -> None:
    """Initialize Redis connection pool."""
    global _pool, _client

    if _client is not None:
        return

    url = redis_url or get_settings().redis_url
    _pool = ConnectionPool.from_url(
        url,
        max_connections=10,
        decode_responses=True,  # Records are JSON text
    )
    _client = redis.Redis(connection_pool=_pool)

    try:
        await _client.ping()
        logger.info(f"Redis connected: {url}")
    except (redis.ConnectionError, OSError) as e:
        logger.warning(f"Redis connection failed: {e}. Persistence will be in-memory only.")
        await _pool.disconnect()
        _client = None
        _pool = None


async def close_cache() -> None:
    """Close Redis connection pool."""
    global _pool, _client

    if _client is not None:
        await _client.aclose()
        _client = None

    if _pool is not None:
        await _pool.disconnect()
        _pool = None

    logger.info("Redis connection closed")


def is_cache_available() -> bool:
    return _client is not None


# =============================================================================
# Basic operations
# =============================================================================

async def get(key: str) -> str | None:
    """Get a value, or None if missing or the cache is unavailable."""
    if _client is None:
        return None

    try:
        return await _client.get(key)
    except redis.RedisError as e:
        logger.warning(f"Redis GET error: {e}")
        return None


async def set(key: str, value: str) -> bool:
    """Set a value without expiry.

    Returns:
        True if successful, False otherwise
    """
    if _client is None:
        return False

    try:
        await _client.set(key, value)
        return True
    except redis.RedisError as e:
        logger.warning(f"Redis SET error: {e}")
        return False


async def delete(key: str) -> bool:
    if _client is None:
        return False

    try:
        await _client.delete(key)
        return True
    except redis.RedisError as e:
        logger.warning(f"Redis DELETE error: {e}")
        return False


# =============================================================================
# Health check
# =============================================================================

async def get_info() -> dict:
    """Redis server summary for the status endpoint."""
    if _client is None:
        return {"status": "disconnected"}

    try:
        info = await _client.info()
        return {
            "status": "connected",
            "redis_version": info.get("redis_version"),
            "connected_clients": info.get("connected_clients"),
            "used_memory_human": info.get("used_memory_human"),
        }
    except redis.RedisError as e:
        return {"status": "error", "error": str(e)}
