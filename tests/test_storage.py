"""Tests for the Redis cache layer and the stake-state key/value stores."""

from unittest.mock import AsyncMock

import pytest
import redis.asyncio as redis

from tickapp.storage import MemoryKeyValueStore, RedisKeyValueStore, cache, create_store
from tickcore.staking import KEY_SETTINGS, StakeManager


@pytest.fixture
def redis_client(monkeypatch):
    client = AsyncMock()
    client.get.return_value = '{"base_stake": 4.0}'
    monkeypatch.setattr(cache, "_client", client)
    return client


class TestCacheWithoutRedis:
    @pytest.mark.asyncio
    async def test_operations_degrade(self):
        assert cache.is_cache_available() is False
        assert await cache.get("k") is None
        assert await cache.set("k", "v") is False
        assert await cache.delete("k") is False
        assert await cache.get_info() == {"status": "disconnected"}

    def test_create_store_falls_back_to_memory(self):
        assert isinstance(create_store(), MemoryKeyValueStore)


class TestCacheWithRedis:
    @pytest.mark.asyncio
    async def test_set_without_expiry(self, redis_client):
        assert await cache.set("k", "v") is True
        redis_client.set.assert_awaited_once_with("k", "v")
        redis_client.setex.assert_not_called()

    @pytest.mark.asyncio
    async def test_errors_are_swallowed_as_misses(self, redis_client):
        redis_client.get.side_effect = redis.ConnectionError("gone")
        redis_client.set.side_effect = redis.ConnectionError("gone")
        assert await cache.get("k") is None
        assert await cache.set("k", "v") is False

    @pytest.mark.asyncio
    async def test_info(self, redis_client):
        redis_client.info.return_value = {"redis_version": "7.2.4", "connected_clients": 3}
        info = await cache.get_info()
        assert info["status"] == "connected"
        assert info["redis_version"] == "7.2.4"

    @pytest.mark.asyncio
    async def test_redis_store_used_when_connected(self, redis_client):
        store = create_store()
        assert isinstance(store, RedisKeyValueStore)

        manager = StakeManager(store=store, clock=lambda: 0.0)
        await manager.load()

        redis_client.get.assert_any_await(KEY_SETTINGS)
        assert manager.get_stake_settings().base_stake == 4.0


class TestMemoryStore:
    @pytest.mark.asyncio
    async def test_round_trip(self):
        store = MemoryKeyValueStore({"a": "1"})
        assert await store.get("a") == "1"
        assert await store.set("b", "2") is True
        assert await store.remove("a") is True
        assert await store.remove("a") is False
        assert store.data == {"b": "2"}
