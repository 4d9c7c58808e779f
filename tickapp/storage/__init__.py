"""Persistence adapters."""

from tickapp.storage import cache
from tickapp.storage.kv_store import MemoryKeyValueStore, RedisKeyValueStore, create_store

__all__ = [
    "cache",
    "MemoryKeyValueStore",
    "RedisKeyValueStore",
    "create_store",
]
