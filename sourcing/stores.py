"""
Key/Value Stores

Narrow storage interface shared by the Cache Store and the Quota Ledger:
get / set with optional expiry / atomic increment / delete.

Two implementations:
- InMemoryStore: process-local, backed by a cachetools TLRU cache
- RedisStore: shared across processes, values stored as JSON
"""

import json
import math
import threading
import time
from typing import Any, Callable, Optional, Protocol

import redis
from cachetools import TLRUCache


DEFAULT_MAX_ENTRIES = 4096


class KeyValueStore(Protocol):
    """Storage collaborator injected into the cache and the quota ledger."""

    def get(self, key: str) -> Optional[Any]:
        ...

    def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        ...

    def increment(self, key: str, amount: int = 1, ttl_seconds: Optional[int] = None) -> int:
        ...

    def delete(self, key: str) -> None:
        ...


def _expires_at(_key: str, item: tuple, now: float) -> float:
    ttl = item[1]
    return now + ttl if ttl else math.inf


class InMemoryStore:
    """
    Process-local store.

    Entries carry their own expiry. A lock makes increment a single
    read-modify-write so concurrent requests never lose updates.

    With `maxsize=None` nothing is evicted for size, only on expiry; quota
    counters must live in such a store.
    """

    def __init__(
        self,
        maxsize: Optional[int] = DEFAULT_MAX_ENTRIES,
        timer: Callable[[], float] = time.monotonic,
    ):
        self._cache = TLRUCache(
            maxsize=math.inf if maxsize is None else maxsize,
            ttu=_expires_at,
            timer=timer,
        )
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            item = self._cache.get(key)
        return item[0] if item is not None else None

    def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        with self._lock:
            self._cache[key] = (value, ttl_seconds)

    def increment(self, key: str, amount: int = 1, ttl_seconds: Optional[int] = None) -> int:
        with self._lock:
            item = self._cache.get(key)
            value = (item[0] if item is not None else 0) + amount
            self._cache[key] = (value, ttl_seconds)
        return value

    def delete(self, key: str) -> None:
        with self._lock:
            self._cache.pop(key, None)


class RedisStore:
    """
    Redis-backed store.

    Values are JSON encoded; counters use INCRBY so increments are atomic
    on the server.
    """

    def __init__(self, client: "redis.Redis"):
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisStore":
        """Connect using a redis:// URL."""
        return cls(redis.Redis.from_url(url, decode_responses=True))

    def get(self, key: str) -> Optional[Any]:
        raw = self._client.get(key)
        if raw is None:
            return None
        return json.loads(raw)

    def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        payload = json.dumps(value)
        if ttl_seconds:
            self._client.setex(key, ttl_seconds, payload)
        else:
            self._client.set(key, payload)

    def increment(self, key: str, amount: int = 1, ttl_seconds: Optional[int] = None) -> int:
        value = self._client.incrby(key, amount)
        if ttl_seconds:
            self._client.expire(key, ttl_seconds)
        return int(value)

    def delete(self, key: str) -> None:
        self._client.delete(key)


def create_store(
    backend: str = "memory",
    redis_url: str = "",
    maxsize: Optional[int] = DEFAULT_MAX_ENTRIES,
) -> KeyValueStore:
    """
    Build a store by backend name ("memory" or "redis").

    `maxsize` bounds the in-memory store; None disables size eviction.

    Raises:
        ValueError: For an unknown backend
    """
    if backend == "memory":
        return InMemoryStore(maxsize=maxsize)
    if backend == "redis":
        return RedisStore.from_url(redis_url)
    raise ValueError(f"Unknown store backend: {backend}")
