"""Key/value stores with TTL used for cached responses and jail entries.

Both implementations satisfy :class:`CacheStore`: an async GET and an async
SETEX over string values. There is no compare-and-swap and no transaction
support; callers must tolerate a store that raises on any call.
"""

from __future__ import annotations

import logging
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

import redis.asyncio as redis
from redis.exceptions import RedisError

from .exceptions import StoreUnavailableError

logger = logging.getLogger(__name__)


@runtime_checkable
class CacheStore(Protocol):
    """Minimal Redis-like contract consumed by the caching middleware."""

    async def get(self, key: str) -> str | None:
        """Return the stored value, or ``None`` when absent or expired."""
        ...

    async def set_with_ttl(self, key: str, ttl_seconds: int, value: str) -> None:
        """Store *value* under *key*, expiring after *ttl_seconds*."""
        ...


@dataclass
class StoreStats:
    """Snapshot of in-memory store counters."""

    hits: int = 0
    misses: int = 0
    size: int = 0


class MemoryCacheStore:
    """In-process LRU store with per-entry expiry.

    Parameters
    ----------
    max_size:
        Maximum number of entries.  When exceeded, the least-recently-used
        entry is evicted.
    clock:
        Monotonic time source, replaceable in tests.
    """

    def __init__(
        self,
        max_size: int = 10_000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_size < 1:
            raise ValueError(f"max_size must be >= 1, got {max_size}")
        self._max_size = max_size
        self._clock = clock
        self._store: OrderedDict[str, tuple[str, float]] = OrderedDict()
        self._hits: int = 0
        self._misses: int = 0

    async def get(self, key: str) -> str | None:
        entry = self._store.get(key)
        if entry is not None:
            value, expires_at = entry
            if self._clock() < expires_at:
                self._hits += 1
                self._store.move_to_end(key)  # mark as recently used
                return value
            del self._store[key]
        self._misses += 1
        return None

    async def set_with_ttl(self, key: str, ttl_seconds: int, value: str) -> None:
        expires_at = self._clock() + ttl_seconds
        if key in self._store:
            self._store.move_to_end(key)
            self._store[key] = (value, expires_at)
            return
        if len(self._store) >= self._max_size:
            self._store.popitem(last=False)  # evict oldest
        self._store[key] = (value, expires_at)

    def __contains__(self, key: object) -> bool:
        return key in self._store

    @property
    def stats(self) -> StoreStats:
        """Current performance counters."""
        return StoreStats(hits=self._hits, misses=self._misses, size=len(self._store))


class RedisCacheStore:
    """Store backed by a ``redis.asyncio`` client.

    Any client error is re-raised as
    :class:`~modelware.exceptions.StoreUnavailableError`.
    """

    def __init__(self, client: Any) -> None:
        self._client = client

    @classmethod
    def from_url(cls, url: str, **kwargs: Any) -> RedisCacheStore:
        kwargs.setdefault("decode_responses", True)
        return cls(redis.from_url(url, **kwargs))

    async def get(self, key: str) -> str | None:
        try:
            value = await self._client.get(key)
        except (RedisError, OSError) as exc:
            raise StoreUnavailableError("GET", key, exc) from exc
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return value

    async def set_with_ttl(self, key: str, ttl_seconds: int, value: str) -> None:
        try:
            await self._client.setex(key, ttl_seconds, value)
        except (RedisError, OSError) as exc:
            raise StoreUnavailableError("SETEX", key, exc) from exc

    async def ping(self) -> bool:
        """``True`` if the server answers, ``False`` otherwise."""
        try:
            return bool(await self._client.ping())
        except (RedisError, OSError) as exc:
            logger.warning("Redis ping failed: %s", exc)
            return False

    async def aclose(self) -> None:
        await self._client.aclose()
