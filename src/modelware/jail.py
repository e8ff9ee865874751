"""Cache jail: counts problematic responses until they are trusted.

A response that has text but finished with ``other`` / ``content-filter`` or
carried warnings is not cached right away.  Each occurrence increments a
TTL-bound counter keyed by the request fingerprint; once the counter reaches
the configured threshold the response is promoted into the main cache.

The read-modify-write below is not atomic.  Two concurrent problematic
responses for the same fingerprint can both read ``count=n`` and both write
``n + 1``.
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, replace

from .classify import ResponseSummary
from .config import CacheConfig, JailPolicy
from .fingerprint import jail_key
from .store import CacheStore

logger = logging.getLogger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class JailEntry:
    """Ledger record for one fingerprint."""

    count: int
    first_seen: int
    """Epoch milliseconds of the first problematic occurrence."""

    last_seen: int | None = None
    last_response: ResponseSummary | None = None

    def to_json(self) -> str:
        data: dict[str, object] = {"count": self.count, "firstSeen": self.first_seen}
        if self.last_seen is not None:
            data["lastSeen"] = self.last_seen
        if self.last_response is not None:
            data["lastResponse"] = self.last_response.to_dict()
        return json.dumps(data)

    @classmethod
    def from_json(cls, raw: str) -> JailEntry:
        data = json.loads(raw)
        last_response = data.get("lastResponse")
        return cls(
            count=int(data.get("count", 0)),
            first_seen=int(data.get("firstSeen", 0)),
            last_seen=data.get("lastSeen"),
            last_response=ResponseSummary.from_dict(last_response) if last_response else None,
        )


class JailLedger:
    """Counts problematic outcomes per fingerprint in a :class:`CacheStore`."""

    def __init__(
        self,
        store: CacheStore,
        config: CacheConfig,
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        self._store = store
        self._config = config
        self._clock = clock

    def key_for(self, cache_key: str) -> str:
        return jail_key(cache_key, self._config.cache_key_prefix, self._config.jail_key_prefix)

    async def get(self, cache_key: str) -> JailEntry | None:
        raw = await self._store.get(self.key_for(cache_key))
        return JailEntry.from_json(raw) if raw else None

    async def record_problematic(
        self,
        cache_key: str,
        summary: ResponseSummary,
    ) -> tuple[JailEntry, bool]:
        """Record one problematic occurrence.

        Returns the updated entry and whether the promotion threshold has
        been reached.  Store errors propagate to the caller.
        """
        key = self.key_for(cache_key)
        now = self._clock()

        raw = await self._store.get(key)
        entry = JailEntry.from_json(raw) if raw else JailEntry(count=0, first_seen=now)

        entry.count += 1
        entry.last_seen = now
        entry.last_response = summary

        promoted = entry.count >= self._config.jail_threshold
        stored = entry
        if promoted and self._config.jail_policy is JailPolicy.RESET_ON_PROMOTION:
            stored = replace(entry, count=0, first_seen=now)

        # Every write refreshes the TTL, so the window slides.
        await self._store.set_with_ttl(key, self._config.jail_ttl_seconds, stored.to_json())
        logger.debug(
            "Jail entry %s now at %d/%d",
            self._config.short_key(key),
            entry.count,
            self._config.jail_threshold,
        )
        return entry, promoted
