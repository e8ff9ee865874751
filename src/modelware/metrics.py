"""Cache observer contract and the in-process metrics collector.

The caching middleware reports every hit, miss, store, jail update,
promotion and error to a :class:`CacheObserver`.  Observer calls are
at-most-once and never awaited; an observer that raises is logged and
otherwise ignored, so metrics can never change what a caller sees.

:class:`MetricsCollector` keeps running totals in memory, mirrors them to
OpenTelemetry instruments (no-op unless an SDK is configured), and can
render a Prometheus text exposition.
"""

from __future__ import annotations

import hashlib
import logging
import threading
import time
from collections import deque
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from typing import Any, Protocol, runtime_checkable

from opentelemetry import metrics

logger = logging.getLogger(__name__)

_meter = metrics.get_meter("modelware")

_hits_counter = _meter.create_counter(
    "ai_cache_hits_total", unit="1", description="Total number of AI cache hits"
)
_misses_counter = _meter.create_counter(
    "ai_cache_misses_total", unit="1", description="Total number of AI cache misses"
)
_stores_counter = _meter.create_counter(
    "ai_cache_stores_total", unit="1", description="Total number of successful cache stores"
)
_promotions_counter = _meter.create_counter(
    "ai_cache_jail_promotions_total",
    unit="1",
    description="Total number of jail promotions (problematic responses cached)",
)
_errors_counter = _meter.create_counter(
    "ai_cache_errors_total", unit="1", description="Total number of cache operation errors"
)
_size_histogram = _meter.create_histogram(
    "ai_cache_response_size_bytes", unit="By", description="Distribution of AI response sizes"
)


@runtime_checkable
class CacheObserver(Protocol):
    """Receives cache events from :class:`~modelware.caching.CachingMiddleware`."""

    def record_hit(self, cache_key: str, response_size: int | None = None) -> None: ...

    def record_miss(self, cache_key: str) -> None: ...

    def record_store(self, cache_key: str, response_size: int) -> None: ...

    def record_jail_update(self, cache_key: str, count: int, threshold: int) -> None: ...

    def record_jail_promotion(self, cache_key: str, response_size: int) -> None: ...

    def record_error(self, cache_key: str, error: str) -> None: ...


def notify(observer: CacheObserver | None, event: str, *args: Any) -> None:
    """Deliver one event to *observer*, isolating the caller from failures."""
    if observer is None:
        return
    try:
        getattr(observer, f"record_{event}")(*args)
    except Exception:
        logger.warning("Cache observer failed on %s event", event, exc_info=True)


@dataclass
class CacheMetrics:
    """Snapshot of collector totals."""

    cache_hits: int = 0
    cache_misses: int = 0
    successful_caches: int = 0
    problematic_responses: int = 0
    jail_promotions: int = 0
    cache_errors: int = 0
    hit_rate: float = 0.0
    avg_response_size: float = 0.0
    total_responses: int = 0


@dataclass
class CacheEvent:
    """One recorded cache event."""

    type: str
    """One of ``hit``, ``miss``, ``store``, ``jail_update``, ``jail_promotion``, ``error``."""

    cache_key: str
    timestamp: float
    metadata: dict[str, Any] = field(default_factory=dict)


def hash_cache_key(cache_key: str) -> str:
    """Short, non-reversible label for a cache key in telemetry."""
    return hashlib.sha256(cache_key.encode()).hexdigest()[:8]


def categorize_error(error: str) -> str:
    lowered = error.lower()
    if "timeout" in lowered or "ttl" in lowered:
        return "timeout"
    if "connection" in lowered or "network" in lowered:
        return "connection"
    if "redis" in lowered or "database" in lowered:
        return "redis"
    if "parse" in lowered or "json" in lowered:
        return "parse"
    if "permission" in lowered or "auth" in lowered:
        return "auth"
    return "unknown"


class MetricsCollector:
    """Thread-safe in-memory :class:`CacheObserver`.

    Parameters
    ----------
    max_events:
        Size of the recent-events ring buffer.
    """

    def __init__(self, max_events: int = 1000) -> None:
        self._metrics = CacheMetrics()
        self._total_response_size = 0
        self._events: deque[CacheEvent] = deque(maxlen=max_events)
        self._metrics_hooks: list[Callable[[CacheMetrics], None]] = []
        self._event_hooks: list[Callable[[CacheEvent], None]] = []
        self._lock = threading.Lock()

    # -- CacheObserver ---------------------------------------------------------

    def record_hit(self, cache_key: str, response_size: int | None = None) -> None:
        label = {"cache_key": hash_cache_key(cache_key)}
        with self._lock:
            self._metrics.cache_hits += 1
            self._metrics.total_responses += 1
            if response_size is not None:
                self._total_response_size += response_size
                self._metrics.avg_response_size = (
                    self._total_response_size / self._metrics.total_responses
                )
            self._update_hit_rate()
        _hits_counter.add(1, label)
        if response_size is not None:
            _size_histogram.record(response_size, {**label, "operation": "hit"})
        self._emit(CacheEvent("hit", cache_key, time.time(), {"response_size": response_size}))

    def record_miss(self, cache_key: str) -> None:
        with self._lock:
            self._metrics.cache_misses += 1
            self._metrics.total_responses += 1
            self._update_hit_rate()
        _misses_counter.add(1, {"cache_key": hash_cache_key(cache_key)})
        self._emit(CacheEvent("miss", cache_key, time.time()))

    def record_store(self, cache_key: str, response_size: int) -> None:
        label = {"cache_key": hash_cache_key(cache_key)}
        with self._lock:
            self._metrics.successful_caches += 1
        _stores_counter.add(1, label)
        _size_histogram.record(response_size, {**label, "operation": "store"})
        self._emit(CacheEvent("store", cache_key, time.time(), {"response_size": response_size}))

    def record_jail_update(self, cache_key: str, count: int, threshold: int) -> None:
        with self._lock:
            self._metrics.problematic_responses += 1
        self._emit(
            CacheEvent(
                "jail_update", cache_key, time.time(), {"count": count, "threshold": threshold}
            )
        )

    def record_jail_promotion(self, cache_key: str, response_size: int) -> None:
        label = {"cache_key": hash_cache_key(cache_key)}
        with self._lock:
            self._metrics.jail_promotions += 1
        _promotions_counter.add(1, label)
        _size_histogram.record(response_size, {**label, "operation": "jail_promotion"})
        self._emit(
            CacheEvent("jail_promotion", cache_key, time.time(), {"response_size": response_size})
        )

    def record_error(self, cache_key: str, error: str) -> None:
        with self._lock:
            self._metrics.cache_errors += 1
        _errors_counter.add(
            1, {"cache_key": hash_cache_key(cache_key), "error_type": categorize_error(error)}
        )
        self._emit(CacheEvent("error", cache_key, time.time(), {"error": error}))

    # -- Reading ---------------------------------------------------------------

    def snapshot(self) -> CacheMetrics:
        """A copy of the current totals."""
        with self._lock:
            return CacheMetrics(**asdict(self._metrics))

    def events(self, limit: int | None = None) -> list[CacheEvent]:
        """Recent events, oldest first; the last *limit* if given."""
        with self._lock:
            recorded = list(self._events)
        return recorded[-limit:] if limit else recorded

    def reset(self) -> None:
        with self._lock:
            self._metrics = CacheMetrics()
            self._total_response_size = 0
            self._events.clear()

    def prometheus_text(self) -> str:
        """Current totals in the Prometheus text exposition format."""
        m = self.snapshot()
        series = [
            ("ai_cache_hits_total", "counter", "Total number of cache hits", m.cache_hits),
            ("ai_cache_misses_total", "counter", "Total number of cache misses", m.cache_misses),
            ("ai_cache_stores_total", "counter", "Total number of cache stores", m.successful_caches),
            ("ai_cache_hit_rate", "gauge", "Current cache hit rate", m.hit_rate),
            (
                "ai_cache_jail_promotions_total",
                "counter",
                "Total number of jail promotions",
                m.jail_promotions,
            ),
            ("ai_cache_errors_total", "counter", "Total number of cache errors", m.cache_errors),
            (
                "ai_cache_avg_response_size",
                "gauge",
                "Average response size in characters",
                m.avg_response_size,
            ),
        ]
        lines: list[str] = []
        for name, kind, help_text, value in series:
            lines.append(f"# HELP {name} {help_text}")
            lines.append(f"# TYPE {name} {kind}")
            lines.append(f"{name} {value}")
            lines.append("")
        return "\n".join(lines).rstrip("\n") + "\n"

    # -- Subscriptions ---------------------------------------------------------

    def on_metrics(self, callback: Callable[[CacheMetrics], None]) -> Callable[[], None]:
        """Call *callback* with a snapshot after every event.  Returns an unsubscribe function."""
        self._metrics_hooks.append(callback)
        return lambda: self._remove(self._metrics_hooks, callback)

    def on_event(self, callback: Callable[[CacheEvent], None]) -> Callable[[], None]:
        """Call *callback* with every event.  Returns an unsubscribe function."""
        self._event_hooks.append(callback)
        return lambda: self._remove(self._event_hooks, callback)

    # -- Internal helpers ------------------------------------------------------

    @staticmethod
    def _remove(hooks: list[Any], callback: Any) -> None:
        if callback in hooks:
            hooks.remove(callback)

    def _update_hit_rate(self) -> None:
        total = self._metrics.cache_hits + self._metrics.cache_misses
        self._metrics.hit_rate = self._metrics.cache_hits / total if total else 0.0

    def _emit(self, event: CacheEvent) -> None:
        with self._lock:
            self._events.append(event)
        for hook in list(self._event_hooks):
            try:
                hook(event)
            except Exception:
                logger.warning("Metrics event hook failed", exc_info=True)
        snapshot = self.snapshot()
        for hook in list(self._metrics_hooks):
            try:
                hook(snapshot)
            except Exception:
                logger.warning("Metrics hook failed", exc_info=True)
