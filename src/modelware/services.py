"""Application-level context owning the shared collaborators.

One :class:`ModelwareServices` is built at startup and handed to whatever
builds model chains.  It owns the cache store, the metrics collector and the
quota cache, and gives them an explicit lifecycle::

    services = ModelwareServices.from_config(CacheConfig.from_env())
    await services.init()
    model = wrap_model(provider, [services.caching_middleware()])
    ...
    await services.shutdown()
"""

from __future__ import annotations

import logging
from typing import Any

from .caching import CachingMiddleware
from .config import CacheConfig
from .metrics import MetricsCollector
from .quota import QuotaCache, QuotaLoader
from .stateful import StatefulMiddleware
from .store import CacheStore, MemoryCacheStore, RedisCacheStore
from .usage import token_usage_middleware

logger = logging.getLogger(__name__)


class ModelwareServices:
    def __init__(
        self,
        config: CacheConfig,
        store: CacheStore,
        metrics: MetricsCollector | None = None,
        quotas: QuotaCache | None = None,
    ) -> None:
        self.config = config
        self.store = store
        self.metrics = metrics if metrics is not None else MetricsCollector()
        self.quotas = quotas
        self._started = False

    @classmethod
    def from_config(
        cls,
        config: CacheConfig | None = None,
        *,
        quota_loader: QuotaLoader | None = None,
        quota_ttl_seconds: float = 300,
    ) -> ModelwareServices:
        """Redis-backed when ``config.redis_url`` is set, in-memory otherwise."""
        config = config or CacheConfig()
        store: CacheStore
        if config.redis_url:
            store = RedisCacheStore.from_url(config.redis_url)
        else:
            store = MemoryCacheStore()
        quotas = QuotaCache(quota_loader, ttl_seconds=quota_ttl_seconds) if quota_loader else None
        return cls(config, store, quotas=quotas)

    @property
    def started(self) -> bool:
        return self._started

    async def init(self) -> None:
        if self._started:
            return
        if isinstance(self.store, RedisCacheStore) and not await self.store.ping():
            # Caching is best-effort; calls will go straight to the provider.
            logger.warning("Redis is not reachable at startup")
        if self.quotas is not None:
            await self.quotas.init()
        self._started = True
        logger.info("Modelware services started (store=%s)", type(self.store).__name__)

    def refresh(self, ttl: float | None = None) -> None:
        """Drop locally cached quotas."""
        if self.quotas is not None:
            self.quotas.refresh(ttl)

    async def shutdown(self) -> None:
        if self.quotas is not None:
            await self.quotas.shutdown()
        close = getattr(self.store, "aclose", None)
        if close is not None:
            await close()
        self._started = False
        logger.info("Modelware services stopped")

    async def __aenter__(self) -> ModelwareServices:
        await self.init()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.shutdown()

    def caching_middleware(self) -> CachingMiddleware:
        return CachingMiddleware(self.store, self.config, self.metrics)

    def usage_middleware(self, **kwargs: Any) -> StatefulMiddleware:
        """A stateful token usage middleware backed by this context's quotas."""
        kwargs.setdefault("quotas", self.quotas)
        return token_usage_middleware(**kwargs)
