"""Configuration for the caching middleware."""

from __future__ import annotations

import os
from dataclasses import dataclass, fields
from enum import Enum
from pathlib import Path

from dotenv import load_dotenv


class JailPolicy(str, Enum):
    """What happens to a jail entry once it has been promoted."""

    KEEP_COUNTING = "keep_counting"
    """The entry keeps accumulating; every later problematic response re-promotes."""

    RESET_ON_PROMOTION = "reset_on_promotion"
    """The stored entry is reset to zero when promotion fires."""


_ENV_VARS: dict[str, str] = {
    "cache_key_prefix": "AI_CACHE_KEY_PREFIX",
    "jail_key_prefix": "AI_CACHE_JAIL_PREFIX",
    "cache_ttl_seconds": "AI_CACHE_TTL",
    "jail_ttl_seconds": "AI_CACHE_JAIL_TTL",
    "jail_threshold": "AI_CACHE_JAIL_THRESHOLD",
    "stream_chunk_size": "AI_CACHE_STREAM_CHUNK_SIZE",
    "enable_logging": "AI_CACHE_ENABLE_LOGGING",
    "enable_metrics": "AI_CACHE_ENABLE_METRICS",
    "max_key_log_length": "AI_CACHE_MAX_KEY_LOG_LENGTH",
    "jail_policy": "AI_CACHE_JAIL_POLICY",
    "redis_url": "REDIS_URL",
}

_TRUTHY = frozenset({"1", "true", "yes", "on"})
_FALSY = frozenset({"0", "false", "no", "off"})


@dataclass
class CacheConfig:
    """Configuration for :class:`~modelware.caching.CachingMiddleware`.

    All fields have sensible defaults. Override only what you need, or load
    them from the environment with :meth:`from_env`.
    """

    cache_key_prefix: str = "ai-cache"
    """Namespace prepended to every cache key (``prefix:hash``)."""

    jail_key_prefix: str = "ai-jail"
    """Namespace for jail ledger entries."""

    cache_ttl_seconds: int = 86_400
    """Lifetime of a cached response."""

    jail_ttl_seconds: int = 86_400
    """Sliding window for jail entries; refreshed on every problematic hit."""

    jail_threshold: int = 3
    """Problematic occurrences needed before a response is promoted to the cache."""

    stream_chunk_size: int = 10
    """Characters per text-delta when replaying a cached response as a stream."""

    enable_logging: bool = True
    """Emit cache hit / miss / store log records."""

    enable_metrics: bool = True
    """Forward cache events to the configured observer."""

    max_key_log_length: int = 20
    """Cache keys are truncated to this many characters in log messages."""

    jail_policy: JailPolicy = JailPolicy.KEEP_COUNTING
    """See :class:`JailPolicy`."""

    redis_url: str | None = None
    """When set, :class:`~modelware.services.ModelwareServices` uses Redis."""

    def __post_init__(self) -> None:
        if not self.cache_key_prefix or not self.jail_key_prefix:
            raise ValueError("cache_key_prefix and jail_key_prefix must be non-empty")
        if self.cache_key_prefix == self.jail_key_prefix:
            raise ValueError("cache_key_prefix and jail_key_prefix must differ")
        if self.cache_ttl_seconds <= 0:
            raise ValueError(f"cache_ttl_seconds must be positive, got {self.cache_ttl_seconds}")
        if self.jail_ttl_seconds <= 0:
            raise ValueError(f"jail_ttl_seconds must be positive, got {self.jail_ttl_seconds}")
        if self.jail_threshold < 1:
            raise ValueError(f"jail_threshold must be >= 1, got {self.jail_threshold}")
        if self.stream_chunk_size <= 0:
            raise ValueError(f"stream_chunk_size must be > 0, got {self.stream_chunk_size}")
        if self.max_key_log_length <= 0:
            raise ValueError(
                f"max_key_log_length must be positive, got {self.max_key_log_length}"
            )
        self.jail_policy = JailPolicy(self.jail_policy)

    def short_key(self, key: str) -> str:
        """Truncate *key* for log output."""
        return key[: self.max_key_log_length]

    @classmethod
    def from_env(cls, env_file: str | Path | None = None) -> CacheConfig:
        """Build a config from ``AI_CACHE_*`` environment variables.

        If *env_file* is given it is loaded first (existing variables win).
        Unset variables keep their defaults.
        """
        if env_file is not None:
            load_dotenv(env_file)

        kwargs: dict[str, object] = {}
        types = {f.name: f.type for f in fields(cls)}
        for name, var in _ENV_VARS.items():
            raw = os.environ.get(var)
            if raw is None or raw.strip() == "":
                continue
            kwargs[name] = _coerce(name, types[name], raw.strip())
        return cls(**kwargs)  # type: ignore[arg-type]


def _coerce(name: str, annotation: object, raw: str) -> object:
    if annotation in ("int", int):
        try:
            return int(raw)
        except ValueError:
            raise ValueError(f"{_ENV_VARS[name]} must be an integer, got {raw!r}") from None
    if annotation in ("bool", bool):
        lowered = raw.lower()
        if lowered in _TRUTHY:
            return True
        if lowered in _FALSY:
            return False
        raise ValueError(f"{_ENV_VARS[name]} must be a boolean, got {raw!r}")
    if name == "jail_policy":
        return JailPolicy(raw.lower())
    return raw
