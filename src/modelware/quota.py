"""Token quotas and the local cache in front of the quota store."""

from __future__ import annotations

import logging
import math
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ModelQuota:
    """Token limits configured for one provider model."""

    provider: str
    model_name: str
    max_tokens_per_request: int | None = None
    max_total_tokens: int | None = None
    """Cap on the running total tracked by the usage middleware."""


@dataclass
class TokenUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    @classmethod
    def from_usage(cls, usage: dict[str, Any] | None) -> TokenUsage:
        """Build from a result's usage mapping; the total is always recomputed."""
        usage = usage or {}
        prompt = int(usage.get("promptTokens") or 0)
        completion = int(usage.get("completionTokens") or 0)
        return cls(prompt, completion, prompt + completion)

    def __add__(self, other: TokenUsage) -> TokenUsage:
        return TokenUsage(
            self.prompt_tokens + other.prompt_tokens,
            self.completion_tokens + other.completion_tokens,
            self.total_tokens + other.total_tokens,
        )

    def to_dict(self) -> dict[str, int]:
        return {
            "promptTokens": self.prompt_tokens,
            "completionTokens": self.completion_tokens,
            "totalTokens": self.total_tokens,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TokenUsage:
        return cls(
            int(data.get("promptTokens", 0)),
            int(data.get("completionTokens", 0)),
            int(data.get("totalTokens", 0)),
        )


@dataclass
class QuotaCheckResult:
    allowed: bool
    reason: str | None = None
    quota: ModelQuota | None = None
    current_usage: TokenUsage | None = None


def estimate_tokens(text: str) -> int:
    """Rough token estimate: one token per four characters."""
    return math.ceil(len(text) / 4) if text else 0


def check_quota(
    quota: ModelQuota | None,
    requested_tokens: int,
    current_usage: TokenUsage | None = None,
) -> QuotaCheckResult:
    """Decide whether *requested_tokens* more fit within *quota*."""
    if quota is None:
        return QuotaCheckResult(allowed=True, current_usage=current_usage)
    if quota.max_tokens_per_request and requested_tokens > quota.max_tokens_per_request:
        return QuotaCheckResult(
            allowed=False,
            reason=(
                f"Request tokens ({requested_tokens}) exceed per-request limit "
                f"({quota.max_tokens_per_request})"
            ),
            quota=quota,
            current_usage=current_usage,
        )
    used = current_usage.total_tokens if current_usage else 0
    if quota.max_total_tokens and used + requested_tokens > quota.max_total_tokens:
        return QuotaCheckResult(
            allowed=False,
            reason=f"Request would exceed total token limit ({quota.max_total_tokens})",
            quota=quota,
            current_usage=current_usage,
        )
    return QuotaCheckResult(allowed=True, quota=quota, current_usage=current_usage)


QuotaLoader = Callable[[str, str], Awaitable[ModelQuota | None]]


class QuotaCache:
    """TTL map of :class:`ModelQuota` in front of a loader.

    *loader* is the slow source of truth (usually a database query).  A
    missing quota (``None``) is cached too, so unlimited models do not hit the
    loader on every request.  Concurrent misses for the same model may both
    call the loader; the writes are identical.

    Parameters
    ----------
    loader:
        ``async (provider, model_name) -> ModelQuota | None``.
    ttl_seconds:
        Lifetime of a cached entry.
    """

    def __init__(
        self,
        loader: QuotaLoader,
        ttl_seconds: float = 300,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError(f"ttl_seconds must be positive, got {ttl_seconds}")
        self._loader = loader
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: dict[tuple[str, str], tuple[ModelQuota | None, float]] = {}
        self._active = False

    @property
    def active(self) -> bool:
        return self._active

    async def init(self, preload: list[tuple[str, str]] | None = None) -> None:
        """Start serving; optionally warm the cache for *preload* models."""
        self._active = True
        for provider, model_name in preload or []:
            await self.get(provider, model_name)
        logger.debug("Quota cache initialised with %d entries", len(self._entries))

    async def get(self, provider: str, model_name: str) -> ModelQuota | None:
        key = (provider.lower(), model_name.lower())
        entry = self._entries.get(key)
        if entry is not None and self._clock() < entry[1]:
            return entry[0]
        quota = await self._loader(key[0], key[1])
        self._entries[key] = (quota, self._clock() + self._ttl)
        return quota

    def refresh(self, ttl: float | None = None) -> None:
        """Drop every cached entry; if *ttl* is given it applies from now on."""
        if ttl is not None:
            if ttl <= 0:
                raise ValueError(f"ttl must be positive, got {ttl}")
            self._ttl = ttl
        self._entries.clear()

    async def shutdown(self) -> None:
        self._entries.clear()
        self._active = False
        logger.debug("Quota cache shut down")
