"""Response caching middleware with a jail for problematic responses.

Per call:

1. Derive the fingerprint.  If that fails the call proceeds uncached.
2. Look the key up.  A hit is returned verbatim and the provider is never
   called.  A store failure counts as a miss.
3. On a miss, call the provider.  Provider errors propagate unchanged; they
   are never retried and never cached.
4. Classify the live response: successful responses are stored, problematic
   ones go to the jail (and are stored once promoted), error-only responses
   are left alone.  Every write is best-effort.

For streams, step 4 runs after the live stream has ended naturally, while
every part has already been forwarded to the consumer.  A stream cache hit is
replayed through :class:`~modelware.stream.ReplayStream`.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from .classify import ResponseClass, classify, summarize
from .config import CacheConfig
from .exceptions import KeyDerivationError
from .fingerprint import fingerprint
from .jail import JailLedger
from .metrics import CacheObserver, notify
from .middleware import Middleware
from .store import CacheStore
from .stream import ReplayStream, TappedStream
from .types import (
    FINISH,
    TEXT_DELTA,
    FinishReason,
    GenerateParams,
    GenerateResult,
    StreamPart,
    StreamResult,
)

logger = logging.getLogger(__name__)


@dataclass
class CachedResponse:
    """The stored form of a cacheable response."""

    text: str
    finish_reason: str | None = FinishReason.STOP
    usage: dict[str, Any] | None = None
    warnings: list[Any] | None = None
    raw_call: dict[str, Any] | None = None
    raw_response: dict[str, Any] | None = None
    response: dict[str, Any] | None = None

    @classmethod
    def from_result(cls, result: GenerateResult) -> CachedResponse:
        return cls(
            text=result.text or "",
            finish_reason=result.finish_reason,
            usage=result.usage,
            warnings=result.warnings,
            raw_call=result.raw_call,
            raw_response=result.raw_response,
            response=result.response,
        )

    def to_result(self) -> GenerateResult:
        return GenerateResult(
            text=self.text,
            finish_reason=self.finish_reason or FinishReason.STOP,
            usage=self.usage,
            warnings=self.warnings,
            raw_call=self.raw_call,
            raw_response=self.raw_response,
            response=self.response,
        )

    def to_json(self) -> str:
        # Non-JSON values in provider metadata (datetimes, SDK objects) are stringified.
        return json.dumps(
            {
                "text": self.text,
                "finishReason": self.finish_reason,
                "usage": self.usage,
                "warnings": self.warnings,
                "rawCall": self.raw_call,
                "rawResponse": self.raw_response,
                "response": self.response,
            },
            default=str,
        )

    @classmethod
    def from_json(cls, raw: str) -> CachedResponse:
        data = json.loads(raw)
        if not isinstance(data, dict):
            raise ValueError("Cached value is not a JSON object")
        text = data.get("text")
        if text is not None and not isinstance(text, str):
            raise ValueError(f"Cached text must be a string, got {type(text).__name__}")
        if data.get("finishReason") is not None and not isinstance(data["finishReason"], str):
            raise ValueError("Cached finishReason must be a string")
        if data.get("usage") is not None and not isinstance(data["usage"], dict):
            raise ValueError("Cached usage must be an object")
        if data.get("warnings") is not None and not isinstance(data["warnings"], list):
            raise ValueError("Cached warnings must be a list")
        return cls(
            text=text or "",
            finish_reason=data.get("finishReason"),
            usage=data.get("usage"),
            warnings=data.get("warnings"),
            raw_call=data.get("rawCall"),
            raw_response=data.get("rawResponse"),
            response=data.get("response"),
        )


class CachingMiddleware(Middleware):
    """Cache model responses in a :class:`~modelware.store.CacheStore`.

    Parameters
    ----------
    store:
        Backing store for both cached responses and jail entries.
    config:
        Prefixes, TTLs, jail threshold and logging switches.
    observer:
        Optional metrics sink; only called when ``config.enable_metrics``.
    """

    def __init__(
        self,
        store: CacheStore,
        config: CacheConfig | None = None,
        observer: CacheObserver | None = None,
    ) -> None:
        self._store = store
        self._config = config or CacheConfig()
        self._observer = observer if self._config.enable_metrics else None
        self._jail = JailLedger(store, self._config)

    @property
    def jail(self) -> JailLedger:
        return self._jail

    # -- Middleware hooks ------------------------------------------------------

    async def wrap_generate(
        self,
        do_generate: Callable[[], Awaitable[GenerateResult]],
        params: GenerateParams,
        *,
        model: Any,
    ) -> GenerateResult:
        key = self._derive_key(params, model)
        if key is None:
            return await do_generate()

        cached = await self._lookup(key)
        if cached is not None:
            return cached.to_result()

        result = await do_generate()
        await self._settle(key, result)
        return result

    async def wrap_stream(
        self,
        do_stream: Callable[[], Awaitable[StreamResult]],
        params: GenerateParams,
        *,
        model: Any,
    ) -> StreamResult:
        key = self._derive_key(params, model)
        if key is None:
            return await do_stream()

        cached = await self._lookup(key)
        if cached is not None:
            return StreamResult(
                stream=ReplayStream(
                    cached.text,
                    self._config.stream_chunk_size,
                    finish_reason=cached.finish_reason,
                    usage=cached.usage,
                ),
                warnings=cached.warnings,
                raw_call=cached.raw_call,
                raw_response=cached.raw_response,
            )

        live = await do_stream()
        chunks: list[str] = []
        finish: dict[str, Any] = {"finish_reason": FinishReason.STOP, "usage": None}

        def on_part(part: StreamPart) -> None:
            if part.type == TEXT_DELTA:
                chunks.append(part.text_delta)
            elif part.type == FINISH:
                finish["finish_reason"] = part.finish_reason or FinishReason.STOP
                finish["usage"] = part.usage

        async def on_complete() -> None:
            assembled = GenerateResult(
                text="".join(chunks),
                finish_reason=finish["finish_reason"],
                usage=finish["usage"],
                warnings=live.warnings,
                raw_call=live.raw_call,
                raw_response=live.raw_response,
            )
            await self._settle(key, assembled)

        return StreamResult(
            stream=TappedStream(live.stream, on_part=on_part, on_complete=on_complete),
            warnings=live.warnings,
            raw_call=live.raw_call,
            raw_response=live.raw_response,
        )

    # -- Internal helpers ------------------------------------------------------

    def _log(self, level: int, msg: str, *args: Any, exc_info: bool = False) -> None:
        if self._config.enable_logging:
            logger.log(level, msg, *args, exc_info=exc_info)

    def _derive_key(self, params: GenerateParams, model: Any) -> str | None:
        try:
            return fingerprint(
                params,
                getattr(model, "model_id", None),
                prefix=self._config.cache_key_prefix,
            )
        except KeyDerivationError as exc:
            self._log(logging.WARNING, "Cannot derive cache key, calling provider uncached: %s", exc)
            return None

    async def _lookup(self, key: str) -> CachedResponse | None:
        short = self._config.short_key(key)
        try:
            raw = await self._store.get(key)
            cached = CachedResponse.from_json(raw) if raw else None
        except Exception as exc:
            notify(self._observer, "error", key, str(exc))
            self._log(logging.WARNING, "Cache lookup failed for %s..., treating as miss", short, exc_info=True)
            return None

        if cached is None:
            notify(self._observer, "miss", key)
            self._log(logging.INFO, "Cache MISS for key: %s...", short)
            return None

        notify(self._observer, "hit", key, len(cached.text))
        self._log(logging.INFO, "Cache HIT for key: %s...", short)
        return cached

    async def _settle(self, key: str, result: GenerateResult) -> None:
        """Store, jail or ignore a live *result*.  Never raises."""
        short = self._config.short_key(key)
        verdict = classify(result)

        if verdict is ResponseClass.SUCCESSFUL:
            await self._write(key, result, "store")
            return

        if verdict is ResponseClass.PROBLEMATIC:
            try:
                entry, promoted = await self._jail.record_problematic(key, summarize(result))
            except Exception as exc:
                notify(self._observer, "error", key, str(exc))
                self._log(logging.ERROR, "Error managing cache jail for %s...", short, exc_info=True)
                return
            notify(self._observer, "jail_update", key, entry.count, self._config.jail_threshold)
            self._log(
                logging.INFO,
                "Cache jail updated for key %s... (count: %d/%d)",
                short,
                entry.count,
                self._config.jail_threshold,
            )
            if promoted:
                self._log(logging.INFO, "Jail threshold reached for key %s..., promoting to cache", short)
                await self._write(key, result, "jail_promotion")
            return

        self._log(
            logging.INFO,
            "Not caching response (finish_reason: %s, has_text: %s) for key: %s...",
            result.finish_reason if result is not None else None,
            bool(result is not None and result.text),
            short,
        )

    async def _write(self, key: str, result: GenerateResult, event: str) -> None:
        short = self._config.short_key(key)
        try:
            await self._store.set_with_ttl(
                key,
                self._config.cache_ttl_seconds,
                CachedResponse.from_result(result).to_json(),
            )
        except Exception as exc:
            notify(self._observer, "error", key, str(exc))
            self._log(logging.ERROR, "Error storing response in cache for %s...", short, exc_info=True)
            return
        notify(self._observer, event, key, len(result.text or ""))
        self._log(logging.INFO, "Cached response for key: %s...", short)
