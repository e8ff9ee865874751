"""Stream helpers for replaying cached text and tapping live streams.

:class:`ReplayStream` turns a complete cached text back into incremental
``text-delta`` events so that stream callers see the same shape of output
whether it came from the cache or from a live provider.

:class:`TappedStream` forwards a live stream unchanged while letting a
middleware observe each part and run a completion step once the upstream
ends naturally.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterable, AsyncIterator, Awaitable, Callable
from typing import Any

from .types import FINISH, TEXT_DELTA, FinishReason, StreamPart

logger = logging.getLogger(__name__)


class ReplayStream:
    """Single-use async stream of a cached text.

    Emits ``ceil(len(text) / chunk_size)`` text-delta parts followed by
    exactly one finish part.  Once exhausted it stays exhausted; build a new
    instance for every cache hit.
    """

    def __init__(
        self,
        text: str,
        chunk_size: int,
        finish_reason: str | None = FinishReason.STOP,
        usage: dict[str, Any] | None = None,
    ) -> None:
        if chunk_size <= 0:
            raise ValueError(f"chunk_size must be > 0, got {chunk_size}")
        self._text = text or ""
        self._chunk_size = chunk_size
        self._finish_reason = finish_reason or FinishReason.STOP
        self._usage = usage
        self._offset = 0
        self._finished = False

    def __aiter__(self) -> ReplayStream:
        return self

    async def __anext__(self) -> StreamPart:
        if self._offset < len(self._text):
            chunk = self._text[self._offset : self._offset + self._chunk_size]
            self._offset += self._chunk_size
            return StreamPart(type=TEXT_DELTA, text_delta=chunk)
        if not self._finished:
            self._finished = True
            return StreamPart(type=FINISH, finish_reason=self._finish_reason, usage=self._usage)
        raise StopAsyncIteration


class TappedStream:
    """Forward an upstream stream, observing it on the way through.

    Parameters
    ----------
    upstream:
        The live stream.  Parts are forwarded immediately and unmodified.
    on_part:
        Called synchronously with every part before it is yielded.
    on_complete:
        Awaited once when the upstream ends naturally.  Exceptions it raises
        are logged and never reach the consumer.  If the upstream raises, or
        the consumer stops early, it is not called.
    """

    def __init__(
        self,
        upstream: AsyncIterable[StreamPart],
        on_part: Callable[[StreamPart], None] | None = None,
        on_complete: Callable[[], Awaitable[None]] | None = None,
    ) -> None:
        self._upstream: AsyncIterator[StreamPart] = upstream.__aiter__()
        self._on_part = on_part
        self._on_complete = on_complete
        self._completed = False

    def __aiter__(self) -> TappedStream:
        return self

    async def __anext__(self) -> StreamPart:
        try:
            part = await self._upstream.__anext__()
        except StopAsyncIteration:
            if not self._completed:
                self._completed = True
                await self._complete()
            raise
        if self._on_part is not None:
            self._on_part(part)
        return part

    async def _complete(self) -> None:
        if self._on_complete is None:
            return
        try:
            await self._on_complete()
        except Exception:
            logger.exception("Stream completion handler failed")

    async def aclose(self) -> None:
        close = getattr(self._upstream, "aclose", None)
        if close is not None:
            await close()
