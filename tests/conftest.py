"""Shared test fixtures."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock

import pytest

# Ensure the src directory is on the path when running from a checkout.
sys.path.insert(0, str(Path(__file__).resolve().parent.parent / "src"))

from modelware.config import CacheConfig  # noqa: E402
from modelware.store import MemoryCacheStore  # noqa: E402
from modelware.types import (  # noqa: E402
    FINISH,
    TEXT_DELTA,
    GenerateParams,
    GenerateResult,
    StreamPart,
    StreamResult,
)

# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeModel:
    """Scripted language model that counts provider calls."""

    def __init__(
        self,
        results: list[GenerateResult] | None = None,
        model_id: str = "fake-model",
        provider: str = "fake",
        chunk_size: int = 5,
    ) -> None:
        self._results = list(results or [])
        self.model_id = model_id
        self.provider = provider
        self.chunk_size = chunk_size
        self.generate_calls = 0
        self.stream_calls = 0
        self.seen_params: list[GenerateParams] = []

    def _next(self) -> GenerateResult:
        if len(self._results) > 1:
            return self._results.pop(0)
        if self._results:
            return self._results[0]
        return GenerateResult(text="default answer")

    async def do_generate(self, params: GenerateParams) -> GenerateResult:
        self.generate_calls += 1
        self.seen_params.append(params)
        return self._next()

    async def do_stream(self, params: GenerateParams) -> StreamResult:
        self.stream_calls += 1
        self.seen_params.append(params)
        result = self._next()
        return StreamResult(stream=_stream_parts(result, self.chunk_size), warnings=result.warnings)


async def _stream_parts(result: GenerateResult, chunk_size: int):
    text = result.text or ""
    for i in range(0, len(text), chunk_size):
        yield StreamPart(type=TEXT_DELTA, text_delta=text[i : i + chunk_size])
    yield StreamPart(type=FINISH, finish_reason=result.finish_reason, usage=result.usage)


class FailingModel:
    """Model whose provider call always raises."""

    model_id = "failing-model"
    provider = "fake"

    def __init__(self, error: Exception | None = None) -> None:
        self.error = error or RuntimeError("provider exploded")
        self.calls = 0

    async def do_generate(self, params: GenerateParams) -> GenerateResult:
        self.calls += 1
        raise self.error

    async def do_stream(self, params: GenerateParams) -> StreamResult:
        self.calls += 1
        raise self.error


class ThrowingStore:
    """Cache store that fails on every call."""

    def __init__(self) -> None:
        self.gets = 0
        self.sets = 0

    async def get(self, key: str) -> str | None:
        self.gets += 1
        raise ConnectionError("store is down")

    async def set_with_ttl(self, key: str, ttl_seconds: int, value: str) -> None:
        self.sets += 1
        raise ConnectionError("store is down")


class RecordingStore(MemoryCacheStore):
    """In-memory store that remembers every write."""

    def __init__(self) -> None:
        super().__init__()
        self.writes: list[tuple[str, int, str]] = []

    async def set_with_ttl(self, key: str, ttl_seconds: int, value: str) -> None:
        self.writes.append((key, ttl_seconds, value))
        await super().set_with_ttl(key, ttl_seconds, value)


def make_params(text: str = "What is the capital of France?", **kwargs: Any) -> GenerateParams:
    return GenerateParams(prompt=[{"role": "user", "content": text}], **kwargs)


async def collect(stream) -> list[StreamPart]:
    return [part async for part in stream]


def make_mock_tracer() -> tuple[MagicMock, list[MagicMock]]:
    """Create a mock tracer that records spans.

    Returns (tracer, spans_list) where spans_list collects all created spans.
    """
    spans: list[MagicMock] = []
    tracer = MagicMock()

    def _start_span(name: str) -> MagicMock:
        mock_span = MagicMock()
        mock_span.name = name
        mock_span._attributes = {}
        mock_span._closed = False

        def _set_attr(key: str, value: Any) -> None:
            mock_span._attributes[key] = value

        mock_span.set_attribute = _set_attr
        mock_span.__enter__ = lambda self: self

        def _exit(*args: Any) -> None:
            mock_span._closed = True

        mock_span.__exit__ = _exit
        spans.append(mock_span)
        return mock_span

    tracer.start_as_current_span = _start_span
    return tracer, spans


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def config() -> CacheConfig:
    return CacheConfig(jail_threshold=3, stream_chunk_size=4)


@pytest.fixture
def store() -> RecordingStore:
    return RecordingStore()
