"""Tests for stream replay and stream tapping."""

from __future__ import annotations

import math

import pytest

from conftest import collect
from modelware.stream import ReplayStream, TappedStream
from modelware.types import FINISH, TEXT_DELTA, StreamPart


async def _upstream(parts: list[StreamPart], error: Exception | None = None):
    for part in parts:
        yield part
    if error is not None:
        raise error


# ---------------------------------------------------------------------------
# ReplayStream
# ---------------------------------------------------------------------------


class TestReplayStream:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("text", ["", "abc", "abcd", "The quick brown fox jumps"])
    async def test_chunking_fidelity(self, text):
        parts = await collect(ReplayStream(text, 4))
        deltas = [p for p in parts if p.type == TEXT_DELTA]

        assert len(deltas) == math.ceil(len(text) / 4)
        assert all(len(p.text_delta) <= 4 for p in deltas)
        assert "".join(p.text_delta for p in deltas) == text
        assert [p.type for p in parts].count(FINISH) == 1
        assert parts[-1].type == FINISH

    @pytest.mark.asyncio
    async def test_finish_carries_reason_and_usage(self):
        usage = {"promptTokens": 3, "completionTokens": 2}
        parts = await collect(ReplayStream("hi", 10, finish_reason="length", usage=usage))
        assert parts[-1].finish_reason == "length"
        assert parts[-1].usage == usage

    @pytest.mark.asyncio
    async def test_missing_finish_reason_defaults_to_stop(self):
        parts = await collect(ReplayStream("hi", 10, finish_reason=None))
        assert parts[-1].finish_reason == "stop"

    @pytest.mark.asyncio
    async def test_single_use(self):
        stream = ReplayStream("hello", 2)
        assert len(await collect(stream)) == 4
        assert await collect(stream) == []

    def test_rejects_bad_chunk_size(self):
        with pytest.raises(ValueError):
            ReplayStream("x", 0)


# ---------------------------------------------------------------------------
# TappedStream
# ---------------------------------------------------------------------------


class TestTappedStream:
    @pytest.mark.asyncio
    async def test_forwards_parts_and_completes_once(self):
        parts = [
            StreamPart(type=TEXT_DELTA, text_delta="a"),
            StreamPart(type="tool-call", data={"name": "lookup"}),
            StreamPart(type=FINISH, finish_reason="stop"),
        ]
        seen: list[StreamPart] = []
        completions = []

        async def on_complete() -> None:
            completions.append(len(seen))

        tapped = TappedStream(_upstream(parts), on_part=seen.append, on_complete=on_complete)
        assert await collect(tapped) == parts
        assert seen == parts
        assert completions == [3]

        # Iterating again after exhaustion does not re-run completion.
        assert await collect(tapped) == []
        assert completions == [3]

    @pytest.mark.asyncio
    async def test_upstream_error_propagates_and_skips_completion(self):
        completions = []

        async def on_complete() -> None:
            completions.append(True)

        tapped = TappedStream(
            _upstream([StreamPart(type=TEXT_DELTA, text_delta="a")], RuntimeError("boom")),
            on_complete=on_complete,
        )
        with pytest.raises(RuntimeError, match="boom"):
            await collect(tapped)
        assert completions == []

    @pytest.mark.asyncio
    async def test_completion_errors_are_swallowed(self):
        async def on_complete() -> None:
            raise ValueError("flush failed")

        parts = [StreamPart(type=TEXT_DELTA, text_delta="a")]
        assert await collect(TappedStream(_upstream(parts), on_complete=on_complete)) == parts
