"""Tests for the stateful middleware wrapper."""

from __future__ import annotations

import logging

import pytest

from conftest import FakeModel, make_params
from modelware.exceptions import ProtocolMismatchError, SerializationError
from modelware.middleware import Middleware, wrap_model
from modelware.protocol import ProtocolContext
from modelware.stateful import SerializableMiddleware, StatefulMiddleware, wrap_stateful


class Counter(Middleware):
    """Counts generate calls and exposes the count as state."""

    def __init__(self) -> None:
        self.calls = 0

    async def wrap_generate(self, do_generate, params, *, model):
        self.calls += 1
        return await do_generate()

    def serialize_state(self):
        return {"calls": self.calls}

    def deserialize_state(self, state):
        self.calls = state["calls"]


class AsyncCounter(Counter):
    async def serialize_state(self):
        return {"calls": self.calls}

    async def deserialize_state(self, state):
        self.calls = state["calls"]


class Plain(Middleware):
    def __init__(self) -> None:
        self.calls = 0

    async def wrap_generate(self, do_generate, params, *, model):
        self.calls += 1
        return await do_generate()


# ---------------------------------------------------------------------------
# Normal calls
# ---------------------------------------------------------------------------


class TestNormalPath:
    @pytest.mark.asyncio
    async def test_behaves_like_wrapped_middleware(self):
        counter = Counter()
        model = FakeModel()
        wrapped = wrap_model(model, [wrap_stateful("counter", counter)])

        await wrapped.do_generate(make_params())
        await wrapped.do_generate(make_params())

        assert counter.calls == 2
        assert model.generate_calls == 2

    def test_hooks_resolved_from_middleware(self):
        counter = Counter()
        assert isinstance(counter, SerializableMiddleware)
        link = wrap_stateful("counter", counter)
        assert isinstance(link, StatefulMiddleware)
        assert link.middleware_id == "counter"

    def test_empty_id_rejected(self):
        with pytest.raises(ValueError):
            wrap_stateful("", Plain())


# ---------------------------------------------------------------------------
# Collection
# ---------------------------------------------------------------------------


class TestCollection:
    @pytest.mark.asyncio
    async def test_collects_in_chain_order_without_running_logic(self):
        first, second = Counter(), AsyncCounter()
        first.calls, second.calls = 3, 7
        model = FakeModel()
        wrapped = wrap_model(model, [wrap_stateful("first", first), wrap_stateful("second", second)])
        ctx = ProtocolContext(collect=True)

        await wrapped.do_generate(make_params(), protocol=ctx)

        assert ctx.results == [("first", {"calls": 3}), ("second", {"calls": 7})]
        assert first.calls == 3
        assert second.calls == 7
        assert model.generate_calls == 0

    @pytest.mark.asyncio
    async def test_middleware_without_hooks_contributes_empty_state(self):
        plain = Plain()
        ctx = ProtocolContext(collect=True)
        await wrap_model(FakeModel(), [wrap_stateful("plain", plain)]).do_generate(make_params(), protocol=ctx)
        assert ctx.results == [("plain", {})]
        assert plain.calls == 0

    @pytest.mark.asyncio
    async def test_explicit_hooks_win(self):
        ctx = ProtocolContext(collect=True)
        link = wrap_stateful("counter", Counter(), serialize=lambda: "custom")
        await wrap_model(FakeModel(), [link]).do_generate(make_params(), protocol=ctx)
        assert ctx.results == [("counter", "custom")]

    @pytest.mark.asyncio
    async def test_identical_trailing_entry_is_not_duplicated(self):
        shared = {"value": 1}
        link = wrap_stateful("same", Plain(), serialize=lambda: shared)
        ctx = ProtocolContext(collect=True, results=[("same", shared)])

        await link.handle_protocol(ctx)

        assert ctx.results == [("same", shared)]

    @pytest.mark.asyncio
    async def test_equal_but_distinct_state_is_appended(self):
        link = wrap_stateful("same", Plain(), serialize=lambda: {"value": 1})
        ctx = ProtocolContext(collect=True, results=[("same", {"value": 1})])

        await link.handle_protocol(ctx)

        assert len(ctx.results) == 2

    @pytest.mark.asyncio
    async def test_serialize_failure_is_recorded_and_traversal_continues(self, caplog):
        def broken():
            raise RuntimeError("cannot serialize")

        after = Counter()
        wrapped = wrap_model(
            FakeModel(),
            [wrap_stateful("broken", Plain(), serialize=broken), wrap_stateful("after", after)],
        )
        ctx = ProtocolContext(collect=True)

        with caplog.at_level(logging.ERROR, logger="modelware.stateful"):
            await wrapped.do_generate(make_params(), protocol=ctx)

        assert ctx.results == [("broken", {}), ("after", {"calls": 0})]
        assert len(ctx.errors) == 1
        assert isinstance(ctx.errors[0], SerializationError)
        assert ctx.errors[0].phase == "serialize"
        assert "cannot serialize" in caplog.text


# ---------------------------------------------------------------------------
# Restoration
# ---------------------------------------------------------------------------


class TestRestoration:
    @pytest.mark.asyncio
    async def test_restores_in_fifo_order(self):
        first, second = Counter(), AsyncCounter()
        model = FakeModel()
        wrapped = wrap_model(model, [wrap_stateful("first", first), wrap_stateful("second", second)])
        ctx = ProtocolContext(restore=True, results=[("first", {"calls": 4}), ("second", {"calls": 9})])

        await wrapped.do_generate(make_params(), protocol=ctx)

        assert (first.calls, second.calls) == (4, 9)
        assert ctx.results == []
        assert ctx.errors == []
        assert model.generate_calls == 0

    @pytest.mark.asyncio
    async def test_id_mismatch_is_skipped(self):
        counter = Counter()
        link = wrap_stateful("counter", counter)
        ctx = ProtocolContext(restore=True, results=[("someone-else", {"calls": 5})])

        await link.handle_protocol(ctx)

        assert counter.calls == 0
        assert ctx.results == []
        assert isinstance(ctx.errors[0], ProtocolMismatchError)
        assert ctx.errors[0].found_id == "someone-else"

    @pytest.mark.asyncio
    async def test_missing_entry_is_skipped(self):
        counter = Counter()
        ctx = ProtocolContext(restore=True)

        await wrap_stateful("counter", counter).handle_protocol(ctx)

        assert counter.calls == 0
        assert isinstance(ctx.errors[0], ProtocolMismatchError)
        assert ctx.errors[0].found_id is None

    @pytest.mark.asyncio
    async def test_deserialize_failure_does_not_stop_chain(self):
        def broken(state):
            raise ValueError("bad state")

        after = Counter()
        wrapped = wrap_model(
            FakeModel(),
            [wrap_stateful("broken", Plain(), deserialize=broken), wrap_stateful("after", after)],
        )
        ctx = ProtocolContext(restore=True, results=[("broken", {}), ("after", {"calls": 2})])

        await wrapped.do_generate(make_params(), protocol=ctx)

        assert after.calls == 2
        assert isinstance(ctx.errors[0], SerializationError)
        assert ctx.errors[0].phase == "deserialize"
