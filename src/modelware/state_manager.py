"""Whole-chain state snapshots and restoration.

:class:`StateManager` is both the head link of the chains it governs and the
driver that walks them.  A snapshot or restore issues one synthetic generate
call carrying a :class:`~modelware.protocol.ProtocolContext`; every stateful
link serializes or restores on the way down and the provider is never
reached.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any

from .exceptions import ModelwareError
from .middleware import Link, Middleware, WrappedModel, wrap_model
from .protocol import ProtocolContext, StateEntry
from .tracing import span
from .types import GenerateParams

logger = logging.getLogger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


def _protocol_params(text: str) -> GenerateParams:
    return GenerateParams(prompt=[{"role": "user", "content": [{"type": "text", "text": text}]}])


@dataclass
class StateSnapshot:
    """Ordered middleware states captured from one chain."""

    timestamp: int
    """Epoch milliseconds when the snapshot was taken."""

    states: list[StateEntry]
    """``(middleware_id, state)`` pairs in chain order."""

    errors: list[ModelwareError] = field(default_factory=list, repr=False, compare=False)
    """Recoverable failures seen while collecting; not persisted."""

    def to_dict(self) -> dict[str, Any]:
        return {"timestamp": self.timestamp, "state": [[mid, state] for mid, state in self.states]}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StateSnapshot:
        timestamp = data.get("timestamp")
        return cls(
            timestamp=_now_ms() if timestamp is None else int(timestamp),
            states=[(str(mid), state) for mid, state in data.get("state", [])],
        )


class StateManager(Link):
    """Head link and driver for the state protocol.

    Example
    -------
    >>> manager = StateManager()
    >>> model = manager.initialize_model(provider, [wrap_stateful("usage", usage)])
    >>> snap = await manager.snapshot(model)
    >>> await manager.restore_snapshot(other_model, snap)
    """

    must_be_first = True
    middleware_id = "state-manager"

    async def generate(self, call_next, params, protocol, model):
        return await call_next(params)

    async def stream(self, call_next, params, protocol, model):
        return await call_next(params)

    def initialize_model(
        self,
        model: Any,
        middleware: Iterable[Link | Middleware] = (),
    ) -> WrappedModel:
        """Wrap *model* in a chain led by this manager."""
        return wrap_model(model, [self, *middleware])

    async def snapshot(self, model: WrappedModel) -> StateSnapshot:
        """Collect the state of every stateful link in *model*'s chain."""
        logger.debug("Taking snapshot of middleware state")
        ctx = ProtocolContext(collect=True)
        await self.run(model, ctx, "Serializing pipeline state")
        snap = StateSnapshot(timestamp=_now_ms(), states=list(ctx.results), errors=list(ctx.errors))
        logger.debug("Collected %d middleware state entries", len(snap.states))
        return snap

    async def restore(
        self,
        model: WrappedModel,
        timestamp: int | None,
        states: Sequence[StateEntry],
    ) -> None:
        """Hand *states* back to the stateful links of *model*, in chain order."""
        logger.debug("Restoring middleware state from timestamp %s", timestamp)
        ctx = ProtocolContext(restore=True, results=list(states))
        await self.run(model, ctx, "Restoring pipeline state")

    async def restore_snapshot(self, model: WrappedModel, snapshot: StateSnapshot) -> None:
        await self.restore(model, snapshot.timestamp, snapshot.states)

    async def run(self, model: WrappedModel, ctx: ProtocolContext, text: str = "State operation") -> None:
        """Drive one protocol call carrying *ctx* through *model*'s chain."""
        if not isinstance(model, WrappedModel) or not model.links or model.links[0] is not self:
            raise ValueError("State operations require a model whose chain is led by this StateManager")
        operation = "collect" if ctx.collect else "restore" if ctx.restore else "none"
        with span(
            "modelware.state",
            {"modelware.state.operation": operation, "modelware.model_id": model.model_id},
        ) as s:
            await model.do_generate(_protocol_params(text), protocol=ctx)
            s.set_attribute("modelware.state.errors", len(ctx.errors))
        if ctx.errors:
            logger.warning("State %s finished with %d recoverable errors", operation, len(ctx.errors))
        if ctx.restore and ctx.results:
            logger.warning(
                "%d state entries were not consumed during restoration: %s",
                len(ctx.results),
                [mid for mid, _ in ctx.results],
            )
