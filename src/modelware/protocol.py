"""State protocol side channel.

A :class:`ProtocolContext` travels with a single chain call and turns it into
either a state collection pass or a state restoration pass.  ``results`` is a
FIFO queue of ``(middleware_id, state)`` pairs: collection appends at the
tail, restoration takes from the head, so entries are consumed in the same
chain order they were produced.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from .exceptions import ModelwareError

StateEntry = tuple[str, Any]


@dataclass
class ProtocolContext:
    collect: bool = False
    restore: bool = False
    results: list[StateEntry] = field(default_factory=list)
    errors: list[ModelwareError] = field(default_factory=list)
    """Recoverable failures (hook errors, id mismatches) seen during the pass."""

    def __post_init__(self) -> None:
        if self.collect and self.restore:
            raise ValueError("A protocol call cannot both collect and restore state")

    @property
    def active(self) -> bool:
        return self.collect or self.restore

    def push(self, middleware_id: str, state: Any) -> None:
        self.results.append((middleware_id, state))

    def shift(self) -> StateEntry | None:
        """Remove and return the head entry, or ``None`` when exhausted."""
        return self.results.pop(0) if self.results else None


def is_collection_request(ctx: ProtocolContext | None) -> bool:
    return ctx is not None and ctx.collect


def is_restoration_request(ctx: ProtocolContext | None) -> bool:
    return ctx is not None and ctx.restore
