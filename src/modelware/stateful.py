"""Opt a middleware into state snapshots without changing its normal path.

On an ordinary call a :class:`StatefulMiddleware` behaves exactly like the
middleware it wraps.  On a protocol call it never runs the wrapped logic:

- collection: run the serialize hook and append ``(middleware_id, state)``
  to ``ctx.results``;
- restoration: take the head entry of ``ctx.results``, check its id, and
  pass the state to the deserialize hook.

Either way the call then continues to the next link.  Hook failures and id
mismatches are logged and recorded on ``ctx.errors``; they never stop the
rest of the chain from being visited.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Callable
from typing import Any, Protocol, runtime_checkable

from .exceptions import ProtocolMismatchError, SerializationError
from .middleware import Link, Middleware, run_generate, run_stream
from .protocol import ProtocolContext, is_collection_request, is_restoration_request

logger = logging.getLogger(__name__)

SerializeHook = Callable[[], Any]
DeserializeHook = Callable[[Any], Any]


@runtime_checkable
class SerializableMiddleware(Protocol):
    """A middleware that knows how to export and import its own state.

    Either hook may be a plain function or a coroutine function.
    """

    def serialize_state(self) -> Any: ...

    def deserialize_state(self, state: Any) -> Any: ...


def _empty_state() -> dict[str, Any]:
    return {}


def _ignore_state(state: Any) -> None:
    return None


async def _resolve(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class StatefulMiddleware(Link):
    """A chain link that takes part in state collection and restoration."""

    def __init__(
        self,
        middleware_id: str,
        middleware: Middleware,
        serialize: SerializeHook,
        deserialize: DeserializeHook,
    ) -> None:
        if not middleware_id:
            raise ValueError("middleware_id must be a non-empty string")
        self.middleware_id = middleware_id
        self.middleware = middleware
        self._serialize = serialize
        self._deserialize = deserialize

    def __repr__(self) -> str:
        return f"StatefulMiddleware({self.middleware_id!r}, {self.middleware!r})"

    async def generate(self, call_next, params, protocol, model):
        if await self.handle_protocol(protocol):
            return await call_next(params)
        return await run_generate(self.middleware, call_next, params, model)

    async def stream(self, call_next, params, protocol, model):
        if await self.handle_protocol(protocol):
            return await call_next(params)
        return await run_stream(self.middleware, call_next, params, model)

    async def handle_protocol(self, ctx: ProtocolContext | None) -> bool:
        """Serve a protocol request.  Returns ``False`` for ordinary calls."""
        if is_collection_request(ctx):
            await self._collect(ctx)
            return True
        if is_restoration_request(ctx):
            await self._restore(ctx)
            return True
        return False

    async def _collect(self, ctx: ProtocolContext) -> None:
        try:
            state = await _resolve(self._serialize())
        except Exception as exc:
            error = SerializationError(self.middleware_id, "serialize", exc)
            logger.error("%s", error, exc_info=True)
            ctx.errors.append(error)
            # Keep the slot so later links stay aligned on restore.
            state = _empty_state()

        if ctx.results:
            last_id, last_state = ctx.results[-1]
            if last_id == self.middleware_id and last_state is state:
                return
        ctx.push(self.middleware_id, state)

    async def _restore(self, ctx: ProtocolContext) -> None:
        entry = ctx.shift()
        if entry is None:
            error = ProtocolMismatchError(self.middleware_id, None)
            logger.warning("%s", error)
            ctx.errors.append(error)
            return

        found_id, state = entry
        if found_id != self.middleware_id:
            error = ProtocolMismatchError(self.middleware_id, found_id)
            logger.warning("%s", error)
            ctx.errors.append(error)
            return

        try:
            await _resolve(self._deserialize(state))
        except Exception as exc:
            error = SerializationError(self.middleware_id, "deserialize", exc)
            logger.error("%s", error, exc_info=True)
            ctx.errors.append(error)


def wrap_stateful(
    middleware_id: str,
    middleware: Middleware,
    *,
    serialize: SerializeHook | None = None,
    deserialize: DeserializeHook | None = None,
) -> StatefulMiddleware:
    """Wrap *middleware* so it takes part in the state protocol.

    Hooks are resolved once, here: explicit arguments win, then the
    middleware's own ``serialize_state`` / ``deserialize_state``, then
    no-ops that export an empty dict and ignore whatever is restored.
    """
    if serialize is None:
        serialize = getattr(middleware, "serialize_state", None)
    if deserialize is None:
        deserialize = getattr(middleware, "deserialize_state", None)
    return StatefulMiddleware(
        middleware_id,
        middleware,
        serialize if callable(serialize) else _empty_state,
        deserialize if callable(deserialize) else _ignore_state,
    )
