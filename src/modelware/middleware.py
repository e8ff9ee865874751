"""Middleware chain: link types and the wrapped model.

Every item passed to :func:`wrap_model` is resolved once into a
:class:`Link`:

- a plain :class:`Middleware` becomes a :class:`PlainLink`;
- :class:`~modelware.stateful.StatefulMiddleware` and
  :class:`~modelware.state_manager.StateManager` already are links.

The first item is the outermost link.  A normal call walks the links in
order and ends at the provider.  A protocol call (see
:mod:`modelware.protocol`) skips plain links entirely, lets each stateful
link serialize or restore its state, and ends at a synthetic terminal that
never reaches the provider.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterable, Sequence
from datetime import datetime, timezone
from typing import Any

from .protocol import ProtocolContext
from .stream import ReplayStream
from .tracing import span
from .types import FinishReason, GenerateParams, GenerateResult, StreamResult

STATE_OPERATION_ID = "state-operation-result"

NextGenerate = Callable[[GenerateParams], Awaitable[GenerateResult]]
NextStream = Callable[[GenerateParams], Awaitable[StreamResult]]


class Middleware:
    """Base class for chain middleware.  Every hook defaults to pass-through."""

    async def transform_params(
        self,
        params: GenerateParams,
        *,
        kind: str,
        model: Any,
    ) -> GenerateParams:
        """Rewrite *params* before the call.  *kind* is ``"generate"`` or ``"stream"``."""
        return params

    async def wrap_generate(
        self,
        do_generate: Callable[[], Awaitable[GenerateResult]],
        params: GenerateParams,
        *,
        model: Any,
    ) -> GenerateResult:
        return await do_generate()

    async def wrap_stream(
        self,
        do_stream: Callable[[], Awaitable[StreamResult]],
        params: GenerateParams,
        *,
        model: Any,
    ) -> StreamResult:
        return await do_stream()


class Link:
    """One resolved position in a chain."""

    must_be_first: bool = False

    async def generate(
        self,
        call_next: NextGenerate,
        params: GenerateParams,
        protocol: ProtocolContext | None,
        model: Any,
    ) -> GenerateResult:
        raise NotImplementedError

    async def stream(
        self,
        call_next: NextStream,
        params: GenerateParams,
        protocol: ProtocolContext | None,
        model: Any,
    ) -> StreamResult:
        raise NotImplementedError


async def run_generate(
    middleware: Middleware,
    call_next: NextGenerate,
    params: GenerateParams,
    model: Any,
) -> GenerateResult:
    """Run *middleware*'s normal generate path in front of *call_next*."""
    params = await middleware.transform_params(params, kind="generate", model=model)
    return await middleware.wrap_generate(lambda: call_next(params), params, model=model)


async def run_stream(
    middleware: Middleware,
    call_next: NextStream,
    params: GenerateParams,
    model: Any,
) -> StreamResult:
    """Run *middleware*'s normal stream path in front of *call_next*."""
    params = await middleware.transform_params(params, kind="stream", model=model)
    return await middleware.wrap_stream(lambda: call_next(params), params, model=model)


class PlainLink(Link):
    """A middleware that does not take part in the state protocol."""

    def __init__(self, middleware: Middleware) -> None:
        self.middleware = middleware

    def __repr__(self) -> str:
        return f"PlainLink({self.middleware!r})"

    async def generate(self, call_next, params, protocol, model):
        if protocol is not None and protocol.active:
            return await call_next(params)
        return await run_generate(self.middleware, call_next, params, model)

    async def stream(self, call_next, params, protocol, model):
        if protocol is not None and protocol.active:
            return await call_next(params)
        return await run_stream(self.middleware, call_next, params, model)


def to_link(item: Link | Middleware) -> Link:
    if isinstance(item, Link):
        return item
    if isinstance(item, Middleware):
        return PlainLink(item)
    raise TypeError(f"Expected a Middleware or Link, got {type(item).__name__}")


def state_operation_result(params: GenerateParams, model: Any) -> GenerateResult:
    """The synthetic response that ends every protocol call."""
    return GenerateResult(
        text=f"Response to: {params.prompt_text()}",
        finish_reason=FinishReason.STOP,
        usage={"promptTokens": 0, "completionTokens": 0, "totalTokens": 0},
        warnings=[],
        response={
            "id": STATE_OPERATION_ID,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "modelId": getattr(model, "model_id", None),
        },
    )


class WrappedModel:
    """A language model behind a chain of links.

    Exposes the same ``model_id`` / ``provider`` / ``do_generate`` /
    ``do_stream`` surface as the model it wraps, plus an optional
    ``protocol`` argument carrying a :class:`ProtocolContext`.
    """

    def __init__(self, model: Any, links: Sequence[Link]) -> None:
        self._model = model
        self._links = tuple(links)

    @property
    def model(self) -> Any:
        return self._model

    @property
    def links(self) -> tuple[Link, ...]:
        return self._links

    @property
    def model_id(self) -> str | None:
        return getattr(self._model, "model_id", None)

    @property
    def provider(self) -> str | None:
        return getattr(self._model, "provider", None)

    async def do_generate(
        self,
        params: GenerateParams,
        protocol: ProtocolContext | None = None,
    ) -> GenerateResult:
        with span(
            "modelware.generate",
            {
                "modelware.model_id": self.model_id,
                "modelware.links": len(self._links),
                "modelware.protocol": protocol is not None and protocol.active,
            },
        ) as s:
            result = await self._generate_at(0, params, protocol)
            s.set_attribute("modelware.finish_reason", result.finish_reason or "")
            return result

    async def do_stream(
        self,
        params: GenerateParams,
        protocol: ProtocolContext | None = None,
    ) -> StreamResult:
        """Start a streaming call through the chain.

        The ``modelware.stream`` span covers chain setup only: it ends once the
        provider has returned its stream, before any part is consumed.
        """
        with span(
            "modelware.stream",
            {
                "modelware.model_id": self.model_id,
                "modelware.links": len(self._links),
                "modelware.protocol": protocol is not None and protocol.active,
            },
        ):
            return await self._stream_at(0, params, protocol)

    async def _generate_at(
        self,
        index: int,
        params: GenerateParams,
        protocol: ProtocolContext | None,
    ) -> GenerateResult:
        if index == len(self._links):
            if protocol is not None and protocol.active:
                return state_operation_result(params, self._model)
            return await self._model.do_generate(params)

        async def call_next(p: GenerateParams) -> GenerateResult:
            return await self._generate_at(index + 1, p, protocol)

        return await self._links[index].generate(call_next, params, protocol, self._model)

    async def _stream_at(
        self,
        index: int,
        params: GenerateParams,
        protocol: ProtocolContext | None,
    ) -> StreamResult:
        if index == len(self._links):
            if protocol is not None and protocol.active:
                result = state_operation_result(params, self._model)
                text = result.text or ""
                return StreamResult(
                    stream=ReplayStream(text, max(len(text), 1), usage=result.usage),
                    warnings=[],
                )
            return await self._model.do_stream(params)

        async def call_next(p: GenerateParams) -> StreamResult:
            return await self._stream_at(index + 1, p, protocol)

        return await self._links[index].stream(call_next, params, protocol, self._model)


def wrap_model(model: Any, middleware: Iterable[Link | Middleware]) -> WrappedModel:
    """Put *model* behind *middleware*; the first item is the outermost link.

    Raises :class:`ValueError` if a link that must lead the chain (such as a
    :class:`~modelware.state_manager.StateManager`) is anywhere else, and
    :class:`TypeError` for items that are neither middleware nor links.
    """
    links = [to_link(item) for item in middleware]
    for index, link in enumerate(links):
        if link.must_be_first and index != 0:
            raise ValueError(
                f"{type(link).__name__} must be the first link in the chain, found at index {index}"
            )
    return WrappedModel(model, links)
