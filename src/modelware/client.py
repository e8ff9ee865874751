"""Provider abstraction: ``LanguageModel`` protocol and ``OpenAIChatModel``.

Any object that implements :class:`LanguageModel` can sit at the end of a
middleware chain.  :class:`OpenAIChatModel` adapts an ``openai.AsyncOpenAI``
client (or anything with an async ``chat.completions.create``).
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Any, Protocol, runtime_checkable

from openai import AsyncOpenAI

from .types import (
    FINISH,
    TEXT_DELTA,
    FinishReason,
    GenerateParams,
    GenerateResult,
    StreamPart,
    StreamResult,
)

_FINISH_REASONS = {
    "stop": FinishReason.STOP,
    "length": FinishReason.LENGTH,
    "content_filter": FinishReason.CONTENT_FILTER,
    "tool_calls": FinishReason.TOOL_CALLS,
    "function_call": FinishReason.TOOL_CALLS,
}


@runtime_checkable
class LanguageModel(Protocol):
    """Protocol that any model at the end of a chain must satisfy."""

    model_id: str
    provider: str

    async def do_generate(self, params: GenerateParams) -> GenerateResult:
        """Run one non-streaming call."""
        ...

    async def do_stream(self, params: GenerateParams) -> StreamResult:
        """Start one streaming call."""
        ...


def map_finish_reason(reason: str | None) -> str:
    """Translate an OpenAI finish reason; ``None`` means the provider gave none."""
    if reason is None:
        return FinishReason.UNKNOWN
    return _FINISH_REASONS.get(reason, FinishReason.OTHER)


def _map_usage(usage: Any) -> dict[str, int] | None:
    if usage is None:
        return None
    prompt = getattr(usage, "prompt_tokens", 0) or 0
    completion = getattr(usage, "completion_tokens", 0) or 0
    return {
        "promptTokens": prompt,
        "completionTokens": completion,
        "totalTokens": getattr(usage, "total_tokens", None) or prompt + completion,
    }


def _to_openai_messages(prompt: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Flatten text-part message content into the plain string OpenAI accepts."""
    messages: list[dict[str, Any]] = []
    for message in prompt:
        content = message.get("content")
        if isinstance(content, list):
            text = "\n".join(
                part.get("text", "")
                for part in content
                if isinstance(part, dict) and part.get("type") == "text"
            )
            message = {**message, "content": text}
        messages.append(message)
    return messages


class OpenAIChatModel:
    """Wraps an ``openai.AsyncOpenAI`` client as a :class:`LanguageModel`.

    Parameters
    ----------
    client:
        Any object with an async ``client.chat.completions.create(...)``.
    model_id:
        Model name passed to the API, e.g. ``"gpt-4.1-mini"``.
    provider:
        Provider label used for usage accounting.
    """

    def __init__(self, client: Any, model_id: str, provider: str = "openai") -> None:
        self._client = client
        self.model_id = model_id
        self.provider = provider

    @classmethod
    def create(cls, model_id: str, **client_kwargs: Any) -> OpenAIChatModel:
        """Build with a fresh ``AsyncOpenAI`` client (reads ``OPENAI_API_KEY`` by default)."""
        return cls(AsyncOpenAI(**client_kwargs), model_id)

    def _request(self, params: GenerateParams) -> dict[str, Any]:
        request: dict[str, Any] = {
            "model": self.model_id,
            "messages": _to_openai_messages(params.prompt),
        }
        optional = {
            "temperature": params.temperature,
            "max_tokens": params.max_tokens,
            "top_p": params.top_p,
            "stop": params.stop_sequences,
            "seed": params.seed,
            "tools": params.tools,
            "response_format": params.response_format,
        }
        request.update({key: value for key, value in optional.items() if value is not None})
        request.update(params.provider_options.get("openai", {}))
        return request

    async def do_generate(self, params: GenerateParams) -> GenerateResult:
        request = self._request(params)
        response = await self._client.chat.completions.create(**request)
        choice = response.choices[0]
        return GenerateResult(
            text=choice.message.content or "",
            finish_reason=map_finish_reason(choice.finish_reason),
            usage=_map_usage(getattr(response, "usage", None)),
            warnings=[],
            raw_call={"model": self.model_id, "messages": request["messages"]},
            response={
                "id": getattr(response, "id", None),
                "modelId": getattr(response, "model", self.model_id),
                "timestamp": getattr(response, "created", None),
            },
        )

    async def do_stream(self, params: GenerateParams) -> StreamResult:
        request = self._request(params)
        chunks = await self._client.chat.completions.create(
            **request,
            stream=True,
            stream_options={"include_usage": True},
        )
        return StreamResult(
            stream=self._parts(chunks),
            warnings=[],
            raw_call={"model": self.model_id, "messages": request["messages"]},
        )

    async def _parts(self, chunks: Any) -> AsyncIterator[StreamPart]:
        finish_reason: str | None = None
        usage: dict[str, int] | None = None
        async for chunk in chunks:
            if getattr(chunk, "usage", None) is not None:
                usage = _map_usage(chunk.usage)
            for choice in chunk.choices or []:
                delta = getattr(choice.delta, "content", None)
                if delta:
                    yield StreamPart(type=TEXT_DELTA, text_delta=delta)
                if choice.finish_reason is not None:
                    finish_reason = choice.finish_reason
        yield StreamPart(type=FINISH, finish_reason=map_finish_reason(finish_reason), usage=usage)
