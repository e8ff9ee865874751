"""Request, response and stream types shared by every middleware."""

from __future__ import annotations

from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any


class FinishReason:
    """Finish reasons a model call can report."""

    STOP = "stop"
    LENGTH = "length"
    CONTENT_FILTER = "content-filter"
    TOOL_CALLS = "tool-calls"
    ERROR = "error"
    OTHER = "other"
    UNKNOWN = "unknown"


TEXT_DELTA = "text-delta"
FINISH = "finish"


@dataclass
class GenerateParams:
    """Call options passed down the middleware chain to the provider."""

    prompt: list[dict[str, Any]] = field(default_factory=list)
    """Chat messages, e.g. ``{"role": "user", "content": "hi"}``.

    ``content`` may be a plain string or a list of parts such as
    ``{"type": "text", "text": "..."}``.
    """

    temperature: float | None = None
    max_tokens: int | None = None
    top_p: float | None = None
    top_k: int | None = None
    stop_sequences: list[str] | None = None
    seed: int | None = None
    tools: list[dict[str, Any]] | None = None
    response_format: dict[str, Any] | None = None

    provider_options: dict[str, Any] = field(default_factory=dict)
    """Free-form provider specific settings, forwarded untouched."""

    def to_dict(self) -> dict[str, Any]:
        """Mapping used for cache key derivation."""
        return {
            "prompt": self.prompt,
            "temperature": self.temperature,
            "maxTokens": self.max_tokens,
            "topP": self.top_p,
            "topK": self.top_k,
            "stopSequences": self.stop_sequences,
            "seed": self.seed,
            "tools": self.tools,
            "responseFormat": self.response_format,
            "providerOptions": self.provider_options,
        }

    def prompt_text(self) -> str:
        """All textual message content joined by newlines."""
        parts: list[str] = []
        for message in self.prompt:
            content = message.get("content")
            if isinstance(content, str):
                if content:
                    parts.append(content)
            elif isinstance(content, list):
                for part in content:
                    if isinstance(part, dict) and part.get("type") == "text" and part.get("text"):
                        parts.append(part["text"])
        return "\n".join(parts)


@dataclass
class GenerateResult:
    """The result of a single non-streaming model call."""

    text: str | None
    """The generated text (``None`` if the model produced none)."""

    finish_reason: str = FinishReason.STOP
    usage: dict[str, Any] | None = None
    """Token counts, e.g. ``{"promptTokens": 10, "completionTokens": 5}``."""

    warnings: list[Any] | None = None
    raw_call: dict[str, Any] | None = None
    raw_response: dict[str, Any] | None = None
    response: dict[str, Any] | None = None
    """Response metadata (id, model id, timestamp)."""


@dataclass
class StreamPart:
    """A single event of a model stream."""

    type: str
    """``"text-delta"``, ``"finish"``, or any provider specific type."""

    text_delta: str = ""
    finish_reason: str | None = None
    usage: dict[str, Any] | None = None
    data: dict[str, Any] = field(default_factory=dict)
    """Payload of pass-through event types."""


@dataclass
class StreamResult:
    """The result of a streaming model call."""

    stream: AsyncIterator[StreamPart]
    warnings: list[Any] | None = None
    raw_call: dict[str, Any] | None = None
    raw_response: dict[str, Any] | None = None
