"""Response classification for the cache / jail decision."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from .types import FinishReason, GenerateResult

_SUSPECT_REASONS = frozenset({FinishReason.OTHER, FinishReason.CONTENT_FILTER})


class ResponseClass(str, Enum):
    SUCCESSFUL = "successful"
    """Cache immediately."""

    PROBLEMATIC = "problematic"
    """Has text but finished oddly or carried warnings; goes to the jail."""

    ERROR_ONLY = "error_only"
    """Never cached, never jailed."""


@dataclass(frozen=True)
class ResponseSummary:
    """What the jail ledger remembers about the last problematic response."""

    finish_reason: str | None
    has_warnings: bool
    text_length: int

    def to_dict(self) -> dict[str, object]:
        return {
            "finishReason": self.finish_reason,
            "hasWarnings": self.has_warnings,
            "textLength": self.text_length,
        }

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> ResponseSummary:
        return cls(
            finish_reason=data.get("finishReason"),  # type: ignore[arg-type]
            has_warnings=bool(data.get("hasWarnings", False)),
            text_length=int(data.get("textLength", 0) or 0),  # type: ignore[arg-type]
        )


def classify(response: GenerateResult | None) -> ResponseClass:
    """Partition *response* into exactly one :class:`ResponseClass`."""
    if response is None or not response.text:
        return ResponseClass.ERROR_ONLY
    if response.finish_reason == FinishReason.ERROR:
        return ResponseClass.ERROR_ONLY
    if response.finish_reason in _SUSPECT_REASONS or response.warnings:
        return ResponseClass.PROBLEMATIC
    return ResponseClass.SUCCESSFUL


def summarize(response: GenerateResult) -> ResponseSummary:
    return ResponseSummary(
        finish_reason=response.finish_reason,
        has_warnings=bool(response.warnings),
        text_length=len(response.text or ""),
    )
