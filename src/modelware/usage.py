"""Token usage tracking and quota enforcement middleware."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any

from .exceptions import QuotaExceededError
from .middleware import Middleware
from .quota import QuotaCache, QuotaCheckResult, TokenUsage, check_quota, estimate_tokens
from .stateful import StatefulMiddleware, wrap_stateful
from .stream import TappedStream
from .types import FINISH, TEXT_DELTA, GenerateResult, StreamPart, StreamResult

logger = logging.getLogger(__name__)

TOKEN_USAGE_MIDDLEWARE_ID = "token-usage-tracking"

UsageRecorder = Callable[[str, str, TokenUsage], Awaitable[None]]


def resolve_provider_and_model(
    model: Any,
    provider: str | None = None,
    model_name: str | None = None,
) -> tuple[str, str]:
    """Work out which provider/model pair a call is billed against.

    Explicit values win, then the model's ``provider`` / ``model_id``, then a
    ``provider:model`` split of the model id.
    """
    if provider and model_name:
        return provider, model_name
    model_provider = getattr(model, "provider", None)
    model_id = getattr(model, "model_id", None) or "unknown"
    if model_provider and model_id != "unknown":
        return model_provider, model_id
    if ":" in model_id:
        head, _, tail = model_id.partition(":")
        return head, tail
    return "unknown", model_id


class TokenUsageMiddleware(Middleware):
    """Check quotas before a call and record token usage after it.

    Parameters
    ----------
    quotas:
        Quota lookup.  Lookup failures never block a request.
    recorder:
        Optional persistence hook, awaited after every call that reported
        usage.  Failures are logged and ignored.
    enforce_quota:
        When ``True`` a failed quota check raises
        :class:`~modelware.exceptions.QuotaExceededError`; otherwise it is
        only logged.
    provider, model_name:
        Override the provider/model pair the usage is billed against.

    Running totals per ``provider:model`` are kept in memory and exported
    through :meth:`serialize_state`, so they survive a state snapshot.
    """

    def __init__(
        self,
        quotas: QuotaCache | None = None,
        recorder: UsageRecorder | None = None,
        enforce_quota: bool = False,
        provider: str | None = None,
        model_name: str | None = None,
    ) -> None:
        self._quotas = quotas
        self._recorder = recorder
        self._enforce_quota = enforce_quota
        self._provider = provider
        self._model_name = model_name
        self._totals: dict[str, TokenUsage] = {}

    @property
    def totals(self) -> dict[str, TokenUsage]:
        return dict(self._totals)

    def usage_for(self, provider: str, model_name: str) -> TokenUsage:
        return self._totals.get(f"{provider}:{model_name}", TokenUsage())

    # -- State protocol --------------------------------------------------------

    def serialize_state(self) -> dict[str, Any]:
        return {"totals": {key: usage.to_dict() for key, usage in self._totals.items()}}

    def deserialize_state(self, state: dict[str, Any]) -> None:
        totals = (state or {}).get("totals", {})
        self._totals = {key: TokenUsage.from_dict(value) for key, value in totals.items()}

    # -- Middleware hooks ------------------------------------------------------

    async def wrap_generate(self, do_generate, params, *, model):
        provider, model_name = resolve_provider_and_model(model, self._provider, self._model_name)
        await self._check(provider, model_name, estimate_tokens(params.prompt_text()))

        result: GenerateResult = await do_generate()
        if result.usage:
            await self._record(provider, model_name, TokenUsage.from_usage(result.usage))
        return result

    async def wrap_stream(self, do_stream, params, *, model):
        provider, model_name = resolve_provider_and_model(model, self._provider, self._model_name)
        estimated = estimate_tokens(params.prompt_text())
        await self._check(provider, model_name, estimated)

        live: StreamResult = await do_stream()
        text: list[str] = []
        seen = {"finished": False, "usage": None}

        def on_part(part: StreamPart) -> None:
            if part.type == TEXT_DELTA:
                text.append(part.text_delta)
            elif part.type == FINISH:
                seen["finished"] = True
                seen["usage"] = part.usage

        async def on_complete() -> None:
            generated = "".join(text)
            if not seen["finished"] and not generated:
                return
            usage = TokenUsage.from_usage(seen["usage"])
            prompt = usage.prompt_tokens or estimated
            completion = usage.completion_tokens or estimate_tokens(generated)
            if prompt + completion > 0:
                await self._record(provider, model_name, TokenUsage(prompt, completion, prompt + completion))

        return StreamResult(
            stream=TappedStream(live.stream, on_part=on_part, on_complete=on_complete),
            warnings=live.warnings,
            raw_call=live.raw_call,
            raw_response=live.raw_response,
        )

    # -- Internal helpers ------------------------------------------------------

    async def _check(self, provider: str, model_name: str, estimated: int) -> QuotaCheckResult:
        if self._quotas is None:
            return QuotaCheckResult(allowed=True)
        try:
            quota = await self._quotas.get(provider, model_name)
        except Exception:
            logger.exception("Quota lookup failed for %s:%s, allowing request", provider, model_name)
            return QuotaCheckResult(allowed=True, reason="Quota check failed, allowing request")

        result = check_quota(quota, estimated, self.usage_for(provider, model_name))
        if result.allowed:
            logger.debug("Quota check passed for %s:%s (%d estimated tokens)", provider, model_name, estimated)
            return result

        logger.warning("Request failed quota check for %s:%s: %s", provider, model_name, result.reason)
        if self._enforce_quota:
            raise QuotaExceededError(result, result.reason or "limit reached")
        return result

    async def _record(self, provider: str, model_name: str, usage: TokenUsage) -> None:
        key = f"{provider}:{model_name}"
        self._totals[key] = self._totals.get(key, TokenUsage()) + usage
        logger.debug("Token usage for %s: %s", key, usage)
        if self._recorder is None:
            return
        try:
            await self._recorder(provider, model_name, usage)
        except Exception:
            logger.exception("Failed to record token usage for %s", key)


def token_usage_middleware(**kwargs: Any) -> StatefulMiddleware:
    """A :class:`TokenUsageMiddleware` ready to take part in state snapshots."""
    return wrap_stateful(TOKEN_USAGE_MIDDLEWARE_ID, TokenUsageMiddleware(**kwargs))
