"""Chat history middleware: persist every turn through a recorder.

Each call through the chain is one *turn* of a chat.  Before the provider is
called the turn is opened with the incoming prompt messages; once the
response is known (after ``generate``, or when a stream has been drained)
the turn is completed with the assistant message, any tool calls seen in the
stream, the token usage and the latency.  A provider error completes the
turn with an error status and is then re-raised.

Persistence is delegated to a :class:`HistoryRecorder`.  Recorder failures
are logged and never reach the caller.  The chat id, the last turn id and the
running message order are exported through the state protocol, so a
restored chain continues the same chat.
"""

from __future__ import annotations

import json
import logging
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from .middleware import Middleware
from .quota import TokenUsage
from .stateful import StatefulMiddleware, wrap_stateful
from .stream import TappedStream
from .types import FINISH, TEXT_DELTA, GenerateParams, GenerateResult, StreamPart, StreamResult

logger = logging.getLogger(__name__)

CHAT_HISTORY_MIDDLEWARE_ID = "chat-history"
TOOL_CALL = "tool-call"


def _now_ms() -> int:
    return int(time.time() * 1000)


class TurnStatus:
    WAITING = "waiting"
    COMPLETE = "complete"
    ERROR = "error"


@dataclass
class HistoryMessage:
    """One stored message of a turn."""

    role: str
    content: str
    order: int
    """Position within the chat, increasing across turns."""

    provider_id: str | None = None
    """Tool call id linking tool results to the call that produced them."""

    tool_name: str | None = None
    arguments: Any = None


@dataclass
class ChatTurn:
    chat_id: str
    turn_id: int
    model_name: str | None = None
    messages: list[HistoryMessage] = field(default_factory=list)
    status: str = TurnStatus.WAITING
    started_at: int = 0
    completed_at: int | None = None
    latency_ms: int = 0
    usage: TokenUsage | None = None
    errors: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def generated_text(self) -> str:
        return "".join(m.content for m in self.messages if m.role == "assistant")


@runtime_checkable
class HistoryRecorder(Protocol):
    """Persistence for chat turns (usually a database)."""

    async def begin_turn(self, turn: ChatTurn) -> None:
        """Store a new turn and its prompt messages."""
        ...

    async def complete_turn(self, turn: ChatTurn) -> None:
        """Store the final state of *turn* (complete or error)."""
        ...


def suggest_title(text: str, words: int = 6, max_length: int = 100) -> str:
    """First few words of *text*, used to name a chat."""
    return " ".join(text.split()[:words])[:max_length]


class MemoryHistoryRecorder:
    """Keeps chats in process memory; titles come from the first answer."""

    def __init__(self) -> None:
        self.turns: dict[str, list[ChatTurn]] = {}
        self.titles: dict[str, str] = {}

    async def begin_turn(self, turn: ChatTurn) -> None:
        self.turns.setdefault(turn.chat_id, []).append(turn)

    async def complete_turn(self, turn: ChatTurn) -> None:
        text = turn.generated_text
        if turn.status == TurnStatus.COMPLETE and text and turn.chat_id not in self.titles:
            self.titles[turn.chat_id] = suggest_title(text)

    def messages(self, chat_id: str) -> list[HistoryMessage]:
        return [m for turn in self.turns.get(chat_id, []) for m in turn.messages]


def _content_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    return json.dumps(content, default=str)


def _provider_id(message: dict[str, Any]) -> str | None:
    content = message.get("content")
    if not isinstance(content, list):
        return None
    # Only the first tool call of a message is linked.
    if message.get("role") == "tool" and content:
        first = content[0]
        return first.get("toolCallId") if isinstance(first, dict) else None
    if message.get("role") == "assistant":
        for part in content:
            if isinstance(part, dict) and part.get("type") == TOOL_CALL:
                return part.get("toolCallId")
    return None


class ChatHistoryMiddleware(Middleware):
    """Record each call through the chain as one turn of a chat.

    Parameters
    ----------
    recorder:
        Where turns are persisted.
    chat_id:
        Chat to append to; a new id is generated when omitted.
    user_id, session_id:
        Stored in every turn's metadata.
    clock:
        Millisecond wall clock, replaceable in tests.
    """

    def __init__(
        self,
        recorder: HistoryRecorder,
        chat_id: str | None = None,
        user_id: str | None = None,
        session_id: str | None = None,
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        self._recorder = recorder
        self._chat_id = chat_id or uuid.uuid4().hex
        self._user_id = user_id
        self._session_id = session_id
        self._clock = clock
        self._turn_id = 0
        self._message_order = 0

    @property
    def chat_id(self) -> str:
        return self._chat_id

    @property
    def turn_id(self) -> int:
        return self._turn_id

    # -- State protocol --------------------------------------------------------

    def serialize_state(self) -> dict[str, Any]:
        return {"chatId": self._chat_id, "turnId": self._turn_id, "messageOrder": self._message_order}

    def deserialize_state(self, state: dict[str, Any]) -> None:
        state = state or {}
        self._chat_id = state.get("chatId") or self._chat_id
        self._turn_id = int(state.get("turnId", 0))
        self._message_order = int(state.get("messageOrder", 0))

    # -- Middleware hooks ------------------------------------------------------

    async def wrap_generate(self, do_generate, params, *, model):
        turn = await self._begin(params, model)
        try:
            result: GenerateResult = await do_generate()
        except Exception as exc:
            await self._fail(turn, exc)
            raise
        self._add_message(turn, "assistant", result.text or "")
        await self._complete(turn, TokenUsage.from_usage(result.usage) if result.usage else None)
        return result

    async def wrap_stream(self, do_stream, params, *, model):
        turn = await self._begin(params, model)
        try:
            live: StreamResult = await do_stream()
        except Exception as exc:
            await self._fail(turn, exc)
            raise

        text: list[str] = []
        tool_calls: list[StreamPart] = []
        seen: dict[str, Any] = {"usage": None}

        def on_part(part: StreamPart) -> None:
            if part.type == TEXT_DELTA:
                text.append(part.text_delta)
            elif part.type == TOOL_CALL:
                tool_calls.append(part)
            elif part.type == FINISH:
                seen["usage"] = part.usage

        async def on_complete() -> None:
            self._add_message(turn, "assistant", "".join(text))
            for part in tool_calls:
                self._add_message(
                    turn,
                    "tool",
                    "",
                    provider_id=part.data.get("toolCallId"),
                    tool_name=part.data.get("toolName"),
                    arguments=part.data.get("args"),
                )
            await self._complete(turn, TokenUsage.from_usage(seen["usage"]) if seen["usage"] else None)

        return StreamResult(
            stream=TappedStream(live.stream, on_part=on_part, on_complete=on_complete),
            warnings=live.warnings,
            raw_call=live.raw_call,
            raw_response=live.raw_response,
        )

    # -- Internal helpers ------------------------------------------------------

    def _add_message(self, turn: ChatTurn, role: str, content: str, **extra: Any) -> None:
        turn.messages.append(HistoryMessage(role=role, content=content, order=self._message_order, **extra))
        self._message_order += 1

    async def _begin(self, params: GenerateParams, model: Any) -> ChatTurn:
        self._turn_id += 1
        turn = ChatTurn(
            chat_id=self._chat_id,
            turn_id=self._turn_id,
            model_name=getattr(model, "model_id", None),
            started_at=self._clock(),
            metadata={
                "userId": self._user_id,
                "sessionId": self._session_id,
                "temperature": params.temperature,
                "topP": params.top_p,
            },
        )
        for message in params.prompt:
            self._add_message(
                turn,
                message.get("role", "user"),
                _content_text(message.get("content")),
                provider_id=_provider_id(message),
            )
        logger.debug("Initializing storage for chat [%s] turn [%d]", turn.chat_id, turn.turn_id)
        try:
            await self._recorder.begin_turn(turn)
        except Exception:
            logger.exception("Failed to record start of chat %s turn %d", turn.chat_id, turn.turn_id)
        return turn

    async def _complete(self, turn: ChatTurn, usage: TokenUsage | None) -> None:
        turn.status = TurnStatus.COMPLETE
        turn.usage = usage
        self._finish(turn)
        try:
            await self._recorder.complete_turn(turn)
        except Exception:
            logger.exception("Failed to record completion of chat %s turn %d", turn.chat_id, turn.turn_id)
            return
        logger.info(
            "Chat turn completed (chat=%s, turn=%d, latency_ms=%d, generated_text_length=%d)",
            turn.chat_id,
            turn.turn_id,
            turn.latency_ms,
            len(turn.generated_text),
        )

    async def _fail(self, turn: ChatTurn, exc: BaseException) -> None:
        turn.status = TurnStatus.ERROR
        turn.errors.append(str(exc))
        self._finish(turn)
        try:
            await self._recorder.complete_turn(turn)
        except Exception:
            logger.exception("Failed to record error status of chat %s turn %d", turn.chat_id, turn.turn_id)

    def _finish(self, turn: ChatTurn) -> None:
        turn.completed_at = self._clock()
        turn.latency_ms = max(0, turn.completed_at - turn.started_at)


def chat_history_middleware(recorder: HistoryRecorder, **kwargs: Any) -> StatefulMiddleware:
    """A :class:`ChatHistoryMiddleware` ready to take part in state snapshots."""
    return wrap_stateful(CHAT_HISTORY_MIDDLEWARE_ID, ChatHistoryMiddleware(recorder, **kwargs))
