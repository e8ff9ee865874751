"""modelware: caching and stateful middleware for language-model calls.

Put any model behind a chain of middleware that can short-circuit calls with
cached answers, hold back suspicious responses until they repeat, track
token usage, record chat history, and snapshot or restore the state of the
whole chain.

Basic usage::

    from openai import AsyncOpenAI
    from modelware import CacheConfig, GenerateParams, ModelwareServices, OpenAIChatModel, wrap_model

    services = ModelwareServices.from_config(CacheConfig.from_env())
    await services.init()
    model = wrap_model(
        OpenAIChatModel(AsyncOpenAI(), "gpt-4.1-mini"),
        [services.caching_middleware()],
    )
    result = await model.do_generate(
        GenerateParams(prompt=[{"role": "user", "content": "Hello"}])
    )
    print(result.text)
"""

from .caching import CachedResponse, CachingMiddleware
from .classify import ResponseClass, classify
from .client import LanguageModel, OpenAIChatModel
from .config import CacheConfig, JailPolicy
from .exceptions import (
    InvalidKeyError,
    KeyDerivationError,
    ModelwareError,
    ProtocolMismatchError,
    QuotaExceededError,
    SerializationError,
    StoreUnavailableError,
)
from .fingerprint import fingerprint
from .history import (
    ChatHistoryMiddleware,
    ChatTurn,
    HistoryMessage,
    HistoryRecorder,
    MemoryHistoryRecorder,
    chat_history_middleware,
)
from .jail import JailEntry, JailLedger
from .metrics import CacheObserver, MetricsCollector
from .middleware import Middleware, PlainLink, WrappedModel, wrap_model
from .protocol import ProtocolContext, is_collection_request, is_restoration_request
from .quota import ModelQuota, QuotaCache, QuotaCheckResult, TokenUsage
from .services import ModelwareServices
from .state_manager import StateManager, StateSnapshot
from .stateful import SerializableMiddleware, StatefulMiddleware, wrap_stateful
from .store import CacheStore, MemoryCacheStore, RedisCacheStore
from .stream import ReplayStream, TappedStream
from .types import FinishReason, GenerateParams, GenerateResult, StreamPart, StreamResult
from .usage import TokenUsageMiddleware, token_usage_middleware

__all__ = [
    "wrap_model",
    "WrappedModel",
    "Middleware",
    "PlainLink",
    "CachingMiddleware",
    "CachedResponse",
    "CacheConfig",
    "JailPolicy",
    "CacheStore",
    "MemoryCacheStore",
    "RedisCacheStore",
    "JailEntry",
    "JailLedger",
    "ReplayStream",
    "TappedStream",
    "ResponseClass",
    "classify",
    "fingerprint",
    "CacheObserver",
    "MetricsCollector",
    "ProtocolContext",
    "is_collection_request",
    "is_restoration_request",
    "SerializableMiddleware",
    "StatefulMiddleware",
    "wrap_stateful",
    "StateManager",
    "StateSnapshot",
    "ModelQuota",
    "QuotaCache",
    "QuotaCheckResult",
    "TokenUsage",
    "TokenUsageMiddleware",
    "token_usage_middleware",
    "ChatHistoryMiddleware",
    "ChatTurn",
    "HistoryMessage",
    "HistoryRecorder",
    "MemoryHistoryRecorder",
    "chat_history_middleware",
    "LanguageModel",
    "OpenAIChatModel",
    "ModelwareServices",
    "FinishReason",
    "GenerateParams",
    "GenerateResult",
    "StreamPart",
    "StreamResult",
    "ModelwareError",
    "KeyDerivationError",
    "InvalidKeyError",
    "StoreUnavailableError",
    "ProtocolMismatchError",
    "SerializationError",
    "QuotaExceededError",
]

__version__ = "0.1.0"
