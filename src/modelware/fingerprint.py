"""Deterministic, order-insensitive cache keys for model calls.

Two logically equivalent parameter sets (same keys and values, different
insertion order, extra ``None`` fields) always produce the same key.
"""

from __future__ import annotations

import dataclasses
import hashlib
import json
import math
import re
from collections.abc import Mapping
from typing import Any

from .exceptions import KeyDerivationError
from .types import GenerateParams

_STRIP = re.compile(r"[\s\\]")


def normalize_for_key(value: Any) -> str | None:
    """Canonical string form of *value*, or ``None`` if it should be dropped.

    Booleans are never dropped. ``None``, empty strings, empty containers
    and callables are. Mappings serialize as JSON sorted by key, sequences
    as JSON sorted by element.
    """
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return None
    if isinstance(value, str):
        return value or None
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if math.isnan(value):
            return None
        if value.is_integer():
            return str(int(value))
        return repr(value)
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        value = dataclasses.asdict(value)
    if isinstance(value, Mapping):
        entries: dict[str, str] = {}
        for key in sorted(value, key=str):
            normalized = normalize_for_key(value[key])
            if normalized is not None:
                entries[str(key)] = normalized
        if not entries:
            return None
        return json.dumps(entries, ensure_ascii=False)
    if isinstance(value, (list, tuple, set, frozenset)):
        items = sorted(n for n in map(normalize_for_key, value) if n is not None)
        if not items:
            return None
        return json.dumps(items, ensure_ascii=False)
    if callable(value):
        return None
    raise KeyDerivationError(f"Cannot derive a cache key from {type(value).__name__!r} value")


def canonicalize(params: GenerateParams | Mapping[str, Any], model_id: str | None = None) -> str:
    """Canonical key string (before hashing) for *params* on *model_id*."""
    if isinstance(params, GenerateParams):
        params = params.to_dict()
    key_data = {"modelId": model_id or "unknown", "params": dict(params)}
    normalized = normalize_for_key(key_data)
    if normalized is None:
        raise KeyDerivationError("Cannot create cache key from an empty value")
    canonical = _STRIP.sub("", normalized)
    if not canonical:
        raise KeyDerivationError("Canonical key string is empty")
    return canonical


def fingerprint(
    params: GenerateParams | Mapping[str, Any],
    model_id: str | None = None,
    prefix: str = "ai-cache",
) -> str:
    """Namespaced cache key ``prefix:sha256hex`` for a model call."""
    digest = hashlib.sha256(canonicalize(params, model_id).encode()).hexdigest()
    return f"{prefix}:{digest}"


def jail_key(cache_key: str, cache_prefix: str, jail_prefix: str) -> str:
    """Jail ledger key sharing the hash of *cache_key*."""
    return f"{jail_prefix}:{cache_key.removeprefix(f'{cache_prefix}:')}"
