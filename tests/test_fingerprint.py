"""Tests for cache key derivation."""

from __future__ import annotations

import hashlib

import pytest

from modelware.exceptions import InvalidKeyError, KeyDerivationError
from modelware.fingerprint import canonicalize, fingerprint, jail_key, normalize_for_key
from modelware.types import GenerateParams

# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------


class TestNormalizeForKey:
    def test_booleans_are_kept(self):
        assert normalize_for_key(True) == "true"
        assert normalize_for_key(False) == "false"

    def test_empty_values_are_dropped(self):
        assert normalize_for_key(None) is None
        assert normalize_for_key("") is None
        assert normalize_for_key([]) is None
        assert normalize_for_key({}) is None

    def test_zero_is_a_value(self):
        assert normalize_for_key(0) == "0"
        assert normalize_for_key(0.0) == "0"

    def test_integral_float_matches_int(self):
        assert normalize_for_key(1.0) == normalize_for_key(1)

    def test_callables_are_dropped(self):
        assert normalize_for_key(lambda: 1) is None
        assert normalize_for_key({"fn": print}) is None

    def test_mapping_entries_sorted(self):
        assert normalize_for_key({"b": 1, "a": 2}) == normalize_for_key({"a": 2, "b": 1})

    def test_sequence_elements_sorted(self):
        assert normalize_for_key(["b", "a"]) == normalize_for_key(["a", "b"])

    def test_dropped_entries_are_omitted(self):
        assert normalize_for_key({"a": 1, "b": None, "c": ""}) == normalize_for_key({"a": 1})

    def test_unsupported_type_raises(self):
        with pytest.raises(KeyDerivationError):
            normalize_for_key(object())


# ---------------------------------------------------------------------------
# Fingerprint
# ---------------------------------------------------------------------------


class TestFingerprint:
    def test_format(self):
        key = fingerprint({"prompt": "hi"}, "m")
        prefix, digest = key.split(":")
        assert prefix == "ai-cache"
        assert len(digest) == 64
        assert digest == hashlib.sha256(canonicalize({"prompt": "hi"}, "m").encode()).hexdigest()

    def test_custom_prefix(self):
        assert fingerprint({"prompt": "hi"}, "m", prefix="x").startswith("x:")

    def test_key_order_does_not_matter(self):
        p1 = {"temperature": 0.5, "prompt": [{"role": "user", "content": "hi"}]}
        p2 = {"prompt": [{"content": "hi", "role": "user"}], "temperature": 0.5}
        assert fingerprint(p1, "m") == fingerprint(p2, "m")

    def test_whitespace_does_not_matter(self):
        assert fingerprint({"prompt": "hello world"}, "m") == fingerprint({"prompt": "hello  world\n"}, "m")

    def test_extra_none_fields_do_not_matter(self):
        assert fingerprint({"prompt": "hi", "seed": None}, "m") == fingerprint({"prompt": "hi"}, "m")

    def test_generate_params_match_equivalent_mapping(self):
        params = GenerateParams(prompt=[{"role": "user", "content": "hi"}], temperature=0.2)
        mapping = {"prompt": [{"role": "user", "content": "hi"}], "temperature": 0.2}
        assert fingerprint(params, "m") == fingerprint(mapping, "m")

    def test_model_id_is_part_of_key(self):
        assert fingerprint({"prompt": "hi"}, "a") != fingerprint({"prompt": "hi"}, "b")

    def test_missing_model_id_is_unknown(self):
        assert fingerprint({"prompt": "hi"}) == fingerprint({"prompt": "hi"}, "unknown")

    def test_different_values_differ(self):
        assert fingerprint({"temperature": 0}, "m") != fingerprint({"temperature": 1}, "m")

    def test_zero_temperature_differs_from_unset(self):
        assert fingerprint({"prompt": "hi", "temperature": 0}, "m") != fingerprint({"prompt": "hi"}, "m")

    def test_unsupported_value_raises_invalid_key(self):
        with pytest.raises(InvalidKeyError):
            fingerprint({"prompt": object()}, "m")


class TestJailKey:
    def test_shares_hash_with_cache_key(self):
        key = fingerprint({"prompt": "hi"}, "m")
        jailed = jail_key(key, "ai-cache", "ai-jail")
        assert jailed == "ai-jail:" + key.split(":", 1)[1]
