"""Tests for CacheConfig validation and environment loading."""

from __future__ import annotations

import pytest

from modelware.config import _ENV_VARS, CacheConfig, JailPolicy


class TestValidation:
    def test_defaults(self):
        config = CacheConfig()
        assert config.cache_key_prefix == "ai-cache"
        assert config.jail_threshold == 3
        assert config.jail_policy is JailPolicy.KEEP_COUNTING
        assert config.redis_url is None

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"cache_key_prefix": ""},
            {"cache_key_prefix": "same", "jail_key_prefix": "same"},
            {"cache_ttl_seconds": 0},
            {"jail_ttl_seconds": -1},
            {"jail_threshold": 0},
            {"stream_chunk_size": 0},
            {"max_key_log_length": 0},
        ],
    )
    def test_invalid_values_rejected(self, kwargs):
        with pytest.raises(ValueError):
            CacheConfig(**kwargs)

    def test_policy_accepts_string(self):
        assert CacheConfig(jail_policy="reset_on_promotion").jail_policy is JailPolicy.RESET_ON_PROMOTION

    def test_short_key(self):
        assert CacheConfig(max_key_log_length=5).short_key("ai-cache:abcdef") == "ai-ca"


class TestFromEnv:
    def test_unset_keeps_defaults(self, monkeypatch):
        for var in _ENV_VARS.values():
            monkeypatch.delenv(var, raising=False)
        assert CacheConfig.from_env() == CacheConfig()

    def test_reads_variables(self, monkeypatch):
        monkeypatch.setenv("AI_CACHE_KEY_PREFIX", "app-cache")
        monkeypatch.setenv("AI_CACHE_TTL", "60")
        monkeypatch.setenv("AI_CACHE_JAIL_THRESHOLD", "5")
        monkeypatch.setenv("AI_CACHE_ENABLE_LOGGING", "off")
        monkeypatch.setenv("AI_CACHE_ENABLE_METRICS", "Yes")
        monkeypatch.setenv("AI_CACHE_JAIL_POLICY", "RESET_ON_PROMOTION")
        monkeypatch.setenv("REDIS_URL", "redis://localhost:6379/0")

        config = CacheConfig.from_env()

        assert config.cache_key_prefix == "app-cache"
        assert config.cache_ttl_seconds == 60
        assert config.jail_threshold == 5
        assert config.enable_logging is False
        assert config.enable_metrics is True
        assert config.jail_policy is JailPolicy.RESET_ON_PROMOTION
        assert config.redis_url == "redis://localhost:6379/0"

    def test_blank_values_are_ignored(self, monkeypatch):
        monkeypatch.setenv("AI_CACHE_TTL", "  ")
        assert CacheConfig.from_env().cache_ttl_seconds == 86_400

    def test_bad_integer(self, monkeypatch):
        monkeypatch.setenv("AI_CACHE_TTL", "soon")
        with pytest.raises(ValueError, match="AI_CACHE_TTL"):
            CacheConfig.from_env()

    def test_bad_boolean(self, monkeypatch):
        monkeypatch.setenv("AI_CACHE_ENABLE_LOGGING", "maybe")
        with pytest.raises(ValueError, match="AI_CACHE_ENABLE_LOGGING"):
            CacheConfig.from_env()

    def test_env_file(self, monkeypatch, tmp_path):
        monkeypatch.setenv("AI_CACHE_JAIL_TTL", "")
        monkeypatch.delenv("AI_CACHE_JAIL_TTL")
        env_file = tmp_path / ".env"
        env_file.write_text("AI_CACHE_JAIL_TTL=120\n")

        config = CacheConfig.from_env(env_file)

        assert config.jail_ttl_seconds == 120
