"""Tests for configuration loading and secret references."""

from __future__ import annotations

from pathlib import Path

import pytest

from codex_review.config import (
    DEFAULT_TIMEOUT_MS,
    CodexReviewConfig,
    load_config,
    read_timeout_ms,
)
from codex_review.models import EffortLevel, InvocationRequest
from codex_review.secrets import EnvSecretsProvider


class TestSecrets:
    def test_env_provider_resolves_reference(self):
        provider = EnvSecretsProvider({"OPENAI_API_KEY": "sk-1"})
        assert provider.supports("env:OPENAI_API_KEY")
        assert provider.get("env:OPENAI_API_KEY") == "sk-1"

    def test_env_provider_ignores_other_schemes(self):
        provider = EnvSecretsProvider({"OPENAI_API_KEY": "sk-1"})
        assert not provider.supports("keyring:openai/default")
        assert provider.get("keyring:openai/default") is None

    def test_empty_value_is_unset(self):
        assert EnvSecretsProvider({"OPENAI_API_KEY": ""}).get("env:OPENAI_API_KEY") is None


class TestLoadConfig:
    def test_defaults(self):
        config = load_config({})
        assert config == CodexReviewConfig()
        assert not config.has_api_key

    def test_reads_environment(self):
        config = load_config(
            {
                "OPENAI_API_KEY": "sk-live",
                "CODEX_REVIEW_EXECUTABLE": "/opt/codex/bin/codex",
                "CODEX_REVIEW_DEFAULT_MODEL": "o3",
                "CODEX_REVIEW_TIMEOUT_MS": "60000",
                "CODEX_REVIEW_MAX_OUTPUT_BYTES": "1048576",
                "CODEX_REVIEW_AUDIT_LOG": "/tmp/codex-review/audit.log",
            }
        )
        assert config.api_key == "sk-live"
        assert config.executable == "/opt/codex/bin/codex"
        assert config.default_model == "o3"
        assert config.timeout_ms == 60000
        assert config.max_output_bytes == 1048576
        assert config.audit_log == Path("/tmp/codex-review/audit.log")

    def test_api_key_not_in_repr(self):
        assert "sk-live" not in repr(load_config({"OPENAI_API_KEY": "sk-live"}))

    def test_custom_secret_reference(self):
        config = load_config({"MY_KEY": "sk-other"}, api_key_ref="env:MY_KEY")
        assert config.api_key == "sk-other"


class TestTimeout:
    @pytest.mark.parametrize("raw", ["", "abc", "0", "-5", "1.5"])
    def test_invalid_falls_back_to_default(self, raw):
        assert read_timeout_ms({"CODEX_REVIEW_TIMEOUT_MS": raw}) == DEFAULT_TIMEOUT_MS

    def test_valid_override(self):
        assert read_timeout_ms({"CODEX_REVIEW_TIMEOUT_MS": " 1500 "}) == 1500

    def test_custom_default(self):
        assert read_timeout_ms({}, default=42) == 42


class TestInvocationRequest:
    def test_rejects_non_positive_timeout(self):
        with pytest.raises(ValueError):
            InvocationRequest(payload="p", command_selector="m", timeout_override_ms=0)

    def test_is_immutable(self):
        request = InvocationRequest(payload="p", command_selector="m", effort_level=EffortLevel.LOW)
        with pytest.raises(AttributeError):
            request.payload = "changed"
