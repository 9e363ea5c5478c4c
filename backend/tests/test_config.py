"""Tests for settings and the resilience YAML configuration."""

import logging

import pytest
from pydantic import ValidationError

from signal_hub.config import Settings, configure_logging
from signal_hub.resilience_config import (
    DEFAULT_API_RATES,
    ApiPolicy,
    ResilienceConfig,
    load_resilience_config,
)


class TestResilienceConfig:
    """Tests for resilience.yaml loading."""

    def test_missing_file_uses_builtin_table(self, tmp_path):
        config = load_resilience_config(tmp_path / "missing.yaml")
        assert set(config.apis) == set(DEFAULT_API_RATES)
        assert config.policy_for("fred").requests_per_minute == 120
        assert config.policy_for("alphavantage").requests_per_minute == 25

    def test_yaml_overrides(self, tmp_path):
        path = tmp_path / "resilience.yaml"
        path.write_text(
            "default:\n"
            "  requests_per_minute: 30\n"
            "apis:\n"
            "  fred:\n"
            "    requests_per_minute: 10\n"
            "    burst_size: 5\n"
            "    retry:\n"
            "      max_retries: 1\n"
            "      initial_delay: 0.25\n"
        )

        config = load_resilience_config(path)

        fred = config.policy_for("fred")
        assert fred.requests_per_minute == 10
        assert fred.burst_size == 5
        assert fred.retry.max_retries == 1
        assert fred.retry.initial_delay == 0.25
        # apis replaces the built-in table
        assert config.policy_for("polygon").requests_per_minute == 30

    def test_empty_file_uses_defaults(self, tmp_path):
        path = tmp_path / "resilience.yaml"
        path.write_text("")
        config = load_resilience_config(path)
        assert config.default.requests_per_minute == 60

    def test_shipped_file_loads(self):
        config = load_resilience_config()
        assert config.policy_for("fred").retry.max_retries == 5
        assert config.policy_for("coingecko").burst_size == 10
        assert config.policy_for("unlisted").requests_per_minute == 60

    def test_rejects_oversized_burst(self):
        with pytest.raises(ValidationError):
            ResilienceConfig(apis={"fmp": ApiPolicy(requests_per_minute=1, burst_size=100)})

    def test_rejects_non_positive_rate(self):
        with pytest.raises(ValidationError):
            ApiPolicy(requests_per_minute=0)


class TestSettings:
    """Tests for environment-driven settings."""

    def test_defaults(self):
        settings = Settings(_env_file=None)
        assert settings.max_concurrent_engines == 8
        assert settings.cache_timeout == 30.0
        assert settings.max_cache_size == 1000
        assert settings.health_warning_threshold == 0.8
        assert settings.health_critical_threshold == 0.7
        assert settings.validation_threshold == 0.8

    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("SIGNAL_HUB_MAX_CACHE_SIZE", "5")
        monkeypatch.setenv("SIGNAL_HUB_ENABLE_TRANSFORMATIONS", "false")
        settings = Settings(_env_file=None)
        assert settings.max_cache_size == 5
        assert settings.enable_transformations is False

    def test_configure_logging_quiets_http_client(self):
        configure_logging("DEBUG")
        assert logging.getLogger("httpx").level == logging.WARNING
