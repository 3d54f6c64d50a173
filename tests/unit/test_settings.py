"""Unit Tests for settings and logging configuration."""

import logging

import pytest

from ai_gateway.settings import GatewaySettings
from config.logging_config import SensitiveDataFilter, mask_sensitive


class TestGatewaySettings:

    def test_development_mode_refused_in_production(self):
        with pytest.raises(RuntimeError, match="DEVELOPMENT_MODE"):
            GatewaySettings(development_mode=True, environment="production")

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-ant-env-key-123456")
        monkeypatch.setenv("ANTHROPIC_MODEL_DEFAULT", "claude-3-haiku-20240307")
        monkeypatch.setenv("DEVELOPMENT_MODE", "true")
        monkeypatch.setenv("ENVIRONMENT", "development")
        monkeypatch.setenv("CORS_ORIGINS", '["https://app.example.org"]')
        monkeypatch.setenv("USAGE_QUEUE_SIZE", "25")
        monkeypatch.setenv("RATE_LIMIT_STORAGE_URI", "memory://")

        settings = GatewaySettings.from_env()

        assert settings.has_api_key
        assert settings.default_model == "claude-3-haiku-20240307"
        assert settings.development_mode
        assert settings.cors_origins == ("https://app.example.org",)
        assert settings.usage_queue_size == 25
        assert settings.rate_limit_storage_uri == "memory://"

    def test_from_env_refuses_dev_mode_in_production(self, monkeypatch):
        monkeypatch.setenv("DEVELOPMENT_MODE", "1")
        monkeypatch.setenv("ENVIRONMENT", "production")
        with pytest.raises(RuntimeError):
            GatewaySettings.from_env()

    def test_missing_key(self, monkeypatch):
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
        monkeypatch.delenv("DEVELOPMENT_MODE", raising=False)
        monkeypatch.delenv("ENVIRONMENT", raising=False)
        assert not GatewaySettings.from_env().has_api_key

    def test_settings_are_frozen(self):
        settings = GatewaySettings()
        with pytest.raises(AttributeError):
            settings.anthropic_api_key = "changed"


class TestSensitiveDataFilter:

    @pytest.mark.parametrize("text,secret", [
        ("key=sk-ant-api03-abcdefghijkl", "sk-ant-api03-abcdefghijkl"),
        ("Authorization: Bearer abc.def.ghi", "abc.def.ghi"),
        ("token eyJhbGciOi.eyJzdWIiOi.c2lnbmF0dXJl", "eyJhbGciOi.eyJzdWIiOi.c2lnbmF0dXJl"),
        ("{'x-api-key': 'plainsecret'}", "plainsecret"),
    ])
    def test_mask(self, text, secret):
        assert secret not in mask_sensitive(text)

    def test_filter_rewrites_record(self):
        record = logging.LogRecord(
            "test", logging.INFO, __file__, 1, "calling with %s", ("sk-ant-api03-abcdefghijkl",), None
        )
        assert SensitiveDataFilter().filter(record)
        assert "sk-ant-api03-abcdefghijkl" not in record.getMessage()
