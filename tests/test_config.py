"""Tests for settings and the frozen gateway config built from them."""

import pytest

from app.core.config import Settings, build_gateway_config, settings, validate_settings_for_production
from app.gateway.types import Provider


def test_groq_key_accepts_legacy_name(monkeypatch):
    monkeypatch.delenv("GROQ_API_KEY", raising=False)
    monkeypatch.setenv("GROK_API_KEY", "legacy-key")
    assert Settings(_env_file=None).groq_api_key == "legacy-key"


def test_build_gateway_config(monkeypatch):
    for name in ("OPENAI_API_KEY", "GROQ_API_KEY", "GROK_API_KEY"):
        monkeypatch.delenv(name, raising=False)
    source = Settings(
        _env_file=None,
        openai_api_key="sk-test",
        groq_api_key="",
        fireworks_api_key="",
        perplexity_api_key="",
        retry_max_attempts=5,
        retry_base_delay_seconds=1.5,
    )
    config = build_gateway_config(source)

    assert config.api_key(Provider.OPENAI) == "sk-test"
    assert config.api_key(Provider.GROQ) == ""
    assert config.retry.max_attempts == 5
    assert config.retry.base_delay_seconds == 1.5
    with pytest.raises(TypeError):
        config.api_keys[Provider.GROQ] = "mutated"


def test_production_rejects_wildcard_origin(monkeypatch):
    monkeypatch.setattr(settings, "app_env", "production")
    monkeypatch.setattr(settings, "allowed_origins", "*")
    monkeypatch.setattr(settings, "app_debug", False)

    with pytest.raises(SystemExit) as exc_info:
        validate_settings_for_production()
    assert "ALLOWED_ORIGINS" in str(exc_info.value)


def test_missing_keys_only_warn(monkeypatch, caplog):
    monkeypatch.setattr(settings, "app_env", "development")
    monkeypatch.setattr(settings, "openai_api_key", "")

    validate_settings_for_production()

    assert "OPENAI_API_KEY" in caplog.text
