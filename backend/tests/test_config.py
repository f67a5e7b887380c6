"""Tests for Settings defaults and environment overrides."""

from __future__ import annotations

from config import DEFAULT_JWT_SECRET, Settings


def test_defaults(monkeypatch):
    for name in ("PORT", "JWT_SECRET", "RATE_LIMIT_REQUESTS", "RATE_LIMIT_WINDOW_SECONDS", "OPENAI_MODEL"):
        monkeypatch.delenv(name, raising=False)
    s = Settings(_env_file=None)
    assert s.PORT == 5000
    assert s.JWT_SECRET == DEFAULT_JWT_SECRET
    assert s.JWT_EXPIRE_DAYS == 7
    assert s.RATE_LIMIT_REQUESTS == 100
    assert s.RATE_LIMIT_WINDOW_SECONDS == 900
    assert s.OPENAI_MODEL == "gpt-3.5-turbo"


def test_env_override(monkeypatch):
    monkeypatch.setenv("PORT", "8080")
    monkeypatch.setenv("RATE_LIMIT_REQUESTS", "5")
    s = Settings(_env_file=None)
    assert s.PORT == 8080
    assert s.RATE_LIMIT_REQUESTS == 5


def test_is_production(monkeypatch):
    monkeypatch.setenv("APP_ENV", "Production")
    assert Settings(_env_file=None).is_production is True
    monkeypatch.setenv("APP_ENV", "development")
    assert Settings(_env_file=None).is_production is False


def test_llm_enabled_follows_api_key(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "")
    assert Settings(_env_file=None).llm_enabled is False
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    assert Settings(_env_file=None).llm_enabled is True
