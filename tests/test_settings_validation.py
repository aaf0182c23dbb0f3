from __future__ import annotations

import pytest

from settings import Settings, settings, validate_env_settings


def make_settings(**overrides) -> Settings:
    return Settings(_env_file=None, **overrides)


def test_validate_env_allows_dev_missing(monkeypatch):
    monkeypatch.setattr(settings, "ENV", "dev", raising=False)
    monkeypatch.setattr(settings, "DATABASE_URL", "", raising=False)
    validate_env_settings()


def test_validate_env_staging_fails_on_missing():
    s = make_settings(
        ENV="staging",
        PAYOUT_STORE="postgres",
        DATABASE_URL="",
        PAYOUT_PROVIDER="http",
        PAYOUT_PROVIDER_BASE_URL="",
        PAYOUT_PROVIDER_API_KEY="",
    )
    with pytest.raises(RuntimeError) as exc:
        validate_env_settings(s)

    message = str(exc.value)
    assert "DATABASE_URL" in message
    assert "PAYOUT_PROVIDER_BASE_URL" in message
    assert "PAYOUT_PROVIDER_API_KEY" in message


def test_validate_env_staging_allows_mock_provider():
    s = make_settings(ENV="staging", PAYOUT_STORE="postgres", DATABASE_URL="postgresql://example")
    validate_env_settings(s)


def test_validate_env_prod_rejects_mock_provider():
    s = make_settings(ENV="prod", PAYOUT_STORE="postgres", DATABASE_URL="postgresql://example")
    with pytest.raises(RuntimeError) as exc:
        validate_env_settings(s)
    assert "mock provider not allowed" in str(exc.value)


def test_validate_env_prod_ok():
    s = make_settings(
        ENV="prod",
        PAYOUT_STORE="postgres",
        DATABASE_URL="postgresql://example",
        PAYOUT_PROVIDER="http",
        PAYOUT_PROVIDER_BASE_URL="https://payments.example.com",
        PAYOUT_PROVIDER_API_KEY="sk_live_x",
    )
    validate_env_settings(s)


def test_settings_read_from_env(monkeypatch):
    monkeypatch.setenv("PAYOUT_MAX_RETRIES", "5")
    monkeypatch.setenv("PAYOUT_RESERVE_PERCENTAGE", "0.1")
    s = Settings(_env_file=None)
    assert s.PAYOUT_MAX_RETRIES == 5
    assert s.PAYOUT_RESERVE_PERCENTAGE == 0.1
