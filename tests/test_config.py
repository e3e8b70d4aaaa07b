import pytest
from pydantic import ValidationError

from chirpy.config import (
    MIN_JWT_SECRET_LENGTH,
    Platform,
    Settings,
    get_settings,
    reset_settings_cache,
)


def test_missing_secret_rejected_outside_test_mode():
    with pytest.raises(ValidationError, match="JWT_SECRET must be set"):
        Settings(test_mode=False)


def test_short_secret_rejected_outside_test_mode():
    with pytest.raises(ValidationError, match="at least"):
        Settings(jwt_secret="x" * (MIN_JWT_SECRET_LENGTH - 1))


def test_short_secret_tolerated_in_test_mode():
    settings = Settings(jwt_secret="short", test_mode=True)

    assert settings.jwt_secret == "short"


def test_test_mode_generates_secret():
    first = Settings(test_mode=True)
    second = Settings(test_mode=True)

    assert len(first.jwt_secret) >= MIN_JWT_SECRET_LENGTH
    assert first.jwt_secret != second.jwt_secret


def test_defaults():
    settings = Settings(jwt_secret="x" * 40)

    assert settings.platform is Platform.PROD
    assert settings.is_dev is False
    assert settings.jwt_issuer == "chirpy"
    assert settings.jwt_leeway_seconds == 0
    assert settings.access_token_ttl_minutes == 60
    assert settings.refresh_token_ttl_days == 60


def test_from_env_reads_declared_names(monkeypatch):
    monkeypatch.setenv("JWT_SECRET", "y" * 48)
    monkeypatch.setenv("TEST_MODE", "false")
    monkeypatch.setenv("PLATFORM", " DEV ")
    monkeypatch.setenv("ACCESS_TOKEN_TTL_MINUTES", "15")
    monkeypatch.setenv("DB_URL", "postgresql://db.internal/chirpy")

    settings = Settings.from_env()

    assert settings.jwt_secret == "y" * 48
    assert settings.platform is Platform.DEV
    assert settings.is_dev
    assert settings.access_token_ttl_minutes == 15
    assert settings.database_url == "postgresql://db.internal/chirpy"


def test_from_env_rejects_unknown_platform(monkeypatch):
    monkeypatch.setenv("PLATFORM", "staging")

    with pytest.raises(ValidationError):
        Settings.from_env()


def test_get_settings_is_cached_until_reset(monkeypatch):
    reset_settings_cache()
    first = get_settings()
    assert get_settings() is first

    monkeypatch.setenv("ACCESS_TOKEN_TTL_MINUTES", "5")
    reset_settings_cache()

    assert get_settings().access_token_ttl_minutes == 5
