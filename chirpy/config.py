from __future__ import annotations

import os
import secrets
from enum import Enum
from typing import Any

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from chirpy.logging import get_logger

logger = get_logger(__name__)

# Shortest shared signing secret accepted outside TEST_MODE
MIN_JWT_SECRET_LENGTH = 32


class Platform(str, Enum):
    """Deployment platform; only ``dev`` exposes the destructive admin reset."""

    DEV = "dev"
    PROD = "prod"


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


def default_parallelism() -> int:
    return max(1, os.cpu_count() or 1)


class Settings(BaseModel):
    """Runtime settings for the chirpy API and its auth core."""

    database_url: str = env_field("postgresql://localhost:5432/chirpy", "DB_URL")
    use_memory_store: bool = env_field(False, "USE_MEMORY_STORE")
    state_dir: str | None = env_field(
        None,
        "STATE_DIR",
        description="Directory where the memory store persists its JSON snapshot",
    )
    platform: Platform = env_field(Platform.PROD, "PLATFORM")
    test_mode: bool = env_field(
        False,
        "TEST_MODE",
        description="Toggle deterministic testing behaviors and runtime resets.",
    )
    jwt_secret: str | None = env_field(None, "JWT_SECRET")
    jwt_issuer: str = env_field("chirpy", "JWT_ISSUER")
    jwt_leeway_seconds: int = env_field(
        0,
        "JWT_LEEWAY_SECONDS",
        ge=0,
        description="Clock skew tolerated when checking access token expiry",
    )
    access_token_ttl_minutes: int = env_field(60, "ACCESS_TOKEN_TTL_MINUTES", gt=0)
    refresh_token_ttl_days: int = env_field(60, "REFRESH_TOKEN_TTL_DAYS", gt=0)
    # argon2id cost parameters; verification should cost tens of milliseconds
    argon2_memory_cost_kib: int = env_field(128 * 1024, "ARGON2_MEMORY_COST_KIB", ge=8)
    argon2_time_cost: int = env_field(4, "ARGON2_TIME_COST", ge=1)
    argon2_parallelism: int = Field(
        default_factory=default_parallelism,
        ge=1,
        json_schema_extra={"env": "ARGON2_PARALLELISM"},
    )
    argon2_salt_len: int = env_field(16, "ARGON2_SALT_LEN", ge=8)
    argon2_hash_len: int = env_field(32, "ARGON2_HASH_LEN", ge=16)

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def from_env(cls) -> "Settings":
        env_file_values = dotenv_values(".env")
        merged: dict[str, str] = {}
        for name, field in cls.model_fields.items():
            extra = field.json_schema_extra or {}
            env_key = extra.get("env") if isinstance(extra, dict) else None
            env_name = env_key or name.upper()
            if env_name in os.environ:
                merged[name] = os.environ[env_name]
            elif env_name in env_file_values:
                merged[name] = env_file_values[env_name]
        return cls(**merged)

    @field_validator("platform", mode="before")
    @classmethod
    def _normalize_platform(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @model_validator(mode="after")
    def _ensure_jwt_secret(self) -> "Settings":
        if self.jwt_secret:
            if len(self.jwt_secret) < MIN_JWT_SECRET_LENGTH and not self.test_mode:
                raise ValueError(
                    f"JWT_SECRET must be at least {MIN_JWT_SECRET_LENGTH} characters"
                )
            return self
        if not self.test_mode:
            raise ValueError("JWT_SECRET must be set")
        # Tokens signed with a generated secret do not survive a restart
        logger.warning("jwt_secret_generated", reason="test_mode_without_secret")
        self.jwt_secret = secrets.token_urlsafe(64)
        return self

    @property
    def is_dev(self) -> bool:
        return self.platform == Platform.DEV


def get_settings() -> Settings:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = Settings.from_env()
    return _settings_cache


_settings_cache: Settings | None = None


def reset_settings_cache() -> None:
    """Clear cached settings so future calls re-read the environment."""

    global _settings_cache
    _settings_cache = None
