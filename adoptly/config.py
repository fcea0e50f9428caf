from __future__ import annotations

import os
from typing import Any

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator

MIN_JWT_SECRET_LENGTH = 64

# Placeholder shipped in .env.example; deployments must replace it.
INSECURE_DEFAULT_JWT_SECRET = (
    "change-me-in-production-change-me-in-production-change-me-in-production"
)

KNOWN_INSECURE_JWT_SECRETS = frozenset(
    {
        INSECURE_DEFAULT_JWT_SECRET,
        "secret",
        "changeme",
        "change-me",
        "my-secret-key",
        "jwt-secret",
    }
)


def validate_jwt_secret(value: str | None) -> str:
    """Reject a missing, known-default or short signing secret."""
    if not value or not value.strip():
        raise ValueError("JWT_SECRET environment variable is required")
    if value in KNOWN_INSECURE_JWT_SECRETS:
        raise ValueError("JWT_SECRET uses a known insecure default; generate a new secret")
    if len(value) < MIN_JWT_SECRET_LENGTH:
        raise ValueError(
            f"JWT secret must be at least {MIN_JWT_SECRET_LENGTH} characters long. "
            f"Current length: {len(value)}"
        )
    return value


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


class Settings(BaseModel):
    """Runtime settings for the authentication service."""

    jwt_secret: str | None = env_field(None, "JWT_SECRET", validate_default=True)
    jwt_issuer: str = env_field("adoptly-api", "JWT_ISSUER")
    jwt_timezone: str = env_field("America/Sao_Paulo", "JWT_TIMEZONE")
    token_ttl_minutes: int = env_field(120, "TOKEN_TTL_MINUTES", ge=1)

    redis_url: str | None = env_field("redis://localhost:6379/0", "REDIS_URL")
    cache_operation_timeout_seconds: float = env_field(
        2.0, "CACHE_OPERATION_TIMEOUT_SECONDS", gt=0
    )
    allow_redis_fallback_dev: bool = env_field(False, "ALLOW_REDIS_FALLBACK_DEV")
    test_mode: bool = env_field(False, "TEST_MODE")
    data_dir: str | None = env_field(None, "DATA_DIR")

    identity_cache_ttl_minutes: int = env_field(15, "IDENTITY_CACHE_TTL_MINUTES", ge=1)
    session_ttl_minutes: int = env_field(30, "SESSION_TTL_MINUTES", ge=1)

    max_login_attempts: int = env_field(5, "MAX_LOGIN_ATTEMPTS", ge=1)
    lockout_minutes: int = env_field(30, "LOCKOUT_MINUTES", ge=1)
    captcha_after_attempts: int = env_field(3, "CAPTCHA_AFTER_ATTEMPTS", ge=1)
    password_history_size: int = env_field(5, "PASSWORD_HISTORY_SIZE", ge=1)

    verify_email_domains: bool = env_field(True, "VERIFY_EMAIL_DOMAINS")
    dns_timeout_seconds: float = env_field(3.0, "DNS_TIMEOUT_SECONDS", gt=0)

    login_rate_limit_per_minute: int = env_field(100, "LOGIN_RATE_LIMIT_PER_MINUTE")
    register_rate_limit_per_minute: int = env_field(20, "REGISTER_RATE_LIMIT_PER_MINUTE")
    cleanup_interval_seconds: int = env_field(300, "CLEANUP_INTERVAL_SECONDS", ge=1)

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
        # Empty REDIS_URL means "no Redis", not "use the default".
        if merged.get("redis_url") == "":
            merged["redis_url"] = None
        return cls(**merged)

    @field_validator("jwt_secret")
    @classmethod
    def _validate_jwt_secret(cls, value: str | None) -> str:
        return validate_jwt_secret(value)

    @field_validator("jwt_timezone")
    @classmethod
    def _validate_timezone(cls, value: str) -> str:
        from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"unknown timezone '{value}'") from exc
        return value


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
