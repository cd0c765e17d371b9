"""Application configuration using Pydantic Settings.

Configuration is environment-aware:
- APP_ENV determines which .env file to load
- Supports: development, testing, staging, production
- Each environment has its own .env.{environment} file
"""

from __future__ import annotations

import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# Determine which environment to load (default: development)
APP_ENV = os.getenv("APP_ENV", "development")

# Project root (so .env resolution doesn't depend on current working directory)
PROJECT_ROOT = Path(__file__).resolve().parents[2]

# Map environments to their respective .env files (relative to PROJECT_ROOT)
ENV_FILE_MAP = {
    "development": ".env.development",
    "testing": ".env.testing",
    "staging": ".env.staging",
    "production": ".env.production",
}

_env_filename = ENV_FILE_MAP.get(APP_ENV, ".env.development")
_env_path = PROJECT_ROOT / _env_filename

# Only load from file if it exists (production might inject via env vars only)
_env_file = str(_env_path) if _env_path.is_file() else None


# Load .env file early to populate os.environ before creating nested settings
# This is necessary because Pydantic nested BaseSettings don't inherit env_file
if _env_file and os.getenv("TESTING") != "true":
    from dotenv import load_dotenv
    load_dotenv(_env_file, override=True)


def _build_app_settings() -> "AppSettings":
    """Build app settings from environment.

    Pydantic Settings (v2) populates values from environment variables; the
    factory keeps nested groups reading the environment at construction time.
    """

    return AppSettings()


def _build_auth_settings() -> "AuthSettings":
    return AuthSettings()


def _build_rate_limit_settings() -> "RateLimitSettings":
    return RateLimitSettings()


def _build_database_settings() -> "DatabaseSettings":
    return DatabaseSettings()


def _build_log_settings() -> "LogSettings":
    return LogSettings()


class AppSettings(BaseSettings):
    """Application-wide configuration."""

    debug: bool = Field(
        False,
        description="Enable debug mode with verbose logging",
    )
    public_url: str = Field(
        "http://localhost:4321",
        description="Public base URL used in emailed links and to detect local deployments",
    )

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        case_sensitive=False,
    )

    @property
    def is_local(self) -> bool:
        """Whether the deployment is served from a local host (no HTTPS)."""
        url = self.public_url.lower()
        return "localhost" in url or "127.0.0.1" in url


class AuthSettings(BaseSettings):
    """Password hashing, session and single-use token configuration."""

    pbkdf2_iterations: int = Field(
        310_000,
        description="PBKDF2-HMAC-SHA256 iterations used for new password hashes",
        ge=1,
    )
    pbkdf2_min_iterations: int = Field(
        100_000,
        description="Stored hashes below this iteration count never verify",
        ge=1,
    )
    salt_bytes: int = Field(
        32,
        description="Random salt length for password hashes",
        ge=16,
    )
    session_ttl_days: int = Field(
        14,
        description="Rolling session lifetime in days",
        ge=1,
    )
    session_cookie_name: str = Field(
        "__session",
        description="Name of the HttpOnly session cookie",
    )
    session_secret_bytes: int = Field(
        32,
        description="Random bytes in a raw session secret",
        ge=32,
    )
    reset_token_ttl_minutes: int = Field(
        60,
        description="Lifetime of password reset tokens",
        ge=1,
    )
    verify_token_ttl_hours: int = Field(
        24,
        description="Lifetime of email verification tokens",
        ge=1,
    )
    allow_legacy_seed_hashes: bool = Field(
        False,
        description="Accept dev-only '$sha256$' seed hashes (honoured only when APP_ENV=development)",
    )

    model_config = SettingsConfigDict(
        env_prefix="AUTH_",
        case_sensitive=False,
    )


class RateLimitSettings(BaseSettings):
    """Rate limiter backends and behaviour."""

    enabled: bool = Field(
        True,
        description="Enable per-scope rate limiting",
    )
    store: str = Field(
        "memory",
        description="Key-value store backing the sliding-window limiter: memory or redis",
    )
    redis_url: str = Field(
        "redis://localhost:6379/0",
        description="Redis connection URL when store=redis",
    )
    redis_socket_timeout_seconds: float = Field(
        0.5,
        description="Socket timeout for Redis calls so a stalled cache fails open quickly",
        gt=0,
    )
    strong_backend_enabled: bool = Field(
        True,
        description="Route strongly-consistent scopes through the serialized counter",
    )
    workers: int = Field(
        4,
        description="Number of serialized counter owners (keys are sharded across them)",
        ge=1,
    )
    reply_timeout_seconds: float = Field(
        1.0,
        description="How long a caller waits for the serialized counter before falling back",
        gt=0,
    )
    min_retry_after_ms: int = Field(
        1000,
        description="Lower bound for sliding-window Retry-After values",
        ge=1,
    )
    ttl_grace_seconds: int = Field(
        30,
        description="Extra TTL on sliding-window entries to tolerate clock skew",
        ge=0,
    )
    trust_proxy_headers: bool = Field(
        False,
        description="Key clients on CF-Connecting-IP / X-Forwarded-For; enable only behind a proxy that overwrites them",
    )
    include_headers: bool = Field(
        True,
        description="Include X-RateLimit-* headers on admitted responses",
    )

    model_config = SettingsConfigDict(
        env_prefix="RATE_LIMIT_",
        case_sensitive=False,
    )


class DatabaseSettings(BaseSettings):
    """Durable relational store."""

    url: str = Field(
        "sqlite:///./authgate.db",
        description="SQLAlchemy database URL",
    )
    echo: bool = Field(
        False,
        description="Echo SQL statements",
    )
    auto_create: bool = Field(
        True,
        description="Create missing tables on application startup",
    )

    model_config = SettingsConfigDict(
        env_prefix="DATABASE_",
        case_sensitive=False,
    )


class LogSettings(BaseSettings):
    """Logging output configuration."""

    level: str = Field("INFO", description="Root log level")
    format: str = Field("json", description="json or plain")
    output: str = Field("stdout", description="stdout or file")
    file_path: str | None = Field(None, description="Log file path when output=file")
    max_bytes: int = Field(10 * 1024 * 1024, description="Rotate file after this many bytes (0 disables)")
    backup_count: int = Field(5, description="Rotated files to keep")
    request_id_header: str = Field("X-Request-ID", description="Correlation header name")

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )


class Settings(BaseSettings):
    """Main application settings container.

    Automatically loads from the appropriate .env.{APP_ENV} file.
    Raises validation errors on startup if settings are malformed.

    Environments:
    - development: Local development (legacy seed hashes may be enabled)
    - testing: Automated tests (uses .env.testing)
    - staging: Pre-production (uses .env.staging)
    - production: Production deployment (uses .env.production)
    """

    app_env: str = APP_ENV
    app: AppSettings = Field(default_factory=_build_app_settings)
    auth: AuthSettings = Field(default_factory=_build_auth_settings)
    rate_limit: RateLimitSettings = Field(default_factory=_build_rate_limit_settings)
    database: DatabaseSettings = Field(default_factory=_build_database_settings)
    log: LogSettings = Field(default_factory=_build_log_settings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )

    @property
    def legacy_seed_hashes_allowed(self) -> bool:
        """Legacy seed hashes are accepted only in development with the flag on."""
        return self.app_env == "development" and self.auth.allow_legacy_seed_hashes


# Global settings instance - composed from domain-specific settings
settings = Settings()
