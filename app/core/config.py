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

ENV_FILE_MAP = {
    "development": ".env.development",
    "testing": ".env.testing",
    "staging": ".env.staging",
    "production": ".env.production",
}

_env_filename = ENV_FILE_MAP.get(APP_ENV, ".env.development")
_env_path = PROJECT_ROOT / _env_filename

# Production may inject everything through real environment variables.
_env_file = str(_env_path) if _env_path.is_file() else None


# Nested BaseSettings don't inherit env_file, so populate os.environ first.
if _env_file and os.getenv("TESTING") != "true":
    from dotenv import load_dotenv
    load_dotenv(_env_file, override=True)


def _build_app_settings() -> "AppSettings":
    return AppSettings()


def _build_rate_limit_settings() -> "RateLimitSettings":
    return RateLimitSettings()


def _build_security_settings() -> "SecuritySettings":
    return SecuritySettings()


def _build_log_settings() -> "LogSettings":
    return LogSettings()


class AppSettings(BaseSettings):
    """Application-wide configuration."""

    debug: bool = Field(
        False,
        description="Enable debug mode with verbose logging",
    )
    environment: str = Field(
        APP_ENV,
        description="Deployment environment (development, testing, staging, production)",
    )

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        case_sensitive=False,
    )


class RateLimitSettings(BaseSettings):
    """Per-IP admission control configuration.

    Three policies are resolved in order: sensitive prefixes, then auth
    prefixes, then the default policy for everything else.
    """

    enabled: bool = Field(
        True,
        description="Enable per-client rate limiting on every request",
    )
    sensitive_max_requests: int = Field(
        10,
        description="Requests per window on administrative/sensitive routes",
        ge=1,
    )
    sensitive_window_ms: int = Field(
        60_000,
        description="Window length for sensitive routes in milliseconds",
        ge=1,
    )
    auth_max_requests: int = Field(
        5,
        description="Requests per window on authentication routes",
        ge=1,
    )
    auth_window_ms: int = Field(
        60_000,
        description="Window length for authentication routes in milliseconds",
        ge=1,
    )
    default_max_requests: int = Field(
        100,
        description="Requests per window on all other routes",
        ge=1,
    )
    default_window_ms: int = Field(
        60_000,
        description="Window length for all other routes in milliseconds",
        ge=1,
    )
    sensitive_prefixes: str = Field(
        "/api/admin/,/api/push/send",
        description="Comma-separated path prefixes using the sensitive policy",
    )
    auth_prefixes: str = Field(
        "/api/auth/,/auth/,/login,/signup",
        description="Comma-separated auth prefixes; without a trailing slash, exact path or sub-paths",
    )
    shard_count: int = Field(
        64,
        description="Number of independently locked partitions in the window store",
        ge=1,
    )
    reaper_interval_seconds: float = Field(
        3600.0,
        description="Seconds between purges of expired windows",
        gt=0,
    )
    reaper_grace_windows: int = Field(
        1,
        description="Whole window lengths an expired entry is kept before purge",
        ge=0,
    )
    trust_forwarded_headers: bool = Field(
        True,
        description="Derive the client key from X-Forwarded-For / X-Real-IP",
    )
    include_headers: bool = Field(
        True,
        description="Attach X-RateLimit-* headers to responses",
    )

    model_config = SettingsConfigDict(
        env_prefix="RATE_LIMIT_",
        case_sensitive=False,
    )


class SecuritySettings(BaseSettings):
    """Security response headers and HTTPS enforcement."""

    headers_enabled: bool = Field(
        True,
        description="Attach security headers to every response",
    )
    enforce_https: bool = Field(
        True,
        description="Redirect plain HTTP to HTTPS when running in production",
    )
    content_security_policy: str = Field(
        "default-src 'self'; script-src 'self' 'unsafe-inline' 'unsafe-eval' cdn.jsdelivr.net; "
        "style-src 'self' 'unsafe-inline'; img-src 'self' data: https:; font-src 'self' data:; "
        "connect-src 'self' https: wss:; frame-ancestors 'none';",
        description="Content-Security-Policy header value",
    )
    hsts_max_age_seconds: int = Field(
        31_536_000,
        description="Strict-Transport-Security max-age",
        ge=0,
    )
    server_header: str = Field(
        "MiabeSite",
        description="Value replacing the upstream Server header",
    )

    model_config = SettingsConfigDict(
        env_prefix="SECURITY_",
        case_sensitive=False,
    )


class LogSettings(BaseSettings):
    """Logging output configuration."""

    level: str = Field("INFO", description="Root log level")
    format: str = Field("json", description="Log format: json or plain")
    output: str = Field("stdout", description="Log destination: stdout or file")
    file_path: str | None = Field(None, description="Log file path when output=file")
    max_bytes: int = Field(10_485_760, description="Rotate log file at this size (0 disables)")
    backup_count: int = Field(5, description="Rotated log files to keep")
    request_id_header: str = Field(
        "X-Request-ID",
        description="Header carrying the request correlation id",
    )

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )


class Settings(BaseSettings):
    """Main application settings container.

    Automatically loads from the appropriate .env.{APP_ENV} file.
    Raises validation errors on startup if settings are malformed.
    """

    app_env: str = APP_ENV
    app: AppSettings = Field(default_factory=_build_app_settings)
    rate_limit: RateLimitSettings = Field(default_factory=_build_rate_limit_settings)
    security: SecuritySettings = Field(default_factory=_build_security_settings)
    log: LogSettings = Field(default_factory=_build_log_settings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )


# Global settings instance - composed from domain-specific settings
settings = Settings()
