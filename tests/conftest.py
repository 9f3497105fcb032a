"""Pytest configuration and fixtures shared across all test modules.

Environment defaults are set before any app module is imported so settings
never pick up a developer's .env file.
"""

import os

# CRITICAL: Set this before any imports that might load settings
os.environ["TESTING"] = "true"
os.environ.setdefault("APP_ENV", "testing")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest

from app.core.config import AppSettings, LogSettings, RateLimitSettings, SecuritySettings, Settings


class FakeClock:
    """Deterministic epoch-millisecond clock."""

    def __init__(self, start_ms: int = 1_700_000_000_000) -> None:
        self.now_ms = start_ms

    def __call__(self) -> int:
        return self.now_ms

    def advance(self, ms: int) -> None:
        self.now_ms += ms


def make_settings(**overrides) -> Settings:
    """Build isolated Settings; keyword groups: app, rate_limit, security, log."""
    return Settings(
        app=AppSettings(**overrides.get("app", {})),
        rate_limit=RateLimitSettings(**overrides.get("rate_limit", {})),
        security=SecuritySettings(**overrides.get("security", {})),
        log=LogSettings(**overrides.get("log", {})),
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings_factory():
    return make_settings
