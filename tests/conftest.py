"""Pytest configuration and fixtures shared across all test modules.

Settings are read from QUOTDD_* environment variables, so every test starts
from a clean environment and binds to loopback on an ephemeral port.
"""

import os

import pytest

# Set this before any imports that might load settings so no .env file is used
os.environ["QUOTDD_ENV"] = "testing"

from quotdd.core.config import LogSettings, RateLimitSettings, ServerSettings, Settings


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in list(os.environ):
        if name.startswith("QUOTDD_") and name != "QUOTDD_ENV":
            monkeypatch.delenv(name, raising=False)


def _build_settings(
    *,
    threshold: int = 10,
    decay: int = 10,
    period_seconds: float = 60.0,
    **server: object,
) -> Settings:
    """Settings bound to 127.0.0.1 on an ephemeral port."""
    server.setdefault("host", "127.0.0.1")
    server.setdefault("port", 0)
    return Settings(
        env="testing",
        server=ServerSettings(**server),
        rate_limit=RateLimitSettings(
            threshold=threshold, decay=decay, period_seconds=period_seconds
        ),
        log=LogSettings(),
    )


@pytest.fixture
def make_settings():
    """Factory for Settings bound to loopback on an ephemeral port."""
    return _build_settings
