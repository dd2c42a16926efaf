"""
Pytest configuration and shared fixtures.
"""

import os
import pytest


CRON_ENV_VARS = (
    "CRON_ENABLED",
    "CRON_STORE",
    "CRON_MAX_CONCURRENT_RUNS",
    "CRON_WEBHOOK",
    "CRON_WEBHOOK_TOKEN",
    "CRON_TICK_INTERVAL_SECONDS",
    "CRON_RUN_TIMEOUT_SECONDS",
    "CRON_LOG_DIR",
)


@pytest.fixture(autouse=True, scope="function")
def reset_auth_env():
    """
    Reset auth environment before each test.

    This ensures tests run with API_AUTH_ENABLED=false by default,
    unless the test explicitly sets it otherwise.
    """
    original_auth_enabled = os.environ.get("API_AUTH_ENABLED")
    original_api_key = os.environ.get("API_KEY")

    os.environ["API_AUTH_ENABLED"] = "false"

    yield

    if original_auth_enabled is not None:
        os.environ["API_AUTH_ENABLED"] = original_auth_enabled
    elif "API_AUTH_ENABLED" in os.environ:
        del os.environ["API_AUTH_ENABLED"]

    if original_api_key is not None:
        os.environ["API_KEY"] = original_api_key
    elif "API_KEY" in os.environ:
        del os.environ["API_KEY"]


@pytest.fixture(autouse=True, scope="function")
def clean_cron_env(monkeypatch):
    """Remove CRON_* variables so host settings never leak into tests."""
    for key in CRON_ENV_VARS:
        monkeypatch.delenv(key, raising=False)
