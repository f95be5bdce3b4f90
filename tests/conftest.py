"""Shared test fixtures and configuration for all tests.

This conftest.py provides common fixtures used across unit and integration tests.
"""

from pathlib import Path

import pytest

from transaction_retry.config import Settings


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """Test settings with safe defaults for local testing.

    Every path points inside ``tmp_path``. Override specific settings in
    individual tests as needed:
        def test_something(test_settings):
            test_settings.MAX_RETRIES = 5
    """
    return Settings(
        # === Application ===
        APP_NAME="DB Transaction Retry (Test)",
        APP_VERSION="0.1.0",
        DEBUG=True,
        LOG_LEVEL="DEBUG",
        ENVIRONMENT="development",

        # === Database ===
        # Separate monitored and observability stores; a shared store has its own tests
        DATABASE_URL=f"sqlite:///{tmp_path / 'app.db'}",
        LOG_DATABASE_URL=f"sqlite:///{tmp_path / 'observability.db'}",
        CONNECTION_NAME="default",

        # === Retry ===
        ENABLED=True,
        STATE_PATH=str(tmp_path / "state" / "runtime"),
        MAX_RETRIES=3,
        RETRY_DELAY=2,
        MAX_RETRY_DELAY=60,
        RETRYABLE_SQL_STATES=["40001"],
        RETRYABLE_DRIVER_CODES=[1213],
        RETRYABLE_EXCEPTION_CLASSES=[],

        # === Slow transactions ===
        SLOW_TRANSACTIONS_ENABLED=True,
        TRANSACTION_THRESHOLD_MS=100,
        SLOW_QUERY_THRESHOLD_MS=50,
        SLOW_TRANSACTION_LOG_ENABLED=True,

        # === Feature Flags ===
        EXCEPTION_LOGGING_ENABLED=True,
        API_ENABLED=True,
        PROMETHEUS_ENABLED=False,  # Disable metrics endpoint in tests unless explicitly needed
    )
