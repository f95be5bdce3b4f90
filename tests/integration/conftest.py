"""Integration test fixtures.

Builds the real service graph on two SQLite files: one monitored database
and one observability store.
"""

import pytest
from sqlalchemy import text

from transaction_retry.config import Settings
from transaction_retry.db.events import INTERNAL_EXECUTION_OPTION
from transaction_retry.services import TransactionRetryServices, build_services


@pytest.fixture
def services(test_settings: Settings):
    """Wired services with the observability tables created."""
    test_settings.TRANSACTION_THRESHOLD_MS = 0
    test_settings.SLOW_QUERY_THRESHOLD_MS = 0
    built: TransactionRetryServices = build_services(test_settings)
    built.create_tables()

    # Fixture DDL runs unmonitored so tests only see their own transactions
    with built.engine.execution_options(**{INTERNAL_EXECUTION_OPTION: True}).begin() as conn:
        conn.execute(text("CREATE TABLE accounts (id INTEGER PRIMARY KEY, balance INTEGER NOT NULL)"))
        conn.execute(text("INSERT INTO accounts (id, balance) VALUES (1, 100), (2, 50)"))

    yield built
    built.close()
