"""Monitoring and metrics instrumentation for transaction retries.

Exports custom Prometheus metrics for operational monitoring and alerting.
The depth tracker and the slow transaction recorder live in ``tracker`` and
``recorder``.
"""

from transaction_retry.monitoring.metrics import (
    observability_writes_dropped_total,
    query_exceptions_total,
    retry_attempts_total,
    retry_backoff_seconds,
    retry_outcomes_total,
    slow_queries_total,
    slow_transactions_total,
    transaction_duration_seconds,
)

__all__ = [
    "retry_outcomes_total",
    "retry_attempts_total",
    "retry_backoff_seconds",
    "transaction_duration_seconds",
    "slow_transactions_total",
    "slow_queries_total",
    "query_exceptions_total",
    "observability_writes_dropped_total",
]
