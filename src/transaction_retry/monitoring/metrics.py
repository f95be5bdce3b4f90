"""Custom Prometheus metrics for transaction retries and slow transactions.

These metrics are exposed at /metrics endpoint and should be scraped by Prometheus.
Alert rules should be configured for:
- transaction_retry_outcomes_total (exhausted outcomes mean users saw an error)
- transaction_retry_attempts_total (rising deadlock rate indicates lock contention)
- slow_transactions_total (slow root transactions by status)
- observability_writes_dropped_total (persistence of diagnostics is failing)
"""

from prometheus_client import Counter, Histogram

# === Retry Metrics ===

retry_outcomes_total = Counter(
    "transaction_retry_outcomes_total",
    "Terminal outcomes of retry-wrapped transactions",
    ["outcome"],
)
"""
Retry outcome counter.

Labels:
- outcome: success (first try), recovered (success after retries),
  exhausted (cap reached), fatal (non-retryable error), bypassed (retries disabled)

Alert thresholds:
- WARN: exhausted > 0 over 5 minutes
- CRITICAL: exhausted rate > 1% of outcomes
"""

retry_attempts_total = Counter(
    "transaction_retry_attempts_total",
    "Retryable transaction failures by failure kind",
    ["failure_kind"],
)
"""
Retryable failure counter.

Labels:
- failure_kind: deadlock, serialization_failure, custom_transient
"""

retry_backoff_seconds = Histogram(
    "transaction_retry_backoff_seconds",
    "Backoff waits between retry attempts in seconds",
    buckets=[1, 2, 4, 8, 16, 32, 60],
)

# === Slow Transaction Metrics ===

transaction_duration_seconds = Histogram(
    "db_transaction_duration_seconds",
    "Duration of root database transactions in seconds",
    ["connection", "status"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
)
"""
Root transaction duration histogram.

Labels:
- connection: Configured connection name
- status: committed, rolled_back

Alert thresholds:
- WARN: p95 > TRANSACTION_THRESHOLD_MS
"""

slow_transactions_total = Counter(
    "slow_transactions_total",
    "Root transactions persisted as slow",
    ["connection", "status"],
)

slow_queries_total = Counter(
    "slow_queries_total",
    "Queries above the slow query threshold inside persisted transactions",
    ["connection"],
)

# === Exception & Sink Metrics ===

query_exceptions_total = Counter(
    "query_exceptions_total",
    "Unhandled query exceptions reported",
    ["exception_class"],
)

observability_writes_dropped_total = Counter(
    "observability_writes_dropped_total",
    "Diagnostic rows that could not be persisted",
    ["table"],
)
"""
Dropped observability writes.

Writes are best effort; this counter is the only trace of a failing sink.

Labels:
- table: Target table name

Alert thresholds:
- WARN: any increase
"""
