"""
Data models for retries and transaction monitoring.

Includes:
- Enums (RetryStatus, LogLevel, TransactionStatus, FailureKind)
- In-memory records (RetryAttemptContext, RetryOutcome, QueryRecord, TransactionFrame)
- Persisted row models (RetryEventRow, TransactionSummary, QueryDetailRow, ExceptionEventRow)
"""

from transaction_retry.models.enums import FailureKind, LogLevel, RetryStatus, TransactionStatus
from transaction_retry.models.records import (
    QueryRecord,
    RetryAttemptContext,
    RetryOutcome,
    TransactionFrame,
)
from transaction_retry.models.rows import (
    ExceptionEventRow,
    QueryDetailRow,
    RetryEventRow,
    TransactionSummary,
)

__all__ = [
    # Enums
    "FailureKind",
    "LogLevel",
    "RetryStatus",
    "TransactionStatus",
    # Records
    "QueryRecord",
    "RetryAttemptContext",
    "RetryOutcome",
    "TransactionFrame",
    # Rows
    "ExceptionEventRow",
    "QueryDetailRow",
    "RetryEventRow",
    "TransactionSummary",
]
