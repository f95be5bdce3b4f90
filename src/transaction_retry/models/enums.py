"""
Enumerations for transaction retry and monitoring records.

All enums are closed taxonomies - no values outside these sets are persisted.
"""

from enum import Enum


class RetryStatus(str, Enum):
    """
    Status tag of a retry context.

    ATTEMPT is held in memory while the loop is still running; only the
    terminal SUCCESS or FAILURE tag is ever persisted.
    """

    ATTEMPT = "attempt"
    SUCCESS = "success"
    FAILURE = "failure"

    @classmethod
    def values(cls) -> list[str]:
        return [status.value for status in cls]


class LogLevel(str, Enum):
    """PSR-style log levels accepted for persisted events."""

    EMERGENCY = "emergency"
    ALERT = "alert"
    CRITICAL = "critical"
    ERROR = "error"
    WARNING = "warning"
    NOTICE = "notice"
    INFO = "info"
    DEBUG = "debug"

    @classmethod
    def values(cls) -> list[str]:
        return [level.value for level in cls]

    @classmethod
    def normalize(cls, value: str | None, fallback: str) -> str:
        """Return the canonical level name for value, or fallback when unknown."""
        candidate = str(value or "").strip().lower()
        try:
            return cls(candidate).value
        except ValueError:
            return fallback


class TransactionStatus(str, Enum):
    """How a root transaction closed."""

    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


class FailureKind(str, Enum):
    """
    Recognised categories of database failure.

    Every kind except FATAL is a transient failure that may be retried.
    """

    DEADLOCK = "deadlock"
    SERIALIZATION_FAILURE = "serialization_failure"
    CUSTOM_TRANSIENT = "custom_transient"
    FATAL = "fatal"

    @property
    def retryable(self) -> bool:
        return self is not FailureKind.FATAL
