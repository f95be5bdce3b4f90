"""
In-memory records produced by the retry engine and the transaction tracker.

These dataclasses never leave the process directly: they are normalised into
persisted rows (see ``models.rows``) by the event writer and the slow
transaction recorder.
"""

import time
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Generic, Optional, TypeVar

from transaction_retry.context import RequestSnapshot
from transaction_retry.models.enums import FailureKind, RetryStatus

T = TypeVar("T")


@dataclass(frozen=True)
class RetryAttemptContext:
    """
    Diagnostic snapshot of one retryable failure.

    Created when a failure is classified as retryable and never mutated
    afterwards; ``with_status`` returns a tagged copy for persistence.

    Attributes:
        attempt: 1-based number of the failed attempt
        max_retries: Configured attempt cap for the invocation
        trx_label: Caller-supplied transaction label ("" when unset)
        retry_group_id: Identifier shared by every attempt of one invocation
        failure_kind: Transient failure category from the classifier
        exception_class: Qualified name of the raised error type
        sql_state: Normalised SQLSTATE-like code, if any
        driver_code: Vendor driver error code, if any
        connection: Connection name the failure happened on
        sql: Parameterised SQL of the failing statement, if known
        raw_sql: SQL with bindings substituted (best effort)
        bindings: Bindings stringified for logs (list, or mapping when named)
        error_info: Driver error tuple (sql state, driver code, message)
        request: HTTP caller snapshot, when a request context exists
        trace: Bounded call-stack snapshot
        retry_status: Status tag (ATTEMPT until tagged terminal)
    """

    attempt: int
    max_retries: int
    trx_label: str
    retry_group_id: str
    failure_kind: FailureKind
    exception_class: str
    sql_state: Optional[str] = None
    driver_code: Optional[int] = None
    connection: Optional[str] = None
    sql: Optional[str] = None
    raw_sql: Optional[str] = None
    bindings: Any = field(default_factory=list)
    error_info: Optional[list[Any]] = None
    request: Optional[RequestSnapshot] = None
    trace: list[dict[str, Any]] = field(default_factory=list)
    retry_status: RetryStatus = RetryStatus.ATTEMPT

    def with_status(self, status: RetryStatus) -> "RetryAttemptContext":
        return replace(self, retry_status=status)

    def to_context(self) -> dict[str, Any]:
        """Flatten into the free-form context accepted by the event writer."""
        context: dict[str, Any] = {
            "attempt": self.attempt,
            "max_retries": self.max_retries,
            "trx_label": self.trx_label,
            "retry_group_id": self.retry_group_id,
            "failure_kind": self.failure_kind.value,
            "exception_class": self.exception_class,
            "sql_state": self.sql_state,
            "driver_code": self.driver_code,
            "connection": self.connection,
            "sql": self.sql,
            "raw_sql": self.raw_sql,
            "bindings": self.bindings,
            "error_info": self.error_info,
            "trace": list(self.trace),
            "retry_status": self.retry_status.value,
        }
        request = self.request or RequestSnapshot()
        context.update(asdict(request))
        return context


@dataclass(frozen=True)
class RetryOutcome(Generic[T]):
    """
    Terminal state of one retry loop.

    Exactly one of ``value``/``error`` is meaningful: ``error`` is None on
    success. ``attempts`` counts invocations of the unit of work.
    """

    attempts: int
    value: Optional[T] = None
    error: Optional[BaseException] = None
    last_context: Optional[RetryAttemptContext] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class QueryRecord:
    """One statement executed inside a root transaction."""

    sql: str
    time_ms: int
    order: int
    connection_name: str


@dataclass
class TransactionFrame:
    """
    One nested transaction level on a connection.

    Only the root frame accumulates queries and carries the label; child
    frames only hold timing so the stack depth stays accurate.
    """

    is_root: bool
    start_monotonic_ns: Optional[int] = field(default_factory=time.perf_counter_ns)
    start_wall: float = field(default_factory=time.time)
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    end_monotonic_ns: Optional[int] = None
    ended_at: Optional[datetime] = None
    label: Optional[str] = None
    queries: list[QueryRecord] = field(default_factory=list)
    query_count: int = 0
    last_query: Optional[QueryRecord] = None

    def append_query(self, sql: str, time_ms: int, connection_name: str) -> QueryRecord:
        self.query_count += 1
        record = QueryRecord(
            sql=sql,
            time_ms=time_ms,
            order=self.query_count,
            connection_name=connection_name,
        )
        self.queries.append(record)
        self.last_query = record
        return record

    def close(self) -> None:
        """Stamp the end of the transaction; later calls keep the first stamp."""
        if self.ended_at is not None:
            return
        if self.start_monotonic_ns is not None:
            self.end_monotonic_ns = time.perf_counter_ns()
        self.ended_at = datetime.now(timezone.utc)
