"""
Slow transaction recorder.

Called once per drained root frame. Persists a ``TransactionSummary`` when
the transaction took at least TRANSACTION_THRESHOLD_MS (0 = always), then one
detail row per query slower than SLOW_QUERY_THRESHOLD_MS (0 = every query).

Independently of that gate, when SLOW_TRANSACTION_LOG_ENABLED is set every
root transaction is also reported on the structured log: ``warning`` when
committed, ``error`` when rolled back (with the last executed query), so fast
rollbacks remain visible.

Nothing in here may raise into the commit/rollback path: all writes go
through a ``BestEffortSink`` and the recorder's own bookkeeping is guarded.
"""

import time
from datetime import datetime, timezone
from typing import Any, Callable, Optional

import structlog

from transaction_retry.config import Settings
from transaction_retry.context import RequestSnapshot, current_request
from transaction_retry.models.enums import TransactionStatus
from transaction_retry.models.records import QueryRecord, TransactionFrame
from transaction_retry.models.rows import QueryDetailRow, TransactionSummary
from transaction_retry.monitoring.metrics import (
    slow_queries_total,
    slow_transactions_total,
    transaction_duration_seconds,
)
from transaction_retry.persistence.sink import BestEffortSink, EventSink

logger = structlog.get_logger(__name__)

COMPLETED_AT_COLUMN = "transaction_log_completed_at"


def elapsed_ms_since(frame: TransactionFrame) -> int:
    """Milliseconds from open to close (or now, for a frame still open)."""
    if frame.start_monotonic_ns is not None:
        end_ns = frame.end_monotonic_ns or time.perf_counter_ns()
        return max(0, round((end_ns - frame.start_monotonic_ns) / 1_000_000))
    end_wall = frame.ended_at.timestamp() if frame.ended_at else time.time()
    return max(0, round((end_wall - frame.start_wall) * 1000))


def _query_payload(query: QueryRecord) -> dict[str, Any]:
    return {"sql": query.sql, "time_ms": query.time_ms, "order": query.order}


class SlowTransactionRecorder:
    """
    Turns drained root frames into summaries, slow query rows and log lines.

    Attributes:
        sink: Best-effort sink for the summary and detail tables
        settings: Thresholds, table names and log switch
        logger: Structured logger for the per-transaction report
    """

    def __init__(
        self,
        sink: EventSink,
        settings: Settings,
        *,
        logger: Optional[Any] = None,
        request_provider: Callable[[], Optional[RequestSnapshot]] = current_request,
    ):
        self.sink = sink if isinstance(sink, BestEffortSink) else BestEffortSink(sink)
        self.settings = settings
        self.logger = logger or structlog.get_logger("transaction_retry.slow_transactions")
        self.request_provider = request_provider
        self._has_completed_at: Optional[bool] = None

    def finalize(
        self, frame: TransactionFrame, connection: str, status: TransactionStatus
    ) -> None:
        try:
            self._finalize(frame, connection, status)
        except Exception as e:
            logger.debug("Slow transaction finalize failed", connection=connection, error=str(e))

    def _finalize(
        self, frame: TransactionFrame, connection: str, status: TransactionStatus
    ) -> None:
        if not self.settings.SLOW_TRANSACTIONS_ENABLED:
            return

        elapsed_ms = elapsed_ms_since(frame)
        completed_at = frame.ended_at or datetime.now(timezone.utc)
        transaction_duration_seconds.labels(connection=connection, status=status.value).observe(
            elapsed_ms / 1000
        )

        query_threshold = self.settings.SLOW_QUERY_THRESHOLD_MS
        if query_threshold <= 0:
            slow_queries = list(frame.queries)
        else:
            slow_queries = [q for q in frame.queries if q.time_ms > query_threshold]

        request = self.request_provider() or RequestSnapshot()

        threshold = self.settings.TRANSACTION_THRESHOLD_MS
        if threshold <= 0 or elapsed_ms >= threshold:
            summary = TransactionSummary(
                transaction_label=frame.label,
                connection_name=connection,
                status=status,
                elapsed_ms=elapsed_ms,
                started_at=frame.started_at,
                completed_at=completed_at,
                total_queries_count=frame.query_count,
                slow_queries_count=len(slow_queries),
                user_id=request.user_id,
                route_name=request.route_name,
                http_method=request.method,
                url=request.url,
                ip_address=request.ip_address,
            )
            self._persist(summary, slow_queries)

        if self.settings.SLOW_TRANSACTION_LOG_ENABLED:
            self._log(frame, connection, status, elapsed_ms, slow_queries, request)

    def _persist(self, summary: TransactionSummary, slow_queries: list[QueryRecord]) -> None:
        log_id = self.sink.insert_get_id(
            self.settings.TRANSACTION_LOG_TABLE, summary.model_dump(exclude={"id"})
        )
        if log_id is None:
            return

        slow_transactions_total.labels(
            connection=summary.connection_name, status=summary.status
        ).inc()
        if not slow_queries:
            return
        slow_queries_total.labels(connection=summary.connection_name).inc(len(slow_queries))

        include_completed_at = self._completed_at_supported()
        rows = []
        for query in slow_queries:
            row = QueryDetailRow(
                transaction_log_id=log_id,
                sql_query=query.sql,
                execution_time_ms=query.time_ms,
                connection_name=query.connection_name,
                query_order=query.order,
                transaction_log_completed_at=summary.completed_at,
            ).model_dump(exclude={"id"})
            if not include_completed_at:
                row.pop(COMPLETED_AT_COLUMN)
            rows.append(row)
        self.sink.insert_many(self.settings.TRANSACTION_QUERY_TABLE, rows)

    def _completed_at_supported(self) -> bool:
        if self._has_completed_at is None:
            self._has_completed_at = self.sink.has_column(
                self.settings.TRANSACTION_QUERY_TABLE, COMPLETED_AT_COLUMN
            )
        return self._has_completed_at

    def _log(
        self,
        frame: TransactionFrame,
        connection: str,
        status: TransactionStatus,
        elapsed_ms: int,
        slow_queries: list[QueryRecord],
        request: RequestSnapshot,
    ) -> None:
        rolled_back = status is TransactionStatus.ROLLED_BACK
        payload: dict[str, Any] = {
            "transaction_label": frame.label,
            "connection": connection,
            "status": status.value,
            "elapsed_ms": elapsed_ms,
            "elapsed_seconds": round(elapsed_ms / 1000, 3),
            "total_queries": frame.query_count,
            "slow_queries_count": len(slow_queries),
            "route_name": request.route_name,
            "method": request.method,
            "url": request.url,
            "ip_address": request.ip_address,
            "user_id": request.user_id,
            "slow_queries": [
                _query_payload(q)
                for q in sorted(slow_queries, key=lambda q: q.time_ms, reverse=True)
            ],
        }
        if rolled_back:
            payload["last_query"] = _query_payload(frame.last_query) if frame.last_query else None

        message = "Slow database transaction %s (%dms, %d queries)%s" % (
            "rolled back" if rolled_back else "committed",
            elapsed_ms,
            frame.query_count,
            f" {request.url}" if request.url else "",
        )
        if rolled_back:
            self.logger.error(message, **payload)
        else:
            self.logger.warning(message, **payload)
