"""
Unhandled query exception reporting.

Persists database errors that escaped to the application's global error
handler (fatal failures, exhausted retries, plain query errors outside any
retry wrapper). Independent from the retry event writer: a fatal failure is
never written by the retry engine, only here.

Guards, in order: disabled by config, already reporting (re-entrancy), no
sink bound yet (early bootstrap).
"""

import threading
from datetime import datetime, timezone
from typing import Optional

import structlog

from transaction_retry.config import Settings
from transaction_retry.context import RequestSnapshot, current_request, trace_snapshot
from transaction_retry.db.errors import extract_error_info
from transaction_retry.db.sql import stringify_bindings, substitute_bindings
from transaction_retry.models.rows import ExceptionEventRow
from transaction_retry.monitoring.metrics import query_exceptions_total
from transaction_retry.persistence.event_writer import hash_from_parts
from transaction_retry.persistence.sink import BestEffortSink, EventSink, json_safe

logger = structlog.get_logger(__name__)


class QueryExceptionLogger:
    """
    Reports query exceptions to the EXCEPTION_TABLE.

    Attributes:
        sink: Sink for the exception table, None until the store is available
        settings: Enable switch, table name and trace depth
    """

    def __init__(self, sink: Optional[EventSink], settings: Settings):
        self.sink = self._wrap(sink)
        self.settings = settings
        self._reporting = threading.local()

    @staticmethod
    def _wrap(sink: Optional[EventSink]) -> Optional[BestEffortSink]:
        if sink is None or isinstance(sink, BestEffortSink):
            return sink
        return BestEffortSink(sink)

    def bind(self, sink: Optional[EventSink]) -> None:
        """Attach (or detach) the sink once the observability store is ready."""
        self.sink = self._wrap(sink)

    @property
    def is_reporting(self) -> bool:
        return getattr(self._reporting, "active", False)

    def report(self, error: BaseException, connection_name: Optional[str] = None) -> None:
        """Persist ``error``. Never raises and never recurses into itself."""
        if not self.settings.EXCEPTION_LOGGING_ENABLED:
            return
        if self.is_reporting:
            return
        if self.sink is None:
            return

        self._reporting.active = True
        try:
            row = self.build_row(error, connection_name)
            query_exceptions_total.labels(exception_class=row.exception_class).inc()
            self.sink.insert(self.settings.EXCEPTION_TABLE, row.model_dump(exclude={"id"}))
        except Exception as e:
            logger.debug("Query exception report dropped", error=str(e))
        finally:
            self._reporting.active = False

    def build_row(
        self, error: BaseException, connection_name: Optional[str] = None
    ) -> ExceptionEventRow:
        info = extract_error_info(error, connection_name)
        request = current_request() or RequestSnapshot()
        raw_sql = substitute_bindings(info.sql, info.bindings) or info.sql
        occurred_at = datetime.now(timezone.utc)

        traceback = error.__traceback__
        while traceback is not None and traceback.tb_next is not None:
            traceback = traceback.tb_next

        return ExceptionEventRow(
            occurred_at=occurred_at,
            exception_class=info.exception_class,
            sql_state=info.sql_state,
            driver_code=info.driver_code,
            connection=info.connection_name,
            sql=info.sql,
            raw_sql=raw_sql,
            bindings=json_safe(stringify_bindings(info.bindings)),
            error_message=info.message,
            error_info=json_safe(info.error_info),
            method=request.method,
            route_name=request.route_name,
            url=request.url,
            ip_address=request.ip_address,
            user_type=request.user_type,
            user_id=request.user_id,
            auth_header_len=request.auth_header_len,
            auth_header_hash=request.auth_header_hash,
            trace=trace_snapshot(self.settings.TRACE_DEPTH, error),
            event_hash=hash_from_parts(
                [
                    info.exception_class,
                    info.sql_state,
                    info.driver_code,
                    info.connection_name,
                    raw_sql,
                    request.method,
                    request.route_name,
                    request.url,
                    request.user_id,
                ]
            ),
            context={
                "message": str(error),
                "file": traceback.tb_frame.f_code.co_filename if traceback else None,
                "line": traceback.tb_lineno if traceback else None,
            },
            created_at=occurred_at,
            updated_at=occurred_at,
        )
