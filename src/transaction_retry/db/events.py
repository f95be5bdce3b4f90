"""SQLAlchemy engine listeners feeding the transaction depth tracker.

Lifecycle mapping:

    begin                      -> tracker.on_begin
    savepoint                  -> tracker.on_begin (child frame)
    release_savepoint          -> tracker.on_commit
    rollback_savepoint         -> tracker.on_rollback
    commit / rollback          -> tracker.on_commit / on_rollback, draining every frame
    before/after_cursor_execute -> tracker.on_query_executed with the measured time

SQLAlchemy's ``commit`` event fires before the DBAPI commit, while the
transaction still holds its locks. Closed root frames are therefore parked
in ``Connection.info`` and only handed to the recorder once the connection
is checked back into the pool, or when it begins its next transaction.

``SAVEPOINT``/``RELEASE``/``ROLLBACK TO`` statements are not counted as
queries. A root that rolls back without having written anything (typically
the implicit transaction of ``engine.connect()`` closed after a read) is
dropped instead of being reported as a rollback.

Connections carrying the ``INTERNAL_EXECUTION_OPTION`` execution option
(used by the observability sink) are ignored.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, MutableMapping, Optional

import structlog
from sqlalchemy import event
from sqlalchemy.engine import Connection, Engine

from transaction_retry.db.sql import is_read_only_statement, is_savepoint_statement
from transaction_retry.models.enums import TransactionStatus

if TYPE_CHECKING:
    from transaction_retry.models.records import TransactionFrame
    from transaction_retry.monitoring.tracker import TransactionDepthTracker

logger = structlog.get_logger(__name__)

INTERNAL_EXECUTION_OPTION = "transaction_retry_internal"

_TIMING_KEY = "transaction_retry_query_start"
_PENDING_KEY = "transaction_retry_pending"


def is_internal(conn: Connection) -> bool:
    return bool(conn.get_execution_options().get(INTERNAL_EXECUTION_OPTION, False))


def has_writes(frame: TransactionFrame) -> bool:
    return any(not is_read_only_statement(query.sql) for query in frame.queries)


@dataclass
class MonitorHandle:
    """Registered listeners of one ``attach_transaction_monitor`` call."""

    engine: Engine
    listeners: list[tuple[str, Callable[..., Any]]] = field(default_factory=list)

    def detach(self) -> None:
        for identifier, listener in self.listeners:
            if event.contains(self.engine, identifier, listener):
                event.remove(self.engine, identifier, listener)
        self.listeners.clear()


def attach_transaction_monitor(
    engine: Engine, tracker: TransactionDepthTracker, connection_name: str = "default"
) -> MonitorHandle:
    """Attach tracker listeners to ``engine``; returns a handle for detaching."""

    def _park(conn: Connection, frame: Optional[TransactionFrame], status: TransactionStatus) -> None:
        if frame is None:
            return
        if status is TransactionStatus.ROLLED_BACK and not has_writes(frame):
            logger.debug(
                "Skipping read-only rollback",
                connection=connection_name,
                queries=frame.query_count,
            )
            return
        conn.info.setdefault(_PENDING_KEY, []).append((frame, status))

    def _flush(info: MutableMapping[str, Any]) -> None:
        pending = info.pop(_PENDING_KEY, None)
        for frame, status in pending or ():
            tracker.finalize(frame, connection_name, status)

    def _begin(conn: Connection) -> None:
        if is_internal(conn):
            return
        # The previous transaction on this connection is fully committed by now
        _flush(conn.info)
        tracker.on_begin(connection_name)

    def _savepoint(conn: Connection, name: str) -> None:
        if not is_internal(conn):
            tracker.on_begin(connection_name)

    def _release_savepoint(conn: Connection, name: str, context: Any) -> None:
        if not is_internal(conn):
            frame = tracker.on_commit(connection_name, defer=True)
            _park(conn, frame, TransactionStatus.COMMITTED)

    def _rollback_savepoint(conn: Connection, name: str, context: Any) -> None:
        if not is_internal(conn):
            frame = tracker.on_rollback(connection_name, defer=True)
            _park(conn, frame, TransactionStatus.ROLLED_BACK)

    def _commit(conn: Connection) -> None:
        if not is_internal(conn):
            frame = tracker.on_commit(connection_name, close_root=True, defer=True)
            _park(conn, frame, TransactionStatus.COMMITTED)

    def _rollback(conn: Connection) -> None:
        if not is_internal(conn):
            frame = tracker.on_rollback(connection_name, close_root=True, defer=True)
            _park(conn, frame, TransactionStatus.ROLLED_BACK)

    def _checkin(dbapi_connection: Any, connection_record: Any) -> None:
        if connection_record is not None:
            _flush(connection_record.info)

    def _before_cursor_execute(
        conn: Connection,
        cursor: Any,
        statement: str,
        parameters: Any,
        context: Any,
        executemany: bool,
    ) -> None:
        conn.info.setdefault(_TIMING_KEY, []).append(time.perf_counter())

    def _after_cursor_execute(
        conn: Connection,
        cursor: Any,
        statement: str,
        parameters: Any,
        context: Any,
        executemany: bool,
    ) -> None:
        starts = conn.info.get(_TIMING_KEY)
        if not starts:
            return
        elapsed_ms = (time.perf_counter() - starts.pop()) * 1000
        if is_internal(conn) or is_savepoint_statement(statement):
            return
        tracker.on_query_executed(
            connection_name,
            statement,
            None if executemany else parameters,
            elapsed_ms,
        )

    def _handle_error(exception_context: Any) -> None:
        # A failed statement never reaches after_cursor_execute
        conn = exception_context.connection
        if conn is not None and conn.info.get(_TIMING_KEY):
            conn.info[_TIMING_KEY].pop()

    handle = MonitorHandle(engine=engine)
    for identifier, listener in (
        ("begin", _begin),
        ("savepoint", _savepoint),
        ("release_savepoint", _release_savepoint),
        ("rollback_savepoint", _rollback_savepoint),
        ("commit", _commit),
        ("rollback", _rollback),
        ("checkin", _checkin),
        ("before_cursor_execute", _before_cursor_execute),
        ("after_cursor_execute", _after_cursor_execute),
        ("handle_error", _handle_error),
    ):
        event.listen(engine, identifier, listener)
        handle.listeners.append((identifier, listener))
    return handle
