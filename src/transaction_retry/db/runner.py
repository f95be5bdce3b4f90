"""
Transaction runners.

A ``TransactionRunner`` executes a zero-argument unit of work inside one
database transaction: commit on return, rollback and re-raise on error.
The retry engine only talks to this protocol, so tests use an in-memory
fake and production uses ``SQLAlchemyTransactionRunner``.

Inside a unit of work run by ``SQLAlchemyTransactionRunner`` the open
connection is available via ``current_connection()``:

    def transfer():
        conn = current_connection()
        conn.execute(debit, {...})
        conn.execute(credit, {...})

    retrier.run_with_retry(transfer, label="transfer")
"""

from contextvars import ContextVar
from typing import Callable, Optional, Protocol, TypeVar

import structlog
from sqlalchemy import Connection, Engine, text
from sqlalchemy.exc import SQLAlchemyError

from transaction_retry.config import Settings

logger = structlog.get_logger(__name__)

T = TypeVar("T")

LOCK_WAIT_TIMEOUT_CODE = 1205

_current_connection: ContextVar[Optional[Connection]] = ContextVar(
    "transaction_retry_connection", default=None
)


class TransactionRunner(Protocol):
    """Runs a unit of work inside a transaction on a named connection."""

    name: str

    def run(self, work: Callable[[], T]) -> T:
        ...


def current_connection() -> Connection:
    """
    Return the connection of the enclosing ``SQLAlchemyTransactionRunner.run``.

    Raises:
        RuntimeError: If called outside a unit of work
    """
    conn = _current_connection.get()
    if conn is None:
        raise RuntimeError("current_connection() called outside a transaction runner")
    return conn


class SQLAlchemyTransactionRunner:
    """
    Transaction runner over a SQLAlchemy engine.

    Attributes:
        engine: Engine for the monitored database
        name: Connection name used in events and slow transaction logs
        lock_wait_timeout: MySQL ``innodb_lock_wait_timeout`` applied before
            each attempt (None leaves the server default)
    """

    def __init__(
        self,
        engine: Engine,
        name: str = "default",
        lock_wait_timeout: Optional[int] = None,
    ):
        self.engine = engine
        self.name = name
        self.lock_wait_timeout = lock_wait_timeout

    @classmethod
    def from_settings(cls, engine: Engine, settings: Settings) -> "SQLAlchemyTransactionRunner":
        # Shortening the lock wait only makes sense when lock wait timeouts are retried
        timeout = (
            settings.LOCK_WAIT_TIMEOUT_SECONDS
            if LOCK_WAIT_TIMEOUT_CODE in settings.RETRYABLE_DRIVER_CODES
            else None
        )
        return cls(engine, name=settings.CONNECTION_NAME, lock_wait_timeout=timeout)

    def run(self, work: Callable[[], T]) -> T:
        with self.engine.begin() as conn:
            self._apply_lock_wait_timeout(conn)
            token = _current_connection.set(conn)
            try:
                return work()
            finally:
                _current_connection.reset(token)

    def _apply_lock_wait_timeout(self, conn: Connection) -> None:
        if self.lock_wait_timeout is None or conn.dialect.name != "mysql":
            return
        try:
            conn.execute(
                text("SET SESSION innodb_lock_wait_timeout = :timeout"),
                {"timeout": int(self.lock_wait_timeout)},
            )
        except SQLAlchemyError as e:
            logger.debug("Could not apply lock wait timeout", error=str(e))
