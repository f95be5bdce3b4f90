"""
Append-only sinks for observability rows.

``SQLAlchemyEventSink`` writes on connections flagged with the internal
execution option, which the transaction monitor skips, so persisting a slow
transaction never produces another monitored transaction.

``BestEffortSink`` is the boundary where observability failures stop: every
error is logged at debug level, counted, and discarded.
"""

import json
from typing import Any, Optional, Protocol

import structlog
from sqlalchemy import Engine, Table, inspect

from transaction_retry.config import Settings
from transaction_retry.db.events import INTERNAL_EXECUTION_OPTION
from transaction_retry.db.schema import ObservabilityTables, build_tables
from transaction_retry.monitoring.metrics import observability_writes_dropped_total

logger = structlog.get_logger(__name__)


class EventSink(Protocol):
    """Storage for observability rows, addressed by table name."""

    def insert(self, table: str, row: dict[str, Any]) -> None:
        ...

    def insert_get_id(self, table: str, row: dict[str, Any]) -> Optional[int]:
        ...

    def insert_many(self, table: str, rows: list[dict[str, Any]]) -> None:
        ...

    def has_column(self, table: str, column: str) -> bool:
        ...


def json_safe(value: Any) -> Any:
    """Round-trip through JSON so arbitrary context values survive JSON columns."""
    if value is None:
        return None
    return json.loads(json.dumps(value, default=str))


class SQLAlchemyEventSink:
    """
    Event sink over a SQLAlchemy engine.

    Attributes:
        engine: Engine for the observability store (flagged as internal)
        tables: Table objects built from the configured names
    """

    def __init__(
        self,
        engine: Engine,
        settings: Settings,
        tables: Optional[ObservabilityTables] = None,
    ):
        self.engine = engine.execution_options(**{INTERNAL_EXECUTION_OPTION: True})
        self.tables = tables or build_tables(settings)
        self._by_name: dict[str, Table] = {
            table.name: table for table in self.tables.metadata.sorted_tables
        }
        self._column_cache: dict[str, set[str]] = {}

    def _table(self, name: str) -> Table:
        try:
            return self._by_name[name]
        except KeyError:
            raise ValueError(f"Unknown observability table: {name}") from None

    def insert(self, table: str, row: dict[str, Any]) -> None:
        with self.engine.begin() as conn:
            conn.execute(self._table(table).insert(), row)

    def insert_get_id(self, table: str, row: dict[str, Any]) -> Optional[int]:
        with self.engine.begin() as conn:
            result = conn.execute(self._table(table).insert(), row)
            primary_key = result.inserted_primary_key
        return int(primary_key[0]) if primary_key and primary_key[0] is not None else None

    def insert_many(self, table: str, rows: list[dict[str, Any]]) -> None:
        if not rows:
            return
        with self.engine.begin() as conn:
            conn.execute(self._table(table).insert(), rows)

    def has_column(self, table: str, column: str) -> bool:
        """Check the live schema once per table; the answer is cached."""
        if table not in self._column_cache:
            columns = inspect(self.engine).get_columns(table)
            self._column_cache[table] = {col["name"] for col in columns}
        return column in self._column_cache[table]


class BestEffortSink:
    """
    Wraps any ``EventSink`` so that no call ever raises.

    Failed writes return None / False and increment
    ``observability_writes_dropped_total``.
    """

    def __init__(self, inner: EventSink):
        self.inner = inner

    def _dropped(self, operation: str, table: str, error: Exception) -> None:
        observability_writes_dropped_total.labels(table=table).inc()
        logger.debug(
            "Observability write dropped",
            operation=operation,
            table=table,
            error_type=type(error).__name__,
            error=str(error),
        )

    def insert(self, table: str, row: dict[str, Any]) -> None:
        try:
            self.inner.insert(table, row)
        except Exception as e:
            self._dropped("insert", table, e)

    def insert_get_id(self, table: str, row: dict[str, Any]) -> Optional[int]:
        try:
            return self.inner.insert_get_id(table, row)
        except Exception as e:
            self._dropped("insert_get_id", table, e)
            return None

    def insert_many(self, table: str, rows: list[dict[str, Any]]) -> None:
        try:
            self.inner.insert_many(table, rows)
        except Exception as e:
            self._dropped("insert_many", table, e)

    def has_column(self, table: str, column: str) -> bool:
        try:
            return self.inner.has_column(table, column)
        except Exception as e:
            logger.debug("Schema probe failed", table=table, column=column, error=str(e))
            return False
