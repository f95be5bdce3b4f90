"""
Read-side repository for persisted observability rows.

Backs the metrics API. Queries use SQLAlchemy Core against the tables built
from the configured names; reads run on internal connections so they are
never reported as monitored transactions.
"""

from dataclasses import dataclass
from datetime import datetime, time, timezone
from typing import Any, Mapping, Optional

import structlog
from sqlalchemy import Engine, Table, func, literal, select

from transaction_retry.config import Settings
from transaction_retry.db.events import INTERNAL_EXECUTION_OPTION
from transaction_retry.db.schema import ObservabilityTables, build_tables
from transaction_retry.models.enums import RetryStatus
from transaction_retry.models.rows import (
    ExceptionEventRow,
    QueryDetailRow,
    RetryEventRow,
    TransactionSummary,
)

logger = structlog.get_logger(__name__)

MAX_PER_PAGE = 200
DEFAULT_PER_PAGE = 50

# Exact-match filters accepted by list_events
EVENT_FILTER_COLUMNS = (
    "retry_status",
    "log_level",
    "retry_group_id",
    "route_hash",
    "query_hash",
    "event_hash",
    "method",
    "route_name",
    "user_id",
    "user_type",
)

# Exact-match filters accepted by list_exceptions
EXCEPTION_FILTER_COLUMNS = (
    "exception_class",
    "sql_state",
    "driver_code",
    "connection",
    "event_hash",
    "method",
    "route_name",
    "user_id",
)


def clamp_per_page(per_page: Optional[int]) -> int:
    if per_page is None:
        return DEFAULT_PER_PAGE
    return min(max(int(per_page), 1), MAX_PER_PAGE)


@dataclass(frozen=True)
class EventPage:
    """One page of retry events, newest first."""

    items: list[RetryEventRow]
    page: int
    per_page: int
    total: int


@dataclass(frozen=True)
class ExceptionPage:
    """One page of unhandled query exceptions, newest first."""

    items: list[ExceptionEventRow]
    page: int
    per_page: int
    total: int


@dataclass(frozen=True)
class DailyCounts:
    """Retry events per status for one day (UTC)."""

    date: str
    start: datetime
    end: datetime
    attempt_records: int
    success_records: int
    failure_records: int


class EventRepository:
    """
    Queries over retry events, slow transaction logs and query exceptions.

    Attributes:
        engine: Engine for the observability store
        tables: Table objects built from the configured names
    """

    def __init__(
        self,
        engine: Engine,
        settings: Settings,
        tables: Optional[ObservabilityTables] = None,
    ):
        self.engine = engine.execution_options(**{INTERNAL_EXECUTION_OPTION: True})
        self.settings = settings
        self.tables = tables or build_tables(settings)

    def list_events(
        self,
        filters: Optional[dict[str, Optional[str]]] = None,
        occurred_from: Optional[datetime] = None,
        occurred_to: Optional[datetime] = None,
        page: int = 1,
        per_page: Optional[int] = None,
    ) -> EventPage:
        """
        List retry events matching exact-match filters and a time range.

        Args:
            filters: Column -> value; unknown columns and empty values are ignored
            occurred_from: Inclusive lower bound on occurred_at
            occurred_to: Inclusive upper bound on occurred_at
            page: 1-based page number
            per_page: Page size, clamped to [1, 200]

        Returns:
            EventPage ordered by occurred_at desc, id desc
        """
        page = max(int(page), 1)
        per_page = clamp_per_page(per_page)
        rows, total = self._page(
            self.tables.retry_events,
            EVENT_FILTER_COLUMNS,
            filters,
            occurred_from,
            occurred_to,
            page,
            per_page,
        )
        return EventPage(
            items=[RetryEventRow.model_validate(row) for row in rows],
            page=page,
            per_page=per_page,
            total=total,
        )

    def _page(
        self,
        table: Table,
        filter_columns: tuple[str, ...],
        filters: Optional[Mapping[str, Any]],
        occurred_from: Optional[datetime],
        occurred_to: Optional[datetime],
        page: int,
        per_page: int,
    ) -> tuple[list[dict[str, Any]], int]:
        conditions = []
        for column, value in (filters or {}).items():
            if column in filter_columns and value not in (None, ""):
                conditions.append(table.c[column] == value)
        if occurred_from is not None:
            conditions.append(table.c.occurred_at >= occurred_from)
        if occurred_to is not None:
            conditions.append(table.c.occurred_at <= occurred_to)

        query = (
            select(table)
            .where(*conditions)
            .order_by(table.c.occurred_at.desc(), table.c.id.desc())
            .limit(per_page)
            .offset((page - 1) * per_page)
        )
        count_query = select(func.count()).select_from(table).where(*conditions)

        with self.engine.connect() as conn:
            rows = conn.execute(query).mappings().all()
            total = conn.execute(count_query).scalar_one()
        return [dict(row) for row in rows], int(total)

    def get_event(self, event_id: int) -> Optional[RetryEventRow]:
        events = self.tables.retry_events
        try:
            with self.engine.connect() as conn:
                row = conn.execute(select(events).where(events.c.id == event_id)).mappings().first()
        except Exception as e:
            logger.error(
                "Failed to retrieve retry event",
                extra={"event_id": event_id, "error": str(e)},
                exc_info=True,
            )
            return None

        if row is None:
            logger.debug("Retry event not found", extra={"event_id": event_id})
            return None
        return RetryEventRow.model_validate(dict(row))

    def daily_counts(self, day: Optional[datetime] = None) -> DailyCounts:
        """Count attempt/success/failure events for ``day`` (default: today, UTC)."""
        day = day or datetime.now(timezone.utc)
        start = datetime.combine(day.date(), time.min, tzinfo=timezone.utc)
        end = datetime.combine(day.date(), time.max, tzinfo=timezone.utc)
        events = self.tables.retry_events

        query = (
            select(events.c.retry_status, func.count())
            .where(
                events.c.occurred_at.is_not(None),
                events.c.occurred_at >= start,
                events.c.occurred_at <= end,
            )
            .group_by(events.c.retry_status)
        )
        with self.engine.connect() as conn:
            counts = {status: int(count) for status, count in conn.execute(query)}

        return DailyCounts(
            date=start.date().isoformat(),
            start=start,
            end=end,
            attempt_records=counts.get(RetryStatus.ATTEMPT.value, 0),
            success_records=counts.get(RetryStatus.SUCCESS.value, 0),
            failure_records=counts.get(RetryStatus.FAILURE.value, 0),
        )

    def list_transactions(
        self,
        status: Optional[str] = None,
        min_elapsed_ms: Optional[int] = None,
        limit: int = DEFAULT_PER_PAGE,
    ) -> list[TransactionSummary]:
        """Most recent slow transactions, newest first."""
        logs = self.tables.transaction_logs
        conditions = []
        if status:
            conditions.append(logs.c.status == status)
        if min_elapsed_ms is not None:
            conditions.append(logs.c.elapsed_ms >= min_elapsed_ms)

        query = (
            select(logs)
            .where(*conditions)
            .order_by(logs.c.completed_at.desc(), logs.c.id.desc())
            .limit(clamp_per_page(limit))
        )
        with self.engine.connect() as conn:
            rows = conn.execute(query).mappings().all()
        return [TransactionSummary.model_validate(dict(row)) for row in rows]

    def get_transaction(
        self, transaction_id: int
    ) -> Optional[tuple[TransactionSummary, list[QueryDetailRow]]]:
        """A slow transaction with its slow query rows (by query_order)."""
        logs = self.tables.transaction_logs
        queries = self.tables.transaction_queries
        try:
            with self.engine.connect() as conn:
                row = conn.execute(select(logs).where(logs.c.id == transaction_id)).mappings().first()
                if row is None:
                    return None
                detail_rows = conn.execute(
                    select(queries)
                    .where(queries.c.transaction_log_id == transaction_id)
                    .order_by(queries.c.query_order)
                ).mappings().all()
        except Exception as e:
            logger.error(
                "Failed to retrieve slow transaction",
                extra={"transaction_id": transaction_id, "error": str(e)},
                exc_info=True,
            )
            return None

        return (
            TransactionSummary.model_validate(dict(row)),
            [QueryDetailRow.model_validate(dict(detail)) for detail in detail_rows],
        )

    def list_exceptions(
        self,
        filters: Optional[Mapping[str, Any]] = None,
        occurred_from: Optional[datetime] = None,
        occurred_to: Optional[datetime] = None,
        page: int = 1,
        per_page: Optional[int] = None,
    ) -> ExceptionPage:
        """Unhandled query exceptions; same filtering and paging rules as list_events."""
        page = max(int(page), 1)
        per_page = clamp_per_page(per_page)
        rows, total = self._page(
            self.tables.exceptions,
            EXCEPTION_FILTER_COLUMNS,
            filters,
            occurred_from,
            occurred_to,
            page,
            per_page,
        )
        return ExceptionPage(
            items=[ExceptionEventRow.model_validate(row) for row in rows],
            page=page,
            per_page=per_page,
            total=total,
        )

    def get_exception(self, exception_id: int) -> Optional[ExceptionEventRow]:
        exceptions = self.tables.exceptions
        try:
            with self.engine.connect() as conn:
                row = conn.execute(
                    select(exceptions).where(exceptions.c.id == exception_id)
                ).mappings().first()
        except Exception as e:
            logger.error(
                "Failed to retrieve query exception",
                extra={"exception_id": exception_id, "error": str(e)},
                exc_info=True,
            )
            return None

        if row is None:
            logger.debug("Query exception not found", extra={"exception_id": exception_id})
            return None
        return ExceptionEventRow.model_validate(dict(row))

    def ping(self) -> bool:
        """True when the observability store answers a trivial query."""
        try:
            with self.engine.connect() as conn:
                conn.execute(select(literal(1))).scalar_one()
        except Exception as e:
            logger.warning("Observability store unavailable", extra={"error": str(e)})
            return False
        return True
