"""SQLAlchemy table definitions for the observability store.

Uses SQLAlchemy Core (not ORM). Table names are configurable, so the tables
are built per ``Settings`` by ``build_tables`` rather than at import time.
"""

from dataclasses import dataclass

from sqlalchemy import (
    JSON,
    BigInteger,
    Column,
    DateTime,
    Engine,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
)

from transaction_retry.config import Settings
from transaction_retry.models.enums import LogLevel, RetryStatus, TransactionStatus

# SQLite only autoincrements INTEGER PRIMARY KEY
IdType = BigInteger().with_variant(Integer(), "sqlite")


@dataclass(frozen=True)
class ObservabilityTables:
    """The four tables written by the event writer, recorder and exception logger."""

    metadata: MetaData
    retry_events: Table
    transaction_logs: Table
    transaction_queries: Table
    exceptions: Table


def build_tables(settings: Settings) -> ObservabilityTables:
    """Build table objects using the configured table names."""
    metadata = MetaData()

    # === Retry events ===

    retry_events = Table(
        settings.LOG_TABLE,
        metadata,
        Column("id", IdType, primary_key=True, autoincrement=True),
        Column("occurred_at", DateTime(timezone=True), index=True),
        Column("retry_status", String(16), index=True),  # RetryStatus values
        Column("log_level", String(16), index=True),  # LogLevel values
        Column("attempt", Integer, nullable=False, default=0),
        Column("max_retries", Integer, nullable=False, default=0),
        Column("trx_label", String(120), index=True),
        Column("retry_group_id", String(64), index=True),
        Column("exception_class", String(255), index=True),
        Column("sql_state", String(10), index=True),
        Column("driver_code", Integer, index=True),
        Column("connection", String(100)),
        Column("raw_sql", Text),
        Column("error_info", JSON),
        Column("method", String(10), index=True),
        Column("route_name", String(255), index=True),
        Column("url", Text),
        Column("user_type", String(255), index=True),
        Column("user_id", String(64), index=True),
        Column("auth_header_len", Integer),
        Column("route_hash", String(64), index=True),
        Column("query_hash", String(64), index=True),
        Column("event_hash", String(64), index=True),
        Column("context", JSON),
        Column("created_at", DateTime(timezone=True)),
        Column("updated_at", DateTime(timezone=True)),
        info={"retry_status": RetryStatus.values(), "log_level": LogLevel.values()},
    )

    # === Slow transactions ===

    transaction_logs = Table(
        settings.TRANSACTION_LOG_TABLE,
        metadata,
        Column("id", IdType, primary_key=True, autoincrement=True),
        Column("transaction_label", String(255)),
        Column("connection_name", String(50), nullable=False, index=True),
        Column("status", String(16), nullable=False, index=True),  # TransactionStatus values
        Column("elapsed_ms", Integer, nullable=False, index=True),
        Column("started_at", DateTime(timezone=True), nullable=False, index=True),
        Column("completed_at", DateTime(timezone=True), nullable=False),
        Column("total_queries_count", Integer, nullable=False),
        Column("slow_queries_count", Integer, nullable=False, default=0),
        Column("user_id", String(64), index=True),
        Column("route_name", String(255), index=True),
        Column("http_method", String(10)),
        Column("url", Text),
        Column("ip_address", String(45)),
        info={"status": [status.value for status in TransactionStatus]},
    )
    Index(
        f"ix_{settings.TRANSACTION_LOG_TABLE}_status_elapsed",
        transaction_logs.c.status,
        transaction_logs.c.elapsed_ms,
    )

    transaction_queries = Table(
        settings.TRANSACTION_QUERY_TABLE,
        metadata,
        Column("id", IdType, primary_key=True, autoincrement=True),
        Column(
            "transaction_log_id",
            IdType,
            ForeignKey(f"{settings.TRANSACTION_LOG_TABLE}.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        Column("sql_query", Text, nullable=False),
        Column("execution_time_ms", Integer, nullable=False, index=True),
        Column("connection_name", String(50), nullable=False),
        Column("query_order", Integer, nullable=False),
        # Denormalised for time-range scans without a join
        Column("transaction_log_completed_at", DateTime(timezone=True)),
    )

    # === Unhandled query exceptions ===

    exceptions = Table(
        settings.EXCEPTION_TABLE,
        metadata,
        Column("id", IdType, primary_key=True, autoincrement=True),
        Column("occurred_at", DateTime(timezone=True), index=True),
        Column("exception_class", String(255), index=True),
        Column("sql_state", String(10), index=True),
        Column("driver_code", Integer, index=True),
        Column("connection", String(100)),
        Column("sql", Text),
        Column("raw_sql", Text),
        Column("bindings", JSON),
        Column("error_message", Text),
        Column("error_info", JSON),
        Column("method", String(10)),
        Column("route_name", String(255), index=True),
        Column("url", Text),
        Column("ip_address", String(45)),
        Column("user_type", String(255)),
        Column("user_id", String(64), index=True),
        Column("auth_header_len", Integer),
        Column("auth_header_hash", String(64)),
        Column("trace", JSON),
        Column("event_hash", String(64), index=True),
        Column("context", JSON),
        Column("created_at", DateTime(timezone=True)),
        Column("updated_at", DateTime(timezone=True)),
    )

    return ObservabilityTables(
        metadata=metadata,
        retry_events=retry_events,
        transaction_logs=transaction_logs,
        transaction_queries=transaction_queries,
        exceptions=exceptions,
    )


def create_all(engine: Engine, settings: Settings) -> ObservabilityTables:
    """Create any missing observability tables on ``engine``."""
    tables = build_tables(settings)
    tables.metadata.create_all(engine)
    return tables
