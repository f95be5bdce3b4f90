"""
Wiring of the retry engine, the transaction monitor and their sinks.

``build_services`` turns a ``Settings`` instance into the connected object
graph an application needs:

    services = build_services(settings)
    services.retrier.run_with_retry(lambda: checkout(cart), label="checkout")

The monitored engine and the observability engine are the same object unless
LOG_DATABASE_URL points elsewhere (recommended for SQLite, where a second
writer would wait on the monitored transaction's lock).
"""

from dataclasses import dataclass
from typing import Optional

import structlog
from sqlalchemy import Engine, create_engine

from transaction_retry.config import Settings
from transaction_retry.db.events import (
    INTERNAL_EXECUTION_OPTION,
    MonitorHandle,
    attach_transaction_monitor,
)
from transaction_retry.db.runner import SQLAlchemyTransactionRunner
from transaction_retry.db.schema import ObservabilityTables, build_tables
from transaction_retry.monitoring.recorder import SlowTransactionRecorder
from transaction_retry.monitoring.tracker import TransactionDepthTracker
from transaction_retry.persistence.event_writer import EventWriter
from transaction_retry.persistence.exception_logger import QueryExceptionLogger
from transaction_retry.persistence.repository import EventRepository
from transaction_retry.persistence.sink import BestEffortSink, SQLAlchemyEventSink
from transaction_retry.retry.classifier import ErrorClassifier
from transaction_retry.retry.engine import TransactionRetrier
from transaction_retry.retry.toggle import RetryToggle

logger = structlog.get_logger(__name__)


@dataclass
class TransactionRetryServices:
    """Connected components for one monitored database."""

    settings: Settings
    engine: Engine
    log_engine: Engine
    tables: ObservabilityTables
    sink: BestEffortSink
    event_writer: EventWriter
    exception_logger: QueryExceptionLogger
    toggle: RetryToggle
    classifier: ErrorClassifier
    runner: SQLAlchemyTransactionRunner
    retrier: TransactionRetrier
    recorder: SlowTransactionRecorder
    tracker: TransactionDepthTracker
    repository: EventRepository
    monitor: Optional[MonitorHandle] = None

    def create_tables(self) -> None:
        internal = self.log_engine.execution_options(**{INTERNAL_EXECUTION_OPTION: True})
        self.tables.metadata.create_all(internal)

    def close(self) -> None:
        if self.monitor is not None:
            self.monitor.detach()
            self.monitor = None
        self.engine.dispose()
        if self.log_engine is not self.engine:
            self.log_engine.dispose()


def build_services(
    settings: Settings,
    engine: Optional[Engine] = None,
    log_engine: Optional[Engine] = None,
) -> TransactionRetryServices:
    """
    Build and connect every component from ``settings``.

    Args:
        settings: Application settings
        engine: Monitored engine (created from DATABASE_URL when omitted)
        log_engine: Observability engine (created from LOG_DATABASE_URL, or
            the monitored engine when both URLs are equal)

    Returns:
        TransactionRetryServices with the monitor attached when
        SLOW_TRANSACTIONS_ENABLED is set
    """
    engine = engine or create_engine(settings.DATABASE_URL)
    if log_engine is None:
        if settings.log_database_url == settings.DATABASE_URL:
            log_engine = engine
        else:
            log_engine = create_engine(settings.log_database_url)

    tables = build_tables(settings)
    sink = BestEffortSink(SQLAlchemyEventSink(log_engine, settings, tables))
    event_writer = EventWriter(sink, settings)
    exception_logger = QueryExceptionLogger(sink, settings)
    toggle = RetryToggle(settings.STATE_PATH, settings.ENABLED)
    classifier = ErrorClassifier.from_settings(settings)
    runner = SQLAlchemyTransactionRunner.from_settings(engine, settings)
    retrier = TransactionRetrier(
        runner,
        settings,
        classifier=classifier,
        event_writer=event_writer,
        toggle=toggle,
    )
    recorder = SlowTransactionRecorder(sink, settings)
    tracker = TransactionDepthTracker(recorder)

    monitor = None
    if settings.SLOW_TRANSACTIONS_ENABLED:
        monitor = attach_transaction_monitor(engine, tracker, settings.CONNECTION_NAME)

    logger.info(
        "Transaction retry services ready",
        connection=settings.CONNECTION_NAME,
        separate_log_store=log_engine is not engine,
        slow_transaction_monitor=monitor is not None,
        max_retries=settings.MAX_RETRIES,
    )

    return TransactionRetryServices(
        settings=settings,
        engine=engine,
        log_engine=log_engine,
        tables=tables,
        sink=sink,
        event_writer=event_writer,
        exception_logger=exception_logger,
        toggle=toggle,
        classifier=classifier,
        runner=runner,
        retrier=retrier,
        recorder=recorder,
        tracker=tracker,
        repository=EventRepository(log_engine, settings, tables),
        monitor=monitor,
    )
