"""
Observability store.

- sink.py: Table writers (SQLAlchemy) and the never-raising wrapper
- event_writer.py: Retry event normalisation and hashing
- exception_logger.py: Unhandled query exception reporting
- repository.py: Read-side queries backing the metrics API

Writes go through connections flagged as internal, so they are never
monitored or retried themselves.
"""

from transaction_retry.persistence.event_writer import EventWriter, hash_from_parts
from transaction_retry.persistence.exception_logger import QueryExceptionLogger
from transaction_retry.persistence.repository import EventRepository
from transaction_retry.persistence.sink import BestEffortSink, EventSink, SQLAlchemyEventSink

__all__ = [
    "EventSink",
    "SQLAlchemyEventSink",
    "BestEffortSink",
    "EventWriter",
    "hash_from_parts",
    "QueryExceptionLogger",
    "EventRepository",
]
