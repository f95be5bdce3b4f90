"""
Database transaction retries and slow transaction monitoring for SQLAlchemy.

Wraps transactional units of work in a retry loop that recognises transient
contention failures (deadlocks, serialization failures, configured
signatures), persists one event per retried invocation, and records root
transactions that exceed a duration threshold together with their slow
queries.

Architecture: SQLAlchemy engine events + retry orchestrator + best-effort
observability store, with a FastAPI read API and a typer CLI on top.
"""

__version__ = "0.1.0"
