"""
SQLAlchemy integration.

- errors.py: Driver-neutral error info (SQLSTATE, vendor code, SQL, bindings)
- sql.py: Binding stringification and literal substitution for logging
- runner.py: Transaction runner used by the retry engine
- events.py: Engine event listeners feeding the depth tracker
- schema.py: Observability table definitions
"""

from transaction_retry.db.errors import DatabaseErrorInfo, QueryError, extract_error_info
from transaction_retry.db.events import INTERNAL_EXECUTION_OPTION, attach_transaction_monitor
from transaction_retry.db.runner import SQLAlchemyTransactionRunner, TransactionRunner
from transaction_retry.db.schema import ObservabilityTables, build_tables, create_all

__all__ = [
    "DatabaseErrorInfo",
    "QueryError",
    "extract_error_info",
    "INTERNAL_EXECUTION_OPTION",
    "attach_transaction_monitor",
    "SQLAlchemyTransactionRunner",
    "TransactionRunner",
    "ObservabilityTables",
    "build_tables",
    "create_all",
]
