"""
Persisted row models.

Each model mirrors one observability table (see ``db.schema``). Writers build
a model, then insert ``row.model_dump()``; the read API returns the same
models, so the table layout is described in exactly one place per table.
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from transaction_retry.models.enums import LogLevel, RetryStatus, TransactionStatus


class RetryEventRow(BaseModel):
    """
    One terminal retry event.

    Well-known context keys become typed columns; anything else lands in
    ``context``. Hashes are None when every contributing field is empty.
    """

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)

    id: Optional[int] = None
    occurred_at: datetime
    retry_status: RetryStatus
    log_level: LogLevel
    attempt: int = Field(default=0, ge=0)
    max_retries: int = Field(default=0, ge=0)
    trx_label: Optional[str] = Field(default=None, max_length=120)
    retry_group_id: Optional[str] = None
    exception_class: Optional[str] = None
    sql_state: Optional[str] = None
    driver_code: Optional[int] = None
    connection: Optional[str] = None
    raw_sql: Optional[str] = None
    error_info: Optional[list[Any]] = None
    method: Optional[str] = None
    route_name: Optional[str] = None
    url: Optional[str] = None
    user_type: Optional[str] = None
    user_id: Optional[str] = None
    auth_header_len: Optional[int] = None
    route_hash: Optional[str] = None
    query_hash: Optional[str] = None
    event_hash: Optional[str] = None
    context: Optional[dict[str, Any]] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class TransactionSummary(BaseModel):
    """One completed root transaction that crossed the duration threshold."""

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)

    id: Optional[int] = None
    transaction_label: Optional[str] = None
    connection_name: str
    status: TransactionStatus
    elapsed_ms: int = Field(ge=0)
    started_at: datetime
    completed_at: datetime
    total_queries_count: int = Field(ge=0)
    slow_queries_count: int = Field(default=0, ge=0)
    user_id: Optional[str] = None
    route_name: Optional[str] = None
    http_method: Optional[str] = None
    url: Optional[str] = None
    ip_address: Optional[str] = None


class QueryDetailRow(BaseModel):
    """One slow query of a persisted transaction."""

    model_config = ConfigDict(from_attributes=True)

    id: Optional[int] = None
    transaction_log_id: int
    sql_query: str
    execution_time_ms: int = Field(ge=0)
    connection_name: str
    query_order: int = Field(ge=1)
    transaction_log_completed_at: Optional[datetime] = None


class ExceptionEventRow(BaseModel):
    """One unhandled query exception."""

    model_config = ConfigDict(from_attributes=True)

    id: Optional[int] = None
    occurred_at: datetime
    exception_class: str
    sql_state: Optional[str] = None
    driver_code: Optional[int] = None
    connection: Optional[str] = None
    sql: Optional[str] = None
    raw_sql: Optional[str] = None
    bindings: Optional[Any] = None
    error_message: Optional[str] = None
    error_info: Optional[list[Any]] = None
    method: Optional[str] = None
    route_name: Optional[str] = None
    url: Optional[str] = None
    ip_address: Optional[str] = None
    user_type: Optional[str] = None
    user_id: Optional[str] = None
    auth_header_len: Optional[int] = None
    auth_header_hash: Optional[str] = None
    trace: Optional[list[dict[str, Any]]] = None
    event_hash: Optional[str] = None
    context: Optional[dict[str, Any]] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
