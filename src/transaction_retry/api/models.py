"""
API response models for the read-side endpoints.

Persisted rows are returned as their row models (see ``models.rows``),
wrapped in a ``data`` envelope with pagination metadata where relevant.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from transaction_retry.models.rows import (
    ExceptionEventRow,
    QueryDetailRow,
    RetryEventRow,
    TransactionSummary,
)


class PageMeta(BaseModel):
    """Pagination metadata."""

    page: int = Field(ge=1)
    per_page: int = Field(ge=1, le=200)
    total: int = Field(ge=0)


class EventListResponse(BaseModel):
    """Response for the retry event listing."""

    data: list[RetryEventRow]
    meta: PageMeta


class EventResponse(BaseModel):
    data: RetryEventRow


class DailyCountsData(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    date: str = Field(description="Day covered by the counts (UTC)", examples=["2026-01-31"])
    from_: datetime = Field(alias="from")
    to: datetime
    attempt_records: int = Field(ge=0)
    success_records: int = Field(ge=0)
    failure_records: int = Field(ge=0)


class DailyCountsResponse(BaseModel):
    """Response for today's retry event counts."""

    data: DailyCountsData


class TransactionListResponse(BaseModel):
    data: list[TransactionSummary]


class TransactionDetail(BaseModel):
    transaction: TransactionSummary
    queries: list[QueryDetailRow] = Field(default_factory=list)


class TransactionDetailResponse(BaseModel):
    """Response for one slow transaction with its slow queries."""

    data: TransactionDetail


class ExceptionListResponse(BaseModel):
    """Response for the query exception listing."""

    data: list[ExceptionEventRow]
    meta: PageMeta


class ExceptionResponse(BaseModel):
    data: ExceptionEventRow


class HealthResponse(BaseModel):
    """Response for health check endpoint."""

    status: str = Field(examples=["ok", "degraded"])
    version: str
    retries_enabled: bool
    database: str = Field(examples=["ok", "unavailable"])
    checked_at: Optional[datetime] = None
