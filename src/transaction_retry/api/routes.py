"""
Read-only metrics API over persisted retry events, slow transactions and
unhandled query exceptions.

All endpoints are synchronous: the repository uses blocking SQLAlchemy
connections, so FastAPI runs the handlers in its threadpool.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from transaction_retry.api.dependencies import get_repository, get_services, get_settings
from transaction_retry.api.models import (
    DailyCountsData,
    DailyCountsResponse,
    EventListResponse,
    EventResponse,
    ExceptionListResponse,
    ExceptionResponse,
    HealthResponse,
    PageMeta,
    TransactionDetail,
    TransactionDetailResponse,
    TransactionListResponse,
)
from transaction_retry.config import Settings
from transaction_retry.persistence.repository import (
    DEFAULT_PER_PAGE,
    MAX_PER_PAGE,
    EventRepository,
)
from transaction_retry.services import TransactionRetryServices

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get(
    "/events",
    response_model=EventListResponse,
    summary="List retry events",
    description="""
    Paginated retry events, newest first.

    Every filter is an exact match; `from`/`to` bound `occurred_at`
    (inclusive). `per_page` is clamped to [1, 200].
    """,
)
def list_events(
    retry_status: Optional[str] = None,
    log_level: Optional[str] = None,
    retry_group_id: Optional[str] = None,
    route_hash: Optional[str] = None,
    query_hash: Optional[str] = None,
    event_hash: Optional[str] = None,
    method: Optional[str] = None,
    route_name: Optional[str] = None,
    user_id: Optional[str] = None,
    occurred_from: Optional[datetime] = Query(default=None, alias="from"),
    occurred_to: Optional[datetime] = Query(default=None, alias="to"),
    page: int = Query(default=1, ge=1),
    per_page: int = Query(default=DEFAULT_PER_PAGE),
    repository: EventRepository = Depends(get_repository),
) -> EventListResponse:
    filters = {
        "retry_status": retry_status,
        "log_level": log_level,
        "retry_group_id": retry_group_id,
        "route_hash": route_hash,
        "query_hash": query_hash,
        "event_hash": event_hash,
        "method": method,
        "route_name": route_name,
        "user_id": user_id,
    }
    result = repository.list_events(
        filters=filters,
        occurred_from=occurred_from,
        occurred_to=occurred_to,
        page=page,
        per_page=per_page,
    )
    return EventListResponse(
        data=result.items,
        meta=PageMeta(page=result.page, per_page=result.per_page, total=result.total),
    )


# Registered before /events/{event_id} so "today" is not parsed as an id
@router.get(
    "/events/today",
    response_model=DailyCountsResponse,
    summary="Today's retry event counts",
)
def events_today(
    repository: EventRepository = Depends(get_repository),
) -> DailyCountsResponse:
    counts = repository.daily_counts()
    return DailyCountsResponse(
        data=DailyCountsData(
            date=counts.date,
            from_=counts.start,
            to=counts.end,
            attempt_records=counts.attempt_records,
            success_records=counts.success_records,
            failure_records=counts.failure_records,
        )
    )


@router.get(
    "/events/{event_id}",
    response_model=EventResponse,
    summary="Get one retry event",
    responses={404: {"description": "Event not found"}},
)
def get_event(
    event_id: int,
    repository: EventRepository = Depends(get_repository),
) -> EventResponse:
    event = repository.get_event(event_id)
    if event is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Retry event {event_id} not found",
        )
    return EventResponse(data=event)


@router.get(
    "/transactions",
    response_model=TransactionListResponse,
    summary="List slow transactions",
)
def list_transactions(
    status_filter: Optional[str] = Query(default=None, alias="status"),
    min_elapsed_ms: Optional[int] = Query(default=None, ge=0),
    limit: int = Query(default=DEFAULT_PER_PAGE, ge=1, le=MAX_PER_PAGE),
    repository: EventRepository = Depends(get_repository),
) -> TransactionListResponse:
    return TransactionListResponse(
        data=repository.list_transactions(
            status=status_filter, min_elapsed_ms=min_elapsed_ms, limit=limit
        )
    )


@router.get(
    "/transactions/{transaction_id}",
    response_model=TransactionDetailResponse,
    summary="Get one slow transaction with its slow queries",
    responses={404: {"description": "Transaction not found"}},
)
def get_transaction(
    transaction_id: int,
    repository: EventRepository = Depends(get_repository),
) -> TransactionDetailResponse:
    found = repository.get_transaction(transaction_id)
    if found is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Transaction log {transaction_id} not found",
        )
    summary, queries = found
    return TransactionDetailResponse(data=TransactionDetail(transaction=summary, queries=queries))


@router.get(
    "/exceptions",
    response_model=ExceptionListResponse,
    summary="List unhandled query exceptions",
    description="""
    Paginated query exceptions, newest first. Filters are exact matches;
    `from`/`to` bound `occurred_at` (inclusive).
    """,
)
def list_exceptions(
    exception_class: Optional[str] = None,
    sql_state: Optional[str] = None,
    driver_code: Optional[int] = None,
    connection: Optional[str] = None,
    event_hash: Optional[str] = None,
    method: Optional[str] = None,
    route_name: Optional[str] = None,
    user_id: Optional[str] = None,
    occurred_from: Optional[datetime] = Query(default=None, alias="from"),
    occurred_to: Optional[datetime] = Query(default=None, alias="to"),
    page: int = Query(default=1, ge=1),
    per_page: int = Query(default=DEFAULT_PER_PAGE),
    repository: EventRepository = Depends(get_repository),
) -> ExceptionListResponse:
    result = repository.list_exceptions(
        filters={
            "exception_class": exception_class,
            "sql_state": sql_state,
            "driver_code": driver_code,
            "connection": connection,
            "event_hash": event_hash,
            "method": method,
            "route_name": route_name,
            "user_id": user_id,
        },
        occurred_from=occurred_from,
        occurred_to=occurred_to,
        page=page,
        per_page=per_page,
    )
    return ExceptionListResponse(
        data=result.items,
        meta=PageMeta(page=result.page, per_page=result.per_page, total=result.total),
    )


@router.get(
    "/exceptions/{exception_id}",
    response_model=ExceptionResponse,
    summary="Get one query exception",
    responses={404: {"description": "Exception not found"}},
)
def get_exception(
    exception_id: int,
    repository: EventRepository = Depends(get_repository),
) -> ExceptionResponse:
    found = repository.get_exception(exception_id)
    if found is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Query exception {exception_id} not found",
        )
    return ExceptionResponse(data=found)


health_router = APIRouter()


@health_router.get(
    "/health",
    response_model=HealthResponse,
    summary="Service health check",
    description="""
    Reports whether retries are currently enabled and whether the
    observability store answers queries.
    """,
)
def health_check(
    settings: Settings = Depends(get_settings),
    services: TransactionRetryServices = Depends(get_services),
) -> HealthResponse:
    database_ok = services.repository.ping()
    if not database_ok:
        logger.warning("Health check degraded: observability store unavailable")

    return HealthResponse(
        status="ok" if database_ok else "degraded",
        version=settings.APP_VERSION,
        retries_enabled=services.toggle.is_enabled(),
        database="ok" if database_ok else "unavailable",
        checked_at=datetime.now(timezone.utc),
    )
