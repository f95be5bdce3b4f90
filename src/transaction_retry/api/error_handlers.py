"""
FastAPI exception handlers for structured error responses.

Database errors that reach the application are reported through the
``QueryExceptionLogger`` before the JSON response is built.
"""

import logging
from datetime import datetime, timezone

from fastapi import Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from transaction_retry.db.errors import QueryError
from transaction_retry.retry.exceptions import RetriesExhausted

logger = logging.getLogger(__name__)


def _report(request: Request, exc: Exception) -> None:
    services = getattr(request.app.state, "services", None)
    if services is None:
        return
    services.exception_logger.report(exc, services.settings.CONNECTION_NAME)


async def database_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Handle database errors (SQLAlchemy errors and QueryError).

    Maps to 500 Internal Server Error after persisting the exception event.

    Args:
        request: FastAPI request
        exc: Database error instance

    Returns:
        JSON error response
    """
    logger.error(
        "Database error",
        extra={"error_type": type(exc).__name__, "error": str(exc)},
    )
    _report(request, exc)

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "database_error",
            "message": "A database error occurred",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
    )


async def retries_exhausted_handler(request: Request, exc: RetriesExhausted) -> JSONResponse:
    """
    Handle retry exhaustion without a rethrowable error.

    Maps to 503 Service Unavailable (temporary contention).
    """
    logger.error(
        "Transaction retries exhausted",
        extra={"max_retries": exc.max_retries},
    )

    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "error": "retries_exhausted",
            "message": str(exc),
            "attempts": exc.max_retries,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
    )


async def generic_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Handle unexpected errors.

    Maps to 500 Internal Server Error.

    Args:
        request: FastAPI request
        exc: Exception instance

    Returns:
        JSON error response
    """
    logger.exception(
        "Unexpected error",
        extra={"error_type": type(exc).__name__},
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "internal_error",
            "message": "An unexpected error occurred",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
    )


# Exception handler mapping for FastAPI app.add_exception_handler()
EXCEPTION_HANDLERS = {
    SQLAlchemyError: database_error_handler,
    QueryError: database_error_handler,
    RetriesExhausted: retries_exhausted_handler,
    Exception: generic_error_handler,
}
