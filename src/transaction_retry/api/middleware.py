"""FastAPI middleware for request tracing and caller attribution."""

import hashlib
import time
import uuid
from typing import Callable, Optional

import structlog
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from transaction_retry.context import RequestSnapshot, bind_request, reset_request

logger = structlog.get_logger(__name__)


def hash_authorization_header(value: Optional[str]) -> tuple[Optional[int], Optional[str]]:
    """Length and SHA-256 of an Authorization header; the header itself is never stored."""
    if not value:
        return None, None
    return len(value), hashlib.sha256(value.encode("utf-8")).hexdigest()


def _user_identity(request: Request) -> tuple[Optional[str], Optional[str]]:
    # scope["user"] only exists behind an authentication middleware
    user = request.scope.get("user")
    if user is None or not getattr(user, "is_authenticated", True):
        return None, None
    identity = getattr(user, "identity", None) or getattr(user, "id", None)
    return (str(identity) if identity is not None else None), type(user).__name__


def snapshot_request(request: Request) -> RequestSnapshot:
    """
    Build the caller snapshot for ``request``.

    The URL is the matched route template (``/orders/{order_id}``) when
    routing has happened, so events group per endpoint rather than per id.
    """
    route = request.scope.get("route")
    user_id, user_type = _user_identity(request)
    auth_len, auth_hash = hash_authorization_header(request.headers.get("authorization"))

    return RequestSnapshot(
        method=request.method,
        route_name=getattr(route, "name", None),
        url=getattr(route, "path", None) or request.url.path,
        ip_address=request.client.host if request.client else None,
        user_id=user_id,
        user_type=user_type,
        auth_header_len=auth_len,
        auth_header_hash=auth_hash,
    )


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Middleware binding request context for logs and database events.

    Features:
    - Generates unique request_id (UUID4) for each request
    - Binds request_id to structlog context (appears in all logs)
    - Binds a lazy RequestSnapshot provider read by retry and exception events
    - Adds X-Request-ID response header for client correlation
    """

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Response]
    ) -> Response:
        """Process request with tracing and attribution context."""
        request_id = str(uuid.uuid4())

        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
            client_host=request.client.host if request.client else None,
        )
        # Resolved lazily: the matched route is only known after routing
        token = bind_request(lambda: snapshot_request(request))

        start_time = time.perf_counter()
        try:
            response = await call_next(request)
            duration_ms = (time.perf_counter() - start_time) * 1000

            logger.debug(
                "Request completed",
                status_code=response.status_code,
                duration_ms=round(duration_ms, 2),
            )

            response.headers["X-Request-ID"] = request_id
            return response

        except Exception as exc:
            duration_ms = (time.perf_counter() - start_time) * 1000
            logger.error(
                "Request failed",
                exc_info=exc,
                duration_ms=round(duration_ms, 2),
            )
            raise

        finally:
            reset_request(token)
            structlog.contextvars.clear_contextvars()
