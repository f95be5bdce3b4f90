"""
Per-call context slots shared by the retry engine and the monitors.

Two slots live here, both on ``contextvars`` so concurrent requests and
threads never see each other's values:

- the HTTP caller snapshot, bound lazily as a provider by the API middleware
  (or explicitly by jobs via ``request_context``)
- the transaction label, exposed by the retry engine while a labelled unit
  of work runs so the depth tracker can attach it to the root frame

``trace_snapshot`` builds the bounded call-stack snapshot stored with retry
and exception events.
"""

import traceback
from contextlib import contextmanager
from contextvars import ContextVar, Token
from dataclasses import dataclass
from typing import Any, Callable, Iterator, Optional

import structlog

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class RequestSnapshot:
    """Caller attribution captured from the current HTTP request."""

    method: Optional[str] = None
    route_name: Optional[str] = None
    url: Optional[str] = None
    ip_address: Optional[str] = None
    user_id: Optional[str] = None
    user_type: Optional[str] = None
    auth_header_len: Optional[int] = None
    auth_header_hash: Optional[str] = None


RequestProvider = Callable[[], Optional[RequestSnapshot]]

_request_provider: ContextVar[Optional[RequestProvider]] = ContextVar(
    "transaction_retry_request_provider", default=None
)
_transaction_label: ContextVar[Optional[str]] = ContextVar(
    "transaction_retry_label", default=None
)


# === Request context ===

def bind_request(provider: RequestProvider) -> Token:
    """Bind a snapshot provider for the current context; returns a reset token."""
    return _request_provider.set(provider)


def reset_request(token: Token) -> None:
    _request_provider.reset(token)


@contextmanager
def request_context(snapshot: RequestSnapshot) -> Iterator[RequestSnapshot]:
    """Bind a fixed snapshot for the duration of the block."""
    token = bind_request(lambda: snapshot)
    try:
        yield snapshot
    finally:
        reset_request(token)


def current_request() -> Optional[RequestSnapshot]:
    """
    Return the caller snapshot, or None outside a request.

    Provider failures are logged and treated as "no request": attribution is
    diagnostic data and must never break the caller.
    """
    provider = _request_provider.get()
    if provider is None:
        return None
    try:
        return provider()
    except Exception as e:
        logger.debug("Request snapshot unavailable", error=str(e))
        return None


# === Transaction label ===

@contextmanager
def expose_transaction_label(label: Optional[str]) -> Iterator[None]:
    token = _transaction_label.set(label or None)
    try:
        yield
    finally:
        _transaction_label.reset(token)


def current_transaction_label() -> Optional[str]:
    return _transaction_label.get()


# === Call-stack snapshot ===

def trace_snapshot(
    limit: int = 15, error: Optional[BaseException] = None
) -> list[dict[str, Any]]:
    """
    Capture at most ``limit`` stack frames, innermost first.

    When ``error`` carries a traceback the frames come from it, otherwise
    from the current stack (excluding this function).

    Args:
        limit: Maximum number of frames kept (values below 1 keep none)
        error: Optional exception whose traceback should be used

    Returns:
        List of {"file", "line", "function"} dicts
    """
    if limit < 1:
        return []

    if error is not None and error.__traceback__ is not None:
        frames = traceback.extract_tb(error.__traceback__)
    else:
        frames = traceback.extract_stack()[:-1]

    return [
        {"file": frame.filename, "line": frame.lineno, "function": frame.name}
        for frame in reversed(frames)
    ][:limit]
