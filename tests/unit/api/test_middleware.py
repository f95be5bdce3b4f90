"""
Unit tests for the request context middleware.
"""

import hashlib
from dataclasses import asdict

import pytest
import structlog
from fastapi import FastAPI
from fastapi.testclient import TestClient

from transaction_retry.api.middleware import RequestContextMiddleware, hash_authorization_header
from transaction_retry.context import current_request


class FakeUser:
    is_authenticated = True

    def __init__(self, identity):
        self.identity = identity


class FakeAuthMiddleware:
    """Sets scope["user"] the way Starlette's AuthenticationMiddleware does."""

    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] == "http":
            scope["user"] = FakeUser(identity=7)
        await self.app(scope, receive, send)


@pytest.fixture
def app():
    app = FastAPI()
    app.add_middleware(RequestContextMiddleware)

    @app.get("/orders/{order_id}", name="orders.show")
    def show_order(order_id: int):
        snapshot = current_request()
        return {
            "snapshot": asdict(snapshot) if snapshot else None,
            "request_id": structlog.contextvars.get_contextvars().get("request_id"),
        }

    return app


def test_hash_authorization_header():
    value = "Bearer secret-token"

    assert hash_authorization_header(value) == (
        len(value),
        hashlib.sha256(value.encode("utf-8")).hexdigest(),
    )
    assert hash_authorization_header(None) == (None, None)
    assert hash_authorization_header("") == (None, None)


def test_snapshot_uses_route_template(app):
    client = TestClient(app)

    response = client.get("/orders/42", headers={"Authorization": "Bearer abc"})

    snapshot = response.json()["snapshot"]
    assert snapshot["method"] == "GET"
    assert snapshot["route_name"] == "orders.show"
    assert snapshot["url"] == "/orders/{order_id}"
    assert snapshot["auth_header_len"] == len("Bearer abc")
    assert snapshot["auth_header_hash"] == hashlib.sha256(b"Bearer abc").hexdigest()
    # No authentication middleware installed
    assert snapshot["user_id"] is None


def test_request_id_header_matches_log_context(app):
    client = TestClient(app)

    response = client.get("/orders/1")

    assert response.headers["X-Request-ID"] == response.json()["request_id"]


def test_authenticated_user_is_attributed(app):
    # Added last, so it runs first and the user is set before the context middleware
    app.add_middleware(FakeAuthMiddleware)
    client = TestClient(app)

    snapshot = client.get("/orders/1").json()["snapshot"]

    assert snapshot["user_id"] == "7"
    assert snapshot["user_type"] == "FakeUser"


def test_context_is_cleared_after_request(app):
    client = TestClient(app)

    client.get("/orders/1")

    assert current_request() is None
