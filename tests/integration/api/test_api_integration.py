"""
Integration tests for the metrics API.

These tests use TestClient against an app wired to the real service graph
(two SQLite files), so every endpoint reads rows written by the retry
engine, the monitor and the exception logger.
"""

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import select

from transaction_retry.db.errors import QueryError
from transaction_retry.main import create_app
from transaction_retry.retry.exceptions import RetriesExhausted


@pytest.fixture
def app(services):
    app = create_app(services.settings, services=services)

    @app.get("/boom/{report_id}", name="reports.boom")
    def boom(report_id: int):
        raise QueryError(
            "server has gone away",
            sql_state="HY000",
            driver_code=2006,
            sql="SELECT * FROM reports WHERE id = ?",
            bindings=[report_id],
        )

    @app.get("/exhausted")
    def exhausted():
        raise RetriesExhausted(3)

    @app.get("/crash")
    def crash():
        raise RuntimeError("unexpected")

    return app


@pytest.fixture
def client(app):
    return TestClient(app, raise_server_exceptions=False)


def write_event(services, level="error", **context):
    context.setdefault("attempt", 1)
    context.setdefault("max_retries", 3)
    services.event_writer.write(context, level=level)


def test_root_endpoint(client):
    response = client.get("/")

    assert response.status_code == 200
    data = response.json()
    assert data["service"] == "DB Transaction Retry (Test)"
    assert data["events"] == "/api/transaction-retry/events"
    assert data["metrics"] is None


def test_health_endpoint(client, services):
    response = client.get("/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert data["database"] == "ok"
    assert data["retries_enabled"] is True
    assert data["version"] == "0.1.0"

    services.toggle.disable()
    assert client.get("/health").json()["retries_enabled"] is False


def test_list_events(client, services):
    write_event(services, level="warning", trx_label="checkout", method="POST")
    write_event(services, level="error", trx_label="refund")

    response = client.get("/api/transaction-retry/events")

    assert response.status_code == 200
    body = response.json()
    assert body["meta"] == {"page": 1, "per_page": 50, "total": 2}
    assert [event["trx_label"] for event in body["data"]] == ["refund", "checkout"]

    failures = client.get("/api/transaction-retry/events", params={"retry_status": "failure"}).json()
    assert [event["trx_label"] for event in failures["data"]] == ["refund"]

    posts = client.get("/api/transaction-retry/events", params={"method": "POST"}).json()
    assert posts["meta"]["total"] == 1


def test_list_events_time_range(client, services):
    write_event(services)
    now = datetime.now(timezone.utc)

    inside = client.get(
        "/api/transaction-retry/events",
        params={"from": (now - timedelta(hours=1)).isoformat(), "to": (now + timedelta(hours=1)).isoformat()},
    ).json()
    after = client.get("/api/transaction-retry/events", params={"from": (now + timedelta(hours=1)).isoformat()}).json()

    assert inside["meta"]["total"] == 1
    assert after["meta"]["total"] == 0


def test_list_events_pagination_is_clamped(client, services):
    for attempt in (1, 2, 3):
        write_event(services, attempt=attempt)

    body = client.get("/api/transaction-retry/events", params={"per_page": 1000, "page": 1}).json()
    assert body["meta"]["per_page"] == 200
    assert len(body["data"]) == 3

    assert client.get("/api/transaction-retry/events", params={"page": 0}).status_code == 422


def test_events_today(client, services):
    write_event(services, level="warning")
    write_event(services, level="error")
    write_event(services, level="error", retry_status="attempt")

    response = client.get("/api/transaction-retry/events/today")

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["date"] == datetime.now(timezone.utc).date().isoformat()
    assert "from" in data and "to" in data
    assert data["attempt_records"] == 1
    assert data["success_records"] == 1
    assert data["failure_records"] == 1


def test_get_event(client, services):
    write_event(services, trx_label="checkout", failure_kind="deadlock")
    event_id = client.get("/api/transaction-retry/events").json()["data"][0]["id"]

    response = client.get(f"/api/transaction-retry/events/{event_id}")

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["trx_label"] == "checkout"
    assert data["context"] == {"failure_kind": "deadlock"}


def test_get_event_not_found(client):
    response = client.get("/api/transaction-retry/events/999")

    assert response.status_code == 404
    assert "999" in response.json()["detail"]


def test_transactions(client, services):
    services.retrier.run_with_retry(lambda: None, label="noop")
    with services.engine.begin() as conn:
        conn.exec_driver_sql("UPDATE accounts SET balance = balance + 1 WHERE id = 1")

    listing = client.get("/api/transaction-retry/transactions").json()["data"]
    assert len(listing) == 2
    assert {t["status"] for t in listing} == {"committed"}

    rolled_back = client.get("/api/transaction-retry/transactions", params={"status": "rolled_back"}).json()
    assert rolled_back["data"] == []

    detail = next(t for t in listing if t["total_queries_count"] == 1)
    response = client.get(f"/api/transaction-retry/transactions/{detail['id']}")
    assert response.status_code == 200
    body = response.json()["data"]
    assert body["transaction"]["id"] == detail["id"]
    assert [q["query_order"] for q in body["queries"]] == [1]
    assert body["queries"][0]["sql_query"].startswith("UPDATE accounts")


def test_transaction_not_found(client):
    assert client.get("/api/transaction-retry/transactions/999").status_code == 404
    assert client.get("/api/transaction-retry/transactions", params={"limit": 0}).status_code == 422


def test_database_error_is_logged_and_mapped(client, services):
    response = client.get("/boom/5", headers={"Authorization": "Bearer abc"})

    assert response.status_code == 500
    assert response.json()["error"] == "database_error"
    assert "X-Request-ID" in response.headers

    exceptions = services.tables.exceptions
    with services.log_engine.connect() as conn:
        [row] = conn.execute(select(exceptions)).mappings().all()
    assert row["exception_class"] == "transaction_retry.db.errors.QueryError"
    assert row["driver_code"] == 2006
    assert row["connection"] == "default"
    assert row["raw_sql"] == "SELECT * FROM reports WHERE id = 5"
    assert row["method"] == "GET"
    assert row["route_name"] == "reports.boom"
    assert row["url"] == "/boom/{report_id}"
    assert row["auth_header_len"] == len("Bearer abc")


def test_exceptions(client):
    client.get("/boom/5")
    client.get("/boom/6")

    response = client.get("/api/transaction-retry/exceptions", params={"driver_code": 2006})

    assert response.status_code == 200
    body = response.json()
    assert body["meta"] == {"page": 1, "per_page": 50, "total": 2}
    newest = body["data"][0]
    assert newest["raw_sql"] == "SELECT * FROM reports WHERE id = 6"
    assert newest["route_name"] == "reports.boom"

    detail = client.get(f"/api/transaction-retry/exceptions/{newest['id']}")
    assert detail.status_code == 200
    assert detail.json()["data"]["sql_state"] == "HY000"

    other = client.get("/api/transaction-retry/exceptions", params={"sql_state": "40001"})
    assert other.json()["data"] == []
    assert client.get("/api/transaction-retry/exceptions/999").status_code == 404


def test_retries_exhausted_maps_to_503(client):
    response = client.get("/exhausted")

    assert response.status_code == 503
    assert response.json()["error"] == "retries_exhausted"
    assert response.json()["attempts"] == 3


def test_unexpected_error_maps_to_500(client):
    response = client.get("/crash")

    assert response.status_code == 500
    assert response.json()["error"] == "internal_error"


def test_api_can_be_disabled(services):
    services.settings.API_ENABLED = False
    client = TestClient(create_app(services.settings, services=services))

    assert client.get("/api/transaction-retry/events").status_code == 404
    assert client.get("/health").status_code == 200


def test_api_documentation(client):
    response = client.get("/openapi.json")

    assert response.status_code == 200
    paths = response.json()["paths"]
    assert "/api/transaction-retry/events" in paths
    assert "/api/transaction-retry/events/today" in paths
    assert "/api/transaction-retry/transactions/{transaction_id}" in paths
    assert "/api/transaction-retry/exceptions/{exception_id}" in paths
    assert "/health" in paths
