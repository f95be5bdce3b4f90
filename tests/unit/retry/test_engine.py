"""
Unit tests for TransactionRetrier.

Tests attempt orchestration, backoff waits and the one-event-per-invocation
persistence policy.
"""

from unittest.mock import MagicMock

import pytest

from transaction_retry.context import RequestSnapshot, current_transaction_label
from transaction_retry.db.errors import QueryError
from transaction_retry.retry.engine import TransactionRetrier
from transaction_retry.retry.toggle import RetryToggle

QUERY_ERROR_CLASS = "transaction_retry.db.errors.QueryError"


def deadlock() -> QueryError:
    return QueryError(
        "Deadlock found when trying to get lock",
        sql_state="40001",
        driver_code=1213,
        connection_name="default",
        sql="UPDATE accounts SET balance = ? WHERE id = ?",
        bindings=[90, 1],
    )


class FlakyWork:
    """Raises the given errors in order, then returns ``value``."""

    def __init__(self, errors, value="done"):
        self.errors = list(errors)
        self.value = value
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.value


@pytest.fixture
def lowest_rng():
    """Random source that always picks the bottom of the jitter band."""
    rng = MagicMock()
    rng.randint.side_effect = lambda low, high: low
    return rng


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def retrier(fake_runner, recording_writer, test_settings, sleeps, lowest_rng):
    return TransactionRetrier(
        fake_runner,
        test_settings,
        event_writer=recording_writer,
        sleep=sleeps.append,
        rng=lowest_rng,
    )


# ============================================================================
# Success Scenarios
# ============================================================================


def test_first_try_success_writes_nothing(retrier, fake_runner, recording_writer, sleeps):
    result = retrier.run_with_retry(lambda: 42)

    assert result == 42
    assert fake_runner.calls == 1
    assert recording_writer.events == []
    assert sleeps == []


def test_success_after_deadlocks(retrier, fake_runner, recording_writer, sleeps):
    """Two deadlocks then success: one success event from the second failure."""
    work = FlakyWork([deadlock(), deadlock()], value="ok")

    result = retrier.run_with_retry(work, max_retries=3, retry_delay=2, label="checkout")

    assert result == "ok"
    assert fake_runner.calls == 3
    # base 2: attempt 1 -> band [1, 3], attempt 2 -> band [3, 5]
    assert sleeps == [1, 3]

    assert len(recording_writer.events) == 1
    context, level = recording_writer.events[0]
    assert level == "warning"
    assert context["retry_status"] == "success"
    assert context["attempt"] == 2
    assert context["max_retries"] == 3
    assert context["trx_label"] == "checkout"
    assert context["failure_kind"] == "deadlock"
    assert context["exception_class"] == QUERY_ERROR_CLASS
    assert context["sql_state"] == "40001"
    assert context["driver_code"] == 1213
    assert context["raw_sql"] == "UPDATE accounts SET balance = 90 WHERE id = 1"
    assert context["bindings"] == [90, 1]
    assert context["error_info"] == ["40001", 1213, "Deadlock found when trying to get lock"]
    assert len(context["retry_group_id"]) == 32
    assert context["trace"]


# ============================================================================
# Failure Scenarios
# ============================================================================


def test_exhaustion_rethrows_last_error(retrier, fake_runner, recording_writer, sleeps):
    errors = [deadlock(), deadlock(), deadlock()]
    work = FlakyWork(errors)
    last = errors[-1]

    with pytest.raises(QueryError) as exc_info:
        retrier.run_with_retry(work, max_retries=3)

    assert exc_info.value is last
    assert fake_runner.calls == 3
    assert len(sleeps) == 2

    assert len(recording_writer.events) == 1
    context, level = recording_writer.events[0]
    assert level == "error"
    assert context["retry_status"] == "failure"
    assert context["attempt"] == 3


def test_first_try_fatal_writes_nothing(retrier, fake_runner, recording_writer, sleeps):
    error = ValueError("constraint violated")

    with pytest.raises(ValueError) as exc_info:
        retrier.run_with_retry(FlakyWork([error]))

    assert exc_info.value is error
    assert fake_runner.calls == 1
    assert recording_writer.events == []
    assert sleeps == []


def test_fatal_after_retryable_failure_records_last_retryable_context(
    retrier, recording_writer, sleeps
):
    fatal = ValueError("unique constraint")
    work = FlakyWork([deadlock(), fatal])

    with pytest.raises(ValueError):
        retrier.run_with_retry(work, max_retries=5)

    assert work.calls == 2
    assert len(sleeps) == 1
    assert len(recording_writer.events) == 1
    context, level = recording_writer.events[0]
    assert level == "error"
    assert context["retry_status"] == "failure"
    assert context["attempt"] == 1
    assert context["exception_class"] == QUERY_ERROR_CLASS


def test_single_attempt_cap_never_sleeps(retrier, recording_writer, sleeps):
    with pytest.raises(QueryError):
        retrier.run_with_retry(FlakyWork([deadlock()]), max_retries=1)

    assert sleeps == []
    context, _ = recording_writer.events[0]
    assert context["attempt"] == 1
    assert context["max_retries"] == 1


# ============================================================================
# Parameters
# ============================================================================


def test_non_positive_parameters_are_floored(retrier, fake_runner, sleeps):
    with pytest.raises(QueryError):
        retrier.run_with_retry(FlakyWork([deadlock(), deadlock()]), max_retries=0, retry_delay=0)

    assert fake_runner.calls == 1
    assert sleeps == []


def test_defaults_come_from_settings(retrier, test_settings, fake_runner):
    test_settings.MAX_RETRIES = 2

    with pytest.raises(QueryError):
        retrier.run_with_retry(FlakyWork([deadlock()] * 5))

    assert fake_runner.calls == 2


def test_delay_is_capped(fake_runner, test_settings, sleeps, lowest_rng):
    test_settings.MAX_RETRY_DELAY = 5
    retrier = TransactionRetrier(fake_runner, test_settings, sleep=sleeps.append, rng=lowest_rng)

    retrier.run_with_retry(FlakyWork([deadlock(), deadlock()]), max_retries=3, retry_delay=30)

    # uncapped lower bounds would be 22 and 45
    assert sleeps == [5, 5]


def test_works_without_event_writer(fake_runner, test_settings, sleeps, lowest_rng):
    retrier = TransactionRetrier(fake_runner, test_settings, sleep=sleeps.append, rng=lowest_rng)

    assert retrier.run_with_retry(FlakyWork([deadlock()])) == "done"


# ============================================================================
# Context
# ============================================================================


def test_label_is_exposed_while_work_runs(retrier):
    seen = retrier.run_with_retry(current_transaction_label, label="nightly-import")

    assert seen == "nightly-import"
    assert current_transaction_label() is None


def test_request_snapshot_is_attached(fake_runner, recording_writer, test_settings, sleeps, lowest_rng):
    snapshot = RequestSnapshot(
        method="POST",
        route_name="orders.store",
        url="/orders",
        ip_address="10.0.0.1",
        user_id="7",
        user_type="User",
    )
    retrier = TransactionRetrier(
        fake_runner,
        test_settings,
        event_writer=recording_writer,
        sleep=sleeps.append,
        rng=lowest_rng,
        request_provider=lambda: snapshot,
    )

    retrier.run_with_retry(FlakyWork([deadlock()]))

    context, _ = recording_writer.events[0]
    assert context["method"] == "POST"
    assert context["route_name"] == "orders.store"
    assert context["url"] == "/orders"
    assert context["user_id"] == "7"


def test_connection_falls_back_to_runner_name(retrier, recording_writer, fake_runner):
    fake_runner.name = "reporting"
    error = QueryError("serialization failure", sql_state="40001")

    retrier.run_with_retry(FlakyWork([error]))

    context, _ = recording_writer.events[0]
    assert context["connection"] == "reporting"
    assert context["failure_kind"] == "serialization_failure"


# ============================================================================
# Toggle
# ============================================================================


def test_disabled_toggle_bypasses_retries(fake_runner, recording_writer, test_settings, sleeps):
    toggle = RetryToggle(test_settings.STATE_PATH)
    toggle.disable()
    retrier = TransactionRetrier(
        fake_runner,
        test_settings,
        event_writer=recording_writer,
        toggle=toggle,
        sleep=sleeps.append,
    )

    with pytest.raises(QueryError):
        retrier.run_with_retry(FlakyWork([deadlock(), deadlock()]))

    assert fake_runner.calls == 1
    assert recording_writer.events == []
    assert sleeps == []


def test_disabled_toggle_still_exposes_label(fake_runner, test_settings):
    toggle = RetryToggle(test_settings.STATE_PATH, default_enabled=False)
    retrier = TransactionRetrier(fake_runner, test_settings, toggle=toggle)

    assert retrier.run_with_retry(current_transaction_label, label="bypass") == "bypass"
