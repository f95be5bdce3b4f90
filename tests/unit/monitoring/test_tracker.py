"""
Unit tests for TransactionDepthTracker.
"""

import threading

import pytest

from transaction_retry.models.enums import TransactionStatus
from transaction_retry.monitoring.tracker import TransactionDepthTracker


class RecordingFinalizer:
    def __init__(self):
        self.calls = []

    def finalize(self, frame, connection, status):
        self.calls.append((frame, connection, status))


@pytest.fixture
def finalizer():
    return RecordingFinalizer()


@pytest.fixture
def tracker(finalizer):
    return TransactionDepthTracker(finalizer, label_provider=lambda: "checkout")


def test_root_commit_finalizes_once(tracker, finalizer):
    tracker.on_begin("default")
    tracker.on_query_executed("default", "SELECT 1", elapsed_ms=3.4)
    tracker.on_commit("default")

    assert tracker.depth("default") == 0
    assert len(finalizer.calls) == 1
    frame, connection, status = finalizer.calls[0]
    assert connection == "default"
    assert status is TransactionStatus.COMMITTED
    assert frame.is_root
    assert frame.label == "checkout"
    assert frame.query_count == 1
    assert frame.queries[0].sql == "SELECT 1"
    assert frame.queries[0].time_ms == 3
    assert frame.queries[0].order == 1


def test_nested_queries_are_attributed_to_root(tracker, finalizer):
    tracker.on_begin("default")
    tracker.on_query_executed("default", "INSERT INTO a VALUES (1)")
    tracker.on_begin("default")
    assert tracker.depth("default") == 2

    tracker.on_query_executed("default", "INSERT INTO b VALUES (2)")
    tracker.on_rollback("default")  # savepoint rolled back
    assert tracker.depth("default") == 1
    assert finalizer.calls == []

    tracker.on_query_executed("default", "INSERT INTO c VALUES (3)")
    tracker.on_commit("default")

    frame, _, status = finalizer.calls[0]
    assert status is TransactionStatus.COMMITTED
    assert [q.sql for q in frame.queries] == [
        "INSERT INTO a VALUES (1)",
        "INSERT INTO b VALUES (2)",
        "INSERT INTO c VALUES (3)",
    ]
    assert [q.order for q in frame.queries] == [1, 2, 3]
    assert frame.last_query.sql == "INSERT INTO c VALUES (3)"


def test_close_root_drains_every_frame(tracker, finalizer):
    tracker.on_begin("default")
    tracker.on_begin("default")
    tracker.on_begin("default")

    tracker.on_rollback("default", close_root=True)

    assert tracker.depth("default") == 0
    assert len(finalizer.calls) == 1
    frame, _, status = finalizer.calls[0]
    assert frame.is_root
    assert status is TransactionStatus.ROLLED_BACK


def test_queries_outside_a_transaction_are_ignored(tracker, finalizer):
    tracker.on_query_executed("default", "SELECT 1")
    tracker.on_commit("default")

    assert finalizer.calls == []
    assert tracker.depth("default") == 0


def test_bindings_are_substituted(tracker, finalizer):
    tracker.on_begin("default")
    tracker.on_query_executed("default", "SELECT * FROM t WHERE id = ?", [9])
    tracker.on_query_executed("default", "SELECT * FROM t WHERE id = ?", [1, 2])  # mismatch
    tracker.on_commit("default")

    frame, _, _ = finalizer.calls[0]
    assert frame.queries[0].sql == "SELECT * FROM t WHERE id = 9"
    assert frame.queries[1].sql == "SELECT * FROM t WHERE id = ?"


def test_elapsed_is_rounded_and_never_negative(tracker, finalizer):
    tracker.on_begin("default")
    tracker.on_query_executed("default", "SELECT 1", elapsed_ms=2.6)
    tracker.on_query_executed("default", "SELECT 2", elapsed_ms=-1.0)
    tracker.on_commit("default")

    frame, _, _ = finalizer.calls[0]
    assert [q.time_ms for q in frame.queries] == [3, 0]


def test_connections_have_separate_stacks(tracker, finalizer):
    tracker.on_begin("default")
    tracker.on_begin("reporting")
    tracker.on_query_executed("reporting", "SELECT 1")

    tracker.on_commit("reporting")

    assert tracker.depth("default") == 1
    frame, connection, _ = finalizer.calls[0]
    assert connection == "reporting"
    assert frame.query_count == 1


def test_threads_have_separate_stacks(tracker, finalizer):
    tracker.on_begin("default")
    depths = []

    def other_thread():
        depths.append(tracker.depth("default"))
        tracker.on_begin("default")
        tracker.on_commit("default")

    worker = threading.Thread(target=other_thread)
    worker.start()
    worker.join()

    assert depths == [0]
    assert tracker.depth("default") == 1
    assert len(finalizer.calls) == 1


def test_label_is_read_at_root_begin_only(finalizer):
    labels = iter(["outer", "inner"])
    tracker = TransactionDepthTracker(finalizer, label_provider=lambda: next(labels))

    tracker.on_begin("default")
    tracker.on_begin("default")
    tracker.on_commit("default", close_root=True)

    frame, _, _ = finalizer.calls[0]
    assert frame.label == "outer"


def test_deferred_close_returns_the_root_without_finalizing(tracker, finalizer):
    tracker.on_begin("default")
    tracker.on_query_executed("default", "UPDATE accounts SET balance = 0")

    frame = tracker.on_commit("default", close_root=True, defer=True)

    assert finalizer.calls == []
    assert tracker.depth("default") == 0
    assert frame.is_root
    assert frame.ended_at is not None
    assert frame.end_monotonic_ns >= frame.start_monotonic_ns

    tracker.finalize(frame, "default", TransactionStatus.COMMITTED)
    assert finalizer.calls == [(frame, "default", TransactionStatus.COMMITTED)]


def test_deferred_close_of_a_child_frame_returns_nothing(tracker, finalizer):
    tracker.on_begin("default")
    tracker.on_begin("default")

    assert tracker.on_rollback("default", defer=True) is None
    assert tracker.depth("default") == 1
    assert finalizer.calls == []
