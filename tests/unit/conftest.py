"""Unit test fixtures (fakes and stubs).

Provides in-memory stand-ins for the transaction runner, the event writer
and the observability sink, so unit tests never touch a database.
"""

from typing import Any, Callable, Optional

import pytest


class FakeRunner:
    """Transaction runner that just calls the unit of work."""

    def __init__(self, name: str = "default"):
        self.name = name
        self.calls = 0

    def run(self, work: Callable[[], Any]) -> Any:
        self.calls += 1
        return work()


class RecordingWriter:
    """Event writer that keeps every (context, level) it receives."""

    def __init__(self):
        self.events: list[tuple[dict, Optional[str]]] = []

    def write(self, context: dict, level: Optional[str] = None) -> None:
        self.events.append((context, level))


class MemorySink:
    """In-memory EventSink with auto-incrementing ids per table."""

    def __init__(self, columns: Optional[dict[str, set[str]]] = None, fail: bool = False):
        self.tables: dict[str, list[dict[str, Any]]] = {}
        self.columns = columns or {}
        self.fail = fail
        self.column_probes = 0

    def _check(self) -> None:
        if self.fail:
            raise RuntimeError("sink unavailable")

    def insert(self, table: str, row: dict[str, Any]) -> None:
        self.insert_get_id(table, row)

    def insert_get_id(self, table: str, row: dict[str, Any]) -> Optional[int]:
        self._check()
        rows = self.tables.setdefault(table, [])
        rows.append({"id": len(rows) + 1, **row})
        return len(rows)

    def insert_many(self, table: str, rows: list[dict[str, Any]]) -> None:
        for row in rows:
            self.insert_get_id(table, row)

    def has_column(self, table: str, column: str) -> bool:
        self._check()
        self.column_probes += 1
        return column in self.columns.get(table, set())


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def recording_writer() -> RecordingWriter:
    return RecordingWriter()


@pytest.fixture
def memory_sink() -> MemorySink:
    return MemorySink()


@pytest.fixture
def make_sink() -> Callable[..., MemorySink]:
    """Factory for sinks with a known schema or in a failing state."""
    return MemorySink
