"""
Nested transaction depth tracking.

Keeps one stack of ``TransactionFrame`` per (connection name, thread).
Savepoints and other nested transactions push child frames, but every
executed query is attributed to the root frame, so the recorder sees the
whole logical transaction once the outermost level closes.

The tracker is driver-agnostic: ``db.events.attach_transaction_monitor``
feeds it from SQLAlchemy engine events, tests call the handlers directly.
"""

import threading
from typing import Any, Callable, Optional, Protocol

import structlog

from transaction_retry.context import current_transaction_label
from transaction_retry.db.sql import substitute_bindings
from transaction_retry.models.enums import TransactionStatus
from transaction_retry.models.records import TransactionFrame

logger = structlog.get_logger(__name__)

StackKey = tuple[str, int]


class TransactionFinalizer(Protocol):
    """Receives every drained root frame; must never raise."""

    def finalize(
        self, frame: TransactionFrame, connection: str, status: TransactionStatus
    ) -> None:
        ...


class TransactionDepthTracker:
    """
    Per-connection stacks of nested transaction frames.

    Stacks are keyed by connection name and calling thread, so two pooled
    connections sharing a name never share a stack. All stack mutations
    happen under one lock; the recorder runs outside it.
    """

    def __init__(
        self,
        recorder: TransactionFinalizer,
        *,
        label_provider: Callable[[], Optional[str]] = current_transaction_label,
    ):
        self.recorder = recorder
        self.label_provider = label_provider
        self._stacks: dict[StackKey, list[TransactionFrame]] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _key(connection: str) -> StackKey:
        return (connection, threading.get_ident())

    def depth(self, connection: str) -> int:
        with self._lock:
            return len(self._stacks.get(self._key(connection), ()))

    def on_begin(self, connection: str) -> None:
        key = self._key(connection)
        with self._lock:
            stack = self._stacks.setdefault(key, [])
            if stack:
                stack.append(TransactionFrame(is_root=False))
                return
            stack.append(TransactionFrame(is_root=True, label=self.label_provider()))

    def on_query_executed(
        self,
        connection: str,
        sql: str,
        bindings: Any = None,
        elapsed_ms: float = 0.0,
    ) -> None:
        key = self._key(connection)
        with self._lock:
            stack = self._stacks.get(key)
            if not stack:
                return
            root = stack[0]
            raw_sql = substitute_bindings(sql, bindings) if bindings else sql
            root.append_query(raw_sql or sql, max(0, round(elapsed_ms)), connection)

    def on_commit(
        self, connection: str, *, close_root: bool = False, defer: bool = False
    ) -> Optional[TransactionFrame]:
        return self._close(connection, TransactionStatus.COMMITTED, close_root, defer)

    def on_rollback(
        self, connection: str, *, close_root: bool = False, defer: bool = False
    ) -> Optional[TransactionFrame]:
        return self._close(connection, TransactionStatus.ROLLED_BACK, close_root, defer)

    def finalize(
        self, frame: TransactionFrame, connection: str, status: TransactionStatus
    ) -> None:
        """Hand a root frame returned by a deferred close to the recorder."""
        self.recorder.finalize(frame, connection, status)

    def _close(
        self, connection: str, status: TransactionStatus, close_root: bool, defer: bool
    ) -> Optional[TransactionFrame]:
        """
        Pop one frame, or all of them when ``close_root`` is set.

        ``close_root`` covers drivers whose outer commit or rollback ends
        open savepoints implicitly without a per-level signal.

        With ``defer`` the closed root frame is returned instead of being
        finalized, for callers that must wait until the driver has really
        committed before anything is written. Returns None otherwise.
        """
        key = self._key(connection)
        with self._lock:
            stack = self._stacks.get(key)
            if not stack:
                return None
            if close_root:
                root = stack[0]
                stack.clear()
            else:
                root = stack.pop()
                if stack:
                    return None
            del self._stacks[key]

        if not root.is_root:
            # Unbalanced signals; the frame carries no queries worth reporting
            logger.debug("Discarding non-root frame", connection=connection)
            return None

        root.close()
        if defer:
            return root
        self.recorder.finalize(root, connection, status)
        return None
