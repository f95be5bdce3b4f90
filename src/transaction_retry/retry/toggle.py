"""
Runtime on/off switch for retry handling.

State is injected into the retry engine rather than read from globals:

    toggle = RetryToggle(settings.STATE_PATH, default_enabled=settings.ENABLED)
    retrier = TransactionRetrier(runner, settings, toggle=toggle, ...)

Precedence when deciding whether retries run:
    1. an explicit runtime disable (``disable()`` in this process)
    2. the persisted marker file, shared by every process using STATE_PATH
    3. the configured default
"""

import time
from pathlib import Path
from typing import Any, Union

import structlog

logger = structlog.get_logger(__name__)

MARKER_FILENAME = "retry-disabled.marker"

_FALSE_VALUES = frozenset({"false", "0", "off", "no"})
_TRUE_VALUES = frozenset({"true", "1", "on", "yes"})


def normalize_boolean(value: Any, fallback: bool) -> bool:
    """Interpret config-style booleans; unknown values yield ``fallback``."""
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        text = value.strip().lower()
        if text in _FALSE_VALUES:
            return False
        if text in _TRUE_VALUES:
            return True
        try:
            return float(text) != 0
        except ValueError:
            return fallback
    if isinstance(value, (int, float)):
        return value != 0
    return fallback


def is_explicitly_disabled_value(value: Any) -> bool:
    """True only when ``value`` is a recognisable "off" value (None and "" are not)."""
    if value is None:
        return False
    if isinstance(value, str) and not value.strip():
        return False
    return normalize_boolean(value, True) is False


class RetryToggle:
    """
    Enable/disable state for retry handling.

    Attributes:
        state_path: Directory holding the disable marker
        default_enabled: Configured default (any config-style boolean)
    """

    def __init__(self, state_path: Union[str, Path], default_enabled: Any = True):
        self.state_path = Path(state_path)
        self.default_enabled = default_enabled
        self._disabled_at_runtime = False

    @property
    def marker_path(self) -> Path:
        return self.state_path / MARKER_FILENAME

    def is_enabled(self) -> bool:
        if self._disabled_at_runtime:
            return False
        if self.marker_path.exists():
            return False
        return normalize_boolean(self.default_enabled, True)

    def enable(self) -> bool:
        """
        Clear the runtime override and remove the persisted marker.

        Returns:
            True if the marker is gone afterwards
        """
        self._disabled_at_runtime = False
        try:
            self.marker_path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning(
                "Could not remove retry toggle marker",
                marker=str(self.marker_path),
                error=str(e),
            )
            return False
        self._prune_state_directories()
        return True

    def disable(self) -> bool:
        """
        Disable retries for this process and persist the marker.

        Returns:
            True if the marker was written; the runtime disable applies either way
        """
        self._disabled_at_runtime = True
        try:
            self.state_path.mkdir(parents=True, exist_ok=True)
            self.marker_path.write_text(str(int(time.time())), encoding="utf-8")
        except OSError as e:
            logger.warning(
                "Could not write retry toggle marker",
                marker=str(self.marker_path),
                error=str(e),
            )
            return False
        return True

    def _prune_state_directories(self) -> None:
        # Remove the state directory and its parent if we left them empty
        for directory in (self.state_path, self.state_path.parent):
            try:
                if directory.is_dir() and not any(directory.iterdir()):
                    directory.rmdir()
            except OSError:
                return
