"""
Unit tests for RetryToggle and config-style boolean parsing.
"""

import pytest

from transaction_retry.retry.toggle import (
    MARKER_FILENAME,
    RetryToggle,
    is_explicitly_disabled_value,
    normalize_boolean,
)


@pytest.mark.parametrize(
    "value,expected",
    [
        (True, True),
        (False, False),
        ("false", False),
        (" OFF ", False),
        ("no", False),
        ("0", False),
        ("yes", True),
        ("on", True),
        ("2", True),
        (0, False),
        (1, True),
    ],
)
def test_normalize_boolean(value, expected):
    assert normalize_boolean(value, fallback=not expected) is expected


def test_normalize_boolean_falls_back_on_unknown_values():
    assert normalize_boolean("maybe", fallback=True) is True
    assert normalize_boolean(None, fallback=False) is False


@pytest.mark.parametrize(
    "value,expected",
    [(None, False), ("", False), ("  ", False), ("off", True), (False, True), ("true", False)],
)
def test_is_explicitly_disabled_value(value, expected):
    assert is_explicitly_disabled_value(value) is expected


def test_enabled_by_default(tmp_path):
    assert RetryToggle(tmp_path / "state").is_enabled()


def test_configured_default_applies(tmp_path):
    assert not RetryToggle(tmp_path / "state", default_enabled="false").is_enabled()
    assert RetryToggle(tmp_path / "state", default_enabled="garbage").is_enabled()


def test_disable_persists_marker_for_other_instances(tmp_path):
    state = tmp_path / "state" / "runtime"
    toggle = RetryToggle(state)

    assert toggle.disable() is True

    assert (state / MARKER_FILENAME).exists()
    assert not toggle.is_enabled()
    assert not RetryToggle(state).is_enabled()


def test_enable_removes_marker_and_prunes_empty_directories(tmp_path):
    state = tmp_path / "state" / "runtime"
    toggle = RetryToggle(state)
    toggle.disable()

    assert toggle.enable() is True

    assert toggle.is_enabled()
    assert not state.exists()
    assert not state.parent.exists()


def test_enable_keeps_non_empty_directories(tmp_path):
    state = tmp_path / "state" / "runtime"
    toggle = RetryToggle(state)
    toggle.disable()
    (state.parent / "other.txt").write_text("keep me")

    toggle.enable()

    assert not state.exists()
    assert state.parent.exists()


def test_enable_without_marker_is_fine(tmp_path):
    assert RetryToggle(tmp_path / "missing").enable() is True


def test_marker_beats_configured_default(tmp_path):
    state = tmp_path / "state"
    RetryToggle(state).disable()

    assert not RetryToggle(state, default_enabled=True).is_enabled()


def test_disable_failure_still_disables_runtime(tmp_path):
    blocker = tmp_path / "not-a-directory"
    blocker.write_text("")
    toggle = RetryToggle(blocker / "runtime")

    assert toggle.disable() is False
    assert not toggle.is_enabled()
    # A fresh process would not see the marker
    assert RetryToggle(blocker / "runtime").is_enabled()
