"""
SQL diagnostics helpers.

Both helpers are best effort and exist purely for logs and dashboards:
``stringify_bindings`` makes bound parameters safe to JSON-encode and bounded
in size, ``substitute_bindings`` rebuilds a readable statement from a
parameterised one. Neither is ever used to execute SQL.

The statement classifiers let the transaction monitor tell savepoint
bookkeeping and plain reads apart from application writes.
"""

import json
import re
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, Mapping, Optional

from transaction_retry.db.errors import Bindings

MAX_BINDING_LENGTH = 500
TRIM_MARKER = "…[+trimmed]"

_SAVEPOINT_RE = re.compile(
    r"^\s*(SAVEPOINT|RELEASE(\s+SAVEPOINT)?|ROLLBACK\s+TO(\s+SAVEPOINT)?)\b", re.IGNORECASE
)
_READ_ONLY_RE = re.compile(r"^\s*(SELECT|SHOW|PRAGMA|EXPLAIN|DESCRIBE|DESC|VALUES)\b", re.IGNORECASE)

# Quoted literals are matched first so placeholders inside them are skipped
_TOKEN_RE = re.compile(
    r"""
      '(?:[^'\\]|\\.|'')*'
    | "(?:[^"\\]|\\.|"")*"
    | `[^`]*`
    | %\((?P<pyformat>[A-Za-z_]\w*)\)s
    | %%
    | %s
    | \?
    | (?<![:\w]):(?P<named>[A-Za-z_]\w*)
    """,
    re.VERBOSE,
)


class _BindingMismatch(Exception):
    pass


def _trim(text: str) -> str:
    if len(text) > MAX_BINDING_LENGTH:
        return text[:MAX_BINDING_LENGTH] + TRIM_MARKER
    return text


def _stringify_value(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.strftime("%Y-%m-%d %H:%M:%S.%f")
    if isinstance(value, (date, time)):
        return value.isoformat()
    if value is None or isinstance(value, (bool, int, float)):
        return value
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, str):
        return _trim(value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return f"[binary {len(value)} bytes]"
    if isinstance(value, (list, tuple, dict)):
        try:
            encoded = json.dumps(value, ensure_ascii=False, default=str)
        except (TypeError, ValueError):
            return "[array]"
        return _trim(encoded)
    return f"[object {type(value).__name__}]"


def stringify_bindings(bindings: Optional[Bindings]) -> Any:
    """
    Render bound parameters for logs.

    Datetimes become ``YYYY-MM-DD HH:MM:SS.ffffff``, strings and
    JSON-encoded containers are cut at 500 characters with a trim marker,
    arbitrary objects become ``[object ClassName]``. Named bindings keep
    their mapping shape.
    """
    if bindings is None:
        return []
    if isinstance(bindings, Mapping):
        return {str(key): _stringify_value(value) for key, value in bindings.items()}
    return [_stringify_value(value) for value in bindings]


def render_literal(value: Any) -> str:
    """Render one bound value as an SQL literal for display."""
    if value is None:
        return "NULL"
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, (int, float, Decimal)):
        return str(value)
    if isinstance(value, datetime):
        return "'" + value.strftime("%Y-%m-%d %H:%M:%S") + "'"
    if isinstance(value, (bytes, bytearray, memoryview)):
        return "'<binary>'"
    return "'" + str(value).replace("'", "''") + "'"


def substitute_bindings(sql: Optional[str], bindings: Optional[Bindings]) -> Optional[str]:
    """
    Rebuild ``sql`` with its bindings inlined.

    Supports ``?`` and ``%s`` positional placeholders and ``:name`` /
    ``%(name)s`` named placeholders. Placeholders inside quoted literals are
    left alone.

    Args:
        sql: Parameterised statement
        bindings: Sequence for positional styles, mapping for named styles

    Returns:
        The reconstructed statement, or None when the bindings do not line
        up with the placeholders (wrong count, missing name, mixed styles).
    """
    if sql is None:
        return None
    if not bindings:
        bindings = [] if not isinstance(bindings, Mapping) else {}

    named = isinstance(bindings, Mapping)
    positional = list(bindings) if not named else []
    consumed = 0

    def replace(match: re.Match) -> str:
        nonlocal consumed
        token = match.group(0)
        name = match.group("pyformat") or match.group("named")
        if name is not None:
            if not named or name not in bindings:
                raise _BindingMismatch(name)
            return render_literal(bindings[name])
        if token == "%%":
            return "%"
        if token in ("?", "%s"):
            if named or consumed >= len(positional):
                raise _BindingMismatch(token)
            value = positional[consumed]
            consumed += 1
            return render_literal(value)
        return token

    try:
        rendered = _TOKEN_RE.sub(replace, sql)
    except _BindingMismatch:
        return None

    if not named and consumed != len(positional):
        return None
    return rendered


def is_savepoint_statement(sql: Optional[str]) -> bool:
    """True for ``SAVEPOINT``, ``RELEASE SAVEPOINT`` and ``ROLLBACK TO SAVEPOINT``."""
    return bool(sql and _SAVEPOINT_RE.match(sql))


def is_read_only_statement(sql: Optional[str]) -> bool:
    return bool(sql and _READ_ONLY_RE.match(sql))
