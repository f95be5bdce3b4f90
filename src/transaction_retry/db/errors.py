"""
Database error normalisation.

Drivers report failures in different shapes: psycopg exposes ``pgcode`` /
``sqlstate``, MySQL drivers put the vendor code in ``args[0]``, sqlite3 has
``sqlite_errorcode``. SQLAlchemy wraps all of them in ``DBAPIError`` with the
driver exception on ``.orig``. ``extract_error_info`` flattens any of those
(plus our own ``QueryError``) into a ``DatabaseErrorInfo`` so the classifier
and the loggers never need to know which driver raised.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Sequence, Union

from sqlalchemy.exc import DBAPIError, StatementError

_SQLSTATE_RE = re.compile(r"^[0-9A-Z]{5}$")
_DRIVER_ATTRS = ("sqlstate", "pgcode", "errno", "sqlite_errorcode")

# Positional (qmark / format) or named (named / pyformat) parameters
Bindings = Union[Sequence[Any], Mapping[str, Any]]


class QueryError(Exception):
    """
    Typed database failure raised by a transaction runner or a test double.

    Attributes:
        sql_state: SQLSTATE-like classification code (e.g. "40001")
        driver_code: Vendor driver error code (e.g. 1213 for MySQL deadlock)
        connection_name: Name of the connection the statement ran on
        sql: Parameterised SQL of the failing statement
        bindings: Bound parameters of the failing statement
    """

    def __init__(
        self,
        message: str,
        *,
        sql_state: Optional[str] = None,
        driver_code: Optional[int] = None,
        connection_name: Optional[str] = None,
        sql: Optional[str] = None,
        bindings: Optional[Bindings] = None,
    ) -> None:
        self.sql_state = sql_state
        self.driver_code = driver_code
        self.connection_name = connection_name
        self.sql = sql
        self.bindings: Bindings = bindings if bindings is not None else []
        super().__init__(message)


@dataclass(frozen=True)
class DatabaseErrorInfo:
    """Driver-neutral view of a database failure."""

    exception_class: str
    message: str
    sql_state: Optional[str] = None
    driver_code: Optional[int] = None
    connection_name: Optional[str] = None
    sql: Optional[str] = None
    bindings: Bindings = field(default_factory=list)

    @property
    def error_info(self) -> Optional[list[Any]]:
        """PDO-style (sql state, driver code, message) triple, None when empty."""
        if self.sql_state is None and self.driver_code is None:
            return None
        return [self.sql_state, self.driver_code, self.message]


def qualified_name(error_type: type) -> str:
    module = getattr(error_type, "__module__", "") or ""
    if module in ("builtins", "__main__"):
        return error_type.__qualname__
    return f"{module}.{error_type.__qualname__}"


def normalize_sql_state(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip().upper()
    return text if _SQLSTATE_RE.match(text) else None


def _coerce_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def _driver_codes(orig: BaseException) -> tuple[Optional[str], Optional[int]]:
    sql_state = normalize_sql_state(
        getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    )
    diag = getattr(orig, "diag", None)
    if sql_state is None and diag is not None:
        sql_state = normalize_sql_state(getattr(diag, "sqlstate", None))

    driver_code = _coerce_int(getattr(orig, "errno", None))
    if driver_code is None:
        args = getattr(orig, "args", ())
        if args:
            driver_code = _coerce_int(args[0])
    if driver_code is None:
        driver_code = _coerce_int(getattr(orig, "sqlite_errorcode", None))
    return sql_state, driver_code


def _normalize_bindings(params: Any) -> Bindings:
    if params is None:
        return []
    if isinstance(params, Mapping):
        return dict(params)
    if isinstance(params, (list, tuple)):
        return list(params)
    return [params]


def extract_error_info(
    error: BaseException, connection_name: Optional[str] = None
) -> DatabaseErrorInfo:
    """
    Normalise any raised error into a ``DatabaseErrorInfo``.

    Never raises: missing or malformed attributes simply leave the
    corresponding field empty.

    Args:
        error: The raised error
        connection_name: Fallback connection name when the error has none

    Returns:
        DatabaseErrorInfo for the error
    """
    exception_class = qualified_name(type(error))
    message = str(error)

    if isinstance(error, QueryError):
        return DatabaseErrorInfo(
            exception_class=exception_class,
            message=message,
            sql_state=normalize_sql_state(error.sql_state),
            driver_code=_coerce_int(error.driver_code),
            connection_name=error.connection_name or connection_name,
            sql=error.sql,
            bindings=_normalize_bindings(error.bindings),
        )

    sql: Optional[str] = None
    bindings: Bindings = []
    sql_state: Optional[str] = None
    driver_code: Optional[int] = None

    if isinstance(error, StatementError):
        sql = error.statement
        bindings = _normalize_bindings(error.params)
    if isinstance(error, DBAPIError) and error.orig is not None:
        sql_state, driver_code = _driver_codes(error.orig)
        message = str(error.orig)
    elif not isinstance(error, StatementError) and any(
        hasattr(error, attr) for attr in _DRIVER_ATTRS
    ):
        # A raw DB-API error that escaped SQLAlchemy's wrapping
        sql_state, driver_code = _driver_codes(error)

    return DatabaseErrorInfo(
        exception_class=exception_class,
        message=message,
        sql_state=sql_state,
        driver_code=driver_code,
        connection_name=connection_name,
        sql=sql,
        bindings=bindings,
    )
