"""
Error classification for the retry engine.

Maps a raised error onto a closed ``FailureKind``. The rules, in order:

1. SQLSTATE in the configured list ("40001" serialization failure,
   "40P01" deadlock, anything else a custom transient code)
2. Driver error code in the configured list (1213 deadlock, anything else
   a custom transient code)
3. Error type in the allow-list, given either as Python types or as class
   names matched against the error's MRO (never imported dynamically)

Anything else, including errors whose codes cannot be extracted, is FATAL.
"""

from dataclasses import dataclass
from typing import Iterable, Optional, Union

import structlog

from transaction_retry.config import Settings
from transaction_retry.db.errors import (
    DatabaseErrorInfo,
    extract_error_info,
    normalize_sql_state,
    qualified_name,
)
from transaction_retry.models.enums import FailureKind

logger = structlog.get_logger(__name__)

SERIALIZATION_FAILURE_STATE = "40001"
DEADLOCK_STATE = "40P01"  # PostgreSQL deadlock_detected
MYSQL_DEADLOCK_CODE = 1213

ExceptionMatcher = Union[type, str]


@dataclass(frozen=True)
class Classification:
    """
    Result of classifying one error.

    Attributes:
        kind: Failure category
        code: The SQLSTATE, driver code or class name that matched (None for FATAL)
        info: Normalised error details, reused by the engine for diagnostics
    """

    kind: FailureKind
    info: DatabaseErrorInfo
    code: Optional[Union[str, int]] = None

    @property
    def retryable(self) -> bool:
        return self.kind.retryable


class ErrorClassifier:
    """
    Pure classifier over the configured retryable signatures.

    Holds no mutable state; safe to share between threads.
    """

    def __init__(
        self,
        sql_states: Iterable[str] = (SERIALIZATION_FAILURE_STATE,),
        driver_codes: Iterable[int] = (MYSQL_DEADLOCK_CODE,),
        exception_types: Iterable[ExceptionMatcher] = (),
    ):
        self.sql_states = frozenset(
            state for state in (normalize_sql_state(s) for s in sql_states) if state
        )
        self.driver_codes = frozenset(int(code) for code in driver_codes)

        types: list[type] = []
        names: set[str] = set()
        for matcher in exception_types:
            if isinstance(matcher, type):
                types.append(matcher)
            elif isinstance(matcher, str) and matcher.strip():
                names.add(matcher.strip().lstrip("\\"))
        self.exception_types = tuple(types)
        self.exception_names = frozenset(names)

    @classmethod
    def from_settings(
        cls, settings: Settings, extra_types: Iterable[type] = ()
    ) -> "ErrorClassifier":
        return cls(
            sql_states=settings.RETRYABLE_SQL_STATES,
            driver_codes=settings.RETRYABLE_DRIVER_CODES,
            exception_types=[*settings.RETRYABLE_EXCEPTION_CLASSES, *extra_types],
        )

    def classify(
        self, error: BaseException, connection_name: Optional[str] = None
    ) -> Classification:
        """
        Classify ``error``.

        Never raises; an error whose details cannot be read is FATAL.
        """
        try:
            info = extract_error_info(error, connection_name)
        except Exception as e:
            logger.debug("Error details unavailable, classifying as fatal", error=str(e))
            return Classification(
                kind=FailureKind.FATAL,
                info=DatabaseErrorInfo(
                    exception_class=qualified_name(type(error)), message=""
                ),
            )

        if info.sql_state is not None and info.sql_state in self.sql_states:
            # MySQL reports deadlocks as 40001 too; the vendor code disambiguates
            if info.sql_state == DEADLOCK_STATE or info.driver_code == MYSQL_DEADLOCK_CODE:
                kind = FailureKind.DEADLOCK
            elif info.sql_state == SERIALIZATION_FAILURE_STATE:
                kind = FailureKind.SERIALIZATION_FAILURE
            else:
                kind = FailureKind.CUSTOM_TRANSIENT
            return Classification(kind=kind, info=info, code=info.sql_state)

        if info.driver_code is not None and info.driver_code in self.driver_codes:
            kind = (
                FailureKind.DEADLOCK
                if info.driver_code == MYSQL_DEADLOCK_CODE
                else FailureKind.CUSTOM_TRANSIENT
            )
            return Classification(kind=kind, info=info, code=info.driver_code)

        matched = self._match_type(error)
        if matched is not None:
            return Classification(kind=FailureKind.CUSTOM_TRANSIENT, info=info, code=matched)

        return Classification(kind=FailureKind.FATAL, info=info)

    def _match_type(self, error: BaseException) -> Optional[str]:
        if self.exception_types and isinstance(error, self.exception_types):
            return qualified_name(type(error))
        if not self.exception_names:
            return None
        for klass in type(error).__mro__:
            for candidate in (klass.__qualname__, qualified_name(klass)):
                if candidate in self.exception_names:
                    return candidate
        return None
