"""
Retry event writer.

Normalises a free-form retry context (see ``RetryAttemptContext.to_context``)
into a ``RetryEventRow``: well-known keys become typed columns, everything
else is kept in the JSON ``context`` column. Three grouping hashes are
derived for the dashboard:

- route_hash: method | route_name | url
- query_hash: raw_sql
- event_hash: status | level | attempt | max | label | class | sql state |
  driver code | connection | raw_sql | method | url | route_name | user id

Writes are fire-and-forget: ``write`` never raises.
"""

import hashlib
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

import structlog

from transaction_retry.config import Settings
from transaction_retry.models.enums import LogLevel, RetryStatus
from transaction_retry.models.rows import RetryEventRow
from transaction_retry.persistence.sink import BestEffortSink, EventSink, json_safe

logger = structlog.get_logger(__name__)

# Keys promoted to columns; everything else stays in the context blob
PROMOTED_KEYS = frozenset(
    {
        "attempt",
        "max_retries",
        "trx_label",
        "retry_group_id",
        "exception_class",
        "sql_state",
        "driver_code",
        "connection",
        "raw_sql",
        "error_info",
        "method",
        "route_name",
        "url",
        "user_id",
        "user_type",
        "auth_header_len",
        "retry_status",
    }
)


def hash_from_parts(parts: Iterable[Any]) -> Optional[str]:
    """
    SHA-256 of the pipe-joined parts, or None when every part is empty.

    Scalars are stringified (booleans as "1"/""), None and non-scalars
    become "". Leading and trailing pipes are stripped before hashing.
    """
    rendered = []
    for part in parts:
        if isinstance(part, bool):
            rendered.append("1" if part else "")
        elif isinstance(part, (str, int, float)):
            rendered.append(str(part))
        else:
            rendered.append("")
    joined = "|".join(rendered).strip("|")
    if not joined:
        return None
    return hashlib.sha256(joined.encode("utf-8")).hexdigest()


def _optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value)
    return text if text != "" else None


def _optional_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


class EventWriter:
    """
    Persists terminal retry events.

    Attributes:
        sink: Best-effort sink for the retry event table
        settings: Table name and configured success/failure levels
    """

    def __init__(self, sink: EventSink, settings: Settings):
        self.sink = sink if isinstance(sink, BestEffortSink) else BestEffortSink(sink)
        self.settings = settings

    def build_row(
        self,
        context: dict[str, Any],
        level: Optional[str] = None,
        occurred_at: Optional[datetime] = None,
    ) -> RetryEventRow:
        failure_level = LogLevel.normalize(self.settings.LOG_LEVEL_FAILURE, LogLevel.ERROR.value)
        success_level = LogLevel.normalize(self.settings.LOG_LEVEL_SUCCESS, LogLevel.WARNING.value)
        normalized_level = LogLevel.normalize(level, failure_level)

        status = str(context.get("retry_status") or "").lower()
        if status not in RetryStatus.values():
            status = (
                RetryStatus.SUCCESS.value
                if normalized_level == success_level
                else RetryStatus.FAILURE.value
            )

        attempt = _optional_int(context.get("attempt")) or 0
        max_retries = _optional_int(context.get("max_retries")) or 0
        label = str(context.get("trx_label") or "")
        exception_class = str(context.get("exception_class") or "")
        sql_state = str(context.get("sql_state") or "").upper()
        driver_code = _optional_int(context.get("driver_code"))
        connection = _optional_str(context.get("connection"))
        raw_sql = _optional_str(context.get("raw_sql"))
        method = _optional_str(context.get("method"))
        route_name = _optional_str(context.get("route_name"))
        url = _optional_str(context.get("url"))
        user_id = _optional_str(context.get("user_id"))

        extra = {key: value for key, value in context.items() if key not in PROMOTED_KEYS}
        occurred_at = occurred_at or datetime.now(timezone.utc)

        return RetryEventRow(
            occurred_at=occurred_at,
            retry_status=status,
            log_level=normalized_level,
            attempt=attempt,
            max_retries=max_retries,
            trx_label=label or None,
            retry_group_id=_optional_str(context.get("retry_group_id")),
            exception_class=exception_class or None,
            sql_state=sql_state or None,
            driver_code=driver_code,
            connection=connection,
            raw_sql=raw_sql,
            error_info=json_safe(context.get("error_info")),
            method=method,
            route_name=route_name,
            url=url,
            user_type=_optional_str(context.get("user_type")),
            user_id=user_id,
            auth_header_len=_optional_int(context.get("auth_header_len")),
            route_hash=hash_from_parts([method, route_name, url]),
            query_hash=hash_from_parts([raw_sql]),
            event_hash=hash_from_parts(
                [
                    status,
                    normalized_level,
                    attempt,
                    max_retries,
                    label,
                    exception_class,
                    sql_state,
                    driver_code,
                    connection,
                    raw_sql,
                    method,
                    url,
                    route_name,
                    user_id,
                ]
            ),
            context=json_safe(extra) if extra else None,
            created_at=occurred_at,
            updated_at=occurred_at,
        )

    def write(self, context: dict[str, Any], level: Optional[str] = None) -> None:
        """
        Persist one retry event. Never raises.

        Args:
            context: Free-form context, normally ``RetryAttemptContext.to_context()``
            level: Log level; unknown values fall back to LOG_LEVEL_FAILURE
        """
        try:
            row = self.build_row(context, level)
        except Exception as e:
            logger.debug("Retry event dropped, context not normalisable", error=str(e))
            return
        self.sink.insert(self.settings.LOG_TABLE, row.model_dump(exclude={"id"}))
