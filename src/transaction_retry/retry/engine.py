"""
Retry engine for transactional units of work.

Runs a zero-argument callable inside a transaction (through an injected
``TransactionRunner``) and re-runs it when the failure is a transient
contention error (deadlock, serialization failure, configured signature).

State machine per invocation:

    Attempting -> Success
    Attempting -> Retryable failure -> Waiting -> Attempting
    Attempting -> Fatal failure
    Attempting -> Retryable failure -> Exhausted (attempt cap reached)

Persistence policy: a first-try success and a first-try fatal failure write
nothing. Any invocation that consumed at least one retryable failure writes
exactly one event row carrying the last failure's context, tagged
``success`` or ``failure``. The original error is always rethrown as is.

Usage:
    retrier = TransactionRetrier(runner, settings, event_writer=writer)
    order = retrier.run_with_retry(lambda: place_order(cart), label="checkout")
"""

import random
import time
import uuid
from typing import Callable, Optional, Protocol, TypeVar

import structlog

from transaction_retry.config import Settings
from transaction_retry.context import (
    RequestSnapshot,
    current_request,
    expose_transaction_label,
    trace_snapshot,
)
from transaction_retry.db.runner import TransactionRunner
from transaction_retry.db.sql import stringify_bindings, substitute_bindings
from transaction_retry.models.enums import RetryStatus
from transaction_retry.models.records import RetryAttemptContext, RetryOutcome
from transaction_retry.monitoring.metrics import (
    retry_attempts_total,
    retry_backoff_seconds,
    retry_outcomes_total,
)
from transaction_retry.retry.backoff import next_delay
from transaction_retry.retry.classifier import Classification, ErrorClassifier
from transaction_retry.retry.exceptions import RetriesExhausted
from transaction_retry.retry.toggle import RetryToggle

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class RetryEventWriter(Protocol):
    """Anything that persists a terminal retry context; must never raise."""

    def write(self, context: dict, level: Optional[str] = None) -> None:
        ...


class TransactionRetrier:
    """
    Retry orchestrator.

    Attributes:
        runner: Executes one unit of work inside a transaction
        settings: Application settings (attempt cap, base delay, log levels)
        classifier: Decides which failures are retryable
        event_writer: Persists the terminal event (None disables persistence)
        toggle: Runtime enable/disable switch
    """

    def __init__(
        self,
        runner: TransactionRunner,
        settings: Settings,
        *,
        classifier: Optional[ErrorClassifier] = None,
        event_writer: Optional[RetryEventWriter] = None,
        toggle: Optional[RetryToggle] = None,
        sleep: Callable[[float], None] = time.sleep,
        rng: Optional[random.Random] = None,
        request_provider: Callable[[], Optional[RequestSnapshot]] = current_request,
    ):
        """
        Initialize the retrier.

        Args:
            runner: Transaction runner for the target connection
            settings: Application settings
            classifier: Error classifier (built from settings when omitted)
            event_writer: Event writer for terminal outcomes
            toggle: Retry toggle (built from settings when omitted)
            sleep: Blocking wait used between attempts
            rng: Random source for backoff jitter
            request_provider: Returns the current caller snapshot, if any
        """
        self.runner = runner
        self.settings = settings
        self.classifier = classifier or ErrorClassifier.from_settings(settings)
        self.event_writer = event_writer
        self.toggle = toggle or RetryToggle(settings.STATE_PATH, settings.ENABLED)
        self.sleep = sleep
        self.rng = rng
        self.request_provider = request_provider

    def run_with_retry(
        self,
        work: Callable[[], T],
        max_retries: Optional[int] = None,
        retry_delay: Optional[int] = None,
        label: Optional[str] = None,
    ) -> T:
        """
        Run ``work`` in a transaction, retrying transient failures.

        Args:
            work: Zero-argument unit of work
            max_retries: Maximum number of invocations (defaults to MAX_RETRIES, floored to 1)
            retry_delay: Base backoff delay in seconds (defaults to RETRY_DELAY, floored to 1)
            label: Transaction label recorded with events and slow transaction logs

        Returns:
            The value returned by ``work``

        Raises:
            Exception: The original error of the last attempt, unchanged
            RetriesExhausted: Only if the loop ends without result or error
        """
        label = label or ""

        if not self.toggle.is_enabled():
            retry_outcomes_total.labels(outcome="bypassed").inc()
            with expose_transaction_label(label):
                return self.runner.run(work)

        max_retries = max(1, int(self.settings.MAX_RETRIES if max_retries is None else max_retries))
        retry_delay = max(1, int(self.settings.RETRY_DELAY if retry_delay is None else retry_delay))
        retry_group_id = uuid.uuid4().hex

        with structlog.contextvars.bound_contextvars(
            retry_group_id=retry_group_id, trx_label=label or None
        ), expose_transaction_label(label):
            outcome = self._attempt_loop(work, max_retries, retry_delay, label, retry_group_id)
            self._record_outcome(outcome)

        if outcome.succeeded:
            return outcome.value  # type: ignore[return-value]
        raise outcome.error  # type: ignore[misc]

    def _attempt_loop(
        self,
        work: Callable[[], T],
        max_retries: int,
        retry_delay: int,
        label: str,
        retry_group_id: str,
    ) -> RetryOutcome[T]:
        attempt = 0
        last_context: Optional[RetryAttemptContext] = None

        while attempt < max_retries:
            try:
                value = self.runner.run(work)
            except Exception as error:
                classification = self.classifier.classify(error, self.runner.name)

                if not classification.retryable:
                    logger.debug(
                        "Non-retryable transaction failure",
                        error_type=type(error).__name__,
                        attempts=attempt,
                    )
                    return RetryOutcome(attempts=attempt + 1, error=error, last_context=last_context)

                attempt += 1
                last_context = self._make_context(
                    error, classification, attempt, max_retries, label, retry_group_id
                )
                retry_attempts_total.labels(failure_kind=classification.kind.value).inc()

                logger.warning(
                    f"Retryable transaction failure on attempt {attempt}/{max_retries}",
                    failure_kind=classification.kind.value,
                    matched_code=classification.code,
                    sql_state=last_context.sql_state,
                    driver_code=last_context.driver_code,
                    connection=last_context.connection,
                )

                if attempt >= max_retries:
                    return RetryOutcome(attempts=attempt, error=error, last_context=last_context)

                delay = min(
                    next_delay(retry_delay, attempt, self.rng),
                    self.settings.MAX_RETRY_DELAY,
                )
                retry_backoff_seconds.observe(delay)
                logger.info("Backing off before next attempt", delay_seconds=delay, next_attempt=attempt + 1)
                self.sleep(delay)
                continue

            return RetryOutcome(attempts=attempt + 1, value=value, last_context=last_context)

        raise RetriesExhausted(max_retries)

    def _make_context(
        self,
        error: Exception,
        classification: Classification,
        attempt: int,
        max_retries: int,
        label: str,
        retry_group_id: str,
    ) -> RetryAttemptContext:
        info = classification.info
        return RetryAttemptContext(
            attempt=attempt,
            max_retries=max_retries,
            trx_label=label,
            retry_group_id=retry_group_id,
            failure_kind=classification.kind,
            exception_class=info.exception_class,
            sql_state=info.sql_state,
            driver_code=info.driver_code,
            connection=info.connection_name or self.runner.name,
            sql=info.sql,
            raw_sql=substitute_bindings(info.sql, info.bindings) or info.sql,
            bindings=stringify_bindings(info.bindings),
            error_info=info.error_info,
            request=self.request_provider(),
            trace=trace_snapshot(self.settings.TRACE_DEPTH, error),
        )

    def _record_outcome(self, outcome: RetryOutcome) -> None:
        context = outcome.last_context

        if context is None:
            retry_outcomes_total.labels(outcome="success" if outcome.succeeded else "fatal").inc()
            return

        if outcome.succeeded:
            status, level = RetryStatus.SUCCESS, self.settings.LOG_LEVEL_SUCCESS
            retry_outcomes_total.labels(outcome="recovered").inc()
            logger.info("Transaction recovered after retries", attempts=outcome.attempts)
        else:
            status, level = RetryStatus.FAILURE, self.settings.LOG_LEVEL_FAILURE
            exhausted = context.attempt >= context.max_retries
            retry_outcomes_total.labels(outcome="exhausted" if exhausted else "fatal").inc()
            logger.error(
                "Transaction failed after retries",
                attempts=outcome.attempts,
                max_retries=context.max_retries,
                error_type=type(outcome.error).__name__,
            )

        if self.event_writer is not None:
            self.event_writer.write(context.with_status(status).to_context(), level=level)
