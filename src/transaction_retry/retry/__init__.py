"""
Retry engine for transient database failures.

Failures are classified into a closed set of kinds; deadlocks, serialization
failures and configured transient signatures are retried with exponential
backoff and jitter, anything else is rethrown immediately.

Main Components:
    - TransactionRetrier: Orchestrates attempts, backoff and event persistence
    - ErrorClassifier: Maps an error to a FailureKind
    - RetryToggle: Runtime/persisted enable switch
    - RetriesExhausted: Raised only when the loop ends without an error to rethrow

Usage:
    >>> from transaction_retry.retry import TransactionRetrier
    >>> retrier = TransactionRetrier(runner, settings, event_writer=writer)
    >>> order = retrier.run_with_retry(lambda: place_order(cart), label="checkout")
"""

from transaction_retry.retry.backoff import next_delay
from transaction_retry.retry.classifier import Classification, ErrorClassifier
from transaction_retry.retry.engine import TransactionRetrier
from transaction_retry.retry.exceptions import RetriesExhausted, TransactionRetryError
from transaction_retry.retry.toggle import RetryToggle

__all__ = [
    "TransactionRetrier",
    "ErrorClassifier",
    "Classification",
    "RetryToggle",
    "RetriesExhausted",
    "TransactionRetryError",
    "next_delay",
]
