"""
Retry engine exceptions.

The engine rethrows the original database error unchanged on fatal failure
and on exhaustion, so callers keep matching on their driver's error types.
``RetriesExhausted`` is only raised on the loop fall-through path that the
state machine never reaches in practice.
"""


class TransactionRetryError(Exception):
    """Base class for errors defined by this package."""


class RetriesExhausted(TransactionRetryError):
    """
    Raised when the retry loop ends without a result or an error to rethrow.

    Attributes:
        max_retries: The attempt cap that was configured for the invocation
    """

    def __init__(self, max_retries: int) -> None:
        """
        Initialize RetriesExhausted exception.

        Args:
            max_retries: Attempt cap of the invocation
        """
        self.max_retries = max_retries
        super().__init__(f"Transaction with retry exhausted after {max_retries} attempts.")
