"""Retry policy for failed uploads.

This module provides:
- RetryPolicy: Bounded attempts with a fixed (or growing) backoff delay
- is_permanent_status: HTTP statuses that are never retried
- NETWORK_EXCEPTIONS: Exceptions that indicate connectivity issues

A failed attempt is not retried in place. The queue releases the asset
and re-submits it once the backoff delay has passed, so other assets keep
moving while one waits.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

from photomirror.client.sync.types import UploadAttemptResult

logger = logging.getLogger(__name__)

# Default retry configuration
DEFAULT_MAX_ATTEMPTS = 3  # total attempts, including the first
DEFAULT_RETRY_DELAY = 1.0  # seconds
DEFAULT_BACKOFF_MULTIPLIER = 1.0  # fixed delay
DEFAULT_MAX_DELAY = 60.0  # seconds

# Client errors that mean "try again later" rather than "never"
RETRYABLE_CLIENT_STATUSES = frozenset({408, 425, 429})

# Network-related exceptions that indicate connectivity issues
NETWORK_EXCEPTIONS: tuple[type[Exception], ...] = (
    httpx.TransportError,
    ConnectionError,
    TimeoutError,
)


def is_permanent_status(status_code: int) -> bool:
    """Check whether an HTTP status rejects the request for good.

    4xx statuses are permanent except the ones asking the client to slow
    down or come back; 5xx statuses are transient.
    """
    return 400 <= status_code < 500 and status_code not in RETRYABLE_CLIENT_STATUSES


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry for transient upload failures.

    Attributes:
        max_attempts: Total attempts per admission, including the first.
        delay: Delay in seconds before the first re-submission.
        backoff_multiplier: Growth factor of the delay per retry.
        max_delay: Upper bound for the delay.
    """

    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    delay: float = DEFAULT_RETRY_DELAY
    backoff_multiplier: float = DEFAULT_BACKOFF_MULTIPLIER
    max_delay: float = DEFAULT_MAX_DELAY

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.delay < 0:
            raise ValueError("delay must not be negative")

    def should_retry(self, result: UploadAttemptResult, attempts_made: int) -> bool:
        """Decide whether a failed attempt gets another try.

        Args:
            result: Result of the attempt that just finished.
            attempts_made: Attempts made so far, including that one.
        """
        return result.retryable and attempts_made < self.max_attempts

    def delay_for(self, attempts_made: int) -> float:
        """Get the backoff delay before the next attempt."""
        delay = self.delay * (self.backoff_multiplier ** max(attempts_made - 1, 0))
        return min(delay, self.max_delay)
