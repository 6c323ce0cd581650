"""
Retry utility with classified exponential backoff for network operations.

This module retries operations that fail with transient errors (timeouts,
throttling, connection resets, unavailable services) and gives up at once on
terminal errors (authentication, validation, not found). Cancellation is
always terminal: a cancelled context interrupts the backoff sleep and no
further attempt is made.
"""
import logging
import random
from dataclasses import dataclass, field
from typing import Callable, FrozenSet, Optional, TypeVar

from takeout_s3_migration.exceptions import (
    OperationCancelledError,
    RetryExhaustedError,
    TerminalError,
    TransientError,
)
from takeout_s3_migration.utils.cancellation import CancellationContext

logger = logging.getLogger(__name__)

T = TypeVar('T')

JITTER_FRACTION = 0.2

# S3 error codes that are worth another attempt
DEFAULT_RETRYABLE_ERRORS = frozenset({
    "RequestTimeout",
    "RequestTimeTooSkewed",
    "InternalError",
    "SlowDown",
    "OperationAborted",
    "ConnectionError",
    "NetworkingError",
    "ThrottlingException",
    "ServiceUnavailable",
    "RequestLimitExceeded",
    "BandwidthLimitExceeded",
    "IDPCommunicationError",
    "KMSTemporaryFailure",
    "KMSThrottlingException",
})

TRANSIENT_PATTERNS = (
    "timeout",
    "timed out",
    "connection",
    "reset",
    "broken pipe",
    "network",
    "unavailable",
    "throttl",
)


@dataclass
class RetryConfig:
    """Retry behaviour for operations that might fail transiently."""
    max_retries: int = 5
    initial_backoff: float = 1.0
    max_backoff: float = 60.0
    backoff_factor: float = 2.0
    retryable_errors: FrozenSet[str] = field(default_factory=lambda: DEFAULT_RETRYABLE_ERRORS)

    def __post_init__(self):
        """Validate retry configuration."""
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.initial_backoff < 0 or self.max_backoff < 0:
            raise ValueError("backoff durations must be >= 0")
        if self.backoff_factor < 1:
            raise ValueError("backoff_factor must be >= 1")
        self.retryable_errors = frozenset(self.retryable_errors)

    def is_retryable(self, error: BaseException) -> bool:
        """
        Decide whether an error should be retried.

        Explicitly classified errors win: cancellation and TerminalError are
        never retried, TransientError always is. Otherwise the error message
        is matched against known S3 error codes and common transient patterns.
        """
        if error is None:
            return False
        if isinstance(error, OperationCancelledError):
            return False
        if isinstance(error, TerminalError):
            return False
        if isinstance(error, TransientError):
            return True
        if isinstance(error, (TimeoutError, ConnectionError)):
            return True

        message = str(error)
        for code in self.retryable_errors:
            if code in message:
                return True

        lower = message.lower()
        return any(pattern in lower for pattern in TRANSIENT_PATTERNS)

    def backoff_for(self, attempt: int) -> float:
        """
        Compute the jittered backoff before retry number ``attempt + 1``.

        The exponential term is clamped to max_backoff before jitter is applied,
        and the result never drops below zero.
        """
        backoff = min(self.max_backoff, self.initial_backoff * (self.backoff_factor ** attempt))
        jitter = random.uniform(-JITTER_FRACTION, JITTER_FRACTION)
        return max(0.0, backoff * (1 + jitter))


def retry_with_backoff(
    ctx: CancellationContext,
    operation: str,
    func: Callable[[], T],
    config: Optional[RetryConfig] = None,
) -> T:
    """
    Call ``func`` until it succeeds, a terminal error occurs or retries run out.

    Args:
        ctx: Context governing the call; cancellation aborts any pending backoff
        operation: Human readable name used in logs and error messages
        func: Zero-argument callable performing one attempt
        config: Retry configuration (defaults to RetryConfig())

    Returns:
        Whatever ``func`` returned on the successful attempt.

    Raises:
        OperationCancelledError: If ``ctx`` is cancelled before an attempt or during a backoff
        RetryExhaustedError: If every attempt failed with a retryable error
        Exception: The original error, unchanged, when it is not retryable
    """
    config = config or RetryConfig()
    last_error: Optional[BaseException] = None

    for attempt in range(config.max_retries + 1):
        ctx.raise_if_cancelled(operation)

        if attempt > 0:
            logger.debug(f"Retry attempt {attempt}/{config.max_retries} for {operation}")

        try:
            result = func()
        except Exception as e:
            if not config.is_retryable(e):
                logger.warning(f"Non-retryable error for {operation}: {e}")
                raise
            last_error = e
        else:
            if attempt > 0:
                logger.info(f"Successfully completed {operation} after {attempt} retries")
            return result

        if attempt == config.max_retries:
            break

        backoff = config.backoff_for(attempt)
        logger.debug(f"Backing off for {backoff:.2f}s before retrying {operation}: {last_error}")
        if ctx.wait(backoff):
            raise OperationCancelledError(
                f"{operation} canceled during retry: {ctx.reason}"
            ) from last_error

    raise RetryExhaustedError(operation, config.max_retries + 1, last_error) from last_error

