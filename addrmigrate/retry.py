"""
Retry policy with bounded backoff for handling transient failures.

A RetryPolicy is a plain value (max attempts + backoff function) so callers
can pass it around and tests can swap the sleep function for a recorder.
"""

import time
from dataclasses import dataclass, field
from typing import Callable, Type, Tuple, Optional


class RetryError(Exception):
    """Raised when all retry attempts are exhausted."""

    def __init__(self, attempts: int, last_exception: BaseException):
        self.attempts = attempts
        self.last_exception = last_exception
        super().__init__(f"Failed after {attempts} attempts: {last_exception}")


def linear_backoff(base_delay: float, attempt: int) -> float:
    """Delay grows by base_delay for every failed attempt (1-based)."""
    return base_delay * attempt


def exponential_backoff(base_delay: float, attempt: int, exponential_base: float = 2.0) -> float:
    """Delay doubles (by default) after every failed attempt (1-based)."""
    return base_delay * (exponential_base ** (attempt - 1))


@dataclass(frozen=True)
class RetryPolicy:
    """
    How many times to try an operation and how long to wait in between.

    Args:
        max_attempts: Total attempts including the first one (>= 1)
        base_delay: Base interval in seconds fed to the backoff function
        max_delay: Upper bound for any single delay
        backoff: Function (base_delay, attempt) -> delay in seconds
    """

    max_attempts: int = 3
    base_delay: float = 0.1
    max_delay: float = 5.0
    backoff: Callable[[float, int], float] = field(default=linear_backoff, compare=False)

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must not be negative")

    def delay_for(self, attempt: int) -> float:
        """Delay to wait after the given failed attempt (1-based)."""
        return min(self.backoff(self.base_delay, attempt), self.max_delay)

    @property
    def max_total_delay(self) -> float:
        """Worst-case time spent sleeping for one operation."""
        return sum(self.delay_for(a) for a in range(1, self.max_attempts))


def retry_call(
    func: Callable,
    policy: RetryPolicy,
    exceptions: Tuple[Type[BaseException], ...] = (Exception,),
    on_retry: Optional[Callable] = None,
    sleep: Callable[[float], None] = time.sleep,
):
    """
    Call func until it succeeds or the policy's attempts run out.

    Args:
        func: Zero-argument callable
        policy: RetryPolicy to apply
        exceptions: Exceptions that count as retryable; others propagate
        on_retry: Optional callback(attempt, exception, delay)
        sleep: Sleep function (injectable for tests)

    Returns:
        Whatever func returns

    Raises:
        RetryError: After policy.max_attempts retryable failures
    """
    for attempt in range(1, policy.max_attempts + 1):
        try:
            return func()
        except exceptions as e:
            # Don't sleep after the last attempt
            if attempt >= policy.max_attempts:
                raise RetryError(attempt, e) from e

            delay = policy.delay_for(attempt)
            if on_retry:
                on_retry(attempt, e, delay)
            sleep(delay)

    # Unreachable: max_attempts >= 1 guarantees a return or a raise above
    raise AssertionError("retry loop exited without result")


def is_transient_error(exception: Exception) -> bool:
    """
    Determine if an exception is likely transient and should be retried.

    Args:
        exception: Exception to check

    Returns:
        True if error is likely transient (timeout, connection, 5xx)
    """
    error_str = str(exception).lower()

    transient_keywords = [
        'timeout',
        'timed out',
        'connection',
        'temporary failure',
        'service unavailable',
        '503',
        '502',
        '500',
        '429',  # Rate limit
        'connection reset',
    ]

    return any(keyword in error_str for keyword in transient_keywords)


def should_retry_http_status(status_code: int) -> bool:
    """
    Check if HTTP status code indicates a retryable error.

    Args:
        status_code: HTTP status code

    Returns:
        True if should retry
    """
    retryable_codes = {
        408,  # Request Timeout
        429,  # Too Many Requests
        500,  # Internal Server Error
        502,  # Bad Gateway
        503,  # Service Unavailable
        504,  # Gateway Timeout
    }

    return status_code in retryable_codes
