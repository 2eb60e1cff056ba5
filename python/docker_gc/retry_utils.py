"""Retry utilities for Docker engine calls with exponential backoff"""

import logging
import random
import time
from enum import Enum
from functools import wraps
from typing import Callable, List, Optional, Tuple, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryableErrorType(Enum):
    """Types of errors that should trigger retries"""

    NETWORK = "network"  # Daemon socket errors, timeouts
    TEMPORARY = "temporary"  # Daemon busy or restarting
    PERMANENT = "permanent"  # Missing objects, conflicts, permission problems


# Daemon answers that will never change by asking again
_NOT_FOUND_INDICATORS = ["no such container", "no such image", "no such object", "not found"]
_CONFLICT_INDICATORS = ["conflict", "is being used", "must force", "referenced in multiple repositories"]
_PERMISSION_INDICATORS = ["permission denied", "unauthorized", "forbidden"]

_NETWORK_INDICATORS = [
    "cannot connect to the docker daemon",
    "connection",
    "timeout",
    "timed out",
    "refused",
    "reset",
    "broken pipe",
    "eof",
]

_TEMPORARY_INDICATORS = [
    "is restarting",
    "daemon is shutting down",
    "500",
    "502",
    "503",
    "too many requests",
]


def is_retryable_error(error: Exception, error_message: str = "") -> Tuple[bool, RetryableErrorType]:
    """Determine if an error is retryable and what type it is

    Args:
        error: The exception that occurred
        error_message: Optional error message string (typically the CLI stderr)

    Returns:
        Tuple of (is_retryable, error_type)
    """
    combined = f"{error} {error_message}".lower()

    # Permanent answers are checked first: a "No such container" message can
    # still mention words like "connection" inside an object name.
    if any(indicator in combined for indicator in _NOT_FOUND_INDICATORS):
        return False, RetryableErrorType.PERMANENT

    if any(indicator in combined for indicator in _CONFLICT_INDICATORS):
        return False, RetryableErrorType.PERMANENT

    if any(indicator in combined for indicator in _PERMISSION_INDICATORS):
        return False, RetryableErrorType.PERMANENT

    if isinstance(error, FileNotFoundError):
        # docker binary missing
        return False, RetryableErrorType.PERMANENT

    if any(indicator in combined for indicator in _NETWORK_INDICATORS):
        return True, RetryableErrorType.NETWORK

    if any(indicator in combined for indicator in _TEMPORARY_INDICATORS):
        return True, RetryableErrorType.TEMPORARY

    # Subprocess errors with no recognisable message: the CLI exited non-zero
    # for a reason we can't classify, so give it another chance.
    if getattr(error, "returncode", 0):
        return True, RetryableErrorType.TEMPORARY

    return False, RetryableErrorType.PERMANENT


def retry_with_backoff(
    max_retries: int = 3,
    initial_delay: float = 1.0,
    max_delay: float = 60.0,
    exponential_base: float = 2.0,
    jitter: bool = True,
    retryable_errors: Optional[List[RetryableErrorType]] = None,
) -> Callable:
    """Decorator for retrying functions with exponential backoff

    Args:
        max_retries: Maximum number of retry attempts (default: 3)
        initial_delay: Initial delay in seconds before first retry (default: 1.0)
        max_delay: Maximum delay between retries in seconds (default: 60.0)
        exponential_base: Base for exponential backoff (default: 2.0)
        jitter: Add random jitter to prevent thundering herd (default: True)
        retryable_errors: List of error types to retry (None = retry all retryable types)

    Returns:
        Decorator function
    """
    if retryable_errors is None:
        retryable_errors = [RetryableErrorType.NETWORK, RetryableErrorType.TEMPORARY]

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        def wrapper(*args, **kwargs) -> T:
            for attempt in range(max_retries + 1):
                try:
                    result = func(*args, **kwargs)
                    if attempt > 0:
                        logger.info(f"{func.__name__} succeeded on attempt {attempt + 1}")
                    return result

                except Exception as e:
                    error_message = str(e)
                    if getattr(e, "stderr", None):
                        error_message = e.stderr

                    is_retryable, error_type = is_retryable_error(e, error_message)

                    # Check if this error type should be retried
                    if not is_retryable or error_type not in retryable_errors:
                        logger.debug(f"{func.__name__} failed with non-retryable error ({error_type.value}): {e}")
                        raise

                    # If this was the last attempt, raise the error
                    if attempt >= max_retries:
                        logger.error(
                            f"{func.__name__} failed after {max_retries + 1} attempts. "
                            f"Last error ({error_type.value}): {e}"
                        )
                        raise

                    delay = compute_backoff_delay(attempt, initial_delay, max_delay, exponential_base, jitter)

                    logger.warning(
                        f"{func.__name__} failed on attempt {attempt + 1}/{max_retries + 1} "
                        f"({error_type.value} error: {e}). "
                        f"Retrying in {delay:.2f}s..."
                    )

                    time.sleep(delay)

            raise AssertionError("unreachable")

        return wrapper

    return decorator


def compute_backoff_delay(
    attempt: int,
    initial_delay: float,
    max_delay: float,
    exponential_base: float,
    jitter: bool,
) -> float:
    """Delay before retry number ``attempt`` (0-based), capped at max_delay."""
    delay = min(initial_delay * (exponential_base**attempt), max_delay)

    if jitter:
        jitter_amount = delay * 0.1  # 10% jitter
        delay = delay + random.uniform(-jitter_amount, jitter_amount)
        delay = max(0.1, delay)

    return delay
