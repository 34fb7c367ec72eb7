"""Bounded retry for read-only store operations.

Only naturally idempotent calls (resolving a risk, reading history) are
wrapped; mutations surface ``StorageFailure`` to the caller untouched.
"""
import functools
import logging
import random
import time
from typing import Callable, Optional, Sequence, Type

logger = logging.getLogger(__name__)


def backoff_delay(attempt: int, base_delay: float, max_delay: float = 2.0) -> float:
    """Exponential backoff with jitter: min(cap, base * 2^attempt) * U(0.5, 1.0)."""
    delay = min(max_delay, base_delay * (2 ** attempt))
    return delay * random.uniform(0.5, 1.0)


def retry(
    max_retries: int,
    base_delay: float,
    retryable_exceptions: Sequence[Type[Exception]],
    max_delay: float = 2.0,
    on_retry: Optional[Callable] = None,
):
    """Retry the wrapped function on the given exception types.

    Total calls are at most ``max_retries + 1``; the last failure is re-raised.
    ``on_retry(attempt, exc, delay)`` runs before each sleep.
    """

    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            retryable = tuple(retryable_exceptions)
            for attempt in range(max_retries + 1):
                try:
                    return func(*args, **kwargs)
                except retryable as exc:
                    if attempt >= max_retries:
                        raise
                    delay = backoff_delay(attempt, base_delay, max_delay)
                    logger.warning(
                        "Retry %d/%d for %s (%s: %s), waiting %.2fs",
                        attempt + 1,
                        max_retries,
                        func.__name__,
                        type(exc).__name__,
                        exc,
                        delay,
                    )
                    if on_retry:
                        on_retry(attempt, exc, delay)
                    time.sleep(delay)

        return wrapper

    return decorator
