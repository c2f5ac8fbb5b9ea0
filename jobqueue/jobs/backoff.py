"""
Retry policy: whether a failed attempt is retried and how long it waits.
"""

import random
from collections.abc import Callable
from datetime import timedelta

from jobqueue.config.settings import BackoffConfig, BackoffType

DEFAULT_BACKOFF = BackoffConfig()


def backoff_delay(
    attempt: int,
    config: BackoffConfig = DEFAULT_BACKOFF,
    rand: Callable[[], float] = random.random,
) -> timedelta:
    """
    Delay before a job that failed its `attempt`-th attempt is claimable again.

    Exponential: delay_ms * 2^(attempt-1); fixed: delay_ms. The optional
    ceiling applies before jitter, jitter spreads the result by +/- the
    configured fraction.
    """
    if attempt < 1:
        raise ValueError(f"attempt must be >= 1, got {attempt}")

    if config.type == BackoffType.EXPONENTIAL:
        delay_ms = config.delay_ms * (2 ** (attempt - 1))
    else:
        delay_ms = config.delay_ms

    if config.max_delay_ms is not None:
        delay_ms = min(delay_ms, config.max_delay_ms)

    if config.jitter:
        delay_ms += delay_ms * config.jitter * (2 * rand() - 1)

    return timedelta(milliseconds=max(0.0, delay_ms))


def should_retry(attempts: int, max_attempts: int, retryable: bool = True) -> bool:
    """A failed job goes back to pending while attempts remain."""
    return retryable and attempts < max_attempts
