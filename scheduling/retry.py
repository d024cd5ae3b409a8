"""Bounded caller-side retry for transient transaction failures."""

import logging
import time
from typing import Callable, TypeVar

from models.errors import TransactionError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def retry_transient(
    fn: Callable[[], T],
    attempts: int = 3,
    backoff_seconds: float = 0.05,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Call fn, retrying only on TransactionError.

    Waits backoff_seconds, then doubles it, between attempts. Client errors
    (validation, conflict, not found, invalid state) propagate immediately.
    The last TransactionError propagates once attempts run out.
    """
    if attempts < 1:
        raise ValueError("attempts must be at least 1")
    delay = backoff_seconds
    for attempt in range(1, attempts + 1):
        try:
            return fn()
        except TransactionError as e:
            if attempt == attempts:
                raise
            logger.warning("Attempt %d/%d failed (%s); retrying in %.2fs", attempt, attempts, e, delay)
            sleep(delay)
            delay *= 2
    raise AssertionError("unreachable")
