"""
Bounded retry for database writes.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import TypeVar

import duckdb

logger = logging.getLogger("logparsely")

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_RETRY_DELAY_SEC = 1.0


def attempt_with_retry(
    fn: Callable[[], T],
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    delay: float = DEFAULT_RETRY_DELAY_SEC,
    description: str = "database write",
) -> T:
    """Call ``fn`` until it succeeds or ``max_attempts`` calls have failed.

    Only ``duckdb.Error`` is retried; any other exception propagates
    immediately. Each failed attempt is logged, and the error from the last
    attempt is re-raised once the budget is spent.

    Args:
        fn: Unit of work to run
        max_attempts: Total number of calls allowed (at least 1)
        delay: Seconds to sleep between attempts
        description: Short label used in log messages

    Returns:
        Whatever ``fn`` returns on its first successful call
    """
    if max_attempts < 1:
        raise ValueError(f"max_attempts must be at least 1, got {max_attempts}")

    attempt = 1
    while True:
        try:
            return fn()
        except duckdb.Error as e:
            logger.warning(f"Attempt {attempt}/{max_attempts} of {description} failed: {e}")
            if attempt >= max_attempts:
                raise
        attempt += 1
        if delay > 0:
            time.sleep(delay)
