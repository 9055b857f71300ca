"""Bounded polling of eventually-consistent external services."""

from __future__ import annotations

import logging
import time
from typing import Callable, TypeVar

from courseflow.errors import PollTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_ATTEMPTS = 60
DEFAULT_INTERVAL = 5.0  # seconds


def retry_until(
    description: str,
    action: Callable[[], T],
    predicate: Callable[[T], bool] = bool,
    attempts: int = DEFAULT_ATTEMPTS,
    interval: float = DEFAULT_INTERVAL,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call ``action`` until ``predicate`` holds for its result.

    Sleeps ``interval`` seconds between attempts (never after the last one)
    and raises PollTimeoutError naming ``description`` once ``attempts``
    calls have been made without success. Exceptions raised by ``action``
    propagate immediately.
    """
    if attempts < 1:
        raise ValueError("attempts must be at least 1")

    for attempt in range(1, attempts + 1):
        value = action()
        if predicate(value):
            logger.debug(f"{description}: satisfied on attempt {attempt}")
            return value

        if attempt < attempts:
            logger.debug(
                f"{description}: attempt {attempt}/{attempts} unsatisfied, "
                f"retrying in {interval}s"
            )
            sleep(interval)

    raise PollTimeoutError(description, attempts)


def perform_after(
    delay: float,
    action: Callable[[], T],
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Block for ``delay`` seconds, then run ``action``."""
    if delay > 0:
        sleep(delay)
    return action()
