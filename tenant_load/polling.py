"""Bounded polling used for every asynchronous wait in the harness."""

from __future__ import annotations

import logging
import time
from typing import Callable

from .errors import PollTimeoutError


def poll_until(
    condition: Callable[[], bool],
    interval: float,
    timeout: float,
    *,
    description: str = "",
) -> None:
    """Call ``condition`` every ``interval`` seconds until it returns true.

    The first check happens one interval after the call. An exception raised
    by ``condition`` counts as "not done yet"; only success or the deadline
    ends the loop. Raises :class:`PollTimeoutError` once ``timeout`` seconds
    have elapsed without success.
    """
    if interval <= 0:
        raise ValueError(f"interval must be > 0 (got {interval})")
    if timeout < 0:
        raise ValueError(f"timeout must be >= 0 (got {timeout})")

    deadline = time.monotonic() + timeout
    attempts = 0
    while True:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            logging.debug("Gave up on %s after %d check(s)", description or "condition", attempts)
            raise PollTimeoutError(description, timeout)
        time.sleep(min(interval, remaining))
        attempts += 1
        try:
            if condition():
                return
        except Exception as exc:
            logging.debug("Poll check %d for %s failed: %s", attempts, description or "condition", exc)
