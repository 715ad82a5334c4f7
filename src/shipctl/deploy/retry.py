"""Bounded fixed-interval polling."""

import time
from dataclasses import dataclass
from typing import Callable


@dataclass
class PollResult:
    """Outcome of a bounded poll."""

    succeeded: bool
    attempts: int


def poll_until(
    predicate: Callable[[], bool],
    max_attempts: int,
    interval: float,
    sleep: Callable[[float], None] = time.sleep,
) -> PollResult:
    """Call ``predicate`` until it returns True or attempts run out.

    The predicate is evaluated at most ``max_attempts`` times with ``interval``
    seconds of sleep between consecutive attempts (never after the last one).

    Args:
        predicate: Zero-argument check, True means done
        max_attempts: Maximum number of evaluations, at least 1
        interval: Seconds to sleep between evaluations
        sleep: Sleep function, injectable for tests

    Returns:
        PollResult with the number of evaluations performed
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    for attempt in range(1, max_attempts + 1):
        if predicate():
            return PollResult(succeeded=True, attempts=attempt)
        if attempt < max_attempts:
            sleep(interval)

    return PollResult(succeeded=False, attempts=max_attempts)
