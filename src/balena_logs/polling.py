"""Fixed-interval polling with a bounded number of attempts."""
import logging
import time
from typing import Callable, Optional

logger = logging.getLogger(__name__)


def poll_until(
    predicate: Callable[[], bool],
    max_attempts: int,
    interval: float,
    sleep: Callable[[float], None] = time.sleep,
) -> Optional[int]:
    """
    Evaluate ``predicate`` after each delay until it holds or the budget runs out.

    Every attempt sleeps ``interval`` seconds first, so the longest wait is
    ``max_attempts * interval``.

    Args:
        predicate: Zero-argument callable checked once per attempt.
        max_attempts: Number of attempts allowed. Must be positive.
        interval: Delay in seconds before each attempt.
        sleep: Sleep function, replaceable in tests.

    Returns:
        The 1-based attempt at which the predicate first held, or None when exhausted.
    """
    if max_attempts <= 0:
        raise ValueError("max_attempts must be a positive integer")
    if interval < 0:
        raise ValueError("interval must not be negative")

    for attempt in range(1, max_attempts + 1):
        sleep(interval)
        if predicate():
            logger.debug("Condition met on attempt %d/%d", attempt, max_attempts)
            return attempt
        logger.debug("Attempt %d/%d: not ready yet", attempt, max_attempts)
    return None
