"""
Bounded polling.

Every wait in the demo (agent readiness, tunnel URL, transaction events,
permission activation) goes through poll_until so the attempt/interval policy
is stated once and can be driven by a fake clock in tests.
"""

import logging
import time
from typing import Callable, Optional, TypeVar

from .exceptions import PollTimeout

T = TypeVar("T")

logger = logging.getLogger("vs_demo.polling")


def poll_until(
    probe: Callable[[], Optional[T]],
    interval: float,
    max_attempts: int,
    what: str = "condition",
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Call `probe` until it returns something other than None (or False).

    Sleeps `interval` seconds between attempts, never after the last one.

    Returns:
        The first truthy-or-non-None probe result

    Raises:
        PollTimeout: All attempts returned None/False
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")

    for attempt in range(1, max_attempts + 1):
        result = probe()
        if result is not None and result is not False:
            return result
        logger.debug("%s: attempt %d/%d not ready", what, attempt, max_attempts)
        if attempt < max_attempts:
            sleep(interval)
    raise PollTimeout(what, max_attempts)


def wait_ready(
    probe: Callable[[], bool],
    interval: float,
    max_attempts: int,
    what: str = "condition",
    sleep: Callable[[float], None] = time.sleep,
) -> bool:
    """Boolean form of poll_until: True when ready, False on exhaustion."""
    try:
        poll_until(lambda: True if probe() else None, interval, max_attempts, what, sleep)
    except PollTimeout:
        return False
    return True
