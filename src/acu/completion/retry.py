"""Bounded polling for records that appear after a write.

The completion tracker may materialize a completion record some time after
the state transition returns (cache propagation, replication lag). A
RetryPolicy polls a fetch function a fixed number of times with a fixed
interval between attempts.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Fixed-count, fixed-interval polling policy."""

    attempts: int = 10
    interval: float = 0.05  # seconds between attempts
    sleep: Callable[[float], None] = time.sleep

    def __post_init__(self) -> None:
        if self.attempts < 1:
            raise ValueError("attempts must be at least 1")
        if self.interval < 0:
            raise ValueError("interval must not be negative")

    @property
    def budget(self) -> float:
        """Total time spent waiting when every attempt misses.

        No sleep follows the last attempt, so the default policy waits
        450 ms (nine 50 ms intervals) rather than a round 500 ms.
        """
        return self.interval * (self.attempts - 1)

    def poll(self, fetch: Callable[[], T | None]) -> T | None:
        """Call `fetch` until it returns something other than None.

        Returns:
            The first non-None result, or None once attempts are exhausted.
        """
        for attempt in range(1, self.attempts + 1):
            result = fetch()
            if result is not None:
                if attempt > 1:
                    logger.debug(f"Record appeared on attempt {attempt}/{self.attempts}")
                return result
            if attempt < self.attempts and self.interval > 0:
                self.sleep(self.interval)

        logger.debug(f"Record not found after {self.attempts} attempt(s)")
        return None


DEFAULT_RETRY_POLICY = RetryPolicy()

# Same attempt count without waiting, for tests and in-process stores.
NO_WAIT = RetryPolicy(interval=0.0)
