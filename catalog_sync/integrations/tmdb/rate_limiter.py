from __future__ import annotations

import threading
import time
from typing import Callable


class IntervalRateLimiter:
    """
    Fixed-interval gate shared by every TMDb call site in a run.

    `acquire()` reserves the next free slot under the lock and sleeps outside it,
    so concurrent workers queue up behind one schedule instead of each pacing
    themselves.
    """

    def __init__(
        self,
        min_interval_seconds: float,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if min_interval_seconds < 0:
            raise ValueError("min_interval_seconds must be >= 0")
        self.min_interval_seconds = float(min_interval_seconds)
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._next_slot: float | None = None
        self.acquired = 0

    def acquire(self) -> float:
        """Block until the next slot; returns the seconds waited."""

        with self._lock:
            now = self._clock()
            slot = now if self._next_slot is None else max(now, self._next_slot)
            self._next_slot = slot + self.min_interval_seconds
            self.acquired += 1
        wait = slot - now
        if wait > 0:
            self._sleep(wait)
        return wait
