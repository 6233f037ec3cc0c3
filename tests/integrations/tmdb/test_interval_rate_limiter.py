from __future__ import annotations

import threading

import pytest

from catalog_sync.integrations.tmdb.rate_limiter import IntervalRateLimiter


class _ManualClock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


def test_back_to_back_calls_wait_for_the_interval() -> None:
    clock = _ManualClock()
    waits: list[float] = []
    limiter = IntervalRateLimiter(0.25, clock=clock, sleep=waits.append)

    assert limiter.acquire() == 0
    assert limiter.acquire() == pytest.approx(0.25)
    assert limiter.acquire() == pytest.approx(0.5)
    assert waits == [pytest.approx(0.25), pytest.approx(0.5)]


def test_no_wait_once_interval_has_passed() -> None:
    clock = _ManualClock()
    waits: list[float] = []
    limiter = IntervalRateLimiter(0.25, clock=clock, sleep=waits.append)

    limiter.acquire()
    clock.now += 1.0
    assert limiter.acquire() == 0
    assert waits == []


def test_concurrent_callers_get_distinct_slots() -> None:
    clock = _ManualClock()
    waits: list[float] = []
    lock = threading.Lock()

    def record(seconds: float) -> None:
        with lock:
            waits.append(seconds)

    limiter = IntervalRateLimiter(0.1, clock=clock, sleep=record)
    threads = [threading.Thread(target=limiter.acquire) for _ in range(5)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert limiter.acquired == 5
    assert sorted(round(w, 6) for w in waits) == [0.1, 0.2, 0.3, 0.4]


def test_negative_interval_rejected() -> None:
    with pytest.raises(ValueError):
        IntervalRateLimiter(-1)
