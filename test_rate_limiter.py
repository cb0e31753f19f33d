import threading
import time

import pytest

from rate_limiter import RateLimiter


def test_calls_are_spaced():
    limiter = RateLimiter(calls_per_second=20)
    calls = []

    @limiter
    def record(i):
        calls.append(time.monotonic())
        return i

    assert [record(i) for i in range(4)] == [0, 1, 2, 3]
    gaps = [b - a for a, b in zip(calls, calls[1:])]
    assert min(gaps) >= 0.045


def test_spacing_holds_across_threads():
    limiter = RateLimiter(calls_per_second=20)
    calls = []
    lock = threading.Lock()

    @limiter
    def record():
        with lock:
            calls.append(time.monotonic())

    threads = [threading.Thread(target=record) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    calls.sort()
    assert calls[-1] - calls[0] >= 3 * 0.045


def test_rate_must_be_positive():
    with pytest.raises(ValueError):
        RateLimiter(calls_per_second=0)
