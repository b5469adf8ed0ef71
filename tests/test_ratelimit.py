import threading

import pytest

from lexiweave.ratelimit import RateLimiter, RateLimiterRegistry


class FakeClock:
    def __init__(self):
        self.now = 100.0
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


def test_limiter_waits_once_window_is_full():
    clock = FakeClock()
    limiter = RateLimiter(2, clock=clock, sleep=clock.sleep)

    limiter.acquire()
    limiter.acquire()
    assert clock.sleeps == []

    limiter.acquire()

    assert clock.sleeps == [pytest.approx(1.01)]
    status = limiter.status()
    assert status.enabled is True
    assert status.current_requests == 1
    assert status.remaining_requests == 1


def test_requests_outside_window_do_not_wait():
    clock = FakeClock()
    limiter = RateLimiter(1, clock=clock, sleep=clock.sleep)

    limiter.acquire()
    clock.now += 1.5
    limiter.acquire()

    assert clock.sleeps == []


def test_disabled_limiter_never_waits():
    clock = FakeClock()
    limiter = RateLimiter(0, clock=clock, sleep=clock.sleep)

    for _ in range(10):
        limiter.acquire()

    assert limiter.enabled is False
    assert clock.sleeps == []


def test_submit_returns_result_and_propagates_errors():
    limiter = RateLimiter(0)

    assert limiter.submit(lambda a, b=0: a + b, 2, b=3) == 5

    def boom():
        raise RuntimeError("failed")

    with pytest.raises(RuntimeError):
        limiter.submit(boom)


def test_concurrent_callers_are_all_admitted():
    limiter = RateLimiter(1000)
    results = []
    lock = threading.Lock()

    def work(idx):
        value = limiter.submit(lambda: idx)
        with lock:
            results.append(value)

    threads = [threading.Thread(target=work, args=(idx,)) for idx in range(20)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sorted(results) == list(range(20))


def test_registry_reuses_limiter_per_endpoint():
    registry = RateLimiterRegistry()

    first = registry.get_limiter("https://api.example", 2)
    again = registry.get_limiter("https://api.example", 5)
    other = registry.get_limiter("https://other.example", 1)

    assert first is again
    assert first.requests_per_second == 5
    assert other is not first

    registry.clear()
    assert registry.get_limiter("https://api.example", 5) is not first
