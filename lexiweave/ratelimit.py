"""Per-endpoint request throttling."""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Deque, Dict, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RateLimiterStatus:
    enabled: bool
    requests_per_second: float
    current_requests: int
    remaining_requests: int


class RateLimiter:
    """Sliding-window limiter that admits callers in arrival order.

    At most ``requests_per_second`` calls are admitted within any window of
    ``window_seconds``. A non-positive rate disables throttling.
    """

    def __init__(
        self,
        requests_per_second: float = 0,
        *,
        window_seconds: float = 1.0,
        buffer_seconds: float = 0.01,
        enabled: bool = True,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.window_seconds = window_seconds
        self.buffer_seconds = buffer_seconds
        self._clock = clock
        self._sleep = sleep
        self._request_times: Deque[float] = deque()
        self._condition = threading.Condition()
        self._next_ticket = 0
        self._serving = 0
        self.configure(requests_per_second, enabled=enabled)

    def configure(self, requests_per_second: float, *, enabled: bool = True) -> None:
        self.requests_per_second = max(0, requests_per_second)
        self.enabled = enabled and self.requests_per_second > 0

    def acquire(self) -> None:
        """Block until the caller may issue one request."""

        if not self.enabled:
            return

        with self._condition:
            ticket = self._next_ticket
            self._next_ticket += 1
            while self._serving != ticket:
                self._condition.wait()

        try:
            now = self._clock()
            self._prune(now)
            if len(self._request_times) >= self.requests_per_second:
                wait_time = (
                    self.window_seconds
                    - (now - self._request_times[0])
                    + self.buffer_seconds
                )
                if wait_time > 0:
                    logger.debug("Rate limit reached; waiting %.3fs.", wait_time)
                    self._sleep(wait_time)
                self._prune(self._clock())
            self._request_times.append(self._clock())
        finally:
            with self._condition:
                self._serving += 1
                self._condition.notify_all()

    def submit(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Run one unit of work once the limiter admits it."""

        self.acquire()
        return fn(*args, **kwargs)

    def status(self) -> RateLimiterStatus:
        now = self._clock()
        current = sum(
            1 for stamp in list(self._request_times) if now - stamp < self.window_seconds
        )
        return RateLimiterStatus(
            enabled=self.enabled,
            requests_per_second=self.requests_per_second,
            current_requests=current,
            remaining_requests=max(0, int(self.requests_per_second) - current),
        )

    def _prune(self, now: float) -> None:
        while self._request_times and now - self._request_times[0] >= self.window_seconds:
            self._request_times.popleft()


class RateLimiterRegistry:
    """Hands out one limiter per endpoint."""

    def __init__(self, **limiter_options: Any) -> None:
        self._limiters: Dict[str, RateLimiter] = {}
        self._lock = threading.Lock()
        self._limiter_options = limiter_options

    def get_limiter(
        self,
        endpoint: str,
        requests_per_second: float = 0,
        *,
        enabled: bool = True,
    ) -> RateLimiter:
        with self._lock:
            limiter = self._limiters.get(endpoint)
            if limiter is None:
                limiter = RateLimiter(
                    requests_per_second,
                    enabled=enabled,
                    **self._limiter_options,
                )
                self._limiters[endpoint] = limiter
            else:
                limiter.configure(requests_per_second, enabled=enabled)
            return limiter

    def clear(self) -> None:
        with self._lock:
            self._limiters.clear()
