# src/citronus_client/connection/rate_limiter.py

import logging
import threading
import time
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class RateLimiter:
    """
    A token bucket rate limiter shared by every outbound HTTP call of a client.

    Capacity is ``calls_per_second + burst`` and tokens refill continuously at
    ``calls_per_second``. Tokens are never refunded: the budget tracks requests
    sent, not responses received.
    """
    def __init__(
        self,
        calls_per_second: float = 5.0,
        burst: int = 5,
        clock: Optional[Callable[[], float]] = None,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        if calls_per_second <= 0:
            raise ValueError("Rate must be positive")
        if burst < 0:
            raise ValueError("Burst must not be negative")
        self.rate = float(calls_per_second)
        self.capacity = self.rate + burst
        self._clock = clock or time.monotonic
        self._sleep = sleep or time.sleep
        self._tokens = self.capacity
        self._last_refill = self._clock()
        self._blocked_until = 0.0
        self.lock = threading.Lock()

    @property
    def tokens(self) -> float:
        with self.lock:
            self._refill(self._clock())
            return self._tokens

    def _refill(self, now: float) -> None:
        elapsed = now - self._last_refill
        if elapsed > 0:
            self._tokens = min(self.capacity, self._tokens + elapsed * self.rate)
            self._last_refill = now

    def try_acquire(self) -> bool:
        """Takes a token if one is available right now, without blocking."""
        with self.lock:
            now = self._clock()
            if now < self._blocked_until:
                return False
            self._refill(now)
            if self._tokens >= 1:
                self._tokens -= 1
                return True
            return False

    def acquire(self) -> float:
        """
        Blocks until a token is available and takes it. Returns the seconds waited.
        """
        waited = 0.0
        with self.lock:
            while True:
                now = self._clock()
                if now < self._blocked_until:
                    delay = self._blocked_until - now
                else:
                    self._refill(now)
                    if self._tokens >= 1:
                        self._tokens -= 1
                        return waited
                    delay = (1 - self._tokens) / self.rate
                self._sleep(delay)
                waited += delay

    def penalize(self, backoff_seconds: float = 1.0) -> None:
        """
        Drains the bucket after the server answered 429 and holds every caller
        for ``backoff_seconds`` before refilling resumes.
        """
        with self.lock:
            now = self._clock()
            self._tokens = 0.0
            self._blocked_until = max(self._blocked_until, now + backoff_seconds)
            self._last_refill = self._blocked_until
        logger.warning(
            "Rate limit hit; draining bucket",
            extra={"event": "rate_limit_backoff", "backoff_seconds": backoff_seconds},
        )
