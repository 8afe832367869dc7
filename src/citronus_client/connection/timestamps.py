# src/citronus_client/connection/timestamps.py

import threading
import time
from typing import Callable, Optional


class TimestampGenerator:
    """
    Generates strictly increasing millisecond timestamps for signed requests.
    Two signatures produced in the same millisecond still get distinct timestamps,
    so a replayed command never reuses the timestamp of an earlier one.
    """
    def __init__(self, clock: Optional[Callable[[], int]] = None):
        self._lock = threading.Lock()
        self._last = 0
        self._clock = clock or time.time_ns

    def generate(self) -> int:
        """
        Returns the current epoch time in milliseconds, bumped past the last value if needed.
        """
        with self._lock:
            now = int(self._clock() / 1_000_000)

            if now <= self._last:
                now = self._last + 1

            self._last = now
            return now
