"""Blocking leaky-bucket rate limiter shared by scrapers and the LLM client."""

import logging
import threading
import time
from collections import deque

logger = logging.getLogger(__name__)


class RateLimiter:
    """
    Spaces calls at least `min_interval` seconds apart and, optionally, caps
    them at `max_per_minute` inside any sliding 60-second window.

    `acquire()` blocks the calling thread until a slot is free, so concurrent
    callers queue instead of bursting. Clock and sleep are injectable for tests.
    """

    def __init__(self, min_interval: float, max_per_minute: int | None = None,
                 clock=time.monotonic, sleep=time.sleep):
        if min_interval < 0:
            raise ValueError("min_interval must be >= 0")
        self.min_interval = min_interval
        self.max_per_minute = max_per_minute
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._last_call: float | None = None
        self._window: deque[float] = deque()

    def acquire(self) -> float:
        """Wait for the next slot. Returns the seconds spent waiting."""
        waited = 0.0
        with self._lock:
            now = self._clock()
            wait_s = 0.0
            if self._last_call is not None:
                wait_s = self.min_interval - (now - self._last_call)

            if self.max_per_minute:
                while self._window and now - self._window[0] >= 60.0:
                    self._window.popleft()
                if len(self._window) >= self.max_per_minute:
                    wait_s = max(wait_s, 60.0 - (now - self._window[0]))

            if wait_s > 0:
                self._sleep(wait_s)
                waited = wait_s

            self._last_call = self._clock()
            if self.max_per_minute:
                self._window.append(self._last_call)
        if waited > 1.0:
            logger.debug("[RATE] waited %.2fs for a request slot", waited)
        return waited
