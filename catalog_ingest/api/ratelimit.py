"""
Rate limiting and cancellable waiting for the Open Library client.

Every wait in the ingestion pipeline goes through a Clock so that it can be
interrupted by the run's cancellation token and replaced in tests.
"""

import threading
import time
from typing import Optional


class Cancelled(Exception):
    """Raised when a run's cancellation token fires during a wait."""

    def __init__(self, message: str = "operation cancelled"):
        super().__init__(message)


class Clock:
    """Wall clock backed by time.monotonic and threading.Event waits."""

    def monotonic(self) -> float:
        return time.monotonic()

    def sleep(self, seconds: float, cancel: Optional[threading.Event] = None) -> None:
        """
        Sleep for the given number of seconds.

        Raises:
            Cancelled: If the cancellation token fires before the time is up
        """
        if seconds <= 0:
            if cancel is not None and cancel.is_set():
                raise Cancelled()
            return

        if cancel is None:
            time.sleep(seconds)
            return

        if cancel.wait(seconds):
            raise Cancelled()


class RateLimiter:
    """
    Token bucket with a burst of one token.

    Tracks the next instant a request may start; callers block in wait()
    until that instant or until their cancellation token fires.
    """

    def __init__(self, requests_per_second: float, clock: Optional[Clock] = None):
        if requests_per_second <= 0:
            raise ValueError("requests_per_second must be positive")

        self.interval = 1.0 / requests_per_second
        self.clock = clock or Clock()
        self._next_allowed = 0.0
        self._lock = threading.Lock()

    def reserve(self) -> float:
        """Take the next token and return how long the caller must wait for it."""
        with self._lock:
            now = self.clock.monotonic()
            start = max(now, self._next_allowed)
            self._next_allowed = start + self.interval
            return start - now

    def wait(self, cancel: Optional[threading.Event] = None) -> None:
        """Block until a token is available."""
        if cancel is not None and cancel.is_set():
            raise Cancelled()

        delay = self.reserve()
        if delay > 0:
            self.clock.sleep(delay, cancel)
