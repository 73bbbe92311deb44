"""
Tests for the rate limiter and cancellable clock.
"""

import threading

import pytest

from catalog_ingest.api.ratelimit import Cancelled, Clock, RateLimiter

from conftest import FakeClock


class TestRateLimiter:
    """Test token bucket spacing."""

    def test_first_request_does_not_wait(self):
        clock = FakeClock()
        limiter = RateLimiter(1, clock=clock)

        limiter.wait()

        assert clock.sleeps == []

    def test_requests_are_spaced_by_interval(self):
        clock = FakeClock()
        limiter = RateLimiter(4, clock=clock)

        for _ in range(3):
            limiter.wait()

        assert clock.sleeps == [0.25, 0.25]

    def test_idle_time_is_not_banked(self):
        clock = FakeClock()
        limiter = RateLimiter(1, clock=clock)

        limiter.wait()
        clock.now += 10
        limiter.wait()
        limiter.wait()

        # No burst beyond one token after a long idle period
        assert clock.sleeps == [1.0]

    def test_reserve_returns_delay(self):
        clock = FakeClock()
        limiter = RateLimiter(2, clock=clock)

        assert limiter.reserve() == 0
        assert limiter.reserve() == 0.5
        assert limiter.reserve() == 1.0

    def test_rejects_non_positive_rate(self):
        with pytest.raises(ValueError):
            RateLimiter(0)

    def test_cancelled_wait_raises(self):
        clock = FakeClock()
        limiter = RateLimiter(1, clock=clock)
        cancel = threading.Event()
        cancel.set()

        with pytest.raises(Cancelled):
            limiter.wait(cancel)

        assert clock.sleeps == []


class TestClock:
    """Test the real clock's cancellable sleep."""

    def test_sleep_returns_when_not_cancelled(self):
        Clock().sleep(0.01, threading.Event())

    def test_sleep_raises_when_cancelled(self):
        cancel = threading.Event()
        cancel.set()

        with pytest.raises(Cancelled):
            Clock().sleep(5, cancel)

    def test_zero_sleep_checks_cancellation(self):
        cancel = threading.Event()
        cancel.set()

        with pytest.raises(Cancelled):
            Clock().sleep(0, cancel)

    def test_cancel_from_another_thread_interrupts_sleep(self):
        cancel = threading.Event()
        timer = threading.Timer(0.05, cancel.set)
        timer.start()

        try:
            with pytest.raises(Cancelled):
                Clock().sleep(30, cancel)
        finally:
            timer.cancel()
