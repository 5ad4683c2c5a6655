"""Tests for the sliding-window rate limiter."""

import pytest

from alarm_audio.services.rate_limit import RateLimiter


class FakeClock:
    """Manual clock whose sleep advances time instead of waiting."""

    def __init__(self, now: float = 0.0):
        self.now = now
        self.sleeps = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


class TestRateLimiter:
    def test_invalid_arguments(self):
        with pytest.raises(ValueError):
            RateLimiter(0)
        with pytest.raises(ValueError):
            RateLimiter(5, period=0)

    @pytest.mark.asyncio
    async def test_under_limit_does_not_wait(self, clock):
        limiter = RateLimiter(3, 60.0, clock=clock, sleep=clock.sleep)

        for _ in range(3):
            await limiter.acquire()

        assert clock.sleeps == []
        assert limiter.current_usage == 3

    @pytest.mark.asyncio
    async def test_waits_for_full_window(self, clock):
        limiter = RateLimiter(2, 60.0, clock=clock, sleep=clock.sleep)

        await limiter.acquire()
        await limiter.acquire()
        await limiter.acquire()

        assert clock.sleeps == [60.0]
        assert limiter.current_usage == 1

    @pytest.mark.asyncio
    async def test_window_slides(self, clock):
        limiter = RateLimiter(2, 60.0, clock=clock, sleep=clock.sleep)

        await limiter.acquire()
        clock.now = 30.0
        await limiter.acquire()
        clock.now = 45.0
        await limiter.acquire()

        assert clock.sleeps == [15.0]
        assert limiter.current_usage == 2

    @pytest.mark.asyncio
    async def test_usage_expires(self, clock):
        limiter = RateLimiter(5, 10.0, clock=clock, sleep=clock.sleep)

        await limiter.acquire()
        clock.now = 10.0

        assert limiter.current_usage == 0
