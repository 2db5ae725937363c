"""Shared pytest fixtures for bucketguard tests."""

import pytest

from fakes import WALL_START, FakeClock

from bucketguard.rate_limiter import RateLimitConfig, RateLimiter


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_limiter(clock):
    """Factory for limiters driven by the fake clock."""
    limiters = []

    def _make(requests=3, window=1000, **kwargs):
        config = RateLimitConfig(requests=requests, window=window, **kwargs)
        limiter = RateLimiter(
            config,
            clock=clock,
            wall_clock=lambda: WALL_START + int(clock.now),
        )
        limiters.append(limiter)
        return limiter

    yield _make
    for limiter in limiters:
        limiter.stop()
