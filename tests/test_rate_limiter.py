"""
Tests for per-origin rate limiting.

This module tests:
- Origin key derivation
- Fixed-window enforcement and window reset
- Per-origin ceilings and the default fallback
- Redis-backed limiter behaviour (including failing closed)
"""

import asyncio

import pytest

from sports_pipeline.ingestion.rate_limiter import (
    InMemoryRateLimiter,
    RedisRateLimiter,
    create_rate_limiter,
    origin_key,
)
from sports_pipeline.types import RateLimitConfig
from tests.mocks import FakeClock, FakeRedis


# ============================================================================
# Origin Key Tests
# ============================================================================


@pytest.mark.parametrize(
    "url,expected",
    [
        ("https://www.espn.com/nfl/stats", "espn.com"),
        ("https://sportsbook.draftkings.com/leagues/football/nfl", "draftkings.com"),
        ("https://sports.yahoo.com/nfl/injuries", "yahoo.com"),
        ("https://nfl.com/scores", "nfl.com"),
        ("http://127.0.0.1:8080/feed", "127.0.0.1"),
        ("https://WWW.ESPN.COM/", "espn.com"),
        ("https://www.bbc.co.uk/sport/football", "bbc.co.uk"),
        ("https://sport.skysports.co.uk/nfl", "skysports.co.uk"),
        ("https://www.foxsports.com.au/nrl", "foxsports.com.au"),
        ("https://live.espn.co/scores", "espn.co"),
    ],
)
def test_origin_key(url, expected):
    """Sub-domains collapse onto their registrable domain."""
    assert origin_key(url) == expected


# ============================================================================
# InMemoryRateLimiter Tests
# ============================================================================


@pytest.mark.asyncio
async def test_allows_up_to_ceiling():
    """Requests are accepted until the ceiling, then refused."""
    limiter = InMemoryRateLimiter(default_limit=3, clock=FakeClock())

    results = [await limiter.allow("espn.com") for _ in range(5)]

    assert results == [True, True, True, False, False]
    assert await limiter.get_remaining_quota("espn.com") == 0


@pytest.mark.asyncio
async def test_window_resets_after_window_seconds():
    """A new window opens once the current one has expired."""
    clock = FakeClock()
    limiter = InMemoryRateLimiter(default_limit=1, window_seconds=60, clock=clock)

    assert await limiter.allow("nfl.com") is True
    assert await limiter.allow("nfl.com") is False

    clock.advance(60)
    assert await limiter.allow("nfl.com") is False  # still inside the window boundary

    clock.advance(1)
    assert await limiter.allow("nfl.com") is True


@pytest.mark.asyncio
async def test_origins_are_independent():
    """Exhausting one origin does not affect another."""
    limiter = InMemoryRateLimiter(default_limit=1, clock=FakeClock())

    assert await limiter.allow("espn.com") is True
    assert await limiter.allow("espn.com") is False
    assert await limiter.allow("yahoo.com") is True


@pytest.mark.asyncio
async def test_per_origin_ceiling_and_default():
    """Configured origins use their own ceiling, others the default entry."""
    limiter = InMemoryRateLimiter(
        limits={
            "espn.com": RateLimitConfig(requests_per_window=2),
            "default": RateLimitConfig(requests_per_window=1),
        },
        default_limit=50,
        clock=FakeClock(),
    )

    espn = [await limiter.allow("espn.com") for _ in range(3)]
    other = [await limiter.allow("weather.com") for _ in range(2)]

    assert espn == [True, True, False]
    assert other == [True, False]


@pytest.mark.asyncio
async def test_never_exceeds_ceiling_within_a_window():
    """Over three simulated minutes no window accepts more than its ceiling."""
    clock = FakeClock()
    limiter = InMemoryRateLimiter(default_limit=2, window_seconds=60, clock=clock)

    accepted_at = []
    for _ in range(180):
        if await limiter.allow("espn.com"):
            accepted_at.append(clock.now)
        clock.advance(1)

    assert len(accepted_at) == 6
    for t in accepted_at:
        in_window = [a for a in accepted_at if t <= a <= t + 60]
        assert len(in_window) <= 2


@pytest.mark.asyncio
async def test_concurrent_allow_is_atomic():
    """Concurrent checks never admit more requests than the ceiling."""
    limiter = InMemoryRateLimiter(default_limit=5, clock=FakeClock())

    results = await asyncio.gather(*[limiter.allow("espn.com") for _ in range(20)])

    assert sum(results) == 5


@pytest.mark.asyncio
async def test_get_state_snapshot():
    """get_state reports the window count and ceiling."""
    clock = FakeClock()
    limiter = InMemoryRateLimiter(default_limit=4, clock=clock)

    assert await limiter.get_state("espn.com") is None

    await limiter.allow("espn.com")
    await limiter.allow("espn.com")
    state = await limiter.get_state("espn.com")

    assert state.origin == "espn.com"
    assert state.request_count == 2
    assert state.ceiling == 4
    assert state.remaining == 2
    assert (state.reset_time - state.window_start).total_seconds() == 60


@pytest.mark.asyncio
async def test_expired_window_reports_zero_count():
    """A snapshot of an expired window shows a fresh budget."""
    clock = FakeClock()
    limiter = InMemoryRateLimiter(default_limit=2, clock=clock)
    await limiter.allow("espn.com")

    clock.advance(120)
    state = await limiter.get_state("espn.com")

    assert state.request_count == 0
    assert await limiter.get_remaining_quota("espn.com") == 2


@pytest.mark.asyncio
async def test_reset_clears_window():
    """reset() forgets an origin's window."""
    limiter = InMemoryRateLimiter(default_limit=1, clock=FakeClock())
    await limiter.allow("espn.com")

    await limiter.reset("espn.com")

    assert await limiter.allow("espn.com") is True


@pytest.mark.asyncio
async def test_configure_sets_origin_ceiling():
    limiter = InMemoryRateLimiter(default_limit=5, clock=FakeClock())

    limiter.configure("nfl.com", RateLimitConfig(requests_per_window=1))

    assert limiter.configured_origins() == ["nfl.com"]
    assert await limiter.allow("nfl.com") is True
    assert await limiter.allow("nfl.com") is False
    assert await limiter.get_remaining_quota("mlb.com") == 5


# ============================================================================
# RedisRateLimiter Tests
# ============================================================================


@pytest.mark.asyncio
async def test_redis_limiter_enforces_ceiling():
    """The Redis limiter counts with INCR and refuses past the ceiling."""
    redis = FakeRedis()
    limiter = RedisRateLimiter(redis, default_limit=2)

    results = [await limiter.allow("espn.com") for _ in range(3)]
    state = await limiter.get_state("espn.com")

    assert results == [True, True, False]
    assert state.request_count == 2
    assert state.remaining == 0


@pytest.mark.asyncio
async def test_redis_limiter_fails_closed():
    """Redis errors refuse the request instead of admitting it."""
    limiter = RedisRateLimiter(FakeRedis(fail=True), default_limit=10)

    assert await limiter.allow("espn.com") is False
    assert await limiter.get_state("espn.com") is None


@pytest.mark.asyncio
async def test_redis_limiter_reset():
    limiter = RedisRateLimiter(FakeRedis(), default_limit=1)
    await limiter.allow("espn.com")

    await limiter.reset("espn.com")

    assert await limiter.allow("espn.com") is True


def test_create_rate_limiter_selects_backend():
    """A Redis client selects the Redis limiter, otherwise in-memory."""
    assert isinstance(create_rate_limiter(), InMemoryRateLimiter)
    assert isinstance(create_rate_limiter(FakeRedis()), RedisRateLimiter)
