"""
Per-origin rate limiting for collection ticks.

Fixed-window accounting: each origin gets a window of `window_seconds`;
once `requests_per_window` requests were accepted the rest of the window is
refused. Refused requests are never queued, the scheduler simply skips the
tick. Supports in-memory and Redis-backed storage.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, Optional
from urllib.parse import urlparse

from sports_pipeline.ingestion.interfaces import BaseRateLimiter
from sports_pipeline.types import RateLimitConfig, RateLimitState

logger = logging.getLogger(__name__)

# Second-level labels registered under country-code TLDs (co.uk, com.au, ...)
SECOND_LEVEL_LABELS = frozenset({"co", "com", "net", "org", "gov", "edu", "ac", "ne", "or"})


def origin_key(url: str) -> str:
    """
    Derive the rate-limit key for a URL.

    Sub-domains share their parent's budget, so
    "sportsbook.draftkings.com" and "www.draftkings.com" both map to
    "draftkings.com". Under a country-code second-level suffix such as
    "co.uk" or "com.au" one more label is kept, so "a.co.uk" and "b.co.uk"
    get separate budgets. Other multi-label public suffixes are not known
    and collapse to their last two labels.
    """
    host = (urlparse(url).hostname or url).lower()
    labels = host.split(".")
    if len(labels) <= 2 or host.replace(".", "").isdigit():
        return host

    keep = 2
    if len(labels[-1]) == 2 and labels[-2] in SECOND_LEVEL_LABELS:
        keep = 3
    return ".".join(labels[-keep:])


def _to_datetime(timestamp: float) -> datetime:
    return datetime.fromtimestamp(timestamp, timezone.utc).replace(tzinfo=None)


@dataclass
class _Window:
    start: float
    reset_at: float
    count: int = 0


class InMemoryRateLimiter(BaseRateLimiter):
    """
    In-memory fixed-window rate limiter.

    Suitable for a single pipeline process. For several processes polling
    the same origins, use RedisRateLimiter instead.
    """

    def __init__(
        self,
        limits: Optional[Dict[str, RateLimitConfig]] = None,
        default_limit: int = 20,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the rate limiter.

        Args:
            limits: Per-origin limits
            default_limit: Requests per window for unknown origins
            window_seconds: Window length in seconds
            clock: Time source in epoch seconds
        """
        super().__init__(limits, default_limit, window_seconds)
        self._clock = clock
        self._windows: Dict[str, _Window] = {}

        # Check-and-increment must be atomic per origin
        self._lock = asyncio.Lock()

        logger.info(
            f"Rate limiter initialized. Default limit: {default_limit} "
            f"requests per {window_seconds}s"
        )

    async def allow(self, origin: str) -> bool:
        async with self._lock:
            now = self._clock()
            ceiling = self.get_config(origin).requests_per_window

            window = self._windows.get(origin)
            if window is None or now > window.reset_at:
                window = _Window(start=now, reset_at=now + self.window_seconds)
                self._windows[origin] = window

            if window.count >= ceiling:
                logger.debug(
                    f"Rate limit reached for {origin}: "
                    f"{window.count}/{ceiling} in current {self.window_seconds}s window"
                )
                return False

            window.count += 1
            return True

    async def get_state(self, origin: str) -> Optional[RateLimitState]:
        async with self._lock:
            window = self._windows.get(origin)
            if window is None:
                return None
            return self._snapshot(origin, window)

    def _snapshot(self, origin: str, window: _Window) -> RateLimitState:
        config = self.get_config(origin)
        count = window.count
        if self._clock() > window.reset_at:
            count = 0
        return RateLimitState(
            origin=origin,
            window_start=_to_datetime(window.start),
            reset_time=_to_datetime(window.reset_at),
            request_count=count,
            ceiling=config.requests_per_window,
            backoff_multiplier=config.backoff_multiplier,
            max_retries=config.max_retries,
        )

    async def get_remaining_quota(self, origin: str) -> int:
        state = await self.get_state(origin)
        if state is None:
            return self.get_config(origin).requests_per_window
        return state.remaining

    async def reset(self, origin: str) -> None:
        async with self._lock:
            if self._windows.pop(origin, None) is not None:
                logger.info(f"Rate limit window reset for {origin}")


class RedisRateLimiter(BaseRateLimiter):
    """
    Redis-backed fixed-window rate limiter for several pipeline processes.

    Each origin's window is one counter key that expires with the window,
    so INCR is the atomic check-and-increment.
    """

    def __init__(
        self,
        redis_client,
        limits: Optional[Dict[str, RateLimitConfig]] = None,
        default_limit: int = 20,
        window_seconds: float = 60.0,
        key_prefix: str = "ratelimit",
    ):
        """
        Initialize the Redis rate limiter.

        Args:
            redis_client: Redis client instance (from redis.asyncio)
            limits: Per-origin limits
            default_limit: Requests per window for unknown origins
            window_seconds: Window length in seconds
            key_prefix: Prefix for Redis keys
        """
        super().__init__(limits, default_limit, window_seconds)
        self.redis = redis_client
        self.key_prefix = key_prefix

        logger.info(
            f"Redis rate limiter initialized. Default limit: {default_limit} "
            f"requests per {window_seconds}s"
        )

    def _get_key(self, origin: str) -> str:
        return f"{self.key_prefix}:{origin}"

    async def allow(self, origin: str) -> bool:
        key = self._get_key(origin)
        ceiling = self.get_config(origin).requests_per_window

        try:
            count = await self.redis.incr(key)
            if count == 1:
                await self.redis.pexpire(key, int(self.window_seconds * 1000))
        except Exception as e:
            # Refuse rather than risk exceeding the origin's limit
            logger.error(f"Error checking rate limit for {origin}: {e}", exc_info=True)
            return False

        if count > ceiling:
            logger.debug(f"Rate limit reached for {origin}: {ceiling}/{ceiling}")
            return False
        return True

    async def get_state(self, origin: str) -> Optional[RateLimitState]:
        key = self._get_key(origin)
        try:
            raw_count = await self.redis.get(key)
            ttl_ms = await self.redis.pttl(key)
        except Exception as e:
            logger.error(f"Error reading rate limit for {origin}: {e}", exc_info=True)
            return None

        if raw_count is None:
            return None

        config = self.get_config(origin)
        now = time.time()
        reset_at = now + max(ttl_ms, 0) / 1000.0
        return RateLimitState(
            origin=origin,
            window_start=_to_datetime(reset_at - self.window_seconds),
            reset_time=_to_datetime(reset_at),
            request_count=min(int(raw_count), config.requests_per_window),
            ceiling=config.requests_per_window,
            backoff_multiplier=config.backoff_multiplier,
            max_retries=config.max_retries,
        )

    async def get_remaining_quota(self, origin: str) -> int:
        state = await self.get_state(origin)
        if state is None:
            return self.get_config(origin).requests_per_window
        return state.remaining

    async def reset(self, origin: str) -> None:
        try:
            await self.redis.delete(self._get_key(origin))
            logger.info(f"Rate limit window reset for {origin} in Redis")
        except Exception as e:
            logger.error(f"Error resetting rate limit for {origin}: {e}", exc_info=True)


def create_rate_limiter(
    redis_client=None,
    limits: Optional[Dict[str, RateLimitConfig]] = None,
    default_limit: int = 20,
    window_seconds: float = 60.0,
) -> BaseRateLimiter:
    """
    Create a rate limiter instance.

    If a Redis client is provided, creates a RedisRateLimiter shared by every
    process using that Redis. Otherwise, creates an InMemoryRateLimiter.

    Args:
        redis_client: Optional Redis client instance
        limits: Per-origin limits
        default_limit: Requests per window for unknown origins
        window_seconds: Window length in seconds

    Returns:
        Rate limiter instance
    """
    if redis_client:
        return RedisRateLimiter(redis_client, limits, default_limit, window_seconds)
    return InMemoryRateLimiter(limits, default_limit, window_seconds)
