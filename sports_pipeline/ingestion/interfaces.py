"""
Ingestion layer interface contracts.

This module defines Protocol classes for rate limiting and collection
scheduling, plus the abstract base classes implementations derive from.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Protocol

from sports_pipeline.events import PipelineEvent
from sports_pipeline.types import RateLimitConfig, RateLimitState, SourceConfig


class RateLimiter(Protocol):
    """Interface for per-origin rate limiting."""

    async def allow(self, origin: str) -> bool:
        """
        Atomically check and count a request against an origin.

        Args:
            origin: Origin key (e.g. "espn.com")

        Returns:
            True if the request may proceed, False if the window is full
        """
        ...

    async def get_state(self, origin: str) -> Optional[RateLimitState]:
        """
        Get a snapshot of an origin's current window.

        Args:
            origin: Origin key

        Returns:
            The window snapshot, or None if the origin was never used
        """
        ...

    async def get_remaining_quota(self, origin: str) -> int:
        """
        Get remaining requests in the current window.

        Args:
            origin: Origin key

        Returns:
            Number of requests still allowed
        """
        ...

    async def reset(self, origin: str) -> None:
        """
        Drop an origin's window so the next request opens a fresh one.

        Args:
            origin: Origin key
        """
        ...

    def configure(self, origin: str, config: RateLimitConfig) -> None:
        """
        Set the ceiling for an origin.

        Args:
            origin: Origin key, or "default" for unknown origins
            config: Limit settings
        """
        ...


class Scheduler(Protocol):
    """Interface for the per-source collection scheduler."""

    async def start(self) -> None:
        """Launch a loop for every enabled source. Idempotent."""
        ...

    async def stop(self) -> None:
        """Cancel all loops and wait until every loop has exited."""
        ...

    async def run_tick(self, source: SourceConfig) -> Optional[PipelineEvent]:
        """
        Run one collection attempt for a source.

        Args:
            source: The source to collect from

        Returns:
            The published event, or None if the tick was rate limited
        """
        ...

    async def trigger_now(self, source_id: str) -> Optional[PipelineEvent]:
        """
        Run one tick immediately, outside the source's loop.

        Args:
            source_id: Id of the source

        Returns:
            The published event, or None if rate limited
        """
        ...

    def is_active(self, source_id: str) -> bool:
        """
        Check whether a source has a running loop.

        Args:
            source_id: Id of the source

        Returns:
            True if a loop is running for the source
        """
        ...


# ============================================================================
# Abstract Base Classes
# ============================================================================


class BaseRateLimiter(ABC):
    """Abstract base class for rate limiter implementations."""

    DEFAULT_ORIGIN = "default"

    def __init__(
        self,
        limits: Optional[Dict[str, RateLimitConfig]] = None,
        default_limit: int = 20,
        window_seconds: float = 60.0,
    ):
        self.window_seconds = window_seconds
        self._limits: Dict[str, RateLimitConfig] = {
            self.DEFAULT_ORIGIN: RateLimitConfig(requests_per_window=default_limit)
        }
        for origin, config in (limits or {}).items():
            self.configure(origin, config)

    def configure(self, origin: str, config: RateLimitConfig) -> None:
        self._limits[origin] = config

    def get_config(self, origin: str) -> RateLimitConfig:
        """Limit for an origin, falling back to the default."""
        return self._limits.get(origin) or self._limits[self.DEFAULT_ORIGIN]

    def configured_origins(self) -> List[str]:
        return [o for o in self._limits if o != self.DEFAULT_ORIGIN]

    @abstractmethod
    async def allow(self, origin: str) -> bool:
        pass

    @abstractmethod
    async def get_state(self, origin: str) -> Optional[RateLimitState]:
        pass

    @abstractmethod
    async def get_remaining_quota(self, origin: str) -> int:
        pass

    @abstractmethod
    async def reset(self, origin: str) -> None:
        pass


class BaseScheduler(ABC):
    """Abstract base class for scheduler implementations."""

    @abstractmethod
    async def start(self) -> None:
        pass

    @abstractmethod
    async def stop(self) -> None:
        pass

    @abstractmethod
    async def run_tick(self, source: SourceConfig) -> Optional[PipelineEvent]:
        pass

    @abstractmethod
    async def trigger_now(self, source_id: str) -> Optional[PipelineEvent]:
        pass

    @abstractmethod
    def is_active(self, source_id: str) -> bool:
        pass
