"""
Typed pipeline events and the in-process event bus.

Producers publish without blocking; every subscriber owns a bounded
queue and drains it from its own task. A full queue drops the event for
that subscriber only.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple, Type, Union

from sports_pipeline.observability.metrics import record_event_dropped
from sports_pipeline.types import (
    CollectedRecord,
    CollectionError,
    DataKind,
    HealthCheckResult,
    HealthStatus,
    PredictionResult,
    RateLimitState,
)

logger = logging.getLogger(__name__)


# ============================================================================
# Event Variants
# ============================================================================


@dataclass(frozen=True)
class CollectionSuccess:
    """A tick fetched a payload."""

    record: CollectedRecord
    latency_ms: float = 0.0
    rate_limit: Optional[RateLimitState] = None

    @property
    def source_id(self) -> str:
        return self.record.source_id

    @property
    def timestamp(self) -> datetime:
        return self.record.collected_at


@dataclass(frozen=True)
class CollectionFailure:
    """A tick failed or timed out."""

    error: CollectionError
    latency_ms: float = 0.0
    rate_limit: Optional[RateLimitState] = None

    @property
    def source_id(self) -> str:
        return self.error.source_id

    @property
    def timestamp(self) -> datetime:
        return self.error.timestamp


@dataclass(frozen=True)
class ProcessedUpdate:
    """One entity was normalized and stored (e.g. "player_updated")."""

    update_type: str
    kind: DataKind
    source_id: str
    external_id: str
    fields: Dict[str, Any] = field(default_factory=dict)
    prediction: Optional[PredictionResult] = None
    timestamp: datetime = field(default_factory=datetime.utcnow)


@dataclass(frozen=True)
class SourceUnhealthy:
    """A source keeps failing without a single success."""

    source_id: str
    failures: int
    last_error: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.utcnow)


@dataclass(frozen=True)
class HealthAlert:
    """Overall health moved to degraded or unhealthy."""

    result: HealthCheckResult
    previous: Optional[HealthStatus] = None

    @property
    def timestamp(self) -> datetime:
        return self.result.timestamp


PipelineEvent = Union[
    CollectionSuccess,
    CollectionFailure,
    ProcessedUpdate,
    SourceUnhealthy,
    HealthAlert,
]

ALL_EVENT_TYPES: Tuple[Type, ...] = (
    CollectionSuccess,
    CollectionFailure,
    ProcessedUpdate,
    SourceUnhealthy,
    HealthAlert,
)


# ============================================================================
# Event Bus
# ============================================================================


_CLOSED = object()


class Subscription:
    """
    A consumer's view of the bus.

    Events are buffered in a bounded queue and read with `get()` or by
    iterating with `async for`. Iteration ends once the subscription is
    closed and its queue is drained.
    """

    def __init__(
        self,
        name: str,
        event_types: Tuple[Type, ...],
        maxsize: int = 1000,
    ):
        self.name = name
        self.event_types = event_types
        self.dropped = 0
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def accepts(self, event: Any) -> bool:
        return not self._closed and isinstance(event, self.event_types)

    def offer(self, event: Any) -> bool:
        """Enqueue without waiting. Returns False if the event was dropped."""
        try:
            self._queue.put_nowait(event)
            return True
        except asyncio.QueueFull:
            self.dropped += 1
            record_event_dropped(self.name)
            logger.warning(
                f"Subscriber {self.name} queue full, dropped {type(event).__name__}"
            )
            return False

    async def get(self) -> Optional[PipelineEvent]:
        """Wait for the next event. Returns None once closed and drained."""
        if self._closed and self._queue.empty():
            return None

        event = await self._queue.get()
        if event is _CLOSED:
            return None
        return event

    def get_nowait(self) -> Optional[PipelineEvent]:
        """Return a buffered event or None if nothing is queued."""
        try:
            event = self._queue.get_nowait()
        except asyncio.QueueEmpty:
            return None
        return None if event is _CLOSED else event

    def pending(self) -> int:
        return self._queue.qsize()

    def close(self) -> None:
        """Stop accepting events and wake a waiting consumer."""
        if self._closed:
            return
        self._closed = True
        try:
            self._queue.put_nowait(_CLOSED)
        except asyncio.QueueFull:
            # Consumer sees closed + empty after draining
            pass

    async def __aiter__(self) -> AsyncIterator[PipelineEvent]:
        while True:
            event = await self.get()
            if event is None:
                return
            yield event

    def __repr__(self) -> str:
        return f"<Subscription {self.name} pending={self.pending()}>"


class EventBus:
    """Fan-out of pipeline events to per-consumer queues."""

    def __init__(self, default_maxsize: int = 1000):
        self.default_maxsize = default_maxsize
        self._subscriptions: List[Subscription] = []

    def subscribe(
        self,
        name: str,
        *event_types: Type,
        maxsize: Optional[int] = None,
    ) -> Subscription:
        """
        Register a consumer.

        Args:
            name: Subscriber name used in logs and drop metrics
            *event_types: Event classes to receive (all when omitted)
            maxsize: Queue bound, defaults to the bus default

        Returns:
            The new subscription
        """
        subscription = Subscription(
            name,
            tuple(event_types) or ALL_EVENT_TYPES,
            maxsize or self.default_maxsize,
        )
        self._subscriptions.append(subscription)
        logger.debug(f"Subscriber {name} registered")
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        subscription.close()
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    def publish(self, event: PipelineEvent) -> int:
        """
        Deliver an event to every interested subscriber.

        Returns:
            Number of subscribers that received the event
        """
        delivered = 0
        for subscription in list(self._subscriptions):
            if subscription.accepts(event) and subscription.offer(event):
                delivered += 1
        return delivered

    def close(self) -> None:
        for subscription in self._subscriptions:
            subscription.close()

    @property
    def subscriptions(self) -> List[Subscription]:
        return list(self._subscriptions)
