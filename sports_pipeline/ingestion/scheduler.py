"""
Collector scheduler.

Runs one independent asyncio task per enabled source. Each task ticks at the
source's interval: ask the rate limiter, fetch through the adapter for the
source's mechanism under a timeout, and publish the outcome on the event bus.
"""

import asyncio
import logging
import time
from typing import Any, Dict, List, Optional, Set

from sports_pipeline.events import (
    CollectionFailure,
    CollectionSuccess,
    EventBus,
    PipelineEvent,
)
from sports_pipeline.ingestion.base import AdapterRegistry, NotFoundError
from sports_pipeline.ingestion.interfaces import BaseRateLimiter, BaseScheduler
from sports_pipeline.ingestion.rate_limiter import origin_key
from sports_pipeline.ingestion.registry import SourceRegistry
from sports_pipeline.observability.logging import log_context
from sports_pipeline.observability.metrics import record_collection_skipped
from sports_pipeline.types import CollectedRecord, CollectionError, SourceConfig

logger = logging.getLogger(__name__)

# Nested list fields that hold the entities of a payload, in lookup order
RECORD_LIST_FIELDS = ("players", "games", "injuries", "odds", "weather", "articles", "news")


def count_records(payload: Any) -> int:
    """
    Count the entities in a raw payload.

    Args:
        payload: Raw payload returned by a fetch adapter

    Returns:
        List length, else the length of the first known nested list,
        else 1. A None payload counts 0.
    """
    if payload is None:
        return 0
    if isinstance(payload, list):
        return len(payload)
    if isinstance(payload, dict):
        for field in RECORD_LIST_FIELDS:
            value = payload.get(field)
            if isinstance(value, list):
                return len(value)
    return 1


class CollectorScheduler(BaseScheduler):
    """
    Per-source collection loops.

    Loops are restarted whenever the registry reports a change to their
    source; the old loop is always cancelled and awaited before the new one
    starts, so a source never has two loops.
    """

    def __init__(
        self,
        registry: SourceRegistry,
        rate_limiter: BaseRateLimiter,
        adapters: AdapterRegistry,
        bus: EventBus,
        default_timeout: float = 30.0,
    ):
        """
        Initialize the scheduler.

        Args:
            registry: Source registry to follow
            rate_limiter: Per-origin limiter consulted on every tick
            adapters: Fetch adapters by mechanism
            bus: Event bus receiving CollectionSuccess/CollectionFailure
            default_timeout: Fetch timeout for sources that set none
        """
        self.registry = registry
        self.rate_limiter = rate_limiter
        self.adapters = adapters
        self.bus = bus
        self.default_timeout = default_timeout

        self._running = False
        self._loops: Dict[str, asyncio.Task] = {}
        self._reconciles: Set[asyncio.Task] = set()
        self._triggers: Set[asyncio.Task] = set()
        self._reconcile_lock = asyncio.Lock()

        registry.add_listener(self._on_source_changed)

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        if self._running:
            logger.warning("Collector scheduler is already running")
            return

        self._running = True
        sources = self.registry.enabled()
        logger.info(f"Starting collection for {len(sources)} enabled sources")

        for source in sources:
            self._start_loop(source)

    async def stop(self) -> None:
        if not self._running and not self._loops:
            return

        logger.info("Stopping collector scheduler")
        self._running = False

        pending = list(self._reconciles) + list(self._triggers) + list(self._loops.values())
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

        self._loops.clear()
        self._reconciles.clear()
        self._triggers.clear()

        await self.adapters.close_all()
        logger.info("Collector scheduler stopped")

    def is_active(self, source_id: str) -> bool:
        task = self._loops.get(source_id)
        return task is not None and not task.done()

    def active_sources(self) -> List[str]:
        return [source_id for source_id in self._loops if self.is_active(source_id)]

    async def settle(self) -> None:
        """Wait until every pending loop restart has been applied."""
        while self._reconciles:
            await asyncio.gather(*list(self._reconciles), return_exceptions=True)

    def fetch_timeout(self, source: SourceConfig) -> float:
        """Timeout for one fetch, never longer than the source interval."""
        if source.timeout_seconds:
            return source.timeout_seconds
        return min(self.default_timeout, source.interval_seconds)

    async def run_tick(self, source: SourceConfig) -> Optional[PipelineEvent]:
        origin = origin_key(source.url)

        with log_context(source_id=source.id):
            if not await self.rate_limiter.allow(origin):
                logger.debug(f"Rate limit reached for {source.name}, skipping tick")
                record_collection_skipped(source.id)
                return None

            rate_limit = await self.rate_limiter.get_state(origin)
            timeout = self.fetch_timeout(source)
            started = time.perf_counter()

            try:
                adapter = self.adapters.get(source.mechanism)
                payload = await asyncio.wait_for(
                    adapter.fetch(
                        source.url,
                        hints=dict(source.hints),
                        headers=dict(source.headers) or None,
                        timeout=timeout,
                    ),
                    timeout=timeout,
                )
            except Exception as e:
                latency_ms = (time.perf_counter() - started) * 1000
                if isinstance(e, asyncio.TimeoutError):
                    message = f"Fetch timed out after {timeout}s"
                else:
                    message = str(e) or type(e).__name__

                logger.warning(f"Error collecting from {source.name}: {message}")
                event = CollectionFailure(
                    error=CollectionError(source_id=source.id, error=message),
                    latency_ms=latency_ms,
                    rate_limit=rate_limit,
                )
                self.bus.publish(event)
                return event

            latency_ms = (time.perf_counter() - started) * 1000
            record = CollectedRecord(
                source_id=source.id,
                kind=source.kind,
                sport=source.sport,
                payload=payload,
                record_count=count_records(payload),
            )
            logger.info(
                f"Collected {record.record_count} records from {source.name} "
                f"in {latency_ms:.0f}ms"
            )

            event = CollectionSuccess(
                record=record,
                latency_ms=latency_ms,
                rate_limit=rate_limit,
            )
            self.bus.publish(event)
            return event

    async def trigger_now(self, source_id: str) -> Optional[PipelineEvent]:
        """
        Raises:
            NotFoundError: If no source has this id
        """
        source = self.registry.get(source_id)
        task = asyncio.create_task(self.run_tick(source), name=f"trigger:{source_id}")
        self._triggers.add(task)
        task.add_done_callback(self._triggers.discard)
        return await task

    # ------------------------------------------------------------------
    # Loops
    # ------------------------------------------------------------------

    def _start_loop(self, source: SourceConfig) -> None:
        task = asyncio.create_task(self._run_loop(source.id), name=f"collect:{source.id}")
        self._loops[source.id] = task
        task.add_done_callback(lambda t, sid=source.id: self._forget_loop(sid, t))

    def _forget_loop(self, source_id: str, task: asyncio.Task) -> None:
        if self._loops.get(source_id) is task:
            del self._loops[source_id]

    async def _cancel_loop(self, source_id: str) -> None:
        task = self._loops.pop(source_id, None)
        if task is None:
            return
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

    async def _run_loop(self, source_id: str) -> None:
        loop = asyncio.get_running_loop()
        logger.info(f"Starting collection loop for {source_id}")

        try:
            while self._running:
                started = loop.time()
                try:
                    source = self.registry.get(source_id)
                except NotFoundError:
                    logger.info(f"Source {source_id} removed, ending its loop")
                    return

                try:
                    await self.run_tick(source)
                except Exception as e:
                    logger.error(f"Collection tick for {source_id} failed: {e}", exc_info=True)

                elapsed = loop.time() - started
                await asyncio.sleep(max(0.0, source.interval_seconds - elapsed))
        except asyncio.CancelledError:
            logger.debug(f"Collection loop for {source_id} cancelled")
            raise

    # ------------------------------------------------------------------
    # Registry changes
    # ------------------------------------------------------------------

    def _on_source_changed(
        self,
        source_id: str,
        previous: Optional[SourceConfig],
        current: Optional[SourceConfig],
    ) -> None:
        if not self._running:
            return

        task = asyncio.get_running_loop().create_task(
            self._reconcile(source_id), name=f"reconcile:{source_id}"
        )
        self._reconciles.add(task)
        task.add_done_callback(self._reconciles.discard)

    async def _reconcile(self, source_id: str) -> None:
        async with self._reconcile_lock:
            await self._cancel_loop(source_id)
            if not self._running or source_id not in self.registry:
                return

            source = self.registry.get(source_id)
            if source.enabled:
                self._start_loop(source)
            else:
                logger.info(f"Collection loop for {source_id} stopped (source disabled)")
