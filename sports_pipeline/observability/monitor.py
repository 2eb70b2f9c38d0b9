"""
Pipeline monitor.

A passive observer of the event bus. It keeps per-source metrics and a
bounded error buffer, exports Prometheus gauges on a metrics tick, and
evaluates overall health on a slower health tick. Both ticks are
APScheduler interval jobs on the running event loop.
"""

import asyncio
import inspect
import logging
from collections import deque
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Deque, Dict, List, Optional, Set, Union

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from sports_pipeline.events import (
    CollectionFailure,
    CollectionSuccess,
    EventBus,
    HealthAlert,
    ProcessedUpdate,
    SourceUnhealthy,
    Subscription,
)
from sports_pipeline.observability.metrics import (
    record_collection_failure,
    record_collection_success,
    update_health_gauge,
    update_pipeline_gauges,
)
from sports_pipeline.types import (
    CollectionError,
    HealthCheckResult,
    HealthStatus,
    MonitorConfig,
    PipelineMetrics,
    SourceMetrics,
    SourcePerformance,
)

logger = logging.getLogger(__name__)

HealthProbe = Callable[[], Union[bool, Awaitable[bool]]]


def classify_health(issue_count: int) -> HealthStatus:
    """
    Map a number of health issues to a status.

    Args:
        issue_count: Number of issues found by a health check

    Returns:
        HEALTHY for 0, DEGRADED for 1-2, UNHEALTHY above
    """
    if issue_count == 0:
        return HealthStatus.HEALTHY
    if issue_count <= 2:
        return HealthStatus.DEGRADED
    return HealthStatus.UNHEALTHY


def build_health_result(
    checks: Dict[str, bool],
    issues: List[str],
    timestamp: Optional[datetime] = None,
) -> HealthCheckResult:
    return HealthCheckResult(
        status=classify_health(len(issues)),
        checks=dict(checks),
        issues=list(issues),
        timestamp=timestamp or datetime.utcnow(),
    )


class PipelineMonitor:
    """
    Rolling metrics and health checks for the pipeline.

    All per-source state is written by the monitor's own consumer task
    (or by direct `handle_event` calls in tests); every query method is a
    read.
    """

    def __init__(
        self,
        bus: EventBus,
        config: Optional[MonitorConfig] = None,
        probes: Optional[Dict[str, HealthProbe]] = None,
        active_sources: Optional[Callable[[], int]] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        """
        Initialize the monitor.

        Args:
            bus: Event bus to observe; signals are published back to it
            config: Thresholds and tick intervals
            probes: Named health sub-checks, sync or async, returning bool
            active_sources: Returns the number of running collection loops
            clock: Current time as naive UTC datetime
        """
        self.bus = bus
        self.config = config or MonitorConfig()
        self.probes: Dict[str, HealthProbe] = dict(probes or {})
        self._active_sources = active_sources or (lambda: 0)
        self._clock = clock

        self._sources: Dict[str, SourceMetrics] = {}
        self._errors: Deque[CollectionError] = deque(maxlen=self.config.max_error_buffer)
        self._unhealthy_sources: Set[str] = set()
        self._last_error: Optional[CollectionError] = None
        self._records_processed = 0
        self._health: Optional[HealthCheckResult] = None

        self.started_at: Optional[datetime] = None
        self._subscription: Optional[Subscription] = None
        self._consumer: Optional[asyncio.Task] = None
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._ticking = False
        self._tick_tasks: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        if self._consumer is not None:
            logger.warning("Pipeline monitor is already running")
            return

        self.started_at = self._clock()
        self._subscription = self.bus.subscribe(
            "monitor", CollectionSuccess, CollectionFailure, ProcessedUpdate
        )
        self._consumer = asyncio.create_task(self._consume(), name="pipeline-monitor")

        self._ticking = True
        self._scheduler = AsyncIOScheduler(event_loop=asyncio.get_running_loop())
        self._scheduler.add_job(
            self._run_tick,
            args=[self.refresh_metrics],
            trigger=IntervalTrigger(seconds=self.config.metrics_interval_seconds),
            id="pipeline_metrics",
            name="Refresh pipeline metrics",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        self._scheduler.add_job(
            self._run_tick,
            args=[self.run_health_check],
            trigger=IntervalTrigger(seconds=self.config.health_interval_seconds),
            id="pipeline_health",
            name="Pipeline health check",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        self._scheduler.start()

        logger.info(
            f"Pipeline monitor started (metrics every {self.config.metrics_interval_seconds}s, "
            f"health every {self.config.health_interval_seconds}s)"
        )

    async def stop(self) -> None:
        """Stop the ticks, cancel any tick still running, then drain queued events."""
        self._ticking = False
        if self._scheduler is not None and self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        self._scheduler = None

        ticks = list(self._tick_tasks)
        for task in ticks:
            task.cancel()
        await asyncio.gather(*ticks, return_exceptions=True)
        self._tick_tasks.clear()

        if self._consumer is None:
            return

        self._subscription.close()
        await asyncio.gather(self._consumer, return_exceptions=True)
        self.bus.unsubscribe(self._subscription)
        self._consumer = None
        self._subscription = None
        logger.info("Pipeline monitor stopped")

    async def _run_tick(self, job: Callable[[], Awaitable]) -> None:
        if not self._ticking:
            return
        task = asyncio.create_task(job())
        self._tick_tasks.add(task)
        task.add_done_callback(self._tick_tasks.discard)
        await task

    async def _consume(self) -> None:
        async for event in self._subscription:
            try:
                self.handle_event(event)
            except Exception as e:
                logger.error(f"Monitor failed to handle {type(event).__name__}: {e}", exc_info=True)

    # ------------------------------------------------------------------
    # Event handling
    # ------------------------------------------------------------------

    def _metrics_for(self, source_id: str) -> SourceMetrics:
        metrics = self._sources.get(source_id)
        if metrics is None:
            metrics = SourceMetrics(source_id=source_id)
            self._sources[source_id] = metrics
        return metrics

    @staticmethod
    def _add_latency(metrics: SourceMetrics, latency_ms: float) -> None:
        n = metrics.total_requests
        metrics.average_latency_ms += (latency_ms - metrics.average_latency_ms) / n

    def handle_event(self, event) -> None:
        if isinstance(event, CollectionSuccess):
            self._on_success(event)
        elif isinstance(event, CollectionFailure):
            self._on_failure(event)
        elif isinstance(event, ProcessedUpdate):
            self._records_processed += 1

    def _on_success(self, event: CollectionSuccess) -> None:
        metrics = self._metrics_for(event.source_id)
        metrics.total_requests += 1
        metrics.successful_requests += 1
        metrics.records_collected += event.record.record_count
        metrics.last_success_at = event.timestamp
        self._add_latency(metrics, event.latency_ms)
        if event.rate_limit is not None:
            metrics.rate_limit = event.rate_limit

        record_collection_success(
            event.source_id,
            event.record.kind.value,
            event.record.record_count,
            event.latency_ms / 1000,
        )

        if event.source_id in self._unhealthy_sources:
            self._unhealthy_sources.discard(event.source_id)
            logger.info(f"Source {event.source_id} recovered")

    def _on_failure(self, event: CollectionFailure) -> None:
        metrics = self._metrics_for(event.source_id)
        metrics.total_requests += 1
        metrics.failed_requests += 1
        metrics.last_failure_at = event.timestamp
        metrics.last_error = event.error.error
        self._add_latency(metrics, event.latency_ms)
        if event.rate_limit is not None:
            metrics.rate_limit = event.rate_limit

        self._errors.append(event.error)
        self._last_error = event.error
        record_collection_failure(event.source_id, event.latency_ms / 1000)

        if (
            metrics.failed_requests >= self.config.source_failure_threshold
            and metrics.successful_requests == 0
            and event.source_id not in self._unhealthy_sources
        ):
            self._unhealthy_sources.add(event.source_id)
            logger.error(
                f"Source {event.source_id} is unhealthy: "
                f"{metrics.failed_requests} failures, no successes"
            )
            self.bus.publish(
                SourceUnhealthy(
                    source_id=event.source_id,
                    failures=metrics.failed_requests,
                    last_error=metrics.last_error,
                )
            )

    # ------------------------------------------------------------------
    # Ticks
    # ------------------------------------------------------------------

    def prune_errors(self) -> int:
        """Drop buffered errors older than the retention period."""
        cutoff = self._clock() - timedelta(seconds=self.config.error_retention_seconds)
        pruned = 0
        while self._errors and self._errors[0].timestamp < cutoff:
            self._errors.popleft()
            pruned += 1
        return pruned

    async def refresh_metrics(self) -> PipelineMetrics:
        """Metrics tick: prune the error buffer and export gauges."""
        self.prune_errors()
        metrics = self.get_metrics()
        update_pipeline_gauges(
            errors_per_minute=metrics.errors_per_minute,
            uptime_seconds=metrics.uptime_seconds,
            active_sources=self._active_sources(),
        )
        return metrics

    async def _run_probe(self, name: str, probe: HealthProbe) -> bool:
        try:
            result = probe()
            if inspect.isawaitable(result):
                result = await asyncio.wait_for(result, timeout=self.config.probe_timeout_seconds)
            return bool(result)
        except Exception as e:
            logger.warning(f"Health probe {name} failed: {e}")
            return False

    async def run_health_check(self) -> HealthCheckResult:
        """
        Health tick: run the probes and threshold checks.

        Publishes a HealthAlert when the status moves to degraded or
        unhealthy.

        Returns:
            The new health result
        """
        checks: Dict[str, bool] = {}
        for name, probe in self.probes.items():
            checks[name] = await self._run_probe(name, probe)

        issues = [f"Check failed: {name}" for name, ok in checks.items() if not ok]

        metrics = self.get_metrics()
        if metrics.errors_per_minute > self.config.max_errors_per_minute:
            issues.append(f"High error rate: {metrics.errors_per_minute} errors/minute")

        if metrics.total_requests >= self.config.min_sample_size:
            success_rate = metrics.successful_requests / metrics.total_requests
            if success_rate < self.config.min_success_rate:
                issues.append(f"Low success rate: {success_rate * 100:.1f}%")

        result = build_health_result(checks, issues, self._clock())
        previous = self._health.status if self._health else None
        self._health = result
        update_health_gauge(result.status.value)

        if result.status != HealthStatus.HEALTHY and result.status != previous:
            logger.warning(f"Pipeline health is {result.status.value}: {'; '.join(issues)}")
            self.bus.publish(HealthAlert(result=result, previous=previous))
        elif result.status == HealthStatus.HEALTHY and previous not in (None, HealthStatus.HEALTHY):
            logger.info("Pipeline health recovered")

        return result

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def errors_in_window(self, window_seconds: float) -> List[CollectionError]:
        cutoff = self._clock() - timedelta(seconds=window_seconds)
        return [e for e in self._errors if e.timestamp >= cutoff]

    def get_metrics(self) -> PipelineMetrics:
        now = self._clock()
        sources = {sid: m.model_copy(deep=True) for sid, m in self._sources.items()}

        total = sum(m.total_requests for m in sources.values())
        latency = (
            sum(m.average_latency_ms * m.total_requests for m in sources.values()) / total
            if total
            else 0.0
        )

        return PipelineMetrics(
            uptime_seconds=(now - self.started_at).total_seconds() if self.started_at else 0.0,
            total_requests=total,
            successful_requests=sum(m.successful_requests for m in sources.values()),
            failed_requests=sum(m.failed_requests for m in sources.values()),
            records_collected=sum(m.records_collected for m in sources.values()),
            records_processed=self._records_processed,
            average_latency_ms=latency,
            errors_per_minute=len(self.errors_in_window(60)),
            last_error=self._last_error,
            source_metrics=sources,
            timestamp=now,
        )

    def get_health(self) -> Optional[HealthCheckResult]:
        """Last health result, None before the first health tick."""
        return self._health

    def get_error_history(self, window_seconds: Optional[float] = None) -> List[CollectionError]:
        """
        Buffered errors, oldest first.

        Args:
            window_seconds: Only errors this recent (default: retention period)
        """
        if window_seconds is None:
            window_seconds = self.config.error_retention_seconds
        return self.errors_in_window(window_seconds)

    def get_errors_by_source(
        self, window_seconds: Optional[float] = None
    ) -> Dict[str, List[CollectionError]]:
        grouped: Dict[str, List[CollectionError]] = {}
        for error in self.get_error_history(window_seconds):
            grouped.setdefault(error.source_id, []).append(error)
        return grouped

    def get_source_performance(self) -> List[SourcePerformance]:
        """Per-source success rates, worst first."""
        performance = []
        for source_id, m in self._sources.items():
            rate = (m.successful_requests / m.total_requests * 100) if m.total_requests else 0.0
            below_threshold = (
                m.total_requests >= self.config.min_sample_size
                and rate < self.config.min_success_rate * 100
            )
            performance.append(
                SourcePerformance(
                    source_id=source_id,
                    total_requests=m.total_requests,
                    successful_requests=m.successful_requests,
                    failed_requests=m.failed_requests,
                    success_rate=rate,
                    last_success_at=m.last_success_at,
                    last_failure_at=m.last_failure_at,
                    is_healthy=source_id not in self._unhealthy_sources and not below_threshold,
                )
            )
        return sorted(performance, key=lambda p: p.success_rate)

    def get_source_metrics(self, source_id: str) -> Optional[SourceMetrics]:
        metrics = self._sources.get(source_id)
        return metrics.model_copy(deep=True) if metrics else None

    def is_source_unhealthy(self, source_id: str) -> bool:
        return source_id in self._unhealthy_sources
