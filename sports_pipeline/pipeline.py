"""
Sports data pipeline.

SportsDataPipeline owns the registry, rate limiter, scheduler, router,
monitor and event bus of one pipeline instance and exposes the operator
operations (start/stop, status, metrics, health, source management).
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Type

from sports_pipeline import config
from sports_pipeline.events import (
    EventBus,
    HealthAlert,
    PipelineEvent,
    SourceUnhealthy,
    Subscription,
)
from sports_pipeline.ingestion.adapters import build_default_adapters
from sports_pipeline.ingestion.base import AdapterRegistry
from sports_pipeline.ingestion.interfaces import BaseRateLimiter
from sports_pipeline.ingestion.rate_limiter import create_rate_limiter, origin_key
from sports_pipeline.ingestion.registry import SourceRegistry
from sports_pipeline.ingestion.scheduler import CollectorScheduler
from sports_pipeline.intelligence.interfaces import PredictionService
from sports_pipeline.intelligence.prediction import (
    HeuristicPredictionService,
    HttpPredictionClient,
)
from sports_pipeline.observability.monitor import PipelineMonitor
from sports_pipeline.processing.interfaces import EventSink
from sports_pipeline.processing.router import ProcessingRouter
from sports_pipeline.services.alerts import AlertService
from sports_pipeline.storage.interfaces import EntityStore
from sports_pipeline.storage.memory import InMemoryEntityStore, RedisEntityStore
from sports_pipeline.types import (
    CollectionError,
    HealthCheckResult,
    MonitorConfig,
    PipelineMetrics,
    PipelineStatus,
    SourceConfig,
    SourcePerformance,
    SourceState,
)

logger = logging.getLogger(__name__)


class SportsDataPipeline:
    """
    One explicitly constructed pipeline instance.

    Example:
        pipeline = SportsDataPipeline.from_settings()
        await pipeline.start()
        ...
        await pipeline.stop()
    """

    def __init__(
        self,
        sources: Optional[List[SourceConfig]] = None,
        adapters: Optional[AdapterRegistry] = None,
        rate_limiter: Optional[BaseRateLimiter] = None,
        store: Optional[EntityStore] = None,
        predictor: Optional[PredictionService] = None,
        sink: Optional[EventSink] = None,
        alert_service: Optional[AlertService] = None,
        monitor_config: Optional[MonitorConfig] = None,
        bus: Optional[EventBus] = None,
        default_timeout: float = 30.0,
    ):
        """
        Initialize the pipeline.

        Args:
            sources: Initial source configurations
            adapters: Fetch adapters by mechanism
            rate_limiter: Per-origin limiter (in-memory with defaults if omitted)
            store: Entity store (in-memory if omitted)
            predictor: Prediction service (heuristic if omitted)
            sink: Optional downstream consumer of processed updates
            alert_service: Optional alert forwarding for health signals
            monitor_config: Monitor thresholds and tick intervals
            bus: Event bus (a new one if omitted)
            default_timeout: Fetch timeout for sources that set none
        """
        self.bus = bus or EventBus()
        self.registry = SourceRegistry(sources)
        self.adapters = adapters if adapters is not None else AdapterRegistry()
        self.rate_limiter = rate_limiter or create_rate_limiter()
        self.store = store or InMemoryEntityStore()
        self.predictor = predictor or HeuristicPredictionService()
        self.alert_service = alert_service

        self.scheduler = CollectorScheduler(
            self.registry,
            self.rate_limiter,
            self.adapters,
            self.bus,
            default_timeout=default_timeout,
        )
        self.router = ProcessingRouter(self.bus, self.store, self.predictor, sink)
        self.monitor = PipelineMonitor(
            self.bus,
            monitor_config,
            probes={
                "pipeline_running": lambda: self.scheduler.running,
                "storage_reachable": self.store.ping,
                "prediction_service_reachable": self.predictor.ping,
                "fetch_adapters_reachable": self.adapters.ping_all,
            },
            active_sources=lambda: len(self.scheduler.active_sources()),
        )

        self._running = False
        self._alert_subscription: Optional[Subscription] = None
        self._alert_task: Optional[asyncio.Task] = None

    @classmethod
    def from_settings(
        cls,
        settings: Optional[Dict[str, Any]] = None,
        redis_client=None,
        **overrides,
    ) -> "SportsDataPipeline":
        """
        Build a pipeline from config/pipeline.json and the environment.

        Args:
            settings: Settings dict (loaded from disk if omitted)
            redis_client: Optional redis.asyncio client for the shared rate
                limiter and entity store
            **overrides: Constructor arguments that replace the built ones

        Raises:
            ConfigError: If the settings are invalid
        """
        settings = settings if settings is not None else config.load_settings()
        limits = config.get_rate_limits(settings)
        default = limits.get(BaseRateLimiter.DEFAULT_ORIGIN)

        kwargs: Dict[str, Any] = {
            "sources": config.get_source_configs(settings),
            "adapters": build_default_adapters(
                use_fixtures=config.USE_FIXTURE_ADAPTERS,
                extraction_service_url=config.EXTRACTION_SERVICE_URL,
                extraction_api_key=config.EXTRACTION_SERVICE_API_KEY,
                default_timeout=config.FETCH_TIMEOUT_SECONDS,
            ),
            "rate_limiter": create_rate_limiter(
                redis_client,
                limits=limits,
                default_limit=default.requests_per_window if default else 20,
                window_seconds=config.get_rate_limit_window(settings),
            ),
            "store": RedisEntityStore(redis_client) if redis_client else InMemoryEntityStore(),
            "predictor": (
                HttpPredictionClient(config.PREDICTION_SERVICE_URL)
                if config.PREDICTION_SERVICE_URL
                else HeuristicPredictionService()
            ),
            "alert_service": AlertService(slack_webhook_url=config.SLACK_WEBHOOK_URL),
            "monitor_config": config.get_monitor_config(settings),
            "default_timeout": config.FETCH_TIMEOUT_SECONDS,
        }
        kwargs.update(overrides)
        return cls(**kwargs)

    @property
    def running(self) -> bool:
        return self._running

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        if self._running:
            logger.warning("Sports data pipeline is already running")
            return

        logger.info(f"Starting sports data pipeline with {len(self.registry)} sources")

        # Consumers subscribe before the first tick
        await self.router.start()
        await self.monitor.start()
        if self.alert_service is not None:
            self._alert_subscription = self.bus.subscribe("alerts", SourceUnhealthy, HealthAlert)
            self._alert_task = asyncio.create_task(
                self.alert_service.consume(self._alert_subscription), name="alert-forwarder"
            )

        await self.scheduler.start()
        self._running = True
        logger.info(f"Sports data pipeline started, {len(self.scheduler.active_sources())} sources active")

    async def stop(self) -> None:
        """
        Stop collection, then drain the router, monitor and alert queues.

        Returns once every collection loop has exited; no collection event
        is published afterwards.
        """
        if not self._running:
            return

        logger.info("Stopping sports data pipeline")
        await self.scheduler.stop()
        await self.router.stop()
        await self.monitor.stop()

        if self._alert_task is not None:
            self._alert_subscription.close()
            await asyncio.gather(self._alert_task, return_exceptions=True)
            self.bus.unsubscribe(self._alert_subscription)
            self._alert_task = None
            self._alert_subscription = None

        close = getattr(self.predictor, "close", None)
        if close is not None:
            await close()

        self._running = False
        logger.info("Sports data pipeline stopped")

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_status(self) -> PipelineStatus:
        sources = []
        for source in self.registry.all():
            sources.append(
                SourceState(
                    id=source.id,
                    name=source.name,
                    kind=source.kind,
                    enabled=source.enabled,
                    active=self.scheduler.is_active(source.id),
                    rate_limit=await self.rate_limiter.get_state(origin_key(source.url)),
                )
            )

        return PipelineStatus(
            running=self._running,
            total_sources=len(sources),
            enabled_sources=sum(1 for s in sources if s.enabled),
            active_sources=sum(1 for s in sources if s.active),
            sources=sources,
        )

    def get_metrics(self) -> PipelineMetrics:
        return self.monitor.get_metrics()

    async def get_health(self) -> HealthCheckResult:
        """Last health result; runs a check if none was made yet."""
        health = self.monitor.get_health()
        if health is None:
            health = await self.monitor.run_health_check()
        return health

    def get_error_history(self, window_seconds: Optional[float] = None) -> List[CollectionError]:
        return self.monitor.get_error_history(window_seconds)

    def get_source_performance(self) -> List[SourcePerformance]:
        return self.monitor.get_source_performance()

    # ------------------------------------------------------------------
    # Source management
    # ------------------------------------------------------------------

    async def add_source(self, source: SourceConfig, replace: bool = True) -> SourceConfig:
        """
        Register a source; a running pipeline starts (or restarts) its loop.

        Raises:
            ConfigError: If the id exists and replace is False
        """
        registered = self.registry.register(source, replace=replace)
        await self.scheduler.settle()
        return registered

    async def remove_source(self, source_id: str) -> SourceConfig:
        removed = self.registry.unregister(source_id)
        await self.scheduler.settle()
        return removed

    async def set_source_enabled(self, source_id: str, enabled: bool) -> SourceConfig:
        """
        Raises:
            NotFoundError: If no source has this id
        """
        updated = self.registry.set_enabled(source_id, enabled)
        await self.scheduler.settle()
        return updated

    async def update_source_interval(self, source_id: str, interval_seconds: float) -> SourceConfig:
        """
        Raises:
            NotFoundError: If no source has this id
            ConfigError: If the interval is not positive
        """
        updated = self.registry.update_interval(source_id, interval_seconds)
        await self.scheduler.settle()
        return updated

    async def trigger_source(self, source_id: str) -> Optional[PipelineEvent]:
        return await self.scheduler.trigger_now(source_id)

    async def replay_pending(self) -> int:
        return await self.router.replay_pending()

    def subscribe(
        self,
        name: str,
        *event_types: Type,
        maxsize: Optional[int] = None,
    ) -> Subscription:
        """
        Subscribe to pipeline events (all types when none are given).

        Args:
            name: Subscriber name used in logs and drop metrics
            *event_types: Event classes to receive
            maxsize: Queue bound for this subscriber
        """
        return self.bus.subscribe(name, *event_types, maxsize=maxsize)
