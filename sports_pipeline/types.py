"""
Shared type definitions for the sports data pipeline.

This module contains the records exchanged between the registry, the
collector scheduler, the processing router and the pipeline monitor.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


# ============================================================================
# Enums
# ============================================================================


class FetchMechanism(str, Enum):
    """How a source is retrieved."""

    RENDER = "render"  # Headless-browser render
    CRAWL = "crawl"  # Crawl/extraction service
    API = "api"  # Plain HTTP JSON endpoint


class DataKind(str, Enum):
    """Category of payload, determines router dispatch."""

    PLAYER_STATS = "player_stats"
    INJURIES = "injuries"
    GAME_UPDATES = "game_updates"
    ODDS = "odds"
    WEATHER = "weather"
    NEWS = "news"


class HealthStatus(str, Enum):
    """Overall pipeline health."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


# ============================================================================
# Configuration Models
# ============================================================================


class SourceConfig(BaseModel):
    """Declarative configuration for one polled data source."""

    id: str
    name: str
    url: str
    mechanism: FetchMechanism
    sport: str
    kind: DataKind
    interval_seconds: float = Field(gt=0)
    enabled: bool = True
    priority: int = 5  # Ordering hint only
    hints: Dict[str, str] = Field(default_factory=dict)
    headers: Dict[str, str] = Field(default_factory=dict)
    timeout_seconds: Optional[float] = Field(default=None, gt=0)

    class Config:
        frozen = True


class RateLimitConfig(BaseModel):
    """Per-origin rate limit settings."""

    requests_per_window: int = Field(gt=0)
    backoff_multiplier: float = 2.0
    max_retries: int = 3

    class Config:
        frozen = True


class RateLimitState(BaseModel):
    """Snapshot of one origin's fixed window."""

    origin: str
    window_start: datetime
    reset_time: datetime
    request_count: int = 0
    ceiling: int
    backoff_multiplier: float = 2.0
    max_retries: int = 3

    @property
    def remaining(self) -> int:
        return max(0, self.ceiling - self.request_count)


class MonitorConfig(BaseModel):
    """Thresholds and tick intervals for the pipeline monitor."""

    metrics_interval_seconds: float = 1.0
    health_interval_seconds: float = 30.0
    error_retention_seconds: float = 300.0
    max_error_buffer: int = 10000
    max_errors_per_minute: int = 10
    min_success_rate: float = 0.8
    min_sample_size: int = 10
    source_failure_threshold: int = 5
    probe_timeout_seconds: float = 5.0


# ============================================================================
# Collection Records
# ============================================================================


class CollectedRecord(BaseModel):
    """Payload collected from one successful tick."""

    source_id: str
    kind: DataKind
    sport: str
    collected_at: datetime = Field(default_factory=datetime.utcnow)
    payload: Any = None
    record_count: int = 0
    processed: bool = False


class CollectionError(BaseModel):
    """A failed tick. Kept only in the monitor's error buffer."""

    source_id: str
    error: str
    timestamp: datetime = Field(default_factory=datetime.utcnow)

    class Config:
        frozen = True


class NormalizedEntity(BaseModel):
    """One entity mapped out of a raw payload."""

    kind: DataKind
    external_id: str
    fields: Dict[str, Any] = Field(default_factory=dict)


class PredictionResult(BaseModel):
    """Result returned by the prediction collaborator."""

    value: Any
    confidence: float = Field(ge=0.0, le=1.0)
    model: Optional[str] = None


class ProcessingResult(BaseModel):
    """Outcome of routing one collected record."""

    source_id: str
    kind: DataKind
    total: int = 0
    upserted: int = 0
    invalid: int = 0
    failed: int = 0
    predictions: int = 0


# ============================================================================
# Monitoring Models
# ============================================================================


class SourceMetrics(BaseModel):
    """Per-source counters, written only by the monitor."""

    source_id: str
    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    records_collected: int = 0
    last_success_at: Optional[datetime] = None
    last_failure_at: Optional[datetime] = None
    last_error: Optional[str] = None
    average_latency_ms: float = 0.0
    rate_limit: Optional[RateLimitState] = None


class PipelineMetrics(BaseModel):
    """Aggregate metrics derived from the monitor's state."""

    uptime_seconds: float = 0.0
    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    records_collected: int = 0
    records_processed: int = 0
    average_latency_ms: float = 0.0
    errors_per_minute: int = 0
    last_error: Optional[CollectionError] = None
    source_metrics: Dict[str, SourceMetrics] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class HealthCheckResult(BaseModel):
    """Result of one health tick."""

    status: HealthStatus
    checks: Dict[str, bool] = Field(default_factory=dict)
    issues: List[str] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=datetime.utcnow)

    class Config:
        frozen = True


class SourcePerformance(BaseModel):
    """Per-source view used by status reports."""

    source_id: str
    total_requests: int
    successful_requests: int
    failed_requests: int
    success_rate: float  # Percentage 0-100
    last_success_at: Optional[datetime] = None
    last_failure_at: Optional[datetime] = None
    is_healthy: bool = True


class SourceState(BaseModel):
    """Per-source entry of the pipeline status."""

    id: str
    name: str
    kind: DataKind
    enabled: bool
    active: bool
    rate_limit: Optional[RateLimitState] = None


class PipelineStatus(BaseModel):
    """Result of `SportsDataPipeline.get_status()`."""

    running: bool
    total_sources: int
    enabled_sources: int
    active_sources: int
    sources: List[SourceState] = Field(default_factory=list)
