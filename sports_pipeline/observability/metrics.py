"""
Prometheus metrics for the sports data pipeline.

This module defines and exports Prometheus metrics for monitoring:
- Collection attempts per source and outcome
- Rate-limited (skipped) ticks
- Fetch latency
- Entities processed by the router
- Pipeline health, error rate and active sources
"""

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    Info,
    generate_latest,
)


# Create a custom registry for this application
metrics_registry = CollectorRegistry()


# ============================================================================
# Collection Metrics
# ============================================================================

collection_requests_counter = Counter(
    "collection_requests_total",
    "Total number of fetch attempts that passed the rate limiter",
    ["source", "outcome"],  # outcome: success, failure
    registry=metrics_registry,
)

collection_skipped_counter = Counter(
    "collection_skipped_total",
    "Ticks skipped because the origin rate limit was reached",
    ["source"],
    registry=metrics_registry,
)

collection_latency = Histogram(
    "collection_latency_seconds",
    "Fetch duration in seconds",
    ["source"],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
    registry=metrics_registry,
)

records_collected_counter = Counter(
    "records_collected_total",
    "Records collected from sources",
    ["source", "kind"],
    registry=metrics_registry,
)

# ============================================================================
# Processing Metrics
# ============================================================================

entities_processed_counter = Counter(
    "entities_processed_total",
    "Entities handled by the processing router",
    ["kind", "status"],  # status: upserted, invalid, failed
    registry=metrics_registry,
)

events_dropped_counter = Counter(
    "events_dropped_total",
    "Events dropped because a subscriber queue was full",
    ["subscriber"],
    registry=metrics_registry,
)

# ============================================================================
# Pipeline Metrics
# ============================================================================

pipeline_health_gauge = Gauge(
    "pipeline_health_status",
    "Pipeline health (0=healthy, 1=degraded, 2=unhealthy)",
    registry=metrics_registry,
)

pipeline_errors_per_minute = Gauge(
    "pipeline_errors_per_minute",
    "Collection errors in the trailing minute",
    registry=metrics_registry,
)

pipeline_active_sources = Gauge(
    "pipeline_active_sources",
    "Number of sources with a running collection loop",
    registry=metrics_registry,
)

pipeline_uptime_seconds = Gauge(
    "pipeline_uptime_seconds",
    "Seconds since the monitor started",
    registry=metrics_registry,
)

app_info = Info(
    "sports_pipeline",
    "Application information",
    registry=metrics_registry,
)

app_info.info({
    "name": "Sports Data Pipeline",
    "version": "1.0.0",
})


_HEALTH_LEVELS = {"healthy": 0, "degraded": 1, "unhealthy": 2}


# ============================================================================
# Helper Functions
# ============================================================================


def record_collection_success(source: str, kind: str, records: int, latency_seconds: float):
    """
    Record a successful fetch.

    Args:
        source: Source id
        kind: Data kind of the source
        records: Number of records in the payload
        latency_seconds: Fetch duration
    """
    collection_requests_counter.labels(source=source, outcome="success").inc()
    collection_latency.labels(source=source).observe(latency_seconds)
    if records:
        records_collected_counter.labels(source=source, kind=kind).inc(records)


def record_collection_failure(source: str, latency_seconds: float):
    """Record a failed fetch."""
    collection_requests_counter.labels(source=source, outcome="failure").inc()
    collection_latency.labels(source=source).observe(latency_seconds)


def record_collection_skipped(source: str):
    """Record a tick skipped by the rate limiter."""
    collection_skipped_counter.labels(source=source).inc()


def record_entity_processed(kind: str, status: str, count: int = 1):
    """Record entities handled by the router."""
    entities_processed_counter.labels(kind=kind, status=status).inc(count)


def record_event_dropped(subscriber: str):
    events_dropped_counter.labels(subscriber=subscriber).inc()


def update_pipeline_gauges(
    errors_per_minute: int,
    uptime_seconds: float,
    active_sources: int,
):
    """
    Export the monitor's derived aggregates.

    Called from the monitor's metrics tick.
    """
    pipeline_errors_per_minute.set(errors_per_minute)
    pipeline_uptime_seconds.set(uptime_seconds)
    pipeline_active_sources.set(active_sources)


def update_health_gauge(status: str):
    """Set the health gauge from a health status value."""
    pipeline_health_gauge.set(_HEALTH_LEVELS.get(status, 2))


def get_metrics_text() -> bytes:
    """
    Get Prometheus metrics in text format.

    Returns:
        Metrics data in Prometheus text format
    """
    return generate_latest(metrics_registry)
