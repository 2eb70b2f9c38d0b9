"""
Tests for the pipeline monitor.

This module tests:
- Health classification by issue count
- Per-source metrics and aggregates
- Error buffer retention
- SourceUnhealthy and HealthAlert signalling
- Source performance reports
"""

import asyncio
from datetime import datetime, timedelta

import pytest

from sports_pipeline.events import (
    CollectionFailure,
    CollectionSuccess,
    EventBus,
    HealthAlert,
    ProcessedUpdate,
    SourceUnhealthy,
)
from sports_pipeline.observability.monitor import PipelineMonitor, classify_health
from sports_pipeline.types import (
    CollectedRecord,
    CollectionError,
    DataKind,
    HealthStatus,
    MonitorConfig,
)


class MutableClock:
    def __init__(self, start: datetime = datetime(2024, 12, 15, 18, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


def success(source_id: str, records: int = 2, latency_ms: float = 100.0, at: datetime = None):
    record = CollectedRecord(
        source_id=source_id,
        kind=DataKind.PLAYER_STATS,
        sport="NFL",
        payload={"players": [{}] * records},
        record_count=records,
        collected_at=at or datetime.utcnow(),
    )
    return CollectionSuccess(record=record, latency_ms=latency_ms)


def failure(source_id: str, message: str = "HTTP 503", at: datetime = None, latency_ms: float = 50.0):
    error = CollectionError(source_id=source_id, error=message, timestamp=at or datetime.utcnow())
    return CollectionFailure(error=error, latency_ms=latency_ms)


def drain(subscription):
    events = []
    while True:
        event = subscription.get_nowait()
        if event is None:
            return events
        events.append(event)


# ============================================================================
# Classification Tests
# ============================================================================


@pytest.mark.parametrize(
    "issues,expected",
    [
        (0, HealthStatus.HEALTHY),
        (1, HealthStatus.DEGRADED),
        (2, HealthStatus.DEGRADED),
        (3, HealthStatus.UNHEALTHY),
        (7, HealthStatus.UNHEALTHY),
    ],
)
def test_classify_health(issues, expected):
    assert classify_health(issues) == expected


# ============================================================================
# Metrics Tests
# ============================================================================


def test_metrics_aggregate_per_source():
    monitor = PipelineMonitor(EventBus())

    monitor.handle_event(success("espn", records=3, latency_ms=100))
    monitor.handle_event(success("espn", records=2, latency_ms=300))
    monitor.handle_event(failure("yahoo", latency_ms=200))

    metrics = monitor.get_metrics()
    assert metrics.total_requests == 3
    assert metrics.successful_requests == 2
    assert metrics.failed_requests == 1
    assert metrics.records_collected == 5
    assert metrics.average_latency_ms == pytest.approx(200.0)
    assert metrics.errors_per_minute == 1
    assert metrics.last_error.source_id == "yahoo"

    espn = metrics.source_metrics["espn"]
    assert espn.average_latency_ms == pytest.approx(200.0)
    assert espn.last_success_at is not None
    assert metrics.source_metrics["yahoo"].last_error == "HTTP 503"


def test_processed_updates_are_counted():
    monitor = PipelineMonitor(EventBus())

    for i in range(3):
        monitor.handle_event(
            ProcessedUpdate(
                update_type="player_updated",
                kind=DataKind.PLAYER_STATS,
                source_id="espn",
                external_id=str(i),
            )
        )

    assert monitor.get_metrics().records_processed == 3


def test_get_metrics_returns_copies():
    """Mutating a metrics snapshot leaves the monitor's state alone."""
    monitor = PipelineMonitor(EventBus())
    monitor.handle_event(success("espn"))

    snapshot = monitor.get_metrics()
    snapshot.source_metrics["espn"].total_requests = 99

    assert monitor.get_metrics().source_metrics["espn"].total_requests == 1
    assert monitor.get_source_metrics("espn").total_requests == 1
    assert monitor.get_source_metrics("unknown") is None


def test_errors_per_minute_counts_trailing_minute_only():
    clock = MutableClock()
    monitor = PipelineMonitor(EventBus(), clock=clock)

    monitor.handle_event(failure("espn", at=clock.now - timedelta(seconds=90)))
    monitor.handle_event(failure("espn", at=clock.now - timedelta(seconds=30)))

    assert monitor.get_metrics().errors_per_minute == 1
    assert len(monitor.get_error_history()) == 2
    assert len(monitor.get_error_history(window_seconds=60)) == 1


def test_prune_errors_drops_old_entries():
    clock = MutableClock()
    monitor = PipelineMonitor(EventBus(), MonitorConfig(error_retention_seconds=300), clock=clock)

    monitor.handle_event(failure("espn", at=clock.now))
    clock.advance(301)
    monitor.handle_event(failure("yahoo", at=clock.now))

    assert monitor.prune_errors() == 1
    assert [e.source_id for e in monitor.get_error_history()] == ["yahoo"]


def test_error_buffer_is_bounded():
    monitor = PipelineMonitor(EventBus(), MonitorConfig(max_error_buffer=5))

    for i in range(8):
        monitor.handle_event(failure("espn", message=f"error {i}"))

    history = monitor.get_error_history()
    assert len(history) == 5
    assert history[0].error == "error 3"


def test_errors_by_source():
    monitor = PipelineMonitor(EventBus())
    monitor.handle_event(failure("espn"))
    monitor.handle_event(failure("espn"))
    monitor.handle_event(failure("yahoo"))

    grouped = monitor.get_errors_by_source()

    assert len(grouped["espn"]) == 2
    assert len(grouped["yahoo"]) == 1


def test_zero_window_is_not_the_retention_window():
    clock = MutableClock()
    monitor = PipelineMonitor(EventBus(), clock=clock)
    monitor.handle_event(failure("espn", at=clock.now - timedelta(seconds=30)))
    monitor.handle_event(failure("espn", at=clock.now))

    assert len(monitor.get_error_history(0)) == 1
    assert len(monitor.get_error_history()) == 2


# ============================================================================
# Signal Tests
# ============================================================================


def test_source_unhealthy_published_once():
    """Five straight failures flag a source exactly once."""
    bus = EventBus()
    signals = bus.subscribe("signals", SourceUnhealthy)
    monitor = PipelineMonitor(bus, MonitorConfig(source_failure_threshold=5))

    for _ in range(8):
        monitor.handle_event(failure("espn", message="timeout"))

    events = drain(signals)
    assert len(events) == 1
    assert events[0].source_id == "espn"
    assert events[0].failures == 5
    assert events[0].last_error == "timeout"
    assert monitor.is_source_unhealthy("espn")


def test_source_with_success_is_not_flagged():
    bus = EventBus()
    signals = bus.subscribe("signals", SourceUnhealthy)
    monitor = PipelineMonitor(bus, MonitorConfig(source_failure_threshold=3))

    monitor.handle_event(success("espn"))
    for _ in range(5):
        monitor.handle_event(failure("espn"))

    assert drain(signals) == []


def test_success_clears_unhealthy_flag():
    monitor = PipelineMonitor(EventBus(), MonitorConfig(source_failure_threshold=2))
    monitor.handle_event(failure("espn"))
    monitor.handle_event(failure("espn"))

    monitor.handle_event(success("espn"))

    assert not monitor.is_source_unhealthy("espn")


@pytest.mark.asyncio
async def test_health_check_healthy_without_issues():
    monitor = PipelineMonitor(EventBus(), probes={"storage_reachable": lambda: True})

    result = await monitor.run_health_check()

    assert result.status == HealthStatus.HEALTHY
    assert result.checks == {"storage_reachable": True}
    assert monitor.get_health() is result


@pytest.mark.asyncio
async def test_eleven_errors_in_a_minute_is_degraded():
    bus = EventBus()
    alerts = bus.subscribe("alerts", HealthAlert)
    monitor = PipelineMonitor(bus, MonitorConfig(max_errors_per_minute=10))

    for _ in range(50):
        monitor.handle_event(success("espn"))
    for _ in range(11):
        monitor.handle_event(failure("yahoo"))

    result = await monitor.run_health_check()

    assert result.status == HealthStatus.DEGRADED
    assert result.issues == ["High error rate: 11 errors/minute"]
    alert = alerts.get_nowait()
    assert alert.result is result
    assert alert.previous is None


@pytest.mark.asyncio
async def test_low_success_rate_needs_sample_size():
    monitor = PipelineMonitor(EventBus(), MonitorConfig(min_sample_size=10, min_success_rate=0.8))

    for _ in range(3):
        monitor.handle_event(failure("espn"))
    assert (await monitor.run_health_check()).status == HealthStatus.HEALTHY

    for _ in range(7):
        monitor.handle_event(failure("espn"))
    result = await monitor.run_health_check()
    assert "Low success rate: 0.0%" in result.issues


@pytest.mark.asyncio
async def test_failed_probes_become_issues():
    async def slow_probe():
        await asyncio.sleep(1)
        return True

    def broken_probe():
        raise RuntimeError("unreachable")

    monitor = PipelineMonitor(
        EventBus(),
        MonitorConfig(probe_timeout_seconds=0.05),
        probes={
            "pipeline_running": lambda: False,
            "storage_reachable": broken_probe,
            "prediction_service_reachable": slow_probe,
        },
    )

    result = await monitor.run_health_check()

    assert result.status == HealthStatus.UNHEALTHY
    assert set(result.issues) == {
        "Check failed: pipeline_running",
        "Check failed: storage_reachable",
        "Check failed: prediction_service_reachable",
    }


@pytest.mark.asyncio
async def test_health_alert_only_on_transition():
    bus = EventBus()
    alerts = bus.subscribe("alerts", HealthAlert)
    state = {"ok": False}
    monitor = PipelineMonitor(bus, probes={"storage_reachable": lambda: state["ok"]})

    await monitor.run_health_check()
    await monitor.run_health_check()
    assert len(drain(alerts)) == 1

    state["ok"] = True
    assert (await monitor.run_health_check()).status == HealthStatus.HEALTHY
    assert drain(alerts) == []

    state["ok"] = False
    await monitor.run_health_check()
    assert drain(alerts)[0].previous == HealthStatus.HEALTHY


# ============================================================================
# Source Performance Tests
# ============================================================================


def test_source_performance_sorted_worst_first():
    monitor = PipelineMonitor(EventBus(), MonitorConfig(min_sample_size=4, min_success_rate=0.8))

    for _ in range(4):
        monitor.handle_event(success("espn"))
    monitor.handle_event(success("yahoo"))
    for _ in range(3):
        monitor.handle_event(failure("yahoo"))

    performance = monitor.get_source_performance()

    assert [p.source_id for p in performance] == ["yahoo", "espn"]
    assert performance[0].success_rate == pytest.approx(25.0)
    assert performance[0].is_healthy is False
    assert performance[1].success_rate == pytest.approx(100.0)
    assert performance[1].is_healthy is True


def test_small_sample_source_stays_healthy():
    monitor = PipelineMonitor(EventBus(), MonitorConfig(min_sample_size=10, source_failure_threshold=5))

    monitor.handle_event(failure("espn"))

    assert monitor.get_source_performance()[0].is_healthy is True


# ============================================================================
# Lifecycle Tests
# ============================================================================


@pytest.mark.asyncio
async def test_monitor_consumes_bus_and_runs_ticks():
    """Started monitor drains the bus and its health job runs on schedule."""
    bus = EventBus()
    monitor = PipelineMonitor(
        bus,
        MonitorConfig(metrics_interval_seconds=0.05, health_interval_seconds=0.05),
        active_sources=lambda: 2,
    )
    await monitor.start()

    bus.publish(success("espn"))
    bus.publish(failure("yahoo"))
    await asyncio.sleep(0.3)
    await monitor.stop()

    metrics = monitor.get_metrics()
    assert metrics.total_requests == 2
    assert metrics.uptime_seconds > 0
    assert monitor.get_health() is not None
    assert bus.subscriptions == []


@pytest.mark.asyncio
async def test_stop_cancels_running_health_check():
    """A health check still waiting on a probe does not outlive stop()."""
    probe_started = asyncio.Event()
    probe_finished = False

    async def slow_probe():
        nonlocal probe_finished
        probe_started.set()
        await asyncio.sleep(1.0)
        probe_finished = True
        return False

    bus = EventBus()
    alerts = bus.subscribe("alerts", HealthAlert)
    monitor = PipelineMonitor(
        bus,
        MonitorConfig(
            metrics_interval_seconds=10,
            health_interval_seconds=0.05,
            probe_timeout_seconds=2.0,
        ),
        probes={"slow": slow_probe},
    )
    await monitor.start()
    await asyncio.wait_for(probe_started.wait(), timeout=2)

    await asyncio.wait_for(monitor.stop(), timeout=0.5)
    await asyncio.sleep(1.2)

    assert probe_finished is False
    assert monitor.get_health() is None
    assert alerts.pending() == 0
