"""
End-to-end tests for SportsDataPipeline using the fixture adapter.

This module tests:
- Collection, processing and monitoring wired together
- Status, metrics and health queries
- Runtime source management
- Alert forwarding for health signals
"""

import asyncio

import pytest

from sports_pipeline.events import ProcessedUpdate
from sports_pipeline.ingestion.adapters import FixtureFetchAdapter
from sports_pipeline.ingestion.base import AdapterRegistry, ConfigError, NotFoundError
from sports_pipeline.ingestion.rate_limiter import InMemoryRateLimiter
from sports_pipeline.pipeline import SportsDataPipeline
from sports_pipeline.services.alerts import AlertService
from sports_pipeline.storage.memory import InMemoryEntityStore
from sports_pipeline.types import (
    DataKind,
    FetchMechanism,
    HealthStatus,
    MonitorConfig,
    SourceConfig,
)
from tests.mocks import FailingFetchAdapter, StubPredictionService


def make_source(source_id: str, url: str, kind: DataKind, **overrides) -> SourceConfig:
    values = {
        "id": source_id,
        "name": source_id,
        "url": url,
        "mechanism": FetchMechanism.CRAWL,
        "sport": "NFL",
        "kind": kind,
        "interval_seconds": 60,
    }
    values.update(overrides)
    return SourceConfig(**values)


SOURCES = [
    make_source("espn_player_stats", "https://www.espn.com/nfl/stats", DataKind.PLAYER_STATS),
    make_source("yahoo_injuries", "https://sports.yahoo.com/nfl/injuries", DataKind.INJURIES,
                mechanism=FetchMechanism.RENDER),
    make_source("draftkings_props", "https://sportsbook.draftkings.com/nfl", DataKind.ODDS,
                mechanism=FetchMechanism.API),
    make_source("weather_games", "https://weather.com/sports/nfl", DataKind.WEATHER, enabled=False),
]


def fixture_adapters(adapter=None) -> AdapterRegistry:
    adapter = adapter or FixtureFetchAdapter()
    registry = AdapterRegistry()
    for mechanism in FetchMechanism:
        registry.register(adapter, mechanism)
    return registry


def make_pipeline(sources=None, adapter=None, **kwargs) -> SportsDataPipeline:
    kwargs.setdefault(
        "monitor_config",
        MonitorConfig(metrics_interval_seconds=60, health_interval_seconds=60),
    )
    return SportsDataPipeline(
        sources=SOURCES if sources is None else sources,
        adapters=fixture_adapters(adapter),
        store=InMemoryEntityStore(),
        **kwargs,
    )


# ============================================================================
# End-to-end Tests
# ============================================================================


@pytest.mark.asyncio
async def test_pipeline_collects_processes_and_monitors():
    pipeline = make_pipeline()
    updates = pipeline.subscribe("test", ProcessedUpdate)

    await pipeline.start()
    await asyncio.sleep(0.1)
    await pipeline.stop()

    store = pipeline.store
    assert store.count("player_stats") == 2
    assert store.count("injuries") == 2
    assert store.count("odds") == 2
    assert store.count("weather") == 0  # disabled source
    assert store.count("prediction") == 4

    metrics = pipeline.get_metrics()
    assert metrics.successful_requests == 3
    assert metrics.failed_requests == 0
    assert metrics.records_collected == 6
    assert metrics.records_processed == 6
    assert updates.pending() == 6


@pytest.mark.asyncio
async def test_status_reports_sources_and_rate_limits():
    pipeline = make_pipeline()
    await pipeline.start()
    await asyncio.sleep(0.05)

    status = await pipeline.get_status()
    await pipeline.stop()

    assert status.running is True
    assert status.total_sources == 4
    assert status.enabled_sources == 3
    assert status.active_sources == 3

    by_id = {s.id: s for s in status.sources}
    assert by_id["weather_games"].active is False
    assert by_id["espn_player_stats"].rate_limit.origin == "espn.com"
    assert by_id["espn_player_stats"].rate_limit.request_count == 1


@pytest.mark.asyncio
async def test_stopped_pipeline_status():
    pipeline = make_pipeline()

    status = await pipeline.get_status()

    assert status.running is False
    assert status.active_sources == 0


@pytest.mark.asyncio
async def test_start_and_stop_are_idempotent():
    pipeline = make_pipeline(sources=[])

    await pipeline.start()
    await pipeline.start()
    await pipeline.stop()
    await pipeline.stop()

    assert pipeline.running is False


@pytest.mark.asyncio
async def test_health_check_probes():
    pipeline = make_pipeline(predictor=StubPredictionService())
    await pipeline.start()

    health = await pipeline.monitor.run_health_check()
    await pipeline.stop()

    assert health.status == HealthStatus.HEALTHY
    assert health.checks == {
        "pipeline_running": True,
        "storage_reachable": True,
        "prediction_service_reachable": True,
        "fetch_adapters_reachable": True,
    }


@pytest.mark.asyncio
async def test_get_health_runs_first_check():
    pipeline = make_pipeline(sources=[])

    health = await pipeline.get_health()

    # Not started: the running probe fails
    assert health.status == HealthStatus.DEGRADED
    assert health.issues == ["Check failed: pipeline_running"]


@pytest.mark.asyncio
async def test_failing_source_reported_in_performance_and_alerts():
    alert_service = AlertService(slack_enabled=False)
    pipeline = make_pipeline(
        sources=[make_source("flaky", "https://example.com/feed", DataKind.NEWS, interval_seconds=0.02)],
        adapter=FailingFetchAdapter("HTTP 503"),
        alert_service=alert_service,
        monitor_config=MonitorConfig(
            metrics_interval_seconds=60,
            health_interval_seconds=60,
            source_failure_threshold=3,
        ),
    )

    await pipeline.start()
    await asyncio.sleep(0.2)
    await pipeline.stop()

    performance = pipeline.get_source_performance()
    assert performance[0].source_id == "flaky"
    assert performance[0].success_rate == 0.0
    assert performance[0].is_healthy is False

    errors = pipeline.get_error_history()
    assert errors and all(e.error == "HTTP 503" for e in errors)

    assert [a["title"] for a in alert_service.sent] == ["Source Unhealthy: flaky"]


@pytest.mark.asyncio
async def test_stop_closes_predictor():
    predictor = StubPredictionService()
    pipeline = make_pipeline(sources=[], predictor=predictor)

    await pipeline.start()
    await pipeline.stop()

    assert predictor.closed is True


@pytest.mark.asyncio
async def test_stop_completes_when_adapter_close_fails():
    class BrokenClose(FixtureFetchAdapter):
        async def close(self):
            raise RuntimeError("session already gone")

    predictor = StubPredictionService()
    pipeline = make_pipeline(adapter=BrokenClose(), predictor=predictor)

    await pipeline.start()
    await pipeline.stop()

    assert pipeline.running is False
    assert pipeline.bus.subscriptions == []
    assert predictor.closed is True


# ============================================================================
# Source Management Tests
# ============================================================================


@pytest.mark.asyncio
async def test_add_and_remove_source_while_running():
    adapter = FixtureFetchAdapter()
    pipeline = make_pipeline(sources=[], adapter=adapter)
    await pipeline.start()

    await pipeline.add_source(
        make_source("nfl_live_scores", "https://www.nfl.com/scores", DataKind.GAME_UPDATES)
    )
    await asyncio.sleep(0.05)
    assert pipeline.scheduler.is_active("nfl_live_scores")
    assert list(adapter.calls) == ["https://www.nfl.com/scores"]

    await pipeline.remove_source("nfl_live_scores")
    assert not pipeline.scheduler.is_active("nfl_live_scores")

    await pipeline.stop()
    assert pipeline.store.count("game_updates") == 1


@pytest.mark.asyncio
async def test_add_source_without_replace_rejects_duplicate():
    pipeline = make_pipeline()

    with pytest.raises(ConfigError):
        await pipeline.add_source(SOURCES[0], replace=False)


@pytest.mark.asyncio
async def test_disable_and_reenable_source():
    pipeline = make_pipeline()
    await pipeline.start()

    await pipeline.set_source_enabled("espn_player_stats", False)
    assert not pipeline.scheduler.is_active("espn_player_stats")
    assert pipeline.scheduler.is_active("yahoo_injuries")

    await pipeline.set_source_enabled("weather_games", True)
    assert pipeline.scheduler.is_active("weather_games")

    await pipeline.stop()


@pytest.mark.asyncio
async def test_update_interval_validation():
    pipeline = make_pipeline()

    with pytest.raises(ConfigError):
        await pipeline.update_source_interval("espn_player_stats", -1)
    with pytest.raises(NotFoundError):
        await pipeline.update_source_interval("missing", 10)

    updated = await pipeline.update_source_interval("espn_player_stats", 15)
    assert updated.interval_seconds == 15


@pytest.mark.asyncio
async def test_trigger_source_respects_rate_limit():
    pipeline = make_pipeline(rate_limiter=InMemoryRateLimiter(default_limit=1))

    first = await pipeline.trigger_source("espn_player_stats")
    second = await pipeline.trigger_source("espn_player_stats")

    assert first is not None
    assert second is None
