"""
Live sports data collection and monitoring pipeline.

Polls configured sources under per-origin rate limits, normalizes and
stores what they return, and keeps rolling health metrics.
"""

from sports_pipeline.events import (
    CollectionFailure,
    CollectionSuccess,
    EventBus,
    HealthAlert,
    ProcessedUpdate,
    SourceUnhealthy,
)
from sports_pipeline.pipeline import SportsDataPipeline
from sports_pipeline.types import (
    DataKind,
    FetchMechanism,
    HealthStatus,
    SourceConfig,
)

__version__ = "1.0.0"

__all__ = [
    "SportsDataPipeline",
    "EventBus",
    "CollectionSuccess",
    "CollectionFailure",
    "ProcessedUpdate",
    "SourceUnhealthy",
    "HealthAlert",
    "DataKind",
    "FetchMechanism",
    "HealthStatus",
    "SourceConfig",
]
