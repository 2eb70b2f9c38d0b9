"""
Ingestion layer for the sports data pipeline.

Sources are declared in the registry and polled by the collector
scheduler through fetch adapters, gated by a per-origin rate limiter.
"""

# Base classes and errors
from sports_pipeline.ingestion.base import (
    AdapterRegistry,
    ConfigError,
    FetchAdapter,
    FetchError,
    NotFoundError,
)

# Interface contracts (Protocols)
from sports_pipeline.ingestion.interfaces import (
    RateLimiter,
    Scheduler,
)

# Concrete implementations
from sports_pipeline.ingestion.adapters import (
    ApiFetchAdapter,
    FixtureFetchAdapter,
    RemoteExtractionAdapter,
    build_default_adapters,
)
from sports_pipeline.ingestion.rate_limiter import (
    InMemoryRateLimiter,
    RedisRateLimiter,
    create_rate_limiter,
    origin_key,
)
from sports_pipeline.ingestion.registry import SourceRegistry
from sports_pipeline.ingestion.scheduler import CollectorScheduler, count_records

__all__ = [
    # Base classes
    "AdapterRegistry",
    "FetchAdapter",
    "ConfigError",
    "FetchError",
    "NotFoundError",
    # Interface contracts
    "RateLimiter",
    "Scheduler",
    # Implementations
    "ApiFetchAdapter",
    "FixtureFetchAdapter",
    "RemoteExtractionAdapter",
    "build_default_adapters",
    "InMemoryRateLimiter",
    "RedisRateLimiter",
    "create_rate_limiter",
    "origin_key",
    "SourceRegistry",
    "CollectorScheduler",
    "count_records",
]
