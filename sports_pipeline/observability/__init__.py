"""
Observability for the sports data pipeline.

- Prometheus metrics exporters
- Structured logging
- Pipeline monitor (rolling metrics and health checks)
"""

from sports_pipeline.observability.logging import (
    JSONFormatter,
    get_logger,
    log_context,
    setup_logging,
)
from sports_pipeline.observability.metrics import (
    get_metrics_text,
    metrics_registry,
)

__all__ = [
    # Logging
    "JSONFormatter",
    "get_logger",
    "log_context",
    "setup_logging",
    # Metrics
    "get_metrics_text",
    "metrics_registry",
]
