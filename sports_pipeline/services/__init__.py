"""
Operator-facing services.
"""

from sports_pipeline.services.alerts import AlertChannel, AlertService, AlertSeverity

__all__ = ["AlertChannel", "AlertService", "AlertSeverity"]
