"""
Alert service for pipeline health notifications.

Supports:
- Console (log line)
- Slack (webhooks)
"""

import logging
import os
import time
from collections import deque
from enum import Enum
from typing import Any, Deque, Dict, List, Optional

import aiohttp

from sports_pipeline.events import HealthAlert, SourceUnhealthy, Subscription
from sports_pipeline.types import HealthStatus

logger = logging.getLogger(__name__)


class AlertSeverity(Enum):
    """Alert severity levels."""
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AlertChannel(Enum):
    """Supported alert channels."""
    SLACK = "slack"
    CONSOLE = "console"


class AlertService:
    """
    Multi-channel alert service.

    Turns HealthAlert and SourceUnhealthy events into notifications on the
    configured channels. The console channel is always available.
    """

    def __init__(
        self,
        slack_enabled: bool = True,
        slack_webhook_url: Optional[str] = None,
        console_enabled: bool = True,
        history_size: int = 100,
    ):
        """
        Initialize alert service.

        Args:
            slack_enabled: Enable Slack alerts
            slack_webhook_url: Slack webhook URL (defaults to SLACK_WEBHOOK_URL)
            console_enabled: Log alerts as warnings
            history_size: Number of recent alerts kept in `sent`
        """
        self.console_enabled = console_enabled
        self.slack_enabled = slack_enabled
        self.slack_webhook_url = slack_webhook_url or os.getenv("SLACK_WEBHOOK_URL")
        self.sent: Deque[Dict[str, Any]] = deque(maxlen=history_size)

        if self.slack_enabled and not self.slack_webhook_url:
            logger.debug("Slack alerts disabled, SLACK_WEBHOOK_URL not configured")
            self.slack_enabled = False

    def _default_channels(self) -> List[AlertChannel]:
        channels = []
        if self.console_enabled:
            channels.append(AlertChannel.CONSOLE)
        if self.slack_enabled:
            channels.append(AlertChannel.SLACK)
        return channels

    async def send_alert(
        self,
        title: str,
        message: str,
        severity: AlertSeverity = AlertSeverity.INFO,
        channels: Optional[List[AlertChannel]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, bool]:
        """
        Send alert through configured channels.

        Args:
            title: Alert title
            message: Alert message body
            severity: Alert severity level
            channels: Specific channels to use (default: all enabled)
            metadata: Additional metadata to include

        Returns:
            Dictionary of channel results (channel_name -> success)
        """
        if channels is None:
            channels = self._default_channels()

        results = {}
        for channel in channels:
            try:
                if channel == AlertChannel.SLACK:
                    results["slack"] = await self._send_slack(title, message, severity, metadata)
                elif channel == AlertChannel.CONSOLE:
                    logger.warning(f"ALERT [{severity.value.upper()}] {title}: {message}")
                    results["console"] = True
            except Exception as e:
                logger.error(f"Failed to send alert via {channel.value}: {e}")
                results[channel.value] = False

        self.sent.append({"title": title, "severity": severity.value, "results": results})
        return results

    async def _send_slack(
        self,
        title: str,
        message: str,
        severity: AlertSeverity,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> bool:
        if not self.slack_enabled or not self.slack_webhook_url:
            logger.warning("Slack alerts not configured properly")
            return False

        color_map = {
            AlertSeverity.INFO: "#36a64f",
            AlertSeverity.WARNING: "#ff9900",
            AlertSeverity.ERROR: "#ff0000",
            AlertSeverity.CRITICAL: "#8b0000",
        }

        attachment = {
            "color": color_map.get(severity, "#808080"),
            "title": f"[{severity.value.upper()}] {title}",
            "text": message,
            "fields": [
                {"title": key, "value": str(value), "short": True}
                for key, value in (metadata or {}).items()
            ],
            "footer": "Sports Data Pipeline",
            "ts": int(time.time()),
        }
        slack_payload = {
            "username": "Sports Pipeline Alerts",
            "icon_emoji": ":rotating_light:",
            "attachments": [attachment],
        }

        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    self.slack_webhook_url,
                    json=slack_payload,
                    timeout=aiohttp.ClientTimeout(total=10),
                ) as response:
                    if response.status == 200:
                        logger.info("Slack alert sent successfully")
                        return True
                    logger.error(f"Slack webhook returned status {response.status}")
                    return False
        except Exception as e:
            logger.error(f"Failed to send Slack alert: {e}")
            return False

    async def send_source_unhealthy_alert(self, event: SourceUnhealthy) -> Dict[str, bool]:
        """
        Send alert for a source that keeps failing.

        Args:
            event: The SourceUnhealthy signal

        Returns:
            Dictionary of send results per channel
        """
        title = f"Source Unhealthy: {event.source_id}"
        message = (
            f"Source '{event.source_id}' failed {event.failures} times "
            f"without a single success."
        )
        if event.last_error:
            message += f"\n\nLast error: {event.last_error}"

        metadata = {
            "source": event.source_id,
            "failures": event.failures,
        }
        return await self.send_alert(title, message, AlertSeverity.ERROR, metadata=metadata)

    async def send_health_alert(self, event: HealthAlert) -> Dict[str, bool]:
        """
        Send alert for an overall health transition.

        Args:
            event: The HealthAlert signal

        Returns:
            Dictionary of send results per channel
        """
        status = event.result.status
        severity = (
            AlertSeverity.CRITICAL if status == HealthStatus.UNHEALTHY else AlertSeverity.WARNING
        )

        title = f"Pipeline {status.value}"
        message = "Issues:\n" + "\n".join(f"- {issue}" for issue in event.result.issues)

        failed_checks = [name for name, ok in event.result.checks.items() if not ok]
        metadata = {
            "status": status.value,
            "previous": event.previous.value if event.previous else "unknown",
            "failed_checks": ", ".join(failed_checks) or "none",
        }
        return await self.send_alert(title, message, severity, metadata=metadata)

    async def handle_event(self, event: Any) -> Optional[Dict[str, bool]]:
        if isinstance(event, SourceUnhealthy):
            return await self.send_source_unhealthy_alert(event)
        if isinstance(event, HealthAlert):
            return await self.send_health_alert(event)
        return None

    async def consume(self, subscription: Subscription) -> None:
        """Forward alert events until the subscription closes."""
        async for event in subscription:
            try:
                await self.handle_event(event)
            except Exception as e:
                logger.error(f"Failed to forward {type(event).__name__}: {e}", exc_info=True)
