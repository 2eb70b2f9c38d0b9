"""
Pipeline Service - Live Sports Data Collection

This service is responsible for:
- Building the pipeline from config/pipeline.json and the environment
- Running collection, processing and monitoring until signalled
- Logging a status summary periodically
"""

import asyncio
import logging
import signal
import sys
from typing import Optional

import redis.asyncio as aioredis

from sports_pipeline import config
from sports_pipeline.observability.logging import setup_logging
from sports_pipeline.pipeline import SportsDataPipeline

logger = logging.getLogger(__name__)


class PipelineService:
    """Main service that runs one pipeline until shutdown."""

    def __init__(self, status_interval: float = config.STATUS_LOG_INTERVAL_SECONDS):
        self.status_interval = status_interval
        self.pipeline: Optional[SportsDataPipeline] = None
        self.redis_client = None
        self._shutdown = asyncio.Event()

    async def initialize(self):
        """Connect shared collaborators and build the pipeline."""
        if config.REDIS_URL:
            self.redis_client = aioredis.from_url(config.REDIS_URL)
            await self.redis_client.ping()
            logger.info("Connected to Redis for shared rate limits and storage")

        self.pipeline = SportsDataPipeline.from_settings(redis_client=self.redis_client)
        logger.info(f"Pipeline built with {len(self.pipeline.registry)} sources")

    async def log_status(self):
        status = await self.pipeline.get_status()
        metrics = self.pipeline.get_metrics()
        health = await self.pipeline.get_health()

        logger.info(
            f"Status: {status.active_sources}/{status.enabled_sources} sources active, "
            f"health={health.status.value}, "
            f"requests={metrics.total_requests} "
            f"(ok={metrics.successful_requests}, failed={metrics.failed_requests}), "
            f"records={metrics.records_collected}, processed={metrics.records_processed}, "
            f"errors/min={metrics.errors_per_minute}"
        )
        for source in status.sources:
            if source.rate_limit is not None:
                logger.debug(
                    f"  {source.id}: {source.rate_limit.request_count}/"
                    f"{source.rate_limit.ceiling} per window"
                )

    async def start(self):
        """Start the service and block until shutdown is requested."""
        logger.info("Starting Sports Pipeline Service...")
        await self.initialize()
        await self.pipeline.start()

        try:
            while not self._shutdown.is_set():
                try:
                    await asyncio.wait_for(self._shutdown.wait(), timeout=self.status_interval)
                except asyncio.TimeoutError:
                    await self.log_status()
        except asyncio.CancelledError:
            logger.info("Sports Pipeline Service cancelled")
        finally:
            await self.shutdown()

    def request_shutdown(self):
        self._shutdown.set()

    async def shutdown(self):
        """Shutdown the service gracefully."""
        logger.info("Shutting down Sports Pipeline Service...")

        if self.pipeline is not None:
            await self.pipeline.stop()

        if self.redis_client is not None:
            await self.redis_client.aclose()
            self.redis_client = None

        logger.info("Sports Pipeline Service shutdown complete")


async def main():
    """Main entry point for the pipeline service."""
    setup_logging(level=config.LOG_LEVEL, log_file=config.LOG_FILE, json_format=config.LOG_JSON)
    service = PipelineService()

    # Setup signal handlers for graceful shutdown
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(signum, service.request_shutdown)

    try:
        await service.start()
    except Exception as e:
        logger.error(f"Sports pipeline service failed: {e}", exc_info=True)
        sys.exit(1)


def run():
    asyncio.run(main())


if __name__ == "__main__":
    run()
