"""Production worker for the enrichment poller.

This worker runs as a separate service and handles:
- Enrichment of companies flagged ``cnpj_enriquecer = sim`` (every minute)
- Health monitoring (hourly)

Usage:
    python scripts/worker.py

Environment Variables:
    CE_HUBSPOT_ACCESS_TOKEN: HubSpot token (the worker has no OAuth callback)
    CE_POLL_INTERVAL_SECONDS: Seconds between polling passes
    CE_ALERT_WEBHOOK_URL: Optional, for alerts
"""

import os
import sys
import asyncio
from datetime import datetime
import signal

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import httpx
import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from cnpj_enricher.config.settings import settings
from cnpj_enricher.factory import get_lookup_client, get_poller, get_token_store

logger = structlog.get_logger()


class EnrichmentWorker:
    """Manages scheduled enrichment tasks."""

    def __init__(self):
        self.token_store = get_token_store()
        self.lookup = get_lookup_client()
        self.poller = get_poller()
        self.scheduler = AsyncIOScheduler()
        self.running = True
        self._auth_alerted = False

    def setup_jobs(self):
        """Configure scheduled jobs."""
        self.scheduler.add_job(
            self.poll,
            IntervalTrigger(seconds=settings.poll_interval_seconds),
            id='poll_enrichment',
            name='Enrich flagged companies',
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )

        self.scheduler.add_job(
            self.health_check,
            IntervalTrigger(hours=1),
            id='health_check',
            name='Worker health check',
            replace_existing=True
        )

        logger.info("jobs_configured", count=len(self.scheduler.get_jobs()))

    async def poll(self):
        """Run one polling pass."""
        logger.info("job_started", job="poll_enrichment")
        start_time = datetime.now()

        try:
            result = await self.poller.tick()

            elapsed = (datetime.now() - start_time).total_seconds()
            logger.info("job_completed", job="poll_enrichment",
                       elapsed_seconds=elapsed, **result.to_dict())

            return result.to_dict()

        except Exception as e:
            logger.error("job_failed", job="poll_enrichment", error=str(e))
            await self.send_alert(f"Enrichment poll failed: {e}", level="error")
            return {"error": str(e)}

    async def health_check(self):
        """Check token and limiter state and alert if issues."""
        tokens = self.token_store.get()
        authenticated = bool(tokens and tokens.access_token and not tokens.is_expired())

        if not authenticated and not self._auth_alerted:
            await self.send_alert("HubSpot token missing or expired, enrichment is paused", level="warning")
            self._auth_alerted = True
        elif authenticated:
            self._auth_alerted = False

        status = self.lookup.status()
        logger.debug("health_check",
                    authenticated=authenticated,
                    rate_limit=status.to_dict(),
                    cache=self.lookup.cache_stats().to_dict())

        return {"status": "healthy" if authenticated else "degraded", "rate_limit": status.to_dict()}

    async def send_alert(self, message: str, level: str = "warning"):
        """Send alert via webhook (if configured)."""
        webhook_url = settings.alert_webhook_url
        if not webhook_url:
            return

        try:
            emoji = {
                "info": "ℹ️",
                "warning": "⚠️",
                "error": "🚨"
            }.get(level, "📢")

            async with httpx.AsyncClient() as client:
                await client.post(webhook_url, json={
                    "text": f"{emoji} *CNPJ Enricher*\n{message}"
                })
        except httpx.HTTPError as e:
            logger.error("alert_failed", error=str(e))

    def start(self):
        """Start the worker."""
        self.setup_jobs()
        self.scheduler.start()
        logger.info("worker_started",
                   interval_seconds=settings.poll_interval_seconds,
                   jobs=len(self.scheduler.get_jobs()))

    def stop(self):
        """Stop the worker gracefully."""
        self.running = False
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        logger.info("worker_stopped")


async def main():
    """Main entry point."""
    worker = EnrichmentWorker()

    # Handle graceful shutdown
    def signal_handler(signum, frame):
        logger.info("shutdown_signal_received", signal=signum)
        worker.stop()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    worker.start()

    # Run immediately on startup
    logger.info("running_initial_tasks")
    await worker.health_check()
    await worker.poll()

    try:
        while worker.running:
            await asyncio.sleep(1)
    except (KeyboardInterrupt, SystemExit):
        pass

    worker.stop()
    await worker.lookup.close()


if __name__ == "__main__":
    asyncio.run(main())
