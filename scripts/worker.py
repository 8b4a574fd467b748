"""Scheduled worker for the news pipeline.

Runs as a separate service instead of external cron hitting the API:
- Scraping of all sources (every 4 hours)
- Categorization (30 min after each scrape)
- Newsletter preparation (hourly, on the hour)
- Sending of due newsletters (every 15 minutes)
- Health monitoring (hourly)

Usage:
    python scripts/worker.py

Environment Variables:
    DATABASE_URL: PostgreSQL connection string
    CRE_LLM_PROVIDER: gemini, anthropic, or openai
    CRE_GEMINI_API_KEY / CRE_ANTHROPIC_API_KEY / CRE_OPENAI_API_KEY
    CRE_SLACK_WEBHOOK_URL: Optional, for alerts
"""

import os
import sys
import asyncio
import signal
from datetime import datetime

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from dotenv import load_dotenv
import httpx
import structlog

from cre_news.config.settings import settings
from cre_news.pipeline.jobs import NewsPipeline

logger = structlog.get_logger()

BACKLOG_ALERT_THRESHOLD = 500


class PipelineWorker:
    """Manages scheduled pipeline tasks."""

    def __init__(self, pipeline: NewsPipeline = None):
        self.pipeline = pipeline or NewsPipeline()
        self.scheduler = AsyncIOScheduler(timezone="UTC")
        self.running = True

    def setup_jobs(self):
        """Configure scheduled jobs."""
        self.scheduler.add_job(
            self.scrape_articles,
            CronTrigger(hour='*/4'),
            id='scrape_articles',
            name='Scrape all sources',
            replace_existing=True,
            misfire_grace_time=3600
        )

        self.scheduler.add_job(
            self.categorize_articles,
            CronTrigger(hour='*/4', minute=30),
            id='categorize_articles',
            name='Categorize new articles',
            replace_existing=True,
            misfire_grace_time=3600
        )

        # Preparation looks one hour ahead, so it must run on the hour
        self.scheduler.add_job(
            self.prepare_newsletters,
            CronTrigger(minute=0),
            id='prepare_newsletters',
            name='Prepare newsletters for the next hour',
            replace_existing=True,
            misfire_grace_time=900
        )

        self.scheduler.add_job(
            self.send_newsletters,
            CronTrigger(minute='*/15'),
            id='send_newsletters',
            name='Send due newsletters',
            replace_existing=True,
            misfire_grace_time=600
        )

        self.scheduler.add_job(
            self.health_check,
            IntervalTrigger(hours=1),
            id='health_check',
            name='Pipeline health check',
            replace_existing=True
        )

        logger.info("jobs_configured", count=len(self.scheduler.get_jobs()))

    async def _run_job(self, job: str, coro_factory) -> dict:
        logger.info("job_started", job=job)
        start_time = datetime.now()
        try:
            result = await coro_factory()
            elapsed = (datetime.now() - start_time).total_seconds()
            logger.info("job_completed", job=job, elapsed_seconds=elapsed)
            return result
        except Exception as e:
            logger.error("job_failed", job=job, error=str(e))
            await self.send_alert(f"{job} failed: {e}", level="error")
            return {"error": str(e)}

    async def scrape_articles(self):
        return await self._run_job("scrape_articles", self.pipeline.scrape_all)

    async def categorize_articles(self):
        return await self._run_job("categorize_articles", self.pipeline.categorize)

    async def prepare_newsletters(self):
        return await self._run_job("prepare_newsletters", self.pipeline.prepare_newsletters)

    async def send_newsletters(self):
        result = await self._run_job("send_newsletters", self.pipeline.send_newsletters)
        if result.get("errors"):
            await self.send_alert(
                f"{result['errors']} newsletters failed to send", level="warning"
            )
        return result

    async def health_check(self):
        """Check system health and alert if issues."""
        try:
            stats = self.pipeline.storage.get_stats()

            backlog = stats.get('uncategorized_articles', 0)
            if backlog > BACKLOG_ALERT_THRESHOLD:
                await self.send_alert(
                    f"Large backlog: {backlog} uncategorized articles",
                    level="warning"
                )

            logger.debug("health_check", stats=stats)
            return {"status": "healthy", "stats": stats}

        except Exception as e:
            logger.error("health_check_failed", error=str(e))
            await self.send_alert(f"Health check failed: {e}", level="error")
            return {"status": "unhealthy", "error": str(e)}

    async def send_alert(self, message: str, level: str = "warning"):
        """Send alert via Slack webhook (if configured)."""
        if not settings.slack_webhook_url:
            return

        emoji = {
            "info": "ℹ️",
            "warning": "⚠️",
            "error": "🚨"
        }.get(level, "📢")

        try:
            async with httpx.AsyncClient() as client:
                await client.post(settings.slack_webhook_url, json={
                    "text": f"{emoji} *{settings.newsletter_name}*\n{message}"
                })
        except httpx.HTTPError as e:
            logger.error("alert_failed", error=str(e))

    def start(self):
        """Start the worker."""
        self.setup_jobs()
        self.scheduler.start()
        logger.info("worker_started", jobs=len(self.scheduler.get_jobs()))

    def stop(self):
        """Stop the worker gracefully."""
        self.running = False
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        logger.info("worker_stopped")


async def main():
    """Main entry point."""
    load_dotenv()
    worker = PipelineWorker()
    worker.pipeline.sync_sources()

    def signal_handler(signum, frame):
        logger.info("shutdown_signal_received", signal=signum)
        worker.running = False

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    worker.start()

    logger.info("running_initial_tasks")
    await worker.scrape_articles()
    await worker.categorize_articles()
    await worker.health_check()

    while worker.running:
        await asyncio.sleep(5)

    worker.stop()


if __name__ == "__main__":
    asyncio.run(main())
