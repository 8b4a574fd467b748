"""Pipeline jobs: scrape, categorize, prepare and send."""

import asyncio
import time
from typing import Dict, List

import structlog

from ..classification.categorizer import ArticleCategorizer
from ..classification.editorial import EditorialWriter
from ..config.settings import settings
from ..config.sources import load_sources
from ..delivery.email_service import EmailService
from ..ingestion.firecrawl import FirecrawlScraper
from ..ingestion.interfaces import SourceConfig, SourceType, ScraperInterface
from ..ingestion.linkedin import LinkedInScraper
from ..ingestion.rss import RSSFetcher
from ..llm.client import LLMClient
from ..newsletter.dispatch import NewsletterPreparer, NewsletterSender
from ..newsletter.selection import ArticleSelector
from ..personalization.interest_filter import InterestFilter
from ..storage.database import NewsStorage
from ..storage.factory import get_storage

logger = structlog.get_logger()


def _elapsed_ms(start: float) -> int:
    return int((time.time() - start) * 1000)


class NewsPipeline:
    """Wires storage, LLM steps and delivery into runnable jobs."""

    def __init__(
        self,
        storage: NewsStorage = None,
        llm_client: LLMClient = None,
        email_service: EmailService = None
    ):
        self.storage = storage or get_storage()
        self.llm = llm_client or LLMClient()
        self.categorizer = ArticleCategorizer(self.llm)
        self.editor = EditorialWriter(self.llm)
        self.selector = ArticleSelector(self.storage, InterestFilter(self.llm))
        self.preparer = NewsletterPreparer(self.storage, self.selector)
        self.sender = NewsletterSender(
            self.storage,
            email_service=email_service or EmailService(),
            selector=self.selector,
            editor=self.editor,
        )

    def sync_sources(self, config_path: str = None) -> int:
        """Load source definitions from JSON into the database."""
        return self.storage.upsert_sources(load_sources(config_path))

    async def _scrape_sources(self, configs: List[SourceConfig], scraper: ScraperInterface) -> Dict[str, dict]:
        """Scrape sources concurrently; a failing source only loses its own articles."""
        results = await asyncio.gather(
            *[scraper.scrape(config) for config in configs],
            return_exceptions=True
        )

        per_source = {}
        for config, result in zip(configs, results):
            if isinstance(result, Exception):
                logger.warning("source_scrape_failed", source=config.source_name, error=str(result))
                per_source[config.source_id] = {"error": str(result)}
                continue
            loaded = self.storage.save_articles(
                result, config.source_id, config.source_name, config.is_national
            )
            per_source[config.source_id] = {"found": len(result), "loaded": loaded}
        return per_source

    async def scrape_rss(self) -> dict:
        start = time.time()
        configs = self.storage.get_sources(SourceType.RSS)
        async with RSSFetcher() as fetcher:
            per_source = await self._scrape_sources(configs, fetcher)
        return self._scrape_summary("rss", per_source, start)

    async def scrape_firecrawl(self) -> dict:
        start = time.time()
        configs = self.storage.get_sources(SourceType.FIRECRAWL)
        async with FirecrawlScraper() as scraper:
            per_source = await self._scrape_sources(configs, scraper)
        return self._scrape_summary("firecrawl", per_source, start)

    async def scrape_linkedin(self) -> dict:
        """All LinkedIn profiles go through a single actor run."""
        start = time.time()
        configs = self.storage.get_sources(SourceType.LINKEDIN)
        if not configs:
            return self._scrape_summary("linkedin", {}, start)

        scraper = LinkedInScraper(self.categorizer, self.editor)
        articles = await scraper.scrape_profiles(configs)
        # Posts carry their author as source; author sources inherit national scope
        loaded = self.storage.save_articles(
            articles, "linkedin", "LinkedIn", is_national=any(c.is_national for c in configs)
        )
        return self._scrape_summary("linkedin", {"linkedin": {"found": len(articles), "loaded": loaded}}, start)

    @staticmethod
    def _scrape_summary(kind: str, per_source: Dict[str, dict], start: float) -> dict:
        summary = {
            "source_type": kind,
            "sources": len(per_source),
            "failed": sum(1 for s in per_source.values() if "error" in s),
            "loaded": sum(s.get("loaded", 0) for s in per_source.values()),
            "per_source": per_source,
            "time_ms": _elapsed_ms(start),
        }
        logger.info("scrape_completed", **{k: v for k, v in summary.items() if k != "per_source"})
        return summary

    async def scrape_all(self) -> dict:
        """Run every scraper kind concurrently."""
        kinds = ("rss", "firecrawl", "linkedin")
        results = await asyncio.gather(
            self.scrape_rss(), self.scrape_firecrawl(), self.scrape_linkedin(),
            return_exceptions=True
        )
        stats = {}
        for kind, result in zip(kinds, results):
            if isinstance(result, Exception):
                logger.error("scraper_failed", source_type=kind, error=str(result))
                stats[kind] = {"error": str(result)}
            else:
                stats[kind] = result
        return stats

    async def categorize(self, batch_size: int = None) -> dict:
        """Categorize one batch of uncategorized articles."""
        batch_size = batch_size or settings.categorize_batch_size
        start = time.time()
        timings = {}

        articles = self.storage.get_uncategorized(limit=batch_size)
        if not articles:
            logger.info("categorize_nothing_pending")
            return {"processed": 0, "relevant": 0, "irrelevant": 0, "categorized": 0, "timings_ms": {}}

        step = time.time()
        flags = await self.categorizer.check_relevance(articles)
        timings["relevance"] = _elapsed_ms(step)
        relevant = [a for a, keep in zip(articles, flags) if keep]
        irrelevant = [a.id for a, keep in zip(articles, flags) if not keep]
        self.storage.mark_irrelevant(irrelevant)

        categorized = 0
        if relevant:
            step = time.time()
            counties = await self.categorizer.get_county_categories(relevant)
            timings["counties"] = _elapsed_ms(step)
            for article, names in zip(relevant, counties):
                article.counties = names

            step = time.time()
            cities = await self.categorizer.get_city_categories(relevant)
            timings["cities"] = _elapsed_ms(step)

            step = time.time()
            tags = await self.categorizer.get_tags(relevant)
            timings["tags"] = _elapsed_ms(step)

            step = time.time()
            for i, article in enumerate(relevant):
                try:
                    self.storage.save_categorization(
                        article.id,
                        article.counties,
                        cities[i] if i < len(cities) else [],
                        tags[i] if i < len(tags) else [],
                    )
                    categorized += 1
                except Exception as e:
                    logger.warning("categorization_save_failed", id=article.id, error=str(e))
            timings["save"] = _elapsed_ms(step)

        timings["total"] = _elapsed_ms(start)
        stats = {
            "processed": len(articles),
            "relevant": len(relevant),
            "irrelevant": len(irrelevant),
            "categorized": categorized,
            "timings_ms": timings,
        }
        logger.info("categorize_completed", **{k: v for k, v in stats.items() if k != "timings_ms"})
        return stats

    async def prepare_newsletters(self) -> dict:
        return await self.preparer.prepare()

    async def send_newsletters(self) -> dict:
        return await self.sender.send_due()

    async def run(self, scrape: bool = True, send: bool = True) -> dict:
        """Scrape, categorize, prepare, then send."""
        start = time.time()
        stats = {}
        if scrape:
            stats["scrape"] = await self.scrape_all()
        stats["categorize"] = await self.categorize()
        stats["prepare"] = await self.prepare_newsletters()
        if send:
            stats["send"] = await self.send_newsletters()
        stats["storage"] = self.storage.get_stats()
        stats["time_ms"] = _elapsed_ms(start)
        return stats


async def run_pipeline(scrape: bool = True, send: bool = True, sync_sources: bool = True) -> dict:
    """Run one full pass of the pipeline.

    Args:
        scrape: Scrape all configured sources first
        send: Send newsletters that are due after preparing
        sync_sources: Load config/sources.json into the database first

    Returns:
        Dict with per-stage statistics
    """
    pipeline = NewsPipeline()
    if sync_sources:
        pipeline.sync_sources()
    return await pipeline.run(scrape=scrape, send=send)
