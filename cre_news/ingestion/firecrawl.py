"""Scrape article listings from web pages through the Firecrawl API."""

import time
from typing import List, Optional

import aiohttp
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential
import structlog

from .interfaces import SourceConfig, RawArticle, ScraperInterface
from .utils import sanitize_image_url, safe_parse_date
from ..config.settings import settings

logger = structlog.get_logger()


class FirecrawlServerError(Exception):
    """Firecrawl answered with a 5xx status."""


def build_payload(target_url: str) -> dict:
    """Scrape request asking Firecrawl to extract an `articles` list."""
    return {
        "url": target_url,
        "onlyMainContent": True,
        "maxAge": settings.firecrawl_max_age_ms,
        "formats": [
            {
                "type": "json",
                "schema": {
                    "type": "object",
                    "required": [],
                    "properties": {
                        "articles": {
                            "type": "array",
                            "items": {
                                "type": "object",
                                "required": [],
                                "properties": {
                                    "url": {"type": "string"},
                                    "title": {"type": "string"},
                                    "description": {"type": "string"},
                                    "date": {"type": "string"},
                                    "imageUrl": {"type": "string"},
                                },
                            },
                        },
                    },
                },
            },
        ],
    }


class FirecrawlScraper(ScraperInterface):
    """Turns an article index page into RawArticles using Firecrawl extraction."""

    def __init__(self, api_key: str = None):
        self._api_key = api_key or settings.firecrawl_api_key
        self.session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self):
        self.session = aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=120),
            headers={"Authorization": f"Bearer {self._api_key or ''}"}
        )
        return self

    async def __aexit__(self, *args):
        if self.session:
            await self.session.close()

    @retry(
        retry=retry_if_exception_type(FirecrawlServerError),
        stop=stop_after_attempt(4),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        reraise=True
    )
    async def _post(self, payload: dict) -> dict:
        async with self.session.post(settings.firecrawl_api_url, json=payload) as response:
            if 500 <= response.status < 600:
                logger.warning("firecrawl_server_error", status=response.status)
                raise FirecrawlServerError(f"Firecrawl server error: {response.status}")
            if response.status >= 400:
                raise RuntimeError(f"Firecrawl scrape failed: {response.status}")
            return await response.json()

    async def scrape(self, config: SourceConfig) -> List[RawArticle]:
        """Scrape a single source page."""
        if not self._api_key:
            raise ValueError("Firecrawl API key not configured. Set CRE_FIRECRAWL_API_KEY.")

        start_time = time.time()
        body = await self._post(build_payload(config.url))
        items = (((body or {}).get("data") or {}).get("json") or {}).get("articles") or []

        articles = [
            RawArticle(
                title=item.get("title") or "",
                link=item.get("url") or "",
                source_id=config.source_id,
                date=safe_parse_date(item.get("date")),
                image_url=sanitize_image_url(item.get("imageUrl")),
                description=item.get("description") or "",
            )
            for item in items
            if item.get("url")
        ]

        logger.info(
            "firecrawl_scraped",
            source=config.source_name,
            articles=len(articles),
            time_ms=int((time.time() - start_time) * 1000)
        )
        return articles
