"""RSS feed fetcher with async support and retries."""

import asyncio
import time
from datetime import datetime
from typing import List, Optional

import aiohttp
import feedparser
from bs4 import BeautifulSoup
from tenacity import retry, stop_after_attempt, wait_exponential
import structlog

from .interfaces import SourceConfig, SourceType, RawArticle, ScraperInterface
from .utils import sanitize_image_url, strip_html, utcnow, dedupe_by_link
from ..config.settings import settings

logger = structlog.get_logger()


class RSSFetcher(ScraperInterface):
    """Async RSS fetcher that maps feed entries to articles."""

    def __init__(self):
        self.session: Optional[aiohttp.ClientSession] = None
        self.semaphore = asyncio.Semaphore(5)  # Max concurrent fetches

    async def __aenter__(self):
        self.session = aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=settings.fetch_timeout_seconds),
            headers={"User-Agent": "CRENewsBot/1.0"}
        )
        return self

    async def __aexit__(self, *args):
        if self.session:
            await self.session.close()

    async def scrape(self, config: SourceConfig) -> List[RawArticle]:
        return await self.fetch_source(config)

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        reraise=True
    )
    async def fetch_source(self, config: SourceConfig) -> List[RawArticle]:
        """Fetch and parse a single feed."""
        async with self.semaphore:
            start_time = time.time()
            async with self.session.get(config.url) as response:
                response.raise_for_status()
                content = await response.text()

        feed = feedparser.parse(content)
        articles = []
        for entry in feed.entries:
            article = self._parse_entry(entry, config)
            if article:
                articles.append(article)

        missing = [a for a in articles if not a.image_url]
        if missing:
            images = await asyncio.gather(*[self._fetch_og_image(a.link) for a in missing])
            for article, image in zip(missing, images):
                article.image_url = image

        logger.info(
            "feed_fetched",
            source=config.source_name,
            articles=len(articles),
            time_ms=int((time.time() - start_time) * 1000)
        )
        return articles

    async def fetch_all(self, configs: List[SourceConfig]) -> List[RawArticle]:
        """Fetch from all enabled RSS sources concurrently."""
        enabled = [c for c in configs
                   if not c.disabled and c.source_type == SourceType.RSS]

        results = await asyncio.gather(
            *[self.fetch_source(c) for c in enabled],
            return_exceptions=True
        )

        all_articles = []
        for config, result in zip(enabled, results):
            if isinstance(result, Exception):
                logger.warning("feed_fetch_failed", source=config.source_name, error=str(result))
                continue
            all_articles.extend(result)

        unique = dedupe_by_link(all_articles)
        logger.info("all_feeds_fetched", total=len(unique), sources=len(enabled))
        return unique

    def _parse_entry(self, entry, config: SourceConfig) -> Optional[RawArticle]:
        """Parse a feed entry into a RawArticle."""
        link = entry.get("link")
        if not link:
            return None

        return RawArticle(
            title=strip_html(entry.get("title", "")),
            link=link,
            source_id=config.source_id,
            date=self._entry_date(entry),
            image_url=sanitize_image_url(self._entry_image(entry)),
            description=self._entry_description(entry),
        )

    @staticmethod
    def _entry_date(entry) -> datetime:
        for attr in ("published_parsed", "updated_parsed"):
            parsed = entry.get(attr)
            if parsed:
                try:
                    return datetime(*parsed[:6])
                except (TypeError, ValueError):
                    continue
        return utcnow()

    @staticmethod
    def _entry_description(entry) -> str:
        candidates = []
        if entry.get("content"):
            candidates.append(entry.content[0].get("value", ""))
        candidates.append(entry.get("summary", ""))
        candidates.append(entry.get("description", ""))
        for candidate in candidates:
            text = strip_html(candidate)
            if text:
                return text
        return ""

    @staticmethod
    def _entry_image(entry) -> Optional[str]:
        """Pick an image: media:content, enclosure, media:thumbnail, then inline <img>."""
        for media in entry.get("media_content", []) or []:
            medium = media.get("medium", "")
            mime = media.get("type", "")
            if media.get("url") and (medium == "image" or mime.startswith("image/")):
                return media["url"]

        for enclosure in entry.get("enclosures", []) or []:
            if enclosure.get("href") and enclosure.get("type", "").startswith("image/"):
                return enclosure["href"]

        for thumbnail in entry.get("media_thumbnail", []) or []:
            if thumbnail.get("url"):
                return thumbnail["url"]

        html = ""
        if entry.get("content"):
            html = entry.content[0].get("value", "")
        html = html or entry.get("summary", "")
        if "<img" in html:
            img = BeautifulSoup(html, "html.parser").find("img", src=True)
            if img:
                return img["src"]
        return None

    async def _fetch_og_image(self, url: str) -> str:
        """Read og:image from the article page. Failures yield an empty string."""
        try:
            async with self.semaphore:
                async with self.session.get(
                    url,
                    timeout=aiohttp.ClientTimeout(total=settings.og_image_timeout_seconds)
                ) as response:
                    if response.status != 200:
                        return ""
                    page = await response.text(errors="replace")
        except (aiohttp.ClientError, asyncio.TimeoutError, UnicodeDecodeError, ValueError) as e:
            logger.debug("og_image_fetch_failed", url=url[:80], error=str(e))
            return ""

        tag = BeautifulSoup(page, "html.parser").find("meta", property="og:image")
        if tag and tag.get("content"):
            return sanitize_image_url(tag["content"])
        return ""
