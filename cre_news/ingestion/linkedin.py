"""LinkedIn post scraping through an Apify actor."""

import json
import time
from datetime import datetime, timedelta
from typing import List, Optional

import aiohttp
from tenacity import retry, stop_after_attempt, wait_exponential
import structlog

from .interfaces import SourceConfig, SourceType, RawArticle, ScraperInterface
from .utils import parse_relative_age, safe_parse_date, sanitize_image_url, utcnow, dedupe_by_link
from ..classification.categorizer import ArticleCategorizer
from ..classification.editorial import EditorialWriter
from ..config.settings import settings

logger = structlog.get_logger()

APIFY_RUN_URL = "https://api.apify.com/v2/acts/{actor}/run-sync-get-dataset-items"
LINKEDIN_TAGS = ["linkedin", "social-media"]
USER_AGENT = ("Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
              "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36")


def parse_post_date(time_since_posted: Optional[str], published_at: Optional[str],
                    now: datetime = None) -> datetime:
    """Date of a post from its relative age, its timestamp, or one day ago."""
    now = now or utcnow()
    fallback = now - timedelta(days=1)
    if time_since_posted:
        return parse_relative_age(time_since_posted, now) or fallback
    if published_at:
        return safe_parse_date(published_at, default=fallback)
    return fallback


def post_author(item: dict) -> str:
    author = item.get("author")
    if isinstance(author, str) and author.strip():
        return author.strip()
    if isinstance(author, dict) and author.get("firstName") and author.get("lastName"):
        return f"{author['firstName']} {author['lastName']}"
    return "LinkedIn"


def post_to_article(item: dict) -> Optional[RawArticle]:
    """Map an actor dataset item to a RawArticle; None for unusable posts."""
    text = item.get("text") or ""
    if not item.get("url") or not (item.get("title") or text):
        return None

    title = item.get("title") or f"{text[:100]}..."
    description = text or item.get("title") or ""
    return RawArticle(
        title=title[:200],
        link=item["url"],
        source_id=post_author(item),
        date=parse_post_date(item.get("timeSincePosted"), item.get("publishedAt")),
        image_url=sanitize_image_url(item.get("imageUrl")),
        description=description[:500],
    )


class LinkedInScraper(ScraperInterface):
    """Runs the profile-posts actor and categorizes posts at ingest time."""

    def __init__(
        self,
        categorizer: ArticleCategorizer = None,
        editor: EditorialWriter = None,
        api_token: str = None
    ):
        self.categorizer = categorizer or ArticleCategorizer()
        self.editor = editor or EditorialWriter(self.categorizer.llm)
        self._api_token = api_token or settings.apify_api_token

    def _actor_input(self, urls: List[str]) -> dict:
        if not settings.linkedin_cookies:
            raise ValueError("LinkedIn cookies not configured. Set CRE_LINKEDIN_COOKIES.")
        try:
            cookies = json.loads(settings.linkedin_cookies)
        except json.JSONDecodeError as e:
            raise ValueError(f"Failed to parse LinkedIn cookies: {e}") from e

        return {
            "urls": urls,
            "deepScrape": True,
            "rawData": False,
            "minDelay": 2,
            "maxDelay": 8,
            "limitPerSource": settings.linkedin_posts_per_source,
            "cookie": cookies,
            "userAgent": USER_AGENT,
            "proxy": {"useApifyProxy": True, "apifyProxyCountry": "US"},
        }

    @retry(
        stop=stop_after_attempt(2),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True
    )
    async def _run_actor(self, actor_input: dict) -> List[dict]:
        url = APIFY_RUN_URL.format(actor=settings.apify_linkedin_actor)
        async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=600)) as session:
            async with session.post(url, params={"token": self._api_token}, json=actor_input) as response:
                response.raise_for_status()
                items = await response.json()
        return items if isinstance(items, list) else []

    async def scrape(self, config: SourceConfig) -> List[RawArticle]:
        return await self.scrape_profiles([config])

    async def scrape_profiles(self, configs: List[SourceConfig]) -> List[RawArticle]:
        """Scrape every enabled LinkedIn profile in one actor run."""
        profiles = [c for c in configs
                    if not c.disabled and c.source_type == SourceType.LINKEDIN and c.url]
        if not profiles:
            logger.warning("no_linkedin_profiles")
            return []
        if not self._api_token:
            raise ValueError("Apify token not configured. Set CRE_APIFY_API_TOKEN.")

        start_time = time.time()
        items = await self._run_actor(self._actor_input([p.url for p in profiles]))
        articles = dedupe_by_link([a for a in (post_to_article(i) for i in items or []) if a])
        logger.info("linkedin_posts_fetched", items=len(items), articles=len(articles))

        await self._categorize(articles)
        logger.info(
            "linkedin_scraped",
            profiles=len(profiles),
            articles=len(articles),
            time_ms=int((time.time() - start_time) * 1000)
        )
        return articles

    async def _categorize(self, articles: List[RawArticle]) -> None:
        """Rewrite copy and attach categories in place."""
        if not articles:
            return
        titles, descriptions = await self.editor.generate_article_copy(articles)
        counties = await self.categorizer.get_county_categories(articles)
        cities = await self.categorizer.get_city_categories(articles)
        tags = await self.categorizer.get_tags(articles)

        for i, article in enumerate(articles):
            article.title = titles[i] or article.title
            article.description = descriptions[i] or article.description
            article.counties = counties[i] if i < len(counties) else ["Other"]
            article.cities = cities[i] if i < len(cities) else []
            article.tags = list(dict.fromkeys((tags[i] if i < len(tags) else []) + LINKEDIN_TAGS))
            article.is_categorized = True
