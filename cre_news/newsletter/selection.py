"""Pick the national and local articles for a subscriber."""

from datetime import datetime, timedelta
from typing import List, Optional, Sequence, Tuple

import structlog

from .interfaces import NewsletterSelection
from ..classification.taxonomy import NATIONAL_TAGS
from ..config.settings import settings
from ..ingestion.interfaces import Article
from ..ingestion.utils import filter_recent, utcnow
from ..personalization.interest_filter import InterestFilter

logger = structlog.get_logger()


def is_national(article: Article) -> bool:
    return article.is_national and bool(NATIONAL_TAGS.intersection(article.tags or []))


def matches_location(article: Article, counties: Sequence[str], cities: Sequence[str]) -> bool:
    """True when no location is selected or any selected county/city matches."""
    if not counties and not cities:
        return True
    return (any(c in (article.counties or []) for c in counties)
            or any(c in (article.cities or []) for c in cities))


def split_national_local(
    articles: Sequence[Article],
    counties: Optional[Sequence[str]] = None,
    cities: Optional[Sequence[str]] = None
) -> Tuple[List[Article], List[Article]]:
    """Split into (national, local). An article may land in both."""
    counties = list(counties or [])
    cities = list(cities or [])
    national = [a for a in articles if is_national(a)]
    local = [a for a in articles if matches_location(a, counties, cities)]
    return national, local


class ArticleSelector:
    """Loads recent categorized articles and narrows them per subscriber."""

    def __init__(self, storage, interest_filter: InterestFilter = None):
        self.storage = storage
        self.interest_filter = interest_filter or InterestFilter()

    async def select(
        self,
        counties: Sequence[str] = (),
        cities: Sequence[str] = (),
        interests: str = "",
        now: datetime = None
    ) -> NewsletterSelection:
        now = now or utcnow()
        days = settings.article_lookback_days
        try:
            articles = self.storage.get_recent_articles(since=now - timedelta(days=days), until=now)
        except Exception as e:
            logger.error("article_fetch_failed", error=str(e))
            return NewsletterSelection()

        articles = filter_recent(articles, days=days, now=now)
        national, local = split_national_local(articles, counties, cities)

        max_national = settings.max_national_articles
        max_local = settings.max_local_articles
        if interests and interests.strip():
            if national:
                national = await self.interest_filter.filter_national(national, interests, max_national)
            if local:
                local = await self.interest_filter.filter_local(
                    local, interests, max_local, counties=list(counties), cities=list(cities)
                )

        # The interest filter passes everything through when the LLM is unavailable
        national = national[:max_national]
        local = local[:max_local]

        logger.info("articles_selected", candidates=len(articles),
                    national=len(national), local=len(local))
        return NewsletterSelection(national=national, local=local)
