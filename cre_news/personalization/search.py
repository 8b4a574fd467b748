"""LLM-ranked search over recent articles."""

from typing import List, Sequence

import structlog

from .interest_filter import format_articles
from ..config.settings import settings
from ..ingestion.interfaces import Article
from ..llm.client import LLMClient

logger = structlog.get_logger()

SEARCH_PROMPT = """You are a real estate news search engine. A user is searching for: "{query}"

Given the following articles, select the TOP {limit} MOST RELEVANT articles that match their search query. Consider relevance to the search terms, recency, and quality of content. Return ONLY the article indices (0-based) in order of relevance.

Articles:
{articles}

Return a JSON array of indices, e.g. [3, 7, 1, 9, 2, 5, 8, 4, 6, 0]"""


class ArticleSearch:

    def __init__(self, llm_client: LLMClient = None, limit: int = None):
        self.llm = llm_client or LLMClient()
        self.limit = limit or settings.max_search_results

    async def search(self, articles: Sequence[Article], query: str) -> List[Article]:
        """Most relevant articles first; falls back to the given order."""
        articles = list(articles)
        if not articles:
            return articles
        if not self.llm.is_configured():
            logger.warning("llm_not_configured", step="search")
            return articles[:self.limit]

        try:
            indices = await self.llm.complete_json(
                SEARCH_PROMPT.format(query=query, limit=self.limit, articles=format_articles(articles)),
                response_schema={"type": "ARRAY", "items": {"type": "INTEGER"}},
                operation="search-articles",
            )
            if not isinstance(indices, list):
                raise ValueError("Expected a JSON array of indices")
        except Exception as e:
            logger.error("article_search_failed", query=query, error=str(e))
            return articles[:self.limit]

        seen = set()
        results = []
        for index in indices:
            if isinstance(index, int) and not isinstance(index, bool) \
                    and 0 <= index < len(articles) and index not in seen:
                seen.add(index)
                results.append(articles[index])
        logger.info("article_search_completed", query=query, results=len(results[:self.limit]))
        return results[:self.limit]
