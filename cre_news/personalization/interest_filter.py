"""Narrow article lists to a subscriber's stated interests."""

from dataclasses import replace
from typing import List, Sequence

import structlog

from ..config.settings import settings
from ..ingestion.interfaces import Article
from ..llm.client import LLMClient

logger = structlog.get_logger()

SELECTION_SCHEMA = {
    "type": "ARRAY",
    "items": {
        "type": "OBJECT",
        "properties": {
            "index": {"type": "INTEGER"},
            "rationale": {"type": "STRING"},
        },
        "required": ["index", "rationale"],
    },
}

NATIONAL_PROMPT = """You are a real estate news curator. Select the {max_articles} most relevant articles for a subscriber with these interests:

"{interests}"

Articles:
{articles}

Return a JSON array of objects with "index" (0-based article index) and "rationale" (brief explanation of why this article is relevant).
Select up to {max_articles} articles that best match the subscriber's interests. Prioritize articles from LinkedIn sources when multiple articles cover similar topics.

Example: [{{"index": 0, "rationale": "Discusses multifamily investment trends relevant to subscriber's interest in apartment acquisitions"}}]"""

LOCAL_PROMPT = """You are a real estate news curator. Select the {max_articles} most relevant LOCAL articles for a subscriber with these interests:

"{interests}"

Subscriber's preferred counties: {counties}
Subscriber's preferred cities: {cities}

Articles:
{articles}

Return a JSON array of objects with "index" (0-based article index) and "rationale" (brief explanation of why this article is relevant).
Select up to {max_articles} articles that best match:
1. The subscriber's geographic preferences (counties/cities)
2. The subscriber's stated interests

Example: [{{"index": 1, "rationale": "Covers development in San Francisco which matches subscriber's county preference"}}]"""


def _none_if_empty(values) -> str:
    return ", ".join(values) if values else "none"


def format_articles(articles: Sequence[Article]) -> str:
    return "\n\n".join(
        f"{i}. Title: {a.title}\n"
        f"   Description: {a.description or 'No description'}\n"
        f"   Source: {a.source}\n"
        f"   Date: {a.date.isoformat() if a.date else 'unknown'}\n"
        f"   Tags: {_none_if_empty(a.tags)}\n"
        f"   Counties: {_none_if_empty(a.counties)}\n"
        f"   Cities: {_none_if_empty(a.cities)}"
        for i, a in enumerate(articles)
    )


class InterestFilter:
    """Uses the LLM to pick the articles that best match free-text interests."""

    def __init__(self, llm_client: LLMClient = None, model: str = None):
        self.llm = llm_client or LLMClient()
        self.model = model or settings.llm_categorization_model

    async def filter_national(self, articles: List[Article], interests: str,
                              max_articles: int) -> List[Article]:
        prompt = NATIONAL_PROMPT.format(
            max_articles=max_articles,
            interests=interests,
            articles=format_articles(articles),
        )
        return await self._filter(articles, interests, max_articles, prompt, "filter-national-articles")

    async def filter_local(self, articles: List[Article], interests: str, max_articles: int,
                           counties: Sequence[str] = (), cities: Sequence[str] = ()) -> List[Article]:
        prompt = LOCAL_PROMPT.format(
            max_articles=max_articles,
            interests=interests,
            counties=", ".join(counties) or "all",
            cities=", ".join(cities) or "all",
            articles=format_articles(articles),
        )
        return await self._filter(articles, interests, max_articles, prompt, "filter-local-articles")

    async def _filter(self, articles: List[Article], interests: str, max_articles: int,
                      prompt: str, operation: str) -> List[Article]:
        if not interests or not interests.strip():
            return articles
        if not self.llm.is_configured():
            logger.warning("llm_not_configured", step=operation)
            return articles

        try:
            selected = await self.llm.complete_json(
                prompt,
                model=self.model,
                response_schema=SELECTION_SCHEMA,
                operation=operation,
            )
            if not isinstance(selected, list):
                raise ValueError("Expected a JSON array of selections")

            result = []
            for item in selected:
                index = item.get("index") if isinstance(item, dict) else None
                if isinstance(index, bool) or not isinstance(index, int):
                    continue
                if 0 <= index < len(articles):
                    result.append(replace(articles[index], rationale=item.get("rationale")))
                if len(result) >= max_articles:
                    break
        except Exception as e:
            logger.error("interest_filter_failed", operation=operation, error=str(e))
            return articles[:max_articles]

        logger.info("interest_filter_selected", operation=operation,
                    selected=len(result), candidates=len(articles))
        return result
