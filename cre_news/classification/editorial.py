"""Generated titles and descriptions for social posts, plus newsletter subjects."""

from typing import List, Sequence, Tuple

import structlog

from ..llm.client import LLMClient

logger = structlog.get_logger()

DEFAULT_NEWSLETTER_TITLE = "CRE News"

TITLES_PROMPT = """You are a real estate news editor. For each LinkedIn post, generate a clear, engaging title.

LinkedIn Posts:
{posts}

Return a JSON object with a "titles" array.

Titles should be:
- Clear and concise (under 80 characters)
- Professional and engaging
- Focused on the key real estate insight or news
- Avoid clickbait or excessive punctuation

Example: {{"titles": ["San Francisco Office Market Shows Signs of Recovery", "Multifamily Development Surges in Peninsula"]}}"""

DESCRIPTIONS_PROMPT = """You are a real estate news editor. For each LinkedIn post, generate a concise description.

LinkedIn Posts:
{posts}

Return a JSON object with a "descriptions" array.

Descriptions should be:
- 1-2 sentences summarizing the key points
- Professional and informative
- Under 200 characters
- Focus on the main real estate insight or impact

Example: {{"descriptions": ["New leasing activity and tenant demand indicate a potential turnaround in the city's struggling office sector."]}}"""

NEWSLETTER_TITLE_PROMPT = """You are a newsletter editor for commercial real estate news. Based on the following top articles, create a newsletter subject line in the style of TLDR or similar news aggregators.

The format should be a comma-separated list of 3-4 concise headlines, each highlighting a key story. Keep each headline short (5-8 words max), engaging, and professional.

Articles:
{articles}

Examples of good formats:
- "San Jose Tower Secures Funding, Fight For Affordable Housing, New Presidio Apartments"
- "Palo Alto Office Market Rebounds, Peninsula Development Surge, Bay Area Rental Trends"

Return ONLY the subject line, no quotes or extra text."""


def _object_schema(key: str) -> dict:
    return {
        "type": "OBJECT",
        "properties": {key: {"type": "ARRAY", "items": {"type": "STRING"}}},
        "required": [key],
    }


class EditorialWriter:
    """Rewrites post copy and writes newsletter subject lines."""

    def __init__(self, llm_client: LLMClient = None):
        self.llm = llm_client or LLMClient()

    async def generate_article_copy(self, articles: Sequence) -> Tuple[List[str], List[str]]:
        """Return (titles, descriptions), keeping the originals on any failure."""
        original_titles = [a.title for a in articles]
        original_descriptions = [a.description or "" for a in articles]
        if not articles:
            return [], []
        if not self.llm.is_configured():
            logger.warning("llm_not_configured", step="article_copy")
            return original_titles, original_descriptions

        posts = "\n\n".join(
            f"{i}. Content: {a.description or 'No content'}" for i, a in enumerate(articles)
        )
        try:
            titles_data = await self.llm.complete_json(
                TITLES_PROMPT.format(posts=posts),
                response_schema=_object_schema("titles"),
                operation="generate-article-titles",
            )
            descriptions_data = await self.llm.complete_json(
                DESCRIPTIONS_PROMPT.format(posts=posts),
                response_schema=_object_schema("descriptions"),
                operation="generate-article-descriptions",
            )
        except Exception as e:
            logger.error("article_copy_failed", error=str(e))
            return original_titles, original_descriptions

        titles = self._merge(titles_data.get("titles") if isinstance(titles_data, dict) else None,
                             original_titles)
        descriptions = self._merge(
            descriptions_data.get("descriptions") if isinstance(descriptions_data, dict) else None,
            original_descriptions,
        )
        return titles, descriptions

    @staticmethod
    def _merge(generated, originals: List[str]) -> List[str]:
        """Take generated values where present, originals elsewhere."""
        generated = generated or []
        return [
            (generated[i].strip() if i < len(generated) and isinstance(generated[i], str)
             and generated[i].strip() else original)
            for i, original in enumerate(originals)
        ]

    async def generate_newsletter_title(self, articles: Sequence) -> str:
        """TLDR-style subject built from the top four articles."""
        if not articles or not self.llm.is_configured():
            return DEFAULT_NEWSLETTER_TITLE

        lines = []
        for i, article in enumerate(articles[:4]):
            line = f"{i + 1}. {article.title}"
            if article.description:
                line += f" - {article.description[:100]}..."
            lines.append(line)

        try:
            text = await self.llm.complete(
                NEWSLETTER_TITLE_PROMPT.format(articles="\n".join(lines)),
                max_tokens=120,
                temperature=0.7,
                operation="generate-newsletter-title",
            )
        except Exception as e:
            logger.error("newsletter_title_failed", error=str(e))
            return DEFAULT_NEWSLETTER_TITLE

        title = (text or "").strip().strip('"').strip()
        return title or DEFAULT_NEWSLETTER_TITLE
