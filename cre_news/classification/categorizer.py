"""LLM-backed relevance, geography and tag categorization."""

from typing import List, Sequence, Tuple

import structlog

from .taxonomy import TAG_CATEGORIES, COUNTY_NAMES, VALID_COUNTIES, OTHER_COUNTY
from ..config.settings import settings
from ..llm.client import LLMClient

logger = structlog.get_logger()

_STRING_MATRIX_SCHEMA = {
    "type": "ARRAY",
    "items": {"type": "ARRAY", "items": {"type": "STRING"}},
}

RELEVANCE_PROMPT = """You are a content filter for a mid-market real estate news aggregator. This platform focuses on:
- Commercial real estate (office, retail, industrial, hospitality)
- Multifamily residential properties (apartments, condos, townhomes)
- Real estate development, construction, and zoning
- Property investment, acquisitions, sales, and financing
- Real estate market trends, analysis, and data
- Government policy and regulations affecting real estate
- Infrastructure projects affecting property values

EXCLUDE articles about:
- General news or content unrelated to real estate

For each article below, determine if it's relevant to commercial/mid-market real estate.

CRITICAL: You must return EXACTLY {count} boolean values in a JSON array, one for each article in order (true = relevant, false = not relevant).

Articles:
{articles}

Return a JSON array of exactly {count} booleans, e.g. [true, false, true, true, ...] with exactly {count} elements."""

COUNTY_PROMPT = """You are a real estate news categorizer. For each article, determine which US counties it relates to.

Available counties: {counties}

For each article you will see:
- Title and description
- Previous county categorization (if any)
- A validator reason explaining why the previous categorization might be incorrect (if available)

You MUST use this context to improve the county categorization.

Articles:
{articles}

Return a JSON array where each element is an array of county names for the corresponding article. Use "Other" for articles not specific to any particular county.

Example: [["Los Angeles"], ["Other"], ["San Francisco", "Alameda"]]"""

COUNTY_RETRY_PROMPT = """You are a real estate news categorizer. For each article below, determine which US counties it relates to.

Available counties (you MUST use exact names from this list): {counties}

IMPORTANT: The previous attempt returned invalid county names: {invalid}. These are NOT valid. You must map these to the correct county names from the available list above.

Articles:
{articles}

Return a JSON array where each element is an array of county names for the corresponding article. Use "Other" for articles not specific to any particular county.

CRITICAL: Only return county names that exactly match the available counties list. If unsure, use "Other".

Example: [["Los Angeles"], ["Other"], ["San Francisco", "Alameda"]]"""

CITY_PROMPT = """You are a real estate news categorizer. For each article, identify specific US cities mentioned.

For each article you will see:
- Title and description
- Previous city categorization (if any)
- Previous county categorization (if any)
- A validator reason explaining why the previous categorization might be incorrect (if available)

You MUST use this context to improve the city categorization.

Articles:
{articles}

Only include cities that are explicitly mentioned in the article. Use standard city names (e.g., "New York" not "NYC", "Los Angeles" not "LA").

Examples of major US cities to look for:
- New York Metro: New York, Brooklyn, Queens, Bronx, Manhattan
- Los Angeles Metro: Los Angeles, Long Beach, Anaheim, Santa Ana, Irvine
- Chicago Metro: Chicago, Aurora, Naperville, Joliet, Elgin
- Dallas Metro: Dallas, Fort Worth, Arlington, Plano, Garland
- Houston Metro: Houston, Sugar Land, The Woodlands, Pearland, Baytown

Return a JSON array where each element is an array of city names for the corresponding article. Leave empty if no specific city is mentioned.

Example: [["New York", "Brooklyn"], [], ["Los Angeles", "Santa Monica"]]"""

TAG_PROMPT = """You are a real estate news categorizer. For each article, assign relevant tags from these categories:

{categories}

Articles:
{articles}

Return a JSON array where each element is an array of relevant tags for the corresponding article. Choose the most relevant tags from the categories above.

Example: [["multi-family", "development"], ["financing", "investment"], ["economy", "national"]]"""


def _join_or_none(values) -> str:
    return ", ".join(values) if values else "None"


def _format_basic(articles: Sequence) -> str:
    return "\n\n".join(
        f"{i}. Title: {a.title}\n   Description: {a.description or 'No description'}"
        for i, a in enumerate(articles)
    )


def _format_with_context(articles: Sequence, include_cities: bool = False) -> str:
    blocks = []
    for i, a in enumerate(articles):
        lines = [
            f"{i}. Title: {a.title}",
            f"   Description: {a.description or 'No description'}",
        ]
        if include_cities:
            lines.append(f"   Previous Cities: {_join_or_none(getattr(a, 'cities', None))}")
        lines.append(f"   Previous Counties: {_join_or_none(getattr(a, 'counties', None))}")
        lines.append(f"   Validator Reason: {getattr(a, 'reason', None) or 'None'}")
        blocks.append("\n".join(lines))
    return "\n\n".join(blocks)


def _as_string_lists(data, count: int) -> List[List[str]]:
    """Coerce a model response into `count` lists of strings."""
    if not isinstance(data, list):
        raise ValueError(f"Expected a JSON array, got {type(data).__name__}")
    result = []
    for i in range(count):
        item = data[i] if i < len(data) else []
        if isinstance(item, str):
            item = [item]
        result.append([str(v).strip() for v in (item or []) if str(v).strip()])
    return result


def validate_counties(categories: List[List[str]]) -> Tuple[List[List[str]], List[Tuple[int, List[str]]]]:
    """Drop unknown county names.

    Returns the cleaned lists (an emptied list becomes ["Other"]) and
    the (index, invalid_names) pairs that need a second pass.
    """
    validated = []
    invalid = []
    for index, names in enumerate(categories):
        valid_names = [n for n in names if n in VALID_COUNTIES]
        bad_names = [n for n in names if n not in VALID_COUNTIES]
        if bad_names:
            invalid.append((index, bad_names))
        validated.append(valid_names or [OTHER_COUNTY])
    return validated, invalid


class ArticleCategorizer:
    """Categorizes articles by relevance, county, city and tag."""

    def __init__(self, llm_client: LLMClient = None, model: str = None):
        self.llm = llm_client or LLMClient()
        self.model = model or settings.llm_categorization_model

    async def check_relevance(self, articles: Sequence) -> List[bool]:
        """One flag per article. Failures count as relevant."""
        if not articles:
            return []
        if not self.llm.is_configured():
            logger.warning("llm_not_configured", step="relevance", assumed="relevant")
            return [True] * len(articles)

        prompt = RELEVANCE_PROMPT.format(count=len(articles), articles=_format_basic(articles))
        try:
            data = await self.llm.complete_json(
                prompt,
                model=self.model,
                response_schema={"type": "ARRAY", "items": {"type": "BOOLEAN"}},
                operation="check-article-relevance",
            )
        except Exception as e:
            logger.error("relevance_check_failed", error=str(e), articles=len(articles))
            return [True] * len(articles)

        if isinstance(data, dict):
            data = next((v for v in data.values() if isinstance(v, list)), None)
        if not isinstance(data, list):
            logger.warning("relevance_response_not_array")
            return [True] * len(articles)

        flags = [bool(v) for v in data]
        if len(flags) != len(articles):
            logger.warning("relevance_length_mismatch", returned=len(flags), expected=len(articles))
        flags = flags[:len(articles)]
        flags.extend([True] * (len(articles) - len(flags)))
        return flags

    async def get_county_categories(self, articles: Sequence) -> List[List[str]]:
        """County names per article, restricted to the known county list."""
        if not articles:
            return []
        if not self.llm.is_configured():
            logger.warning("llm_not_configured", step="counties")
            return [[OTHER_COUNTY] for _ in articles]

        county_list = ", ".join(COUNTY_NAMES)
        data = await self.llm.complete_json(
            COUNTY_PROMPT.format(counties=county_list, articles=_format_with_context(articles)),
            model=self.model,
            response_schema=_STRING_MATRIX_SCHEMA,
            operation="categorize-counties",
        )
        validated, invalid = validate_counties(_as_string_lists(data, len(articles)))

        if invalid:
            logger.info("county_retry", articles=len(invalid))
            retry_articles = [articles[index] for index, _ in invalid]
            invalid_names = sorted({name for _, names in invalid for name in names})
            retry_data = await self.llm.complete_json(
                COUNTY_RETRY_PROMPT.format(
                    counties=county_list,
                    invalid=", ".join(invalid_names),
                    articles=_format_basic(retry_articles),
                ),
                model=self.model,
                response_schema=_STRING_MATRIX_SCHEMA,
                operation="categorize-counties-retry",
            )
            retried, _ = validate_counties(_as_string_lists(retry_data, len(retry_articles)))
            for (index, _), names in zip(invalid, retried):
                validated[index] = names or [OTHER_COUNTY]

        return validated

    async def get_city_categories(self, articles: Sequence) -> List[List[str]]:
        """City names per article. Uses any counties already on the article as context."""
        if not articles:
            return []
        if not self.llm.is_configured():
            logger.warning("llm_not_configured", step="cities")
            return [[] for _ in articles]

        data = await self.llm.complete_json(
            CITY_PROMPT.format(articles=_format_with_context(articles, include_cities=True)),
            model=self.model,
            response_schema=_STRING_MATRIX_SCHEMA,
            operation="categorize-cities",
        )
        return _as_string_lists(data, len(articles))

    async def get_tags(self, articles: Sequence) -> List[List[str]]:
        """Tags per article, limited to TAG_CATEGORIES."""
        if not articles:
            return []
        if not self.llm.is_configured():
            logger.warning("llm_not_configured", step="tags")
            return [[] for _ in articles]

        categories = "\n".join(f"{name}: {desc}" for name, desc in TAG_CATEGORIES.items())
        data = await self.llm.complete_json(
            TAG_PROMPT.format(categories=categories, articles=_format_basic(articles)),
            model=self.model,
            response_schema=_STRING_MATRIX_SCHEMA,
            operation="tag-articles",
        )
        return [
            [tag.lower() for tag in tags if tag.lower() in TAG_CATEGORIES]
            for tags in _as_string_lists(data, len(articles))
        ]
