"""Unit tests for LLM categorization."""

import pytest
from unittest.mock import AsyncMock

from cre_news.ingestion.interfaces import RawArticle
from cre_news.classification.categorizer import ArticleCategorizer, validate_counties
from cre_news.classification.editorial import EditorialWriter, DEFAULT_NEWSLETTER_TITLE


def make_articles(count):
    return [
        RawArticle(title=f"Headline {i}", link=f"https://news.example.com/{i}",
                   description=f"Body {i}")
        for i in range(count)
    ]


class TestRelevance:
    """Tests for check_relevance."""

    @pytest.mark.asyncio
    async def test_returns_flags(self, mock_llm):
        """Should return the model's booleans in order."""
        mock_llm.complete_json.return_value = [True, False, True]
        flags = await ArticleCategorizer(mock_llm).check_relevance(make_articles(3))
        assert flags == [True, False, True]
        _, kwargs = mock_llm.complete_json.call_args
        assert kwargs["operation"] == "check-article-relevance"

    @pytest.mark.asyncio
    async def test_pads_short_response(self, mock_llm):
        """Should treat missing flags as relevant."""
        mock_llm.complete_json.return_value = [False]
        flags = await ArticleCategorizer(mock_llm).check_relevance(make_articles(3))
        assert flags == [False, True, True]

    @pytest.mark.asyncio
    async def test_truncates_long_response(self, mock_llm):
        """Should drop extra flags."""
        mock_llm.complete_json.return_value = [False, False, False, False]
        flags = await ArticleCategorizer(mock_llm).check_relevance(make_articles(2))
        assert flags == [False, False]

    @pytest.mark.asyncio
    async def test_unwraps_object_response(self, mock_llm):
        """Should accept an object wrapping the array."""
        mock_llm.complete_json.return_value = {"results": [False, True]}
        flags = await ArticleCategorizer(mock_llm).check_relevance(make_articles(2))
        assert flags == [False, True]

    @pytest.mark.asyncio
    async def test_error_keeps_everything(self, mock_llm):
        """Should assume relevance when the call fails."""
        mock_llm.complete_json.side_effect = RuntimeError("quota exceeded")
        flags = await ArticleCategorizer(mock_llm).check_relevance(make_articles(2))
        assert flags == [True, True]

    @pytest.mark.asyncio
    async def test_no_key_keeps_everything(self, unconfigured_llm):
        """Should skip the call without an API key."""
        flags = await ArticleCategorizer(unconfigured_llm).check_relevance(make_articles(2))
        assert flags == [True, True]

    @pytest.mark.asyncio
    async def test_empty_input(self, mock_llm):
        """Should not call the model for an empty batch."""
        assert await ArticleCategorizer(mock_llm).check_relevance([]) == []
        mock_llm.complete_json.assert_not_called()


class TestCounties:
    """Tests for county categorization."""

    def test_validate_counties(self):
        """Should drop unknown names and report them."""
        validated, invalid = validate_counties([["Los Angeles", "LA County"], ["Gotham"], ["Cook"]])
        assert validated == [["Los Angeles"], ["Other"], ["Cook"]]
        assert invalid == [(0, ["LA County"]), (1, ["Gotham"])]

    @pytest.mark.asyncio
    async def test_valid_response_needs_one_call(self, mock_llm):
        """Should accept valid names without a retry."""
        mock_llm.complete_json.return_value = [["Alameda"], ["Other"]]
        counties = await ArticleCategorizer(mock_llm).get_county_categories(make_articles(2))
        assert counties == [["Alameda"], ["Other"]]
        assert mock_llm.complete_json.call_count == 1

    @pytest.mark.asyncio
    async def test_retries_invalid_names(self, mock_llm):
        """Should ask again for articles with invalid names."""
        mock_llm.complete_json.side_effect = [
            [["Alameda"], ["Santa Clara County"], ["Narnia"]],
            [["Santa Clara"], ["Narnia"]],
        ]
        counties = await ArticleCategorizer(mock_llm).get_county_categories(make_articles(3))

        assert counties == [["Alameda"], ["Santa Clara"], ["Other"]]
        assert mock_llm.complete_json.call_count == 2
        retry_prompt = mock_llm.complete_json.call_args_list[1][0][0]
        assert "Narnia, Santa Clara County" in retry_prompt
        assert "Headline 0" not in retry_prompt

    @pytest.mark.asyncio
    async def test_no_key_defaults_to_other(self, unconfigured_llm):
        """Should categorize as Other without an API key."""
        counties = await ArticleCategorizer(unconfigured_llm).get_county_categories(make_articles(2))
        assert counties == [["Other"], ["Other"]]

    @pytest.mark.asyncio
    async def test_errors_propagate(self, mock_llm):
        """Should raise so the batch is retried on the next run."""
        mock_llm.complete_json.side_effect = RuntimeError("timeout")
        with pytest.raises(RuntimeError):
            await ArticleCategorizer(mock_llm).get_county_categories(make_articles(1))


class TestCitiesAndTags:
    """Tests for city and tag categorization."""

    @pytest.mark.asyncio
    async def test_cities_padded_to_batch(self, mock_llm):
        """Should return one list per article."""
        mock_llm.complete_json.return_value = [["Oakland", " "], "Fremont"]
        cities = await ArticleCategorizer(mock_llm).get_city_categories(make_articles(3))
        assert cities == [["Oakland"], ["Fremont"], []]

    @pytest.mark.asyncio
    async def test_tags_restricted_to_vocabulary(self, mock_llm):
        """Should keep known tags only, lowercased."""
        mock_llm.complete_json.return_value = [["Multi-Family", "crypto"], ["national", "economy"]]
        tags = await ArticleCategorizer(mock_llm).get_tags(make_articles(2))
        assert tags == [["multi-family"], ["national", "economy"]]

    @pytest.mark.asyncio
    async def test_non_array_response_raises(self, mock_llm):
        """Should reject a response that is not an array."""
        mock_llm.complete_json.return_value = {"tags": []}
        with pytest.raises(ValueError):
            await ArticleCategorizer(mock_llm).get_tags(make_articles(1))


class TestEditorialWriter:
    """Tests for EditorialWriter."""

    @pytest.mark.asyncio
    async def test_generated_copy_with_fallbacks(self, mock_llm):
        """Should use generated copy where present and originals elsewhere."""
        mock_llm.complete_json.side_effect = [
            {"titles": ["Investor Buys Long Beach Apartments", ""]},
            {"descriptions": ["A 120-unit deal."]},
        ]
        titles, descriptions = await EditorialWriter(mock_llm).generate_article_copy(make_articles(2))
        assert titles == ["Investor Buys Long Beach Apartments", "Headline 1"]
        assert descriptions == ["A 120-unit deal.", "Body 1"]

    @pytest.mark.asyncio
    async def test_copy_failure_keeps_originals(self, mock_llm):
        """Should keep the original copy when the call fails."""
        mock_llm.complete_json.side_effect = RuntimeError("boom")
        titles, descriptions = await EditorialWriter(mock_llm).generate_article_copy(make_articles(1))
        assert titles == ["Headline 0"]
        assert descriptions == ["Body 0"]

    @pytest.mark.asyncio
    async def test_title_without_key(self, unconfigured_llm):
        """Should use the default title without an API key."""
        title = await EditorialWriter(unconfigured_llm).generate_newsletter_title(make_articles(2))
        assert title == DEFAULT_NEWSLETTER_TITLE
