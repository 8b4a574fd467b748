"""Unit tests for the LLM client wrapper."""

import pytest

from cre_news.config.settings import settings
from cre_news.llm.client import LLMClient, parse_json_response


class TestParseJsonResponse:
    """Tests for parse_json_response."""

    def test_plain_json(self):
        """Should parse a bare JSON array."""
        assert parse_json_response("[true, false]") == [True, False]

    def test_fenced_json(self):
        """Should strip markdown code fences."""
        assert parse_json_response('```json\n{"titles": ["A"]}\n```') == {"titles": ["A"]}

    def test_surrounding_prose(self):
        """Should extract the outermost array from prose."""
        text = 'Here are the results:\n[["Cook"], ["Other"]]\nLet me know if you need more.'
        assert parse_json_response(text) == [["Cook"], ["Other"]]

    @pytest.mark.parametrize("text", [None, "", "   ", "no json at all"])
    def test_invalid(self, text):
        """Should raise ValueError when there is no JSON."""
        with pytest.raises(ValueError):
            parse_json_response(text)


class TestLLMClient:
    """Tests for LLMClient configuration."""

    def test_explicit_key(self):
        """Should be configured with an explicit key."""
        assert LLMClient(provider="anthropic", api_key="sk-test").is_configured() is True

    def test_key_from_settings(self, monkeypatch):
        """Should read the provider key from settings."""
        monkeypatch.setattr(settings, "gemini_api_key", None)
        assert LLMClient(provider="gemini").is_configured() is False
        monkeypatch.setattr(settings, "gemini_api_key", "g-test")
        assert LLMClient(provider="gemini").is_configured() is True

    def test_unknown_provider(self):
        """Should report unconfigured for an unknown provider."""
        assert LLMClient(provider="mystery").is_configured() is False
