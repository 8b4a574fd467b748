"""Unit tests for newsletter rendering."""

from datetime import datetime

from cre_news.ingestion.interfaces import Article
from cre_news.newsletter.renderer import (
    NewsletterRenderer, NO_ARTICLES_HTML, format_interests, format_article_date, truncate
)


def make_article(**overrides):
    values = dict(
        id=1,
        title="Tower <Sold> & Refinanced",
        link="https://news.example.com/tower?a=1&b=2",
        source="GlobeSt",
        date=datetime(2025, 3, 7, 12, 0),
        description="An office tower changed hands.",
        tags=["office", "investment"],
        counties=["San Francisco"],
        cities=["San Francisco"],
    )
    values.update(overrides)
    return Article(**values)


class TestHelpers:
    """Tests for formatting helpers."""

    def test_format_interests_joins_json_array(self):
        """Should join a JSON array of statements with spaces."""
        assert format_interests('["Office deals.", "Bay Area only."]') == "Office deals. Bay Area only."

    def test_format_interests_keeps_plain_text(self):
        """Should leave plain text untouched."""
        assert format_interests("Industrial in Texas") == "Industrial in Texas"
        assert format_interests("") == ""

    def test_format_article_date(self):
        """Should render 'Mon D, YYYY'."""
        assert format_article_date(datetime(2025, 3, 7)) == "Mar 7, 2025"
        assert format_article_date(None) == ""

    def test_truncate(self):
        """Should cut long text at 400 characters with an ellipsis."""
        assert truncate("short") == "short"
        long_text = "x" * 450
        assert truncate(long_text) == "x" * 400 + "..."
        assert truncate("x" * 400) == "x" * 400


class TestNewsletterRenderer:
    """Tests for NewsletterRenderer."""

    def test_empty_content(self):
        """Should render a placeholder when there are no articles."""
        assert NewsletterRenderer().render_content([], []) == NO_ARTICLES_HTML

    def test_sections_and_escaping(self):
        """Should render both sections with escaped titles and links."""
        renderer = NewsletterRenderer("https://app.example.com/")
        html = renderer.render_content([make_article()], [make_article(id=2, rationale="Matches office focus")])

        assert "National" in html and "Local" in html
        assert "Tower &lt;Sold&gt; &amp; Refinanced" in html
        assert 'href="https://news.example.com/tower?a=1&amp;b=2"' in html
        assert "Mar 7, 2025 | GlobeSt" in html
        assert "County: San Francisco" in html
        assert "City: San Francisco" in html
        assert "Why this article:" in html

    def test_omits_empty_section(self):
        """Should skip a section without articles."""
        html = NewsletterRenderer().render_content([], [make_article()])
        assert "National" not in html
        assert "Local" in html

    def test_email_wraps_content(self):
        """Should include interests, regions and the unsubscribe link."""
        renderer = NewsletterRenderer("https://app.example.com")
        html = renderer.render_email(
            "<p>body</p>",
            unsubscribe_url="https://app.example.com/api/news/unsubscribe?email=a%40b.com",
            interests='["Office deals."]',
            locations="San Francisco",
            title="Weekly",
        )
        assert "<p>body</p>" in html
        assert "Your interests:</strong> Office deals." in html
        assert "Your regions:</strong> San Francisco" in html
        assert "unsubscribe?email=a%40b.com" in html
        assert "https://app.example.com/news/settings" in html

    def test_email_without_interests_invites_setup(self):
        """Should prompt the reader to add interests."""
        html = NewsletterRenderer().render_email("<p>body</p>", unsubscribe_url="https://x/u")
        assert "Add your interests here" in html

    def test_text_version(self):
        """Should list articles in plain text."""
        text = NewsletterRenderer().render_text(
            [], [make_article(rationale="Office focus")], first_name="Dana",
            unsubscribe_url="https://x/u", locations="San Francisco",
        )
        assert text.startswith("Your Weekly CRE News")
        assert "Hello Dana!" in text
        assert "LOCAL" in text
        assert "Why this article: Office focus" in text
        assert "Unsubscribe: https://x/u" in text
