"""HTML and plain-text rendering of personalized newsletters."""

import json
from datetime import datetime
from html import escape
from typing import List, Optional, Sequence

import structlog

from ..config.settings import settings
from ..ingestion.interfaces import Article

logger = structlog.get_logger()

NO_ARTICLES_HTML = "<p>No new articles available.</p>"
DESCRIPTION_LIMIT = 400

_SECTION_HEADER_STYLE = ("font-size: 20px; font-weight: bold; color: #2c3e50; margin: 30px 0 15px 0; "
                         "padding-bottom: 10px; border-bottom: 2px solid #2c3e50;")
_TAG_STYLE = ("display:inline-block;margin-right:6px;margin-top:6px;padding:2px 8px;border-radius:9999px;"
              "background:#fff3e8;color:#9a3412;border:1px solid #ffddb8;font-size:11px;")
_GEO_STYLE = ("display:inline-block;margin-right:6px;margin-top:6px;padding:2px 8px;border-radius:9999px;"
              "background:#e0f2fe;color:#0c4a6e;border:1px solid #bae6fd;font-size:11px;")
_RATIONALE_STYLE = ("font-size: 11px; color: #888; font-style: italic; margin: 4px 0 0 0; padding: 4px; "
                    "background-color: #f5f5f5; border-left: 3px solid #ccc;")


def format_interests(interests: Optional[str]) -> str:
    """Interests stored as a JSON array of statements are joined with spaces."""
    if not interests:
        return ""
    try:
        parsed = json.loads(interests)
    except (json.JSONDecodeError, TypeError):
        return interests
    if isinstance(parsed, list):
        return " ".join(str(item) for item in parsed)
    return interests


def format_article_date(value: Optional[datetime]) -> str:
    """'Mar 7, 2025' style date."""
    if value is None:
        return ""
    return f"{value:%b} {value.day}, {value.year}"


def truncate(text: str, limit: int = DESCRIPTION_LIMIT) -> str:
    text = text or ""
    return text[:limit] + ("..." if len(text) > limit else "")


class NewsletterRenderer:
    """Renders article sections and the surrounding email."""

    def __init__(self, base_url: str = None):
        self.base_url = (base_url or settings.public_base_url).rstrip("/")

    @property
    def settings_url(self) -> str:
        return f"{self.base_url}/news/settings"

    def render_article(self, article: Article) -> str:
        tags_html = ""
        if article.tags:
            pills = "".join(f'<span style="{_TAG_STYLE}">{escape(t)}</span>' for t in article.tags)
            tags_html = f'<p class="article-tags" style="margin: 6px 0 0 0;">{pills}</p>'

        geo = [f"County: {c}" for c in article.counties or []] + \
              [f"City: {c}" for c in article.cities or []]
        geo_html = ""
        if geo:
            pills = "".join(f'<span style="{_GEO_STYLE}">{escape(t)}</span>' for t in geo)
            geo_html = f'<p class="article-geographic-tags" style="margin: 6px 0 0 0;">{pills}</p>'

        rationale_html = ""
        if article.rationale:
            rationale_html = (f'<p class="article-rationale" style="{_RATIONALE_STYLE}">'
                              f'<strong>Why this article:</strong> {escape(article.rationale)}</p>')

        return f"""
      <div class="article">
        <h3><a href="{escape(article.link, quote=True)}" target="_blank">{escape(article.title)}</a></h3>
        <p>{escape(truncate(article.description))}</p>
        <p class="article-meta" style="font-size: 12px; color: #666; margin: 5px 0 0 0;">
          {format_article_date(article.date)} | {escape(article.source)}
        </p>
        {tags_html}
        {geo_html}
        {rationale_html}
      </div>
    """

    def render_content(self, national: Sequence[Article], local: Sequence[Article]) -> str:
        """Article sections for the email body."""
        if not national and not local:
            logger.info("newsletter_content_empty")
            return NO_ARTICLES_HTML

        content = ""
        for title, articles in (("National", national), ("Local", local)):
            if not articles:
                continue
            content += f'<div class="section-header" style="{_SECTION_HEADER_STYLE}">{title}</div>'
            content += "".join(self.render_article(a) for a in articles)
        return content

    def render_email(self, content: str, unsubscribe_url: str, interests: str = "",
                     locations: str = "", title: str = "CRE News") -> str:
        """Complete HTML document around rendered content."""
        formatted_interests = format_interests(interests)
        if formatted_interests:
            interests_html = f"""
    <div class="interests-section">
        <p><strong>Your interests:</strong> {escape(formatted_interests)}</p>
    </div>"""
        else:
            interests_html = f"""
    <div class="interests-section">
        <p style="font-size: 12px; color: #666;">
            Want more personalized content?
            <a href="{self.settings_url}" style="color: #666; text-decoration: underline;">Add your interests here</a> to get articles tailored to your preferences.
        </p>
    </div>"""

        regions_html = ""
        if locations:
            regions_html = f"""
    <div class="interests-section">
        <p><strong>Your regions:</strong> {escape(locations)}</p>
    </div>"""

        return f"""<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>{escape(title)}</title>
    <style>
        body {{ font-family: Arial, sans-serif; line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto; padding: 20px; }}
        .content {{ background-color: #fff; padding: 20px; }}
        .article {{ margin-bottom: 20px; padding-bottom: 20px; }}
        .article h3 {{ margin: 0 0 10px 0; color: #2c3e50; font-size: 16px; font-weight: bold; }}
        .article h3 a {{ color: #000; text-decoration: underline; }}
        .article p {{ margin: 0; color: #000; }}
        .footer {{ margin-top: 30px; padding-top: 20px; border-top: 1px solid #eee; text-align: center; color: #666; font-size: 12px; }}
        .footer a {{ color: #666; }}
        .interests-section {{ margin-bottom: 20px; text-align: center; }}
        .interests-section p {{ margin: 0; color: #000; }}
    </style>
</head>
<body>
    <div class="content">
        {content}
    </div>
{interests_html}
{regions_html}
    <div class="interests-section">
        <p style="font-size: 12px; color: #666; margin-top: 8px;">
            <a href="{self.settings_url}" style="color: #666; text-decoration: underline;">Edit your preferences here</a>
        </p>
    </div>

    <div class="footer">
        <p>You're receiving this because you subscribed to OpenMidmarket.</p>
        <p><a href="mailto:{settings.feedback_email}">Submit Feedback</a></p>
        <p><a href="{escape(unsubscribe_url, quote=True)}">Unsubscribe</a></p>
    </div>
</body>
</html>"""

    def render_text(self, national: Sequence[Article], local: Sequence[Article], first_name: str,
                    unsubscribe_url: str, interests: str = "", locations: str = "") -> str:
        """Plain-text alternative body."""
        lines: List[str] = [
            "Your Weekly CRE News",
            f"Hello {first_name or 'there'}! Here's your personalized commercial real estate news"
            + (f" for {locations}." if locations else "."),
            "",
        ]
        formatted_interests = format_interests(interests)
        if formatted_interests:
            lines += [f"Your Interests: {formatted_interests}", ""]

        if not national and not local:
            lines += ["No new articles available.", ""]
        for title, articles in (("National", national), ("Local", local)):
            if not articles:
                continue
            lines += [title.upper(), ""]
            for article in articles:
                lines.append(article.title)
                lines.append(article.link)
                if article.description:
                    lines.append(truncate(article.description))
                lines.append(f"{format_article_date(article.date)} | {article.source}")
                if article.rationale:
                    lines.append(f"Why this article: {article.rationale}")
                lines.append("")

        lines += [
            "---",
            "You're receiving this because you subscribed to OpenMidmarket.",
            f"Unsubscribe: {unsubscribe_url}",
        ]
        return "\n".join(lines)
