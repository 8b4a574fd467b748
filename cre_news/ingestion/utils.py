"""Helpers shared by the scrapers."""

import re
from datetime import datetime, timedelta, timezone
from email.utils import parsedate_to_datetime
from typing import List, Optional, TypeVar

from bs4 import BeautifulSoup

T = TypeVar("T")


def utcnow() -> datetime:
    """Current UTC time as a naive datetime, matching stored values."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    """Normalize an aware datetime to naive UTC."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def sanitize_image_url(url: Optional[str]) -> str:
    """Drop the query string from an image URL."""
    if not url:
        return ""
    return url.split("?", 1)[0]


def strip_html(text: Optional[str]) -> str:
    """Reduce an HTML fragment to plain text."""
    if not text:
        return ""
    if "<" not in text:
        return text.strip()
    return BeautifulSoup(text, "html.parser").get_text(" ", strip=True)


def safe_parse_date(value, default: datetime = None) -> datetime:
    """Parse an ISO or RFC 2822 date, falling back to now."""
    if default is None:
        default = utcnow()
    if value is None or value == "":
        return default
    if isinstance(value, datetime):
        return to_naive_utc(value)

    text = str(value).strip()
    try:
        return to_naive_utc(datetime.fromisoformat(text.replace("Z", "+00:00")))
    except ValueError:
        pass
    try:
        return to_naive_utc(parsedate_to_datetime(text))
    except (TypeError, ValueError):
        return default


_RELATIVE_RE = re.compile(r"^(\d+)\s*([hdwm])", re.IGNORECASE)
_RELATIVE_UNITS = {"h": timedelta(hours=1), "d": timedelta(days=1),
                   "w": timedelta(weeks=1), "m": timedelta(days=30)}


def parse_relative_age(value: Optional[str], now: datetime = None) -> Optional[datetime]:
    """Parse a LinkedIn-style age such as '5h', '2d', '1w' or '3mo'."""
    if not value:
        return None
    match = _RELATIVE_RE.match(value.strip())
    if not match:
        return None
    now = now or utcnow()
    amount, unit = int(match.group(1)), match.group(2).lower()
    return now - amount * _RELATIVE_UNITS[unit]


def filter_recent(articles: List[T], days: int = 7, now: datetime = None) -> List[T]:
    """Keep articles dated within the last `days` days and not in the future."""
    now = now or utcnow()
    cutoff = now - timedelta(days=days)
    return [a for a in articles if a.date is not None and cutoff <= a.date <= now]


def dedupe_by_link(articles: List[T]) -> List[T]:
    """Drop repeated links, keeping the first occurrence."""
    seen = set()
    unique = []
    for article in articles:
        if article.link and article.link not in seen:
            seen.add(article.link)
            unique.append(article)
    return unique
