"""Subscriber scheduling, article selection and rendering.

Dispatch lives in `cre_news.newsletter.dispatch`, which depends on delivery.
"""

from .interfaces import (
    NewsletterStatus, PreferredSendTime, Subscriber, Newsletter, NewsletterSelection,
    NoArticlesError, DeliveryError, DEFAULT_PREFERRED_SEND_TIMES
)
from .scheduling import normalize_send_times, is_valid_timezone, should_prepare, send_slot
from .selection import split_national_local, ArticleSelector
from .renderer import NewsletterRenderer

__all__ = [
    "NewsletterStatus", "PreferredSendTime", "Subscriber", "Newsletter", "NewsletterSelection",
    "NoArticlesError", "DeliveryError", "DEFAULT_PREFERRED_SEND_TIMES",
    "normalize_send_times", "is_valid_timezone", "should_prepare", "send_slot",
    "split_national_local", "ArticleSelector", "NewsletterRenderer",
]
