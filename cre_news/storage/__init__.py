"""Database storage and models."""

from .database import NewsStorage
from .factory import get_storage, get_database_url, clear_cache
from .models import ArticleModel, NewsletterModel, SubscriberModel, init_db

__all__ = [
    "NewsStorage", "get_storage", "get_database_url", "clear_cache",
    "ArticleModel", "NewsletterModel", "SubscriberModel", "init_db",
]
