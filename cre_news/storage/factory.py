"""Factory functions to create storage instances.

The database type follows the URL: PostgreSQL (through psycopg2) in
production, a local SQLite file for development.
"""

import os
from functools import lru_cache

import structlog

logger = structlog.get_logger()


def get_database_url() -> str:
    """Get database URL from environment, with fallback to SQLite."""
    # Check for DATABASE_URL first (standard for cloud platforms)
    url = os.environ.get('DATABASE_URL')
    if url:
        return normalize_url(url)

    from ..config.settings import settings
    return normalize_url(settings.database_url)


def normalize_url(url: str) -> str:
    """SQLAlchemy only accepts the postgresql:// scheme."""
    if url.startswith('postgres://'):
        return 'postgresql://' + url[len('postgres://'):]
    return url


@lru_cache(maxsize=4)
def _storage_for(url: str):
    from .database import NewsStorage

    logger.info("using_storage", backend="postgres" if url.startswith('postgresql') else "sqlite",
                url=url[:40] + "...")
    return NewsStorage(url)


def get_storage():
    """Get the shared NewsStorage instance for the configured URL."""
    return _storage_for(get_database_url())


def clear_cache():
    """Clear cached instances (useful for testing)."""
    _storage_for.cache_clear()
