"""Application configuration.

Source definitions are loaded with `cre_news.config.sources.load_sources`.
"""

from .settings import Settings, settings

__all__ = ["Settings", "settings"]
