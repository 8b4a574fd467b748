"""Article ingestion from RSS, Firecrawl and LinkedIn."""

from .interfaces import SourceConfig, SourceType, RawArticle, Article, ScraperInterface
from .rss import RSSFetcher
from .firecrawl import FirecrawlScraper
from .linkedin import LinkedInScraper

__all__ = [
    "SourceConfig", "SourceType", "RawArticle", "Article", "ScraperInterface",
    "RSSFetcher", "FirecrawlScraper", "LinkedInScraper",
]
