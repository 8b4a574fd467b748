"""Interface definitions for article ingestion."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, List
from enum import Enum

from .utils import utcnow


class SourceType(Enum):
    """How a source is scraped."""
    RSS = "rss"
    FIRECRAWL = "firecrawl"
    LINKEDIN = "linkedin"


@dataclass
class SourceConfig:
    """Configuration for a single news source."""
    source_id: str
    source_name: str
    url: str
    source_type: SourceType = SourceType.RSS
    is_national: bool = False
    disabled: bool = False


@dataclass
class RawArticle:
    """An article scraped from a source, before it is stored."""
    title: str = ""
    link: str = ""
    source_id: str = ""
    date: datetime = field(default_factory=utcnow)
    image_url: str = ""
    description: str = ""
    # Set only when the scraper categorizes at ingest time (LinkedIn)
    counties: List[str] = field(default_factory=list)
    cities: List[str] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)
    is_categorized: bool = False


@dataclass
class Article:
    """A stored article joined with its source and categories."""
    id: Optional[int] = None
    title: str = ""
    link: str = ""
    source: str = ""
    date: Optional[datetime] = None
    description: str = ""
    image_url: str = ""
    is_national: bool = False
    counties: List[str] = field(default_factory=list)
    cities: List[str] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)
    rationale: Optional[str] = None

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "title": self.title,
            "link": self.link,
            "source": self.source,
            "date": self.date.isoformat() if self.date else None,
            "description": self.description,
            "image_url": self.image_url,
            "is_national": self.is_national,
            "counties": self.counties,
            "cities": self.cities,
            "tags": self.tags,
            "rationale": self.rationale,
        }


class ScraperInterface:
    """Interface for source scrapers."""

    async def scrape(self, config: SourceConfig) -> List[RawArticle]:
        """Scrape articles from a single source."""
        raise NotImplementedError
