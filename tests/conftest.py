"""Pytest configuration and shared fixtures."""

import pytest
import tempfile
import os
from datetime import timedelta
from unittest.mock import MagicMock, AsyncMock


@pytest.fixture
def temp_db():
    """Provide a temporary database file."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = f.name
    yield f"sqlite:///{db_path}"
    # Cleanup
    try:
        os.unlink(db_path)
    except FileNotFoundError:
        pass


@pytest.fixture
def storage(temp_db):
    """NewsStorage on a temporary SQLite database."""
    from cre_news.storage.database import NewsStorage
    return NewsStorage(temp_db)


@pytest.fixture
def sample_source_config():
    """Provide a sample RSS source configuration."""
    from cre_news.ingestion.interfaces import SourceConfig, SourceType
    return SourceConfig(
        source_id="bisnow-la",
        source_name="Bisnow Los Angeles",
        url="https://www.bisnow.com/rss-feed/bisnow/los-angeles",
        source_type=SourceType.RSS,
        is_national=False,
    )


@pytest.fixture
def sample_raw_article():
    """Provide a sample RawArticle dated yesterday."""
    from cre_news.ingestion.interfaces import RawArticle
    from cre_news.ingestion.utils import utcnow
    return RawArticle(
        title="Long Beach Apartment Complex Trades For $48M",
        link="https://www.bisnow.com/los-angeles/news/multifamily/long-beach-apartments-123",
        source_id="bisnow-la",
        date=utcnow() - timedelta(days=1),
        image_url="https://cdn.bisnow.net/long-beach.jpg",
        description="A 120-unit apartment complex in Long Beach sold to a private investor.",
    )


@pytest.fixture
def sample_article():
    """Provide a sample stored Article."""
    from cre_news.ingestion.interfaces import Article
    from cre_news.ingestion.utils import utcnow
    return Article(
        id=1,
        title="Long Beach Apartment Complex Trades For $48M",
        link="https://www.bisnow.com/los-angeles/news/multifamily/long-beach-apartments-123",
        source="Bisnow Los Angeles",
        date=utcnow() - timedelta(days=1),
        description="A 120-unit apartment complex in Long Beach sold to a private investor.",
        counties=["Los Angeles"],
        cities=["Long Beach"],
        tags=["multi-family", "investment"],
    )


@pytest.fixture
def sample_subscriber():
    """Provide a subscriber who reads on Friday mornings in Los Angeles."""
    from cre_news.newsletter.interfaces import Subscriber, PreferredSendTime
    return Subscriber(
        email="Dana.Reyes@example.com",
        full_name="Dana Reyes",
        selected_counties=["Los Angeles"],
        selected_cities=["Long Beach"],
        interests="Multifamily acquisitions in Southern California",
        timezone="America/Los_Angeles",
        preferred_send_times=[PreferredSendTime(day_of_week=5, hour=9)],
    )


@pytest.fixture
def mock_llm():
    """LLM client that reports a key and returns canned responses."""
    llm = MagicMock()
    llm.is_configured = MagicMock(return_value=True)
    llm.complete = AsyncMock(return_value="")
    llm.complete_json = AsyncMock(return_value=[])
    return llm


@pytest.fixture
def unconfigured_llm():
    """LLM client without an API key."""
    llm = MagicMock()
    llm.is_configured = MagicMock(return_value=False)
    llm.complete = AsyncMock(side_effect=AssertionError("LLM should not be called"))
    llm.complete_json = AsyncMock(side_effect=AssertionError("LLM should not be called"))
    return llm
