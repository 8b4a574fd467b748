"""Integration tests for the full pipeline."""

import pytest
from datetime import timedelta
from unittest.mock import AsyncMock

from cre_news.ingestion.interfaces import RawArticle, SourceConfig, SourceType
from cre_news.ingestion.utils import utcnow
from cre_news.newsletter.interfaces import NewsletterStatus, PreferredSendTime, Subscriber
from cre_news.newsletter.scheduling import day_of_week, send_slot
from cre_news.pipeline.jobs import NewsPipeline

LLM_RESPONSES = {
    "check-article-relevance": [True, False],
    "categorize-counties": [["Los Angeles"]],
    "categorize-cities": [["Long Beach"]],
    "tag-articles": [["multi-family", "made-up-tag"]],
    "filter-local-articles": [{"index": 0, "rationale": "Multifamily sale in Long Beach"}],
    "filter-national-articles": [],
}


@pytest.fixture
def llm(mock_llm):
    mock_llm.complete_json.side_effect = lambda prompt, **kw: LLM_RESPONSES[kw["operation"]]
    return mock_llm


@pytest.fixture
def email_service():
    service = AsyncMock()
    service.send_newsletter = AsyncMock(return_value=True)
    return service


@pytest.fixture
def pipeline(storage, llm, email_service):
    return NewsPipeline(storage=storage, llm_client=llm, email_service=email_service)


@pytest.fixture
def seeded(pipeline):
    """Two scraped articles: one real estate story and one off-topic."""
    now = utcnow()
    pipeline.storage.save_articles([
        RawArticle(
            title="Long Beach Apartment Complex Trades For $48M",
            link="https://cre.example.com/long-beach-apartments",
            source_id="bisnow-la",
            date=now - timedelta(hours=6),
            description="A 120-unit apartment complex sold.",
        ),
        RawArticle(
            title="Local Cat Wins Talent Show",
            link="https://cre.example.com/cat",
            source_id="bisnow-la",
            date=now - timedelta(hours=12),
        ),
    ], "bisnow-la", "Bisnow Los Angeles")
    return pipeline


def subscriber_due_at(target, **overrides):
    values = dict(
        email="dana@example.com",
        full_name="Dana Reyes",
        selected_counties=["Los Angeles"],
        interests="Multifamily acquisitions",
        timezone="UTC",
        preferred_send_times=[PreferredSendTime(day_of_week(target), target.hour)],
    )
    values.update(overrides)
    return Subscriber(**values)


class TestCategorize:
    """Tests for the categorization job."""

    @pytest.mark.asyncio
    async def test_categorizes_relevant_and_drops_irrelevant(self, seeded):
        """Should categorize relevant articles and flag the rest."""
        stats = await seeded.categorize()

        assert stats["processed"] == 2
        assert stats["relevant"] == 1
        assert stats["irrelevant"] == 1
        assert stats["categorized"] == 1

        articles = seeded.storage.list_articles()
        assert len(articles) == 1
        assert articles[0].counties == ["Los Angeles"]
        assert articles[0].cities == ["Long Beach"]
        assert articles[0].tags == ["multi-family"]

    @pytest.mark.asyncio
    async def test_nothing_pending(self, pipeline):
        """Should return zero counts when nothing needs categorizing."""
        stats = await pipeline.categorize()
        assert stats["processed"] == 0
        pipeline.llm.complete_json.assert_not_called()


class TestScrape:
    """Tests for scrape fan-out."""

    @pytest.mark.asyncio
    async def test_failing_source_is_isolated(self, pipeline):
        """Should save articles from healthy sources when one fails."""
        good = SourceConfig("good", "Good Feed", "https://good.example.com/feed")
        bad = SourceConfig("bad", "Bad Feed", "https://bad.example.com/feed")

        async def scrape(config):
            if config.source_id == "bad":
                raise ConnectionError("connection reset")
            return [RawArticle(title="Story", link="https://good.example.com/1", source_id="good")]

        scraper = AsyncMock()
        scraper.scrape = AsyncMock(side_effect=scrape)

        per_source = await pipeline._scrape_sources([good, bad], scraper)

        assert per_source["good"] == {"found": 1, "loaded": 1}
        assert "connection reset" in per_source["bad"]["error"]

    def test_sync_sources(self, pipeline, tmp_path):
        """Should load source definitions from JSON."""
        path = tmp_path / "sources.json"
        path.write_text('{"sources": [{"source_id": "trd", "source_name": "The Real Deal", '
                        '"url": "https://trd.example.com", "type": "firecrawl"}]}')

        assert pipeline.sync_sources(str(path)) == 1
        assert [s.source_id for s in pipeline.storage.get_sources(SourceType.FIRECRAWL)] == ["trd"]


class TestNewsletterFlow:
    """Tests for prepare and send."""

    @pytest.mark.asyncio
    async def test_prepare_then_send(self, seeded, email_service):
        """Should prepare one newsletter for the due subscriber and send it once."""
        await seeded.categorize()
        now = utcnow()
        target = now + timedelta(hours=1)
        seeded.storage.upsert_subscriber(subscriber_due_at(target))
        seeded.storage.upsert_subscriber(subscriber_due_at(
            target, email="later@example.com",
            preferred_send_times=[PreferredSendTime((day_of_week(target) + 1) % 7, target.hour)],
        ))

        prepared = await seeded.preparer.prepare(now=now)
        assert prepared["total_subscribers"] == 2
        assert prepared["newsletters_prepared"] == 1
        assert prepared["skipped"] == 1

        again = await seeded.preparer.prepare(now=now)
        assert again["newsletters_prepared"] == 0

        slot = send_slot(target)
        assert seeded.storage.get_due_newsletters(now) == []
        due = seeded.storage.get_due_newsletters(slot)
        assert len(due) == 1
        assert due[0].local[0].rationale == "Multifamily sale in Long Beach"

        sent = await seeded.sender.send_due(now=slot + timedelta(minutes=5))
        assert sent["emails_sent"] == 1
        assert sent["errors"] == 0

        subscriber, national, local = email_service.send_newsletter.call_args[0]
        assert subscriber.email == "dana@example.com"
        assert national == []
        assert [a.title for a in local] == ["Long Beach Apartment Complex Trades For $48M"]

        newsletter = seeded.storage.get_newsletter(due[0].id)
        assert newsletter.status == NewsletterStatus.SENT
        assert newsletter.sent_at is not None

        resend = await seeded.sender.send_due(now=slot + timedelta(minutes=20))
        assert resend["total_newsletters"] == 0

    @pytest.mark.asyncio
    async def test_no_articles_no_newsletter(self, pipeline):
        """Should skip subscribers without matching articles."""
        target = utcnow() + timedelta(hours=1)
        pipeline.storage.upsert_subscriber(subscriber_due_at(target))

        prepared = await pipeline.preparer.prepare()

        assert prepared["newsletters_prepared"] == 0
        assert pipeline.storage.get_stats()["newsletters"]["scheduled"] == 0

    @pytest.mark.asyncio
    async def test_failed_delivery_marks_failed(self, storage, llm):
        """Should mark a newsletter failed when the email is not delivered."""
        email_service = AsyncMock()
        email_service.send_newsletter = AsyncMock(return_value=False)
        pipeline = NewsPipeline(storage=storage, llm_client=llm, email_service=email_service)
        slot = send_slot(utcnow())
        storage.upsert_subscriber(Subscriber(email="dana@example.com"))
        newsletter_id = storage.create_newsletter("dana@example.com", slot)

        result = await pipeline.sender.send_due()

        assert result["errors"] == 1
        assert storage.get_newsletter(newsletter_id).status == NewsletterStatus.FAILED

    @pytest.mark.asyncio
    async def test_unsubscribed_before_send(self, storage, llm, email_service):
        """Should fail the newsletter of a subscriber who left after preparation."""
        pipeline = NewsPipeline(storage=storage, llm_client=llm, email_service=email_service)
        slot = send_slot(utcnow())
        storage.upsert_subscriber(Subscriber(email="dana@example.com"))
        newsletter_id = storage.create_newsletter("dana@example.com", slot)
        storage.unsubscribe("dana@example.com")

        result = await pipeline.sender.send_due()

        assert result["errors"] == 1
        email_service.send_newsletter.assert_not_called()
        assert storage.get_newsletter(newsletter_id).status == NewsletterStatus.FAILED
