"""Hourly preparation and dispatch of scheduled newsletters."""

import asyncio
from datetime import datetime, timedelta
from typing import List, Sequence

import structlog

from .interfaces import (
    Subscriber, NewsletterStatus, NewsletterSelection, NoArticlesError, DeliveryError
)
from .scheduling import should_prepare, send_slot
from .selection import ArticleSelector
from ..classification.editorial import EditorialWriter
from ..config.settings import settings
from ..delivery.email_service import EmailService, newsletter_subject
from ..ingestion.utils import utcnow

logger = structlog.get_logger()

PREPARE_LOOKAHEAD = timedelta(hours=1)


class NewsletterPreparer:
    """Creates scheduled newsletters for subscribers whose slot starts within the hour."""

    def __init__(self, storage, selector: ArticleSelector = None):
        self.storage = storage
        self.selector = selector or ArticleSelector(storage)

    async def prepare(self, now: datetime = None) -> dict:
        now = now or utcnow()
        target = now + PREPARE_LOOKAHEAD
        slot = send_slot(target)
        subscribers = self.storage.get_active_subscribers()
        logger.info("newsletter_prepare_started", subscribers=len(subscribers),
                    target=target.isoformat())

        prepared = 0
        skipped = 0
        for subscriber in subscribers:
            try:
                if not should_prepare(subscriber, target):
                    skipped += 1
                    continue
                if self.storage.newsletter_exists(subscriber.email, slot):
                    skipped += 1
                    continue

                selection = await self.selector.select(
                    subscriber.selected_counties,
                    subscriber.selected_cities,
                    subscriber.interests,
                    now=now,
                )
                if selection.is_empty:
                    logger.info("newsletter_no_articles", email=subscriber.email)
                    skipped += 1
                    continue

                newsletter_id = self.storage.create_newsletter(subscriber.email, slot)
                if newsletter_id is None:
                    skipped += 1
                    continue
                attached = self.storage.attach_articles(newsletter_id, selection)
                prepared += 1
                logger.info("newsletter_prepared", email=subscriber.email, id=newsletter_id,
                            articles=attached, scheduled_send_at=slot.isoformat())
            except Exception as e:
                logger.error("newsletter_prepare_failed", email=subscriber.email, error=str(e))

        result = {
            "message": "Newsletter preparation completed",
            "total_subscribers": len(subscribers),
            "newsletters_prepared": prepared,
            "skipped": skipped,
        }
        logger.info("newsletter_prepare_completed", **result)
        return result


class NewsletterSender:
    """Delivers due newsletters and previews."""

    def __init__(
        self,
        storage,
        email_service: EmailService = None,
        selector: ArticleSelector = None,
        editor: EditorialWriter = None
    ):
        self.storage = storage
        self.email = email_service or EmailService()
        self.selector = selector or ArticleSelector(storage)
        self.editor = editor or EditorialWriter()

    async def _title(self, articles: Sequence) -> str:
        if settings.use_generated_subject:
            return await self.editor.generate_newsletter_title(articles)
        return settings.newsletter_name

    def _fail(self, newsletter_id: int) -> None:
        try:
            self.storage.transition_newsletter(newsletter_id, NewsletterStatus.FAILED)
        except Exception as e:
            logger.error("newsletter_status_update_failed", id=newsletter_id, error=str(e))

    async def send_due(self, now: datetime = None) -> dict:
        now = now or utcnow()
        due = self.storage.get_due_newsletters(now)
        logger.info("newsletter_send_started", due=len(due))

        sent = 0
        errors = 0
        for position, newsletter in enumerate(due):
            if position:
                await asyncio.sleep(settings.send_delay_seconds)
            try:
                subscriber = self.storage.get_subscriber_by_email(newsletter.subscriber_email)
                if subscriber is None or not subscriber.is_active:
                    logger.warning("newsletter_subscriber_inactive", id=newsletter.id,
                                   email=newsletter.subscriber_email)
                    self._fail(newsletter.id)
                    errors += 1
                    continue

                title = await self._title(newsletter.national + newsletter.local)
                delivered = await self.email.send_newsletter(
                    subscriber, newsletter.national, newsletter.local, title=title
                )
                if delivered:
                    self.storage.transition_newsletter(
                        newsletter.id, NewsletterStatus.SENT,
                        sent_at=utcnow(), subject=newsletter_subject(title, now)
                    )
                    sent += 1
                    logger.info("newsletter_sent", id=newsletter.id, email=subscriber.email)
                else:
                    self._fail(newsletter.id)
                    errors += 1
            except Exception as e:
                logger.error("newsletter_send_failed", id=newsletter.id, error=str(e))
                self._fail(newsletter.id)
                errors += 1

        result = {
            "message": "Newsletter sending completed",
            "total_newsletters": len(due),
            "emails_sent": sent,
            "errors": errors,
        }
        logger.info("newsletter_send_completed", **result)
        return result

    async def send_preview(
        self,
        email: str,
        interests: str,
        counties: List[str] = None,
        cities: List[str] = None,
        first_name: str = "",
        cc: str = None
    ) -> NewsletterSelection:
        """Select and send a newsletter immediately, outside the schedule."""
        counties = counties or []
        cities = cities or []
        selection = await self.selector.select(counties, cities, interests)
        if selection.is_empty:
            raise NoArticlesError("No articles found matching your preferences")

        subscriber = Subscriber(
            email=email,
            full_name=first_name,
            selected_counties=counties,
            selected_cities=cities,
            interests=interests,
        )
        title = await self._title(selection.national + selection.local)
        delivered = await self.email.send_newsletter(
            subscriber, selection.national, selection.local, title=title, cc=cc
        )
        if not delivered:
            raise DeliveryError(f"Failed to send preview to {email}")
        logger.info("newsletter_preview_sent", email=email,
                    national=len(selection.national), local=len(selection.local))
        return selection
