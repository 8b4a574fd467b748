"""SMTP delivery of newsletters."""

import asyncio
import smtplib
from dataclasses import dataclass
from datetime import datetime
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional, Sequence
from urllib.parse import quote

import structlog

from ..config.settings import settings
from ..ingestion.interfaces import Article
from ..ingestion.utils import utcnow
from ..newsletter.interfaces import Subscriber
from ..newsletter.renderer import NewsletterRenderer

logger = structlog.get_logger()


@dataclass
class EmailContent:
    subject: str
    html: str
    text: str


def newsletter_subject(title: str, now: datetime = None) -> str:
    """'Mar 7 - <title>'."""
    now = now or utcnow()
    return f"{now:%b} {now.day} - {title}"


class EmailService:
    """Sends mail over SMTP with STARTTLS.

    Without SMTP credentials every send is logged and reported as
    delivered, so local runs exercise the full pipeline.
    """

    def __init__(self, renderer: NewsletterRenderer = None):
        self.renderer = renderer or NewsletterRenderer()
        self.enabled = bool(settings.smtp_user and settings.smtp_pass)
        if not self.enabled:
            logger.warning("smtp_not_configured")

    def unsubscribe_url(self, email: str) -> str:
        return f"{self.renderer.base_url}/api/news/unsubscribe?email={quote(email, safe='')}"

    def _send_sync(self, to: str, content: EmailContent, cc: Optional[str]) -> None:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = content.subject
        msg["From"] = settings.email_from
        msg["To"] = to
        if cc:
            msg["Cc"] = cc
        msg.attach(MIMEText(content.text, "plain"))
        msg.attach(MIMEText(content.html, "html"))

        with smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=30) as server:
            server.starttls()
            server.login(settings.smtp_user, settings.smtp_pass)
            server.send_message(msg)

    async def send_email(self, to: str, content: EmailContent, cc: Optional[str] = None) -> bool:
        """Send one message. Returns False on SMTP failure."""
        if not self.enabled:
            logger.info("email_simulated", to=to, cc=cc, subject=content.subject)
            return True

        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, self._send_sync, to, content, cc)
        except (smtplib.SMTPException, OSError) as e:
            logger.error("email_send_failed", to=to, error=str(e))
            return False

        logger.info("email_sent", to=to, subject=content.subject)
        return True

    def build_newsletter(
        self,
        subscriber: Subscriber,
        national: Sequence[Article],
        local: Sequence[Article],
        title: str = None
    ) -> EmailContent:
        """Subject, HTML and text for one subscriber."""
        title = title or settings.newsletter_name
        locations = ", ".join(subscriber.selected_counties)
        unsubscribe_url = self.unsubscribe_url(subscriber.email)

        content_html = self.renderer.render_content(national, local)
        html = self.renderer.render_email(
            content_html,
            unsubscribe_url=unsubscribe_url,
            interests=subscriber.interests,
            locations=locations,
            title=title,
        )
        text = self.renderer.render_text(
            national, local,
            first_name=subscriber.first_name,
            unsubscribe_url=unsubscribe_url,
            interests=subscriber.interests,
            locations=locations,
        )
        return EmailContent(subject=newsletter_subject(title), html=html, text=text)

    async def send_newsletter(
        self,
        subscriber: Subscriber,
        national: Sequence[Article],
        local: Sequence[Article],
        title: str = None,
        cc: Optional[str] = None
    ) -> bool:
        content = self.build_newsletter(subscriber, national, local, title)
        return await self.send_email(subscriber.email, content, cc)
