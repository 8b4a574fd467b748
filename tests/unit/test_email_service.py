"""Unit tests for email delivery."""

import smtplib
import pytest
from datetime import datetime
from unittest.mock import MagicMock

from cre_news.config.settings import settings
from cre_news.delivery.email_service import EmailService, EmailContent, newsletter_subject
from cre_news.newsletter.renderer import NewsletterRenderer


@pytest.fixture
def no_smtp(monkeypatch):
    monkeypatch.setattr(settings, "smtp_user", None)
    monkeypatch.setattr(settings, "smtp_pass", None)


@pytest.fixture
def with_smtp(monkeypatch):
    monkeypatch.setattr(settings, "smtp_user", "mailer@example.com")
    monkeypatch.setattr(settings, "smtp_pass", "app-password")


class TestEmailService:
    """Tests for EmailService."""

    def test_subject(self):
        """Should prefix the title with the short date."""
        assert newsletter_subject("CRE News", datetime(2025, 3, 7)) == "Mar 7 - CRE News"

    def test_unsubscribe_url_quotes_email(self, no_smtp):
        """Should percent-encode the email address."""
        service = EmailService(NewsletterRenderer("https://app.example.com/"))
        assert service.unsubscribe_url("a+b@example.com") == \
            "https://app.example.com/api/news/unsubscribe?email=a%2Bb%40example.com"

    @pytest.mark.asyncio
    async def test_simulates_without_credentials(self, no_smtp):
        """Should report success without sending when SMTP is not configured."""
        service = EmailService()
        service._send_sync = MagicMock()

        assert service.enabled is False
        assert await service.send_email("a@example.com", EmailContent("s", "<p>h</p>", "t")) is True
        service._send_sync.assert_not_called()

    @pytest.mark.asyncio
    async def test_smtp_failure_returns_false(self, with_smtp):
        """Should return False when the SMTP server rejects the message."""
        service = EmailService()
        service._send_sync = MagicMock(side_effect=smtplib.SMTPAuthenticationError(535, b"bad credentials"))

        assert service.enabled is True
        assert await service.send_email("a@example.com", EmailContent("s", "h", "t")) is False

    @pytest.mark.asyncio
    async def test_sends_with_cc(self, with_smtp):
        """Should pass the CC address through to SMTP."""
        service = EmailService()
        service._send_sync = MagicMock()

        assert await service.send_email("a@example.com", EmailContent("s", "h", "t"), cc="b@example.com") is True
        to, content, cc = service._send_sync.call_args[0]
        assert (to, cc) == ("a@example.com", "b@example.com")

    def test_build_newsletter(self, no_smtp, sample_subscriber, sample_article):
        """Should render HTML and text for the subscriber."""
        content = EmailService(NewsletterRenderer("https://app.example.com")).build_newsletter(
            sample_subscriber, [], [sample_article], title="Weekly CRE"
        )
        assert content.subject.endswith(" - Weekly CRE")
        assert sample_article.title in content.html
        assert "Your regions:</strong> Los Angeles" in content.html
        assert "Hello Dana!" in content.text
        assert "unsubscribe?email=Dana.Reyes%40example.com" in content.text
