"""Outbound email."""

from .email_service import EmailService, EmailContent, newsletter_subject

__all__ = ["EmailService", "EmailContent", "newsletter_subject"]
