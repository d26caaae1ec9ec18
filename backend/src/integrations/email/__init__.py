"""Transactional email via Resend."""

from src.integrations.email.resend_client import EmailSender, EmailSendError, EmailNotConfiguredError

__all__ = ["EmailSender", "EmailSendError", "EmailNotConfiguredError"]
