"""
Transactional email sender backed by Resend.

Used for team invitations, the weekly digest and the contact form.
A plain-text part is always included (derived from the HTML if not given).
"""

import logging
import re
from typing import Any, Dict, List, Optional, Union

import resend

from src.config.settings import get_from_email, get_resend_api_key

logger = logging.getLogger(__name__)

_TAG_RE = re.compile(r"<[^>]+>")
_WHITESPACE_RE = re.compile(r"\s+")


class EmailSendError(Exception):
    """Raised when the provider rejects or fails a send."""
    pass


class EmailNotConfiguredError(EmailSendError):
    """Raised when RESEND_API_KEY is not set."""
    pass


def html_to_text(html_content: str) -> str:
    """Strip tags and collapse whitespace."""
    text = _TAG_RE.sub(" ", html_content)
    return _WHITESPACE_RE.sub(" ", text).strip()


class EmailSender:
    """Thin wrapper over resend.Emails.send."""

    def __init__(self, api_key: Optional[str] = None, from_email: Optional[str] = None):
        api_key = api_key or get_resend_api_key()
        if not api_key:
            raise EmailNotConfiguredError("Resend API key not configured")
        resend.api_key = api_key
        self.from_email = from_email or get_from_email()

    def send(
        self,
        to: Union[str, List[str]],
        subject: str,
        html: str,
        text: Optional[str] = None,
        reply_to: Optional[str] = None,
    ) -> Optional[str]:
        """
        Send one email.

        Returns:
            Provider message ID

        Raises:
            EmailSendError: If the send fails
        """
        recipients = [to] if isinstance(to, str) else list(to)
        params: Dict[str, Any] = {
            "from": self.from_email,
            "to": recipients,
            "subject": subject,
            "html": html,
            "text": text or html_to_text(html),
        }
        if reply_to:
            params["reply_to"] = reply_to

        try:
            response = resend.Emails.send(params)
        except Exception as e:
            logger.error("Email send failed", extra={
                "subject": subject,
                "recipient_count": len(recipients),
                "error_type": type(e).__name__,
                "error": str(e),
            })
            raise EmailSendError(f"Email sending failed: {str(e)}") from e

        message_id = response.get("id") if isinstance(response, dict) else getattr(response, "id", None)
        logger.info("Email sent", extra={
            "subject": subject,
            "recipient_count": len(recipients),
            "message_id": message_id,
        })
        return message_id
