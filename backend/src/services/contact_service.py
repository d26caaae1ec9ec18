"""
Contact form delivery.

Messages go to CONTACT_EMAIL through Resend with Reply-To set to the
sender, so support can answer directly from their inbox.
"""

import html
import logging
import re
from typing import Optional

from src.config.settings import get_contact_email
from src.integrations.email.resend_client import EmailSender

logger = logging.getLogger(__name__)

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class ContactValidationError(ValueError):
    """Raised when a required field is blank or the email is malformed."""
    pass


def render_contact_html(name: str, email: str, subject: str, message: str, company: Optional[str]) -> str:
    name, email, subject, message = (html.escape(v) for v in (name, email, subject, message))
    company_label = html.escape(company) if company else "Not provided"
    return f"""
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
  <h2 style="color: #4f46e5; border-bottom: 2px solid #4f46e5; padding-bottom: 10px;">New Contact Form Submission</h2>
  <div style="margin: 20px 0;">
    <p><strong>From:</strong> {name}</p>
    <p><strong>Email:</strong> <a href="mailto:{email}">{email}</a></p>
    <p><strong>Company:</strong> {company_label}</p>
    <p><strong>Subject:</strong> {subject}</p>
  </div>
  <div style="margin: 20px 0; padding: 15px; background-color: #f3f4f6; border-radius: 5px;">
    <h3 style="margin-top: 0; color: #374151;">Message:</h3>
    <p style="white-space: pre-wrap; color: #4b5563;">{message}</p>
  </div>
  <p style="margin-top: 30px; color: #6b7280; font-size: 12px;">This message was sent from the AskMe Analytics contact form.</p>
</div>
"""


class ContactService:

    def __init__(self, email_sender: Optional[EmailSender] = None):
        self._email_sender = email_sender

    def send_contact_message(
        self,
        name: str,
        email: str,
        subject: str,
        message: str,
        company: Optional[str] = None,
    ) -> Optional[str]:
        """
        Returns:
            Provider message ID

        Raises:
            ContactValidationError: If a field is missing or the email is invalid
            EmailSendError: If delivery fails
        """
        fields = {"name": name, "email": email, "subject": subject, "message": message}
        missing = [key for key, value in fields.items() if not value or not str(value).strip()]
        if missing:
            raise ContactValidationError(f"Missing required fields: {', '.join(missing)}")

        email = email.strip()
        if not _EMAIL_RE.match(email):
            raise ContactValidationError("Invalid email address")

        sender = self._email_sender or EmailSender()
        message_id = sender.send(
            to=get_contact_email(),
            subject=f"Contact Form: {subject.strip()}",
            html=render_contact_html(name.strip(), email, subject.strip(), message.strip(), company),
            reply_to=email,
        )
        logger.info("Contact message sent", extra={"message_id": message_id})
        return message_id
