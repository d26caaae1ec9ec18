"""
Public contact form endpoint (rate limited by client IP).
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from src.integrations.email.resend_client import EmailNotConfiguredError, EmailSendError
from src.middleware.rate_limit import rate_limit_dependency
from src.platform.errors import ExternalServiceError, ServiceUnavailableError
from src.services.contact_service import ContactService, ContactValidationError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/contact", tags=["contact"])


class ContactRequest(BaseModel):
    name: str = Field("", max_length=255)
    email: str = Field("", max_length=255)
    subject: str = Field("", max_length=500)
    message: str = Field("", max_length=10000)
    company: Optional[str] = Field(None, max_length=255)


@router.post("")
async def send_contact(
    body: ContactRequest,
    _rate_limit=Depends(rate_limit_dependency("contact", limit=5, window=3600)),
):
    try:
        message_id = ContactService().send_contact_message(
            name=body.name,
            email=body.email,
            subject=body.subject,
            message=body.message,
            company=body.company,
        )
    except ContactValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except EmailNotConfiguredError:
        raise ServiceUnavailableError("Email not configured")
    except EmailSendError:
        raise ExternalServiceError("resend", "Failed to send email")

    return {"success": True, "message": "Email sent successfully", "id": message_id}
