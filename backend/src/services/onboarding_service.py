"""
Onboarding progress and terms-of-service consent.

Onboarding has two steps after sign-up: create the company, then connect
PostHog. Consent records the accepted terms version and the client IP for
compliance record-keeping.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

from sqlalchemy.orm import Session

from src.config.settings import DEFAULT_TERMS_VERSION
from src.models.base import as_utc
from src.models.company import Company
from src.models.user import User
from src.platform.audit import SYSTEM_COMPANY_ID, AuditAction, AuditEvent, write_audit_log_sync

logger = logging.getLogger(__name__)

STEP_COMPANY = "company"
STEP_ANALYTICS = "analytics"
STEP_COMPLETED = "completed"


def resolve_client_ip(headers: Mapping[str, str]) -> str:
    """First X-Forwarded-For hop, then X-Real-IP, else "unknown"."""
    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    return headers.get("x-real-ip") or "unknown"


class OnboardingService:

    def __init__(self, session: Session, correlation_id: Optional[str] = None):
        self.session = session
        self.correlation_id = correlation_id or str(uuid.uuid4())

    def get_onboarding_status(self, user: User) -> Dict[str, Any]:
        company = None
        if user.company_id:
            company = self.session.query(Company).filter(Company.id == user.company_id).first()

        if company is None:
            step = STEP_COMPANY
        elif not (company.posthog_project_id and company.posthog_client_id):
            step = STEP_ANALYTICS
        else:
            step = STEP_COMPLETED

        return {
            "step": step,
            "is_complete": step == STEP_COMPLETED,
            "company_id": company.id if company else None,
        }

    def accept_terms(
        self,
        user: User,
        terms_version: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> Dict[str, Any]:
        accepted_at = datetime.now(timezone.utc)
        user.terms_accepted_at = accepted_at
        user.terms_version = terms_version or DEFAULT_TERMS_VERSION
        user.consent_ip_address = ip_address
        self.session.flush()

        logger.info("Terms accepted", extra={
            "user_id": user.id,
            "terms_version": user.terms_version,
        })

        write_audit_log_sync(
            db=self.session,
            event=AuditEvent(
                company_id=user.company_id or SYSTEM_COMPANY_ID,
                action=AuditAction.TERMS_ACCEPTED,
                user_id=user.id,
                ip_address=ip_address,
                resource_type="user",
                resource_id=user.id,
                correlation_id=self.correlation_id,
                metadata={"terms_version": user.terms_version},
            ),
        )
        return {
            "success": True,
            "terms_version": user.terms_version,
            "accepted_at": accepted_at.isoformat(),
        }

    @staticmethod
    def check_consent(user: User) -> Dict[str, Any]:
        return {
            "accepted": user.terms_accepted_at is not None,
            "terms_version": user.terms_version,
            "accepted_at": as_utc(user.terms_accepted_at).isoformat() if user.terms_accepted_at else None,
        }
