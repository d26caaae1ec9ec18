"""
CompanyService: company profile, onboarding, analytics configuration
and digest recipients.

SECURITY:
- PostHog API keys are encrypted before they touch the database
- Decrypted keys are returned only from get_company_posthog_config(),
  which is used server-side to run queries and never serialized to clients
"""

import logging
import uuid
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from src.models.company import Company, slugify
from src.models.email import EmailRecipient
from src.models.user import User, UserRole
from src.platform.audit import AuditAction, AuditEvent, write_audit_log_sync
from src.utils.encryption import DecryptionError, decrypt_secret, encrypt_secret

logger = logging.getLogger(__name__)

# Fields editable through PATCH /api/company
UPDATABLE_FIELDS = (
    "name",
    "domain",
    "billing_email",
    "industry",
    "business_model",
    "primary_goal",
    "audience_region",
    "traffic_sources",
    "monthly_visitors",
)


# =============================================================================
# Exceptions
# =============================================================================

class CompanyServiceError(Exception):
    """Base exception for company service errors."""
    pass


class CompanyNotFoundError(CompanyServiceError):
    pass


class SlugConflictError(CompanyServiceError):
    """Raised when the slug is already taken."""
    pass


class UserAlreadyHasCompanyError(CompanyServiceError):
    pass


class AnalyticsNotConfiguredError(CompanyServiceError):
    """Raised when PostHog project or API key is missing."""
    pass


class RecipientExistsError(CompanyServiceError):
    pass


class RecipientNotFoundError(CompanyServiceError):
    pass


# =============================================================================
# Service
# =============================================================================

class CompanyService:
    """Company-scoped reads and writes."""

    def __init__(self, session: Session, correlation_id: Optional[str] = None):
        self.session = session
        self.correlation_id = correlation_id or str(uuid.uuid4())

    # =========================================================================
    # Company
    # =========================================================================

    def get_company(self, company_id: str) -> Company:
        company = self.session.query(Company).filter(Company.id == company_id).first()
        if company is None:
            raise CompanyNotFoundError(f"Company {company_id} not found")
        return company

    def get_all_active_companies(self) -> List[Company]:
        return self.session.query(Company).filter(Company.is_active.is_(True)).all()

    def create_company_for_user(
        self,
        user: User,
        name: str,
        slug: Optional[str] = None,
        domain: Optional[str] = None,
        billing_email: Optional[str] = None,
        **business_context: Any,
    ) -> Company:
        """
        Create a company during onboarding and make the user its owner.

        Raises:
            UserAlreadyHasCompanyError: If the user already belongs to a company
            SlugConflictError: If the slug is taken
            ValueError: If name or slug is empty
        """
        if user.company_id:
            raise UserAlreadyHasCompanyError("User already belongs to a company")

        name = (name or "").strip()
        if not name:
            raise ValueError("Company name is required")

        slug = slugify(slug or name)
        if not slug:
            raise ValueError("Company slug is invalid")

        if self.session.query(Company).filter(Company.slug == slug).first():
            raise SlugConflictError(f"Slug '{slug}' is already taken")

        company = Company(
            name=name,
            slug=slug,
            domain=domain,
            billing_email=billing_email or user.email,
            **{k: v for k, v in business_context.items() if k in UPDATABLE_FIELDS},
        )
        self.session.add(company)
        try:
            self.session.flush()
        except IntegrityError as e:
            self.session.rollback()
            raise SlugConflictError(f"Slug '{slug}' is already taken") from e

        user.company_id = company.id
        user.role = UserRole.OWNER.value
        self.session.flush()

        logger.info("Company created", extra={"company_id": company.id, "user_id": user.id})
        self._emit(company.id, AuditAction.COMPANY_CREATED, user.id, {"slug": slug})
        return company

    def update_company(self, company_id: str, user_id: Optional[str] = None, **fields: Any) -> Company:
        company = self.get_company(company_id)
        changed = []
        for key, value in fields.items():
            if key not in UPDATABLE_FIELDS or value is None:
                continue
            setattr(company, key, value)
            changed.append(key)

        if changed:
            self.session.flush()
            self._emit(company.id, AuditAction.COMPANY_UPDATED, user_id, {"fields": changed})
        return company

    # =========================================================================
    # Analytics configuration
    # =========================================================================

    def update_posthog_config(
        self,
        company_id: str,
        project_id: str,
        api_key: str,
        client_id: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> Company:
        if not project_id or not api_key:
            raise ValueError("project_id and api_key are required")

        company = self.get_company(company_id)
        company.posthog_project_id = str(project_id).strip()
        company.posthog_api_key_encrypted = encrypt_secret(api_key.strip())
        company.posthog_client_id = (client_id or "").strip() or company.slug
        self.session.flush()

        logger.info(
            "Analytics configuration updated",
            extra={"company_id": company.id, "project_id": company.posthog_project_id},
        )
        self._emit(
            company.id,
            AuditAction.ANALYTICS_CONFIG_CHANGED,
            user_id,
            {"project_id": company.posthog_project_id, "client_id": company.posthog_client_id},
        )
        return company

    def get_company_posthog_config(self, company_id: str) -> Dict[str, str]:
        """
        Decrypted PostHog settings for running queries.

        Raises:
            CompanyNotFoundError: If the company is missing or inactive
            AnalyticsNotConfiguredError: If project ID or API key is missing
        """
        company = self.session.query(Company).filter(
            Company.id == company_id,
            Company.is_active.is_(True),
        ).first()
        if company is None:
            raise CompanyNotFoundError(f"Company {company_id} not found")

        if not company.posthog_project_id or not company.posthog_api_key_encrypted:
            raise AnalyticsNotConfiguredError("PostHog configuration is incomplete")

        try:
            api_key = decrypt_secret(company.posthog_api_key_encrypted)
        except DecryptionError as e:
            logger.error("Failed to decrypt PostHog API key", extra={"company_id": company_id})
            raise AnalyticsNotConfiguredError("PostHog API key could not be decrypted") from e

        return {
            "project_id": company.posthog_project_id,
            "api_key": api_key,
            "client_id": company.effective_client_id,
            "name": company.name,
        }

    # =========================================================================
    # Digest recipients
    # =========================================================================

    def get_email_recipients(self, company_id: str) -> List[EmailRecipient]:
        return (
            self.session.query(EmailRecipient)
            .filter(
                EmailRecipient.company_id == company_id,
                EmailRecipient.is_active.is_(True),
            )
            .order_by(EmailRecipient.created_at)
            .all()
        )

    def add_email_recipient(
        self,
        company_id: str,
        email: str,
        name: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> EmailRecipient:
        email = (email or "").strip().lower()
        if "@" not in email:
            raise ValueError("Invalid email address")

        existing = self.session.query(EmailRecipient).filter(
            EmailRecipient.company_id == company_id,
            EmailRecipient.email == email,
        ).first()
        if existing and existing.is_active:
            raise RecipientExistsError(f"{email} is already a recipient")

        if existing:
            existing.is_active = True
            existing.name = name or existing.name
            recipient = existing
        else:
            recipient = EmailRecipient(company_id=company_id, email=email, name=name)
            self.session.add(recipient)
        self.session.flush()

        self._emit(company_id, AuditAction.EMAIL_RECIPIENT_ADDED, user_id, {"email": email})
        return recipient

    def remove_email_recipient(self, company_id: str, recipient_id: str, user_id: Optional[str] = None) -> None:
        recipient = self.session.query(EmailRecipient).filter(
            EmailRecipient.id == recipient_id,
            EmailRecipient.company_id == company_id,
        ).first()
        if recipient is None:
            raise RecipientNotFoundError(f"Recipient {recipient_id} not found")

        email = recipient.email
        self.session.delete(recipient)
        self.session.flush()
        self._emit(company_id, AuditAction.EMAIL_RECIPIENT_REMOVED, user_id, {"email": email})

    # =========================================================================
    # Audit
    # =========================================================================

    def _emit(self, company_id: str, action: AuditAction, user_id: Optional[str], metadata: Dict[str, Any]) -> None:
        write_audit_log_sync(
            db=self.session,
            event=AuditEvent(
                company_id=company_id,
                action=action,
                user_id=user_id,
                resource_type="company",
                resource_id=company_id,
                correlation_id=self.correlation_id,
                metadata=metadata,
            ),
        )
