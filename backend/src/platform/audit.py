"""
Audit logging for AskMe Analytics.

SECURITY REQUIREMENTS:
- Audit logs are append-only (no UPDATE/DELETE)
- Every sensitive action writes an audit event
- Events carry company_id, user_id, action, timestamp, IP, user_agent, metadata
- PII fields are redacted before persistence
- Failed writes fall back to the "audit.fallback" logger and never
  break the request that triggered them

Audited actions:
- Team invites, acceptance, role changes, removals
- Impersonation start/end
- Billing checkout, subscription changes, payments
- AI insight generation and feedback
- Terms acceptance
- Analytics (PostHog) configuration changes
- Weekly digest delivery
"""

import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, FrozenSet, Optional

from fastapi import Request
from sqlalchemy import JSON, Column, DateTime, Index, String, Text
from sqlalchemy.orm import Session

from src.db_base import Base

logger = logging.getLogger(__name__)
fallback_logger = logging.getLogger("audit.fallback")

# Audit rows for platform-level events that are not tied to a company
SYSTEM_COMPANY_ID = "system"


class AuditAction(str, Enum):
    """Enumeration of all auditable actions."""

    # Company events
    COMPANY_CREATED = "company.created"
    COMPANY_UPDATED = "company.updated"
    ANALYTICS_CONFIG_CHANGED = "company.analytics_config_changed"
    EMAIL_RECIPIENT_ADDED = "company.email_recipient_added"
    EMAIL_RECIPIENT_REMOVED = "company.email_recipient_removed"

    # Billing events
    BILLING_CHECKOUT_STARTED = "billing.checkout_started"
    BILLING_PORTAL_OPENED = "billing.portal_opened"
    BILLING_SUBSCRIPTION_CREATED = "billing.subscription_created"
    BILLING_SUBSCRIPTION_UPDATED = "billing.subscription_updated"
    BILLING_SUBSCRIPTION_CANCELLED = "billing.subscription_cancelled"
    BILLING_PAYMENT_SUCCESS = "billing.payment_success"
    BILLING_PAYMENT_FAILED = "billing.payment_failed"

    # Team events
    TEAM_MEMBER_INVITED = "team.member_invited"
    TEAM_INVITE_ACCEPTED = "team.invite_accepted"
    TEAM_INVITE_REVOKED = "team.invite_revoked"
    TEAM_INVITE_EXPIRED = "team.invite_expired"
    TEAM_MEMBER_REMOVED = "team.member_removed"
    TEAM_ROLE_CHANGED = "team.role_changed"

    # Admin events
    ADMIN_IMPERSONATION_STARTED = "admin.impersonation_started"
    ADMIN_IMPERSONATION_ENDED = "admin.impersonation_ended"

    # AI events
    AI_INSIGHT_GENERATED = "ai.insight.generated"
    AI_INSIGHT_UPDATED = "ai.insight.updated"

    # Consent events
    TERMS_ACCEPTED = "consent.terms_accepted"

    # Digest events
    DIGEST_SENT = "digest.sent"
    DIGEST_FAILED = "digest.failed"


class AuditOutcome(str, Enum):
    """Outcome of the audited action."""
    SUCCESS = "success"
    FAILURE = "failure"
    DENIED = "denied"


class PIIRedactor:
    """
    Redacts PII fields from audit metadata before persistence.

    Redacted fields are replaced with "[REDACTED]" to keep the structure
    while removing sensitive data. Emails keep their domain.
    """

    REDACTED_FIELDS: FrozenSet[str] = frozenset({
        "email",
        "billing_email",
        "phone",
        "token",
        "invite_token",
        "access_token",
        "api_key",
        "posthog_api_key",
        "password",
        "secret",
        "card_number",
    })

    REDACTION_MARKER = "[REDACTED]"

    @classmethod
    def redact(cls, data: dict[str, Any]) -> dict[str, Any]:
        """Return a copy of data with PII fields redacted, recursively."""
        if not isinstance(data, dict):
            return data
        return cls._redact_dict(data)

    @classmethod
    def _redact_dict(cls, d: dict[str, Any]) -> dict[str, Any]:
        result = {}
        for key, value in d.items():
            lower_key = key.lower()
            if lower_key in cls.REDACTED_FIELDS:
                result[key] = cls._redact_value(lower_key, value)
            elif isinstance(value, dict):
                result[key] = cls._redact_dict(value)
            elif isinstance(value, list):
                result[key] = cls._redact_list(value)
            else:
                result[key] = value
        return result

    @classmethod
    def _redact_value(cls, key: str, value: Any) -> str:
        if value is None:
            return cls.REDACTION_MARKER
        if key.endswith("email") and isinstance(value, str) and "@" in value:
            return f"***@{value.rsplit('@', 1)[1]}"
        return cls.REDACTION_MARKER

    @classmethod
    def _redact_list(cls, lst: list[Any]) -> list[Any]:
        result = []
        for item in lst:
            if isinstance(item, dict):
                result.append(cls._redact_dict(item))
            elif isinstance(item, list):
                result.append(cls._redact_list(item))
            else:
                result.append(item)
        return result


class AuditLog(Base):
    """
    Audit log database model.

    This table is append-only. No UPDATE or DELETE operations are issued
    by application code.
    """
    __tablename__ = "audit_logs"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    company_id = Column(String(255), nullable=False, index=True)
    user_id = Column(String(255), nullable=True, index=True)  # NULL for system events
    action = Column(String(100), nullable=False, index=True)
    timestamp = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    ip_address = Column(String(45), nullable=True)
    user_agent = Column(Text, nullable=True)
    resource_type = Column(String(100), nullable=True)
    resource_id = Column(String(255), nullable=True)
    event_metadata = Column(JSON, nullable=False, default=dict)
    correlation_id = Column(String(36), nullable=False, index=True)
    source = Column(String(50), nullable=False, default="api")  # api, worker, system, webhook
    outcome = Column(String(20), nullable=False, default="success")
    error_code = Column(String(50), nullable=True)

    __table_args__ = (
        Index("ix_audit_logs_company_timestamp", "company_id", "timestamp"),
        Index("ix_audit_logs_company_action", "company_id", "action"),
    )


@dataclass
class AuditEvent:
    """
    Audit event data structure.

    PII in metadata is redacted when the event is converted for persistence.
    """
    company_id: str
    action: AuditAction
    user_id: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    resource_type: Optional[str] = None
    resource_id: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)
    correlation_id: Optional[str] = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    source: str = "api"
    outcome: AuditOutcome = AuditOutcome.SUCCESS
    error_code: Optional[str] = None

    @property
    def action_value(self) -> str:
        return self.action.value if isinstance(self.action, AuditAction) else self.action

    @property
    def outcome_value(self) -> str:
        return self.outcome.value if isinstance(self.outcome, AuditOutcome) else self.outcome

    def to_dict(self) -> dict[str, Any]:
        """Convert to a column dict for insertion, with PII redacted."""
        return {
            "company_id": self.company_id,
            "user_id": self.user_id,
            "action": self.action_value,
            "timestamp": self.timestamp,
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "resource_type": self.resource_type,
            "resource_id": self.resource_id,
            "event_metadata": PIIRedactor.redact(self.metadata),
            "correlation_id": self.correlation_id or str(uuid.uuid4()),
            "source": self.source,
            "outcome": self.outcome_value,
            "error_code": self.error_code,
        }


def extract_client_info(request: Request) -> tuple[Optional[str], Optional[str]]:
    """
    Extract client IP and user agent from request.

    Handles X-Forwarded-For for proxied requests.
    """
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        ip_address = forwarded_for.split(",")[0].strip()
    else:
        ip_address = request.client.host if request.client else None

    user_agent = request.headers.get("User-Agent")

    return ip_address, user_agent


def write_audit_log_sync(
    db: Session,
    event: AuditEvent,
) -> Optional[AuditLog]:
    """
    Write an audit event to the database.

    On failure, rolls back, writes to the fallback logger and returns None.
    Never raises.

    Args:
        db: SQLAlchemy Session
        event: The audit event to write

    Returns:
        The created AuditLog record, or None if the fallback was used
    """
    audit_id = str(uuid.uuid4())
    try:
        audit_log = AuditLog(id=audit_id, **event.to_dict())
        db.add(audit_log)
        db.commit()

        logger.info(
            "Audit event recorded",
            extra={
                "audit_id": audit_id,
                "company_id": event.company_id,
                "user_id": event.user_id,
                "action": event.action_value,
                "correlation_id": event.correlation_id,
                "source": event.source,
                "outcome": event.outcome_value,
            }
        )
        return audit_log

    except Exception as e:
        try:
            db.rollback()
        except Exception as rollback_error:
            logger.debug("Audit rollback failed", extra={"error": str(rollback_error)})

        _write_fallback_log(event, audit_id, str(e))
        return None


def _write_fallback_log(event: AuditEvent, audit_id: str, error_reason: str) -> None:
    """Write audit event to fallback logger when the database write fails."""
    fallback_entry = {
        "event_id": audit_id,
        "company_id": event.company_id,
        "user_id": event.user_id,
        "action": event.action_value,
        "timestamp": event.timestamp.isoformat(),
        "correlation_id": event.correlation_id,
        "source": event.source,
        "outcome": event.outcome_value,
        "resource_type": event.resource_type,
        "resource_id": event.resource_id,
        "metadata": PIIRedactor.redact(event.metadata),
        "ip_address": event.ip_address,
        "fallback_reason": error_reason,
    }
    fallback_logger.error(
        "Audit log fallback",
        extra={"audit_entry": json.dumps(fallback_entry, default=str)},
    )


def log_system_audit_event_sync(
    db: Session,
    company_id: str,
    action: AuditAction,
    resource_type: Optional[str] = None,
    resource_id: Optional[str] = None,
    metadata: Optional[dict[str, Any]] = None,
    correlation_id: Optional[str] = None,
    source: str = "system",
    outcome: AuditOutcome = AuditOutcome.SUCCESS,
    error_code: Optional[str] = None,
) -> str:
    """
    Log an audit event with no request context (webhooks, workers, cron).

    Returns:
        The correlation_id for the logged event
    """
    correlation_id = correlation_id or str(uuid.uuid4())

    event = AuditEvent(
        company_id=company_id,
        action=action,
        user_id=None,
        resource_type=resource_type,
        resource_id=resource_id,
        metadata=metadata or {},
        correlation_id=correlation_id,
        source=source,
        outcome=outcome,
        error_code=error_code,
    )

    write_audit_log_sync(db, event)
    return correlation_id
