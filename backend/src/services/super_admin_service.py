"""
SuperAdminService for company listing and impersonation.

SECURITY CRITICAL:
- Super admin status is NEVER determined from JWT claims
- Impersonation state lives in impersonation_logs; an open row
  (ended_at IS NULL) is the admin's active session
- Every start and end is audited against the target company

Usage:
    service = SuperAdminService(session, actor_user_id="user_xxx")

    service.start_impersonation(company_id="...", reason="Support ticket 42")
    service.end_impersonation()
"""

import logging
import uuid
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from src.models.company import Company
from src.models.impersonation_log import ImpersonationLog
from src.models.subscription import Subscription
from src.models.user import User
from src.platform.audit import (
    AuditAction,
    AuditEvent,
    write_audit_log_sync,
)

logger = logging.getLogger(__name__)

DEFAULT_IMPERSONATION_REASON = "Troubleshooting"


# =============================================================================
# Exceptions
# =============================================================================

class SuperAdminError(Exception):
    """Base exception for super admin service errors."""
    pass


class NotSuperAdminError(SuperAdminError):
    """Raised when actor is not a super admin."""
    pass


class CompanyNotFoundError(SuperAdminError):
    """Raised when the impersonation target does not exist."""
    pass


# =============================================================================
# Service
# =============================================================================

class SuperAdminService:
    """
    Service for super admin operations.

    SECURITY: All operations except is_super_admin require the actor to be
    an active super admin.
    """

    def __init__(
        self,
        session: Session,
        actor_user_id: Optional[str] = None,
        correlation_id: Optional[str] = None,
    ):
        """
        Initialize service with database session and actor context.

        Args:
            session: SQLAlchemy session for database operations
            actor_user_id: ID of the user performing the action
            correlation_id: Optional correlation ID for audit event tracing
        """
        self.session = session
        self.actor_user_id = actor_user_id
        self.correlation_id = correlation_id or str(uuid.uuid4())

    # =========================================================================
    # Authorization Checks
    # =========================================================================

    def is_super_admin(self, user_id: Optional[str] = None) -> bool:
        """
        Check if a user is a super admin.

        SECURITY: This reads directly from the database, never from JWT claims.

        Args:
            user_id: User ID to check (defaults to actor)
        """
        check_id = user_id or self.actor_user_id
        if not check_id:
            return False

        user = self.session.query(User).filter(
            User.id == check_id,
            User.is_active == True,
        ).first()

        return user is not None and user.is_super_admin is True

    def _verify_actor_is_super_admin(self) -> None:
        if not self.is_super_admin():
            logger.warning(
                "Non-super-admin attempted super admin operation",
                extra={"actor_user_id": self.actor_user_id},
            )
            raise NotSuperAdminError("Only super admins can perform this operation")

    # =========================================================================
    # Companies
    # =========================================================================

    def list_companies(self) -> List[Dict[str, Any]]:
        """All companies with subscription summary and active member count."""
        self._verify_actor_is_super_admin()

        user_counts = dict(
            self.session.query(User.company_id, func.count(User.id))
            .filter(User.company_id.isnot(None), User.is_active == True)
            .group_by(User.company_id)
            .all()
        )

        rows = (
            self.session.query(Company, Subscription)
            .outerjoin(Subscription, Subscription.company_id == Company.id)
            .order_by(Company.created_at.desc())
            .all()
        )

        companies = []
        for company, subscription in rows:
            companies.append({
                "id": company.id,
                "name": company.name,
                "slug": company.slug,
                "domain": company.domain,
                "is_active": company.is_active,
                "created_at": company.created_at.isoformat() if company.created_at else None,
                "subscription": {
                    "plan_id": subscription.plan_id,
                    "status": subscription.status,
                } if subscription else None,
                "user_count": user_counts.get(company.id, 0),
            })
        return companies

    # =========================================================================
    # Impersonation
    # =========================================================================

    def start_impersonation(
        self,
        company_id: str,
        reason: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Open an impersonation session for the actor.

        Any open session of this admin is closed first, so there is at most
        one active session per admin.

        Raises:
            NotSuperAdminError: If actor is not a super admin
            CompanyNotFoundError: If the company does not exist
        """
        self._verify_actor_is_super_admin()

        company = self.session.query(Company).filter(Company.id == company_id).first()
        if company is None:
            raise CompanyNotFoundError(f"Company {company_id} not found")

        closed = len(self._close_open_sessions(replaced_by=company.id))

        log = ImpersonationLog(
            super_admin_id=self.actor_user_id,
            target_company_id=company.id,
            reason=reason or DEFAULT_IMPERSONATION_REASON,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        self.session.add(log)
        self.session.flush()

        logger.warning(
            "Impersonation started",
            extra={
                "actor_user_id": self.actor_user_id,
                "company_id": company.id,
                "impersonation_id": log.id,
                "previous_sessions_closed": closed,
            },
        )
        self._emit(
            AuditAction.ADMIN_IMPERSONATION_STARTED,
            company.id,
            log.id,
            {"reason": log.reason, "ip_address": ip_address},
        )

        return {
            "success": True,
            "company": {"id": company.id, "name": company.name, "slug": company.slug},
            "started_at": log.started_at.isoformat(),
        }

    def end_impersonation(self) -> int:
        """
        Close the actor's open sessions.

        Returns:
            Number of sessions ended
        """
        self._verify_actor_is_super_admin()

        open_sessions = self._close_open_sessions()

        logger.info(
            "Impersonation ended",
            extra={"actor_user_id": self.actor_user_id, "count": len(open_sessions)},
        )
        return len(open_sessions)

    def get_active_impersonation(self, user_id: Optional[str] = None) -> Optional[ImpersonationLog]:
        check_id = user_id or self.actor_user_id
        if not check_id:
            return None
        return (
            self.session.query(ImpersonationLog)
            .filter(
                ImpersonationLog.super_admin_id == check_id,
                ImpersonationLog.ended_at.is_(None),
            )
            .order_by(ImpersonationLog.started_at.desc())
            .first()
        )

    # =========================================================================
    # Private Helpers
    # =========================================================================

    def _open_sessions(self) -> List[ImpersonationLog]:
        return self.session.query(ImpersonationLog).filter(
            ImpersonationLog.super_admin_id == self.actor_user_id,
            ImpersonationLog.ended_at.is_(None),
        ).all()

    def _close_open_sessions(self, replaced_by: Optional[str] = None) -> List[ImpersonationLog]:
        """End every open session of the actor, auditing each one."""
        open_sessions = self._open_sessions()
        for log in open_sessions:
            log.end()
        if open_sessions:
            self.session.flush()

        for log in open_sessions:
            metadata = {"started_at": log.started_at.isoformat()}
            if replaced_by:
                metadata["replaced_by_company_id"] = replaced_by
            self._emit(AuditAction.ADMIN_IMPERSONATION_ENDED, log.target_company_id, log.id, metadata)
        return open_sessions

    def _emit(
        self,
        action: AuditAction,
        company_id: str,
        impersonation_id: str,
        metadata: Dict[str, Any],
    ) -> None:
        write_audit_log_sync(
            db=self.session,
            event=AuditEvent(
                company_id=company_id,
                action=action,
                user_id=self.actor_user_id,
                resource_type="impersonation",
                resource_id=impersonation_id,
                correlation_id=self.correlation_id,
                metadata=metadata,
            ),
        )
