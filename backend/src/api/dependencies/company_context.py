"""
Resolve the company a request acts on.

For regular users this is their own company. For a super admin with an
open impersonation session, it is the impersonated company, so every
company-scoped route transparently "views as" that company.
"""

import logging
from dataclasses import dataclass

from fastapi import Depends, HTTPException, status
from sqlalchemy.orm import Session

from src.auth.middleware import get_current_user
from src.auth.permissions import can_impersonate
from src.database.session import get_db_session
from src.models.company import Company
from src.models.impersonation_log import ImpersonationLog
from src.models.user import User

logger = logging.getLogger(__name__)


@dataclass
class CompanyContext:
    user: User
    company: Company
    is_impersonating: bool = False

    @property
    def company_id(self) -> str:
        return self.company.id


def resolve_company_context(db: Session, user: User) -> CompanyContext:
    """
    Raises:
        HTTPException 404: If the user has no company (and is not impersonating)
    """
    if can_impersonate(user):
        session = (
            db.query(ImpersonationLog)
            .filter(
                ImpersonationLog.super_admin_id == user.id,
                ImpersonationLog.ended_at.is_(None),
            )
            .order_by(ImpersonationLog.started_at.desc())
            .first()
        )
        if session and session.target_company is not None:
            return CompanyContext(user=user, company=session.target_company, is_impersonating=True)

    company = None
    if user.company_id:
        company = db.query(Company).filter(Company.id == user.company_id).first()
    if company is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Company not found")
    return CompanyContext(user=user, company=company)


def get_company_context(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db_session),
) -> CompanyContext:
    """FastAPI dependency wrapping resolve_company_context."""
    return resolve_company_context(db, user)
