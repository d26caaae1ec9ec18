"""
Super admin API endpoints.

SECURITY CRITICAL:
- All endpoints require the actor to be an existing super admin
- Super admin status is ONLY resolved from database, NEVER from JWT claims
- Impersonation start/end is audited against the target company

Endpoints:
- GET    /api/admin/companies    - List all companies
- POST   /api/admin/impersonate  - Start viewing as a company
- DELETE /api/admin/impersonate  - Stop impersonating
- GET    /api/admin/impersonate  - Current impersonation session
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from src.auth.context import AuthContext
from src.auth.middleware import require_auth
from src.database.session import get_db_session
from src.platform.audit import extract_client_info
from src.services.super_admin_service import (
    CompanyNotFoundError,
    NotSuperAdminError,
    SuperAdminService,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["admin"])


class StartImpersonationRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    company_id: str = Field(..., alias="companyId", min_length=1)
    reason: Optional[str] = Field(None, max_length=1000)


def require_super_admin(
    request: Request,
    auth: AuthContext = Depends(require_auth),
    db: Session = Depends(get_db_session),
) -> SuperAdminService:
    """
    Dependency that requires super admin status from database.

    Raises:
        HTTPException 403: If user is not a super admin
    """
    service = SuperAdminService(
        session=db,
        actor_user_id=auth.user_id,
        correlation_id=getattr(request.state, "correlation_id", None),
    )

    if not service.is_super_admin():
        logger.warning(
            "Non-super-admin attempted to access super admin endpoint",
            extra={"user_id": auth.user_id, "path": request.url.path},
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Forbidden: Super admin access required",
        )

    return service


@router.get("/companies")
async def list_companies(service: SuperAdminService = Depends(require_super_admin)):
    try:
        companies = service.list_companies()
    except NotSuperAdminError:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden: Super admin access required")
    return {"companies": companies}


@router.post("/impersonate")
async def start_impersonation(
    request: Request,
    body: StartImpersonationRequest,
    service: SuperAdminService = Depends(require_super_admin),
    db: Session = Depends(get_db_session),
):
    ip_address, user_agent = extract_client_info(request)
    try:
        result = service.start_impersonation(
            company_id=body.company_id,
            reason=body.reason,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        db.commit()
    except CompanyNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Company not found")
    except NotSuperAdminError:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden: Super admin access required")
    return result


@router.delete("/impersonate")
async def end_impersonation(
    service: SuperAdminService = Depends(require_super_admin),
    db: Session = Depends(get_db_session),
):
    ended = service.end_impersonation()
    db.commit()
    return {"success": True, "ended_sessions": ended}


@router.get("/impersonate")
async def get_impersonation(service: SuperAdminService = Depends(require_super_admin)):
    active = service.get_active_impersonation()
    return {
        "is_impersonating": active is not None,
        "session": active.to_dict() if active else None,
    }
