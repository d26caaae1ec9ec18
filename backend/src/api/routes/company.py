"""
Company API routes.

Endpoints:
- GET    /api/company                   - Current company profile
- POST   /api/company                   - Create company (onboarding step 1)
- PATCH  /api/company                   - Update profile and business context
- PUT    /api/company/posthog           - Connect PostHog (owner/admin)
- GET    /api/company/recipients        - Digest recipients
- POST   /api/company/recipients        - Add digest recipient
- DELETE /api/company/recipients/{id}   - Remove digest recipient

company_id is NEVER accepted from the request body; it comes from the
resolved company context.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from src.api.dependencies.company_context import CompanyContext, get_company_context
from src.auth.middleware import get_current_user
from src.auth.permissions import is_owner_or_admin
from src.database.session import get_db_session
from src.models.user import User
from src.services.company_service import (
    CompanyNotFoundError,
    CompanyService,
    RecipientExistsError,
    RecipientNotFoundError,
    SlugConflictError,
    UserAlreadyHasCompanyError,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/company", tags=["company"])


# =============================================================================
# Request/Response Models
# =============================================================================

class BusinessContextFields(BaseModel):
    industry: Optional[str] = None
    business_model: Optional[str] = None
    primary_goal: Optional[str] = None
    audience_region: Optional[str] = None
    traffic_sources: Optional[List[str]] = None
    monthly_visitors: Optional[int] = Field(None, ge=0)


class CreateCompanyRequest(BusinessContextFields):
    name: str = Field(..., min_length=1, max_length=255)
    slug: Optional[str] = Field(None, max_length=255)
    domain: Optional[str] = None
    billing_email: Optional[str] = None


class UpdateCompanyRequest(BusinessContextFields):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    domain: Optional[str] = None
    billing_email: Optional[str] = None


class PostHogConfigRequest(BaseModel):
    project_id: str = Field(..., min_length=1)
    api_key: str = Field(..., min_length=1)
    client_id: Optional[str] = None


class AddRecipientRequest(BaseModel):
    email: str = Field(..., min_length=3)
    name: Optional[str] = None


def _service(request: Request, db: Session) -> CompanyService:
    return CompanyService(db, correlation_id=getattr(request.state, "correlation_id", None))


# =============================================================================
# Endpoints
# =============================================================================

@router.get("")
async def get_company(ctx: CompanyContext = Depends(get_company_context)):
    return {
        "company": ctx.company.to_dict(),
        "role": ctx.user.role,
        "is_impersonating": ctx.is_impersonating,
    }


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_company(
    request: Request,
    body: CreateCompanyRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db_session),
):
    business_context = body.model_dump(
        include=set(BusinessContextFields.model_fields), exclude_none=True
    )
    try:
        company = _service(request, db).create_company_for_user(
            user,
            name=body.name,
            slug=body.slug,
            domain=body.domain,
            billing_email=body.billing_email,
            **business_context,
        )
        db.commit()
    except UserAlreadyHasCompanyError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except SlugConflictError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    return {"success": True, "company": company.to_dict()}


@router.patch("")
async def update_company(
    request: Request,
    body: UpdateCompanyRequest,
    ctx: CompanyContext = Depends(get_company_context),
    db: Session = Depends(get_db_session),
):
    if not is_owner_or_admin(ctx.user) and not ctx.is_impersonating:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions")

    company = _service(request, db).update_company(
        ctx.company_id, user_id=ctx.user.id, **body.model_dump(exclude_none=True)
    )
    db.commit()
    return {"success": True, "company": company.to_dict()}


@router.put("/posthog")
async def update_posthog_config(
    request: Request,
    body: PostHogConfigRequest,
    ctx: CompanyContext = Depends(get_company_context),
    db: Session = Depends(get_db_session),
):
    if not is_owner_or_admin(ctx.user) and not ctx.is_impersonating:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions")

    try:
        company = _service(request, db).update_posthog_config(
            ctx.company_id,
            project_id=body.project_id,
            api_key=body.api_key,
            client_id=body.client_id,
            user_id=ctx.user.id,
        )
        db.commit()
    except CompanyNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Company not found")
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    return {"success": True, "company": company.to_dict()}


@router.get("/recipients")
async def list_recipients(
    ctx: CompanyContext = Depends(get_company_context),
    db: Session = Depends(get_db_session),
):
    recipients = CompanyService(db).get_email_recipients(ctx.company_id)
    return {"recipients": [r.to_dict() for r in recipients]}


@router.post("/recipients", status_code=status.HTTP_201_CREATED)
async def add_recipient(
    request: Request,
    body: AddRecipientRequest,
    ctx: CompanyContext = Depends(get_company_context),
    db: Session = Depends(get_db_session),
):
    try:
        recipient = _service(request, db).add_email_recipient(
            ctx.company_id, email=body.email, name=body.name, user_id=ctx.user.id
        )
        db.commit()
    except RecipientExistsError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    return {"success": True, "recipient": recipient.to_dict()}


@router.delete("/recipients/{recipient_id}")
async def remove_recipient(
    request: Request,
    recipient_id: str,
    ctx: CompanyContext = Depends(get_company_context),
    db: Session = Depends(get_db_session),
):
    try:
        _service(request, db).remove_email_recipient(ctx.company_id, recipient_id, user_id=ctx.user.id)
        db.commit()
    except RecipientNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Recipient not found")

    return {"success": True}
