"""
Onboarding and consent routes.

Endpoints:
- GET  /api/onboarding/status - Current onboarding step
- POST /api/consent/accept    - Record terms acceptance
- GET  /api/consent/check     - Consent state for the current user
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from src.auth.middleware import get_current_user
from src.database.session import get_db_session
from src.models.user import User
from src.services.onboarding_service import OnboardingService, resolve_client_ip

logger = logging.getLogger(__name__)

router = APIRouter(tags=["onboarding"])


class AcceptTermsRequest(BaseModel):
    terms_version: Optional[str] = Field(None, max_length=20)


@router.get("/api/onboarding/status")
async def onboarding_status(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db_session),
):
    return OnboardingService(db).get_onboarding_status(user)


@router.post("/api/consent/accept")
async def accept_terms(
    request: Request,
    body: AcceptTermsRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db_session),
):
    service = OnboardingService(db, correlation_id=getattr(request.state, "correlation_id", None))
    result = service.accept_terms(
        user,
        terms_version=body.terms_version,
        ip_address=resolve_client_ip(request.headers),
    )
    db.commit()
    return result


@router.get("/api/consent/check")
async def check_consent(user: User = Depends(get_current_user)):
    return OnboardingService.check_consent(user)
