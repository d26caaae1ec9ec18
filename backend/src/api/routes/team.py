"""
Team management routes.

Endpoints:
- GET    /api/team                 - Members (and pending invites for owner/admin)
- PATCH  /api/team                 - Change a member's role
- DELETE /api/team?userId=...      - Remove a member
- POST   /api/team/invite          - Invite by email
- GET    /api/team/invite/{token}  - Public invite details
- POST   /api/team/accept          - Accept an invite as the current user
- DELETE /api/team/invites/{id}    - Revoke a pending invite
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from src.auth.middleware import get_current_user
from src.database.session import get_db_session
from src.models.user import User, UserRole
from src.services.team_service import (
    DuplicateInviteError,
    InvalidRoleError,
    InvalidStateError,
    InviteAlreadyAcceptedError,
    InviteEmailMismatchError,
    InviteExpiredError,
    InviteNotFoundError,
    InviteRevokedError,
    MemberNotFoundError,
    ProtectedMemberError,
    TeamLimitReachedError,
    TeamPermissionError,
    TeamService,
    TeamServiceError,
    UserAlreadyInCompanyError,
    UserAlreadyMemberError,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/team", tags=["team"])

# Service exception -> HTTP status
_ERROR_STATUS = {
    TeamPermissionError: status.HTTP_403_FORBIDDEN,
    InviteEmailMismatchError: status.HTTP_403_FORBIDDEN,
    MemberNotFoundError: status.HTTP_404_NOT_FOUND,
    InviteNotFoundError: status.HTTP_404_NOT_FOUND,
    DuplicateInviteError: status.HTTP_409_CONFLICT,
    InviteAlreadyAcceptedError: status.HTTP_409_CONFLICT,
    UserAlreadyInCompanyError: status.HTTP_409_CONFLICT,
    InviteExpiredError: status.HTTP_410_GONE,
    InviteRevokedError: status.HTTP_410_GONE,
    InvalidRoleError: status.HTTP_400_BAD_REQUEST,
    InvalidStateError: status.HTTP_400_BAD_REQUEST,
    ProtectedMemberError: status.HTTP_400_BAD_REQUEST,
    TeamLimitReachedError: status.HTTP_400_BAD_REQUEST,
    UserAlreadyMemberError: status.HTTP_400_BAD_REQUEST,
}


def _to_http(e: TeamServiceError) -> HTTPException:
    return HTTPException(
        status_code=_ERROR_STATUS.get(type(e), status.HTTP_400_BAD_REQUEST),
        detail=str(e),
    )


class InviteRequest(BaseModel):
    email: str = Field(..., min_length=3)
    role: str = UserRole.MEMBER.value


class AcceptInviteRequest(BaseModel):
    token: str = Field(..., min_length=1)


class UpdateRoleRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(..., alias="userId")
    role: str


def _service(request: Request, db: Session) -> TeamService:
    return TeamService(db, correlation_id=getattr(request.state, "correlation_id", None))


@router.get("")
async def list_team(
    request: Request,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db_session),
):
    try:
        return _service(request, db).list_team(user)
    except TeamServiceError as e:
        raise _to_http(e)


@router.patch("")
async def update_member_role(
    request: Request,
    body: UpdateRoleRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db_session),
):
    try:
        member = _service(request, db).update_member_role(user, body.user_id, body.role)
        db.commit()
    except TeamServiceError as e:
        raise _to_http(e)
    return {"success": True, "user": {"id": member.id, "role": member.role}}


@router.delete("")
async def remove_member(
    request: Request,
    user_id: str = Query(..., alias="userId"),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db_session),
):
    try:
        _service(request, db).remove_member(user, user_id)
        db.commit()
    except TeamServiceError as e:
        raise _to_http(e)
    return {"success": True}


@router.post("/invite")
async def create_invite(
    request: Request,
    body: InviteRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db_session),
):
    try:
        invite = _service(request, db).create_invite(user, body.email, body.role)
        db.commit()
    except TeamServiceError as e:
        raise _to_http(e)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    return {
        "success": True,
        "invite": {
            "id": invite.id,
            "email": invite.email,
            "role": invite.role,
            "expires_at": invite.to_dict()["expires_at"],
        },
    }


@router.get("/invite/{token}")
async def get_invite(token: str, db: Session = Depends(get_db_session)):
    try:
        return TeamService(db).get_invite_by_token(token)
    except InviteNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Invalid invitation")


@router.post("/accept")
async def accept_invite(
    request: Request,
    body: AcceptInviteRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db_session),
):
    try:
        result = _service(request, db).accept_invite(user, body.token)
        db.commit()
    except TeamServiceError as e:
        raise _to_http(e)
    return {"success": True, **result}


@router.delete("/invites/{invite_id}")
async def revoke_invite(
    request: Request,
    invite_id: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db_session),
):
    try:
        _service(request, db).revoke_invite(user, invite_id)
        db.commit()
    except TeamServiceError as e:
        raise _to_http(e)
    return {"success": True}
