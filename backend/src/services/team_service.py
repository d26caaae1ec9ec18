"""
TeamService for company membership and invitations.

Handles:
- Listing members (and pending invites for owners/admins)
- Creating invitations with plan-based team size limits
- Accepting invitations from the emailed link
- Revoking invitations
- Role changes and member removal
- Expiring stale invitations (scheduled job)
- Audit event emission

Role rules:
- Only owners and admins manage the team
- The owner's role is fixed and nobody can be promoted to owner
- Admins cannot change or remove other admins
"""

import html
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from src.auth.permissions import can_manage_team
from src.config.settings import INVITE_EXPIRY_DAYS, get_site_url, get_team_limit
from src.integrations.email.resend_client import EmailSender, EmailSendError
from src.models.base import as_utc
from src.models.company import Company
from src.models.invite import InviteStatus, TeamInvite
from src.models.user import User, UserRole
from src.platform.audit import AuditAction, AuditEvent, AuditOutcome, write_audit_log_sync

logger = logging.getLogger(__name__)


# =============================================================================
# Exceptions
# =============================================================================

class TeamServiceError(Exception):
    """Base exception for team service errors."""
    pass


class TeamPermissionError(TeamServiceError):
    """Raised when the actor may not perform the operation."""
    pass


class InvalidRoleError(TeamServiceError):
    pass


class TeamLimitReachedError(TeamServiceError):
    pass


class UserAlreadyMemberError(TeamServiceError):
    """Raised when the email already belongs to a member of the company."""
    pass


class DuplicateInviteError(TeamServiceError):
    """Raised when a pending invite exists for the email."""
    pass


class InviteNotFoundError(TeamServiceError):
    pass


class InviteEmailMismatchError(TeamServiceError):
    pass


class InviteAlreadyAcceptedError(TeamServiceError):
    pass


class InviteExpiredError(TeamServiceError):
    pass


class InviteRevokedError(TeamServiceError):
    pass


class UserAlreadyInCompanyError(TeamServiceError):
    """Raised when the accepting user already belongs to a company."""
    pass


class InvalidStateError(TeamServiceError):
    """Raised when an invite is in an invalid state for the operation."""
    pass


class MemberNotFoundError(TeamServiceError):
    pass


class ProtectedMemberError(TeamServiceError):
    """Raised for owner role changes and removal of the owner or oneself."""
    pass


# =============================================================================
# Service
# =============================================================================

class TeamService:
    """Service for managing company members and invitations."""

    def __init__(
        self,
        session: Session,
        email_sender: Optional[EmailSender] = None,
        correlation_id: Optional[str] = None,
    ):
        """
        Initialize service with database session.

        Args:
            session: SQLAlchemy session for database operations
            email_sender: Resend wrapper; created lazily when an invite is sent
            correlation_id: Optional correlation ID for audit event tracing
        """
        self.session = session
        self._email_sender = email_sender
        self.correlation_id = correlation_id or str(uuid.uuid4())

    # =========================================================================
    # Members
    # =========================================================================

    def list_team(self, actor: User) -> Dict[str, Any]:
        company_id = self._require_company(actor)
        members = (
            self.session.query(User)
            .filter(User.company_id == company_id)
            .order_by(User.created_at)
            .all()
        )

        invites: List[Dict[str, Any]] = []
        if actor.is_owner_or_admin:
            pending = self.session.query(TeamInvite).filter(
                TeamInvite.company_id == company_id,
                TeamInvite.status == InviteStatus.PENDING,
            ).order_by(TeamInvite.created_at.desc()).all()
            invites = [invite.to_dict() for invite in pending if not invite.is_expired]

        return {
            "members": [self._member_dict(member) for member in members],
            "invites": invites,
            "current_user_role": actor.role,
        }

    def update_member_role(self, actor: User, user_id: str, role: str) -> User:
        """
        Raises:
            TeamPermissionError: If the actor is not owner/admin, or an admin targets an admin
            MemberNotFoundError: If the target is not in the actor's company
            ProtectedMemberError: For owner role changes or promotion to owner
            InvalidRoleError: If role is unknown
        """
        self._require_manager(actor)
        if role not in UserRole.values():
            raise InvalidRoleError(f"Invalid role: {role}")

        target = self._get_member(actor.company_id, user_id)
        if target.is_owner or role == UserRole.OWNER.value:
            raise ProtectedMemberError("Cannot change owner role")
        if actor.role == UserRole.ADMIN.value and target.role == UserRole.ADMIN.value:
            raise TeamPermissionError("Admins cannot change other admins")

        previous_role = target.role
        target.role = role
        self.session.flush()

        logger.info("Changed member role", extra={
            "company_id": actor.company_id,
            "user_id": target.id,
            "previous_role": previous_role,
            "role": role,
        })
        self._emit(
            AuditAction.TEAM_ROLE_CHANGED,
            actor.company_id,
            actor.id,
            "user",
            target.id,
            {"previous_role": previous_role, "new_role": role},
        )
        return target

    def remove_member(self, actor: User, user_id: str) -> None:
        self._require_manager(actor)
        target = self._get_member(actor.company_id, user_id)

        if target.is_owner or target.id == actor.id:
            raise ProtectedMemberError("Cannot remove this user")
        if actor.role == UserRole.ADMIN.value and target.role == UserRole.ADMIN.value:
            raise TeamPermissionError("Admins cannot remove other admins")

        company_id = actor.company_id
        target.company_id = None
        target.is_active = False
        self.session.flush()

        logger.info("Removed member", extra={"company_id": company_id, "user_id": target.id})
        self._emit(AuditAction.TEAM_MEMBER_REMOVED, company_id, actor.id, "user", target.id, {"role": target.role})

    # =========================================================================
    # Invitations
    # =========================================================================

    def create_invite(self, actor: User, email: str, role: str = UserRole.MEMBER.value) -> TeamInvite:
        """
        Create an invitation and email the link to the invitee.

        Returns:
            Created TeamInvite

        Raises:
            TeamPermissionError: If the actor is not owner/admin
            InvalidRoleError: If role is unknown
            TeamLimitReachedError: If the plan's team size is reached
            UserAlreadyMemberError: If the email already belongs to a member
            DuplicateInviteError: If a pending invite exists for the email
            ValueError: If the email is invalid
        """
        self._require_manager(actor)

        email = (email or "").strip().lower()
        if not email or "@" not in email:
            raise ValueError("Invalid email address")
        if role not in UserRole.values():
            raise InvalidRoleError(f"Invalid role: {role}")

        company = self.session.query(Company).filter(Company.id == actor.company_id).one()
        plan_key = (company.plan_id or "free").removesuffix("_yearly")
        limit = get_team_limit(plan_key)
        team_size = self._team_size(company.id)
        if team_size >= limit:
            raise TeamLimitReachedError(
                f"Team size limit reached for {plan_key} plan ({limit} members)"
            )

        existing_member = self.session.query(User).filter(
            User.company_id == company.id,
            func.lower(User.email) == email,
        ).first()
        if existing_member:
            raise UserAlreadyMemberError("User already exists in this company")

        existing_invite = self._get_pending_invite_by_email(company.id, email)
        if existing_invite and not existing_invite.is_expired:
            raise DuplicateInviteError(f"Pending invitation already exists for {email}")

        invite = TeamInvite.create_invite(
            company_id=company.id,
            email=email,
            role=role,
            invited_by=actor.id,
            expires_in_days=INVITE_EXPIRY_DAYS,
        )
        self.session.add(invite)
        self.session.flush()

        logger.info("Created invitation", extra={
            "invite_id": invite.id,
            "company_id": company.id,
            "role": role,
            "invited_by": actor.id,
        })

        self._send_invite_email(company, invite)
        self._emit(
            AuditAction.TEAM_MEMBER_INVITED,
            company.id,
            actor.id,
            "invite",
            invite.id,
            {"email": email, "role": role},
        )
        return invite

    def get_invite_by_token(self, token: str) -> Dict[str, Any]:
        """Public invite details for the acceptance page."""
        invite = self._get_invite_by_token(token)
        if invite is None:
            raise InviteNotFoundError("Invitation not found")

        return {
            "email": invite.email,
            "role": invite.role,
            "company_name": invite.company.name if invite.company else None,
            "status": invite.status.value,
            "expires_at": as_utc(invite.expires_at).isoformat(),
            "is_expired": invite.is_expired or invite.status == InviteStatus.EXPIRED,
            "is_accepted": invite.status == InviteStatus.ACCEPTED,
        }

    def accept_invite(self, user: User, token: str) -> Dict[str, Any]:
        """
        Attach the user to the invite's company.

        Raises:
            InviteNotFoundError: If the token is unknown
            InviteEmailMismatchError: If the invite is for another email
            InviteAlreadyAcceptedError: If already accepted
            InviteExpiredError: If expired
            InviteRevokedError: If revoked
            UserAlreadyInCompanyError: If the user already belongs to a company
        """
        invite = self._get_invite_by_token(token)
        if invite is None:
            raise InviteNotFoundError("Invitation not found")

        if (user.email or "").lower() != invite.email.lower():
            raise InviteEmailMismatchError("This invitation was sent to a different email address")
        if invite.status == InviteStatus.ACCEPTED:
            raise InviteAlreadyAcceptedError("Invitation already accepted")
        if invite.status == InviteStatus.REVOKED:
            raise InviteRevokedError("Invitation was revoked")
        if invite.status == InviteStatus.EXPIRED or invite.is_expired:
            raise InviteExpiredError("Invitation has expired")
        if user.company_id:
            raise UserAlreadyInCompanyError("User already belongs to a company")

        user.company_id = invite.company_id
        user.role = invite.role
        user.is_active = True
        invite.accept(user.id)
        self.session.flush()

        logger.info("Accepted invitation", extra={
            "invite_id": invite.id,
            "user_id": user.id,
            "company_id": invite.company_id,
            "role": invite.role,
        })
        self._emit(
            AuditAction.TEAM_INVITE_ACCEPTED,
            invite.company_id,
            user.id,
            "invite",
            invite.id,
            {"role": invite.role},
        )
        return {"company_id": invite.company_id, "role": invite.role}

    def revoke_invite(self, actor: User, invite_id: str) -> TeamInvite:
        self._require_manager(actor)
        invite = self.session.query(TeamInvite).filter(
            TeamInvite.id == invite_id,
            TeamInvite.company_id == actor.company_id,
        ).first()
        if invite is None:
            raise InviteNotFoundError(f"Invitation {invite_id} not found")
        if invite.status != InviteStatus.PENDING:
            raise InvalidStateError(f"Cannot revoke invitation with status {invite.status.value}")

        invite.revoke()
        self.session.flush()

        logger.info("Revoked invitation", extra={"invite_id": invite.id, "revoked_by": actor.id})
        self._emit(AuditAction.TEAM_INVITE_REVOKED, invite.company_id, actor.id, "invite", invite.id, {})
        return invite

    def expire_stale_invites(self) -> int:
        """
        Expire all stale pending invitations.

        Called by scheduled job to mark expired invites.

        Returns:
            Number of invites expired
        """
        now = datetime.now(timezone.utc)
        stale_invites = self.session.query(TeamInvite).filter(
            TeamInvite.status == InviteStatus.PENDING,
            TeamInvite.expires_at < now,
        ).all()

        for invite in stale_invites:
            invite.mark_expired()
        if stale_invites:
            self.session.flush()

        for invite in stale_invites:
            self._emit(AuditAction.TEAM_INVITE_EXPIRED, invite.company_id, None, "invite", invite.id, {})

        logger.info("Expired stale invitations", extra={"count": len(stale_invites)})
        return len(stale_invites)

    # =========================================================================
    # Private Helpers
    # =========================================================================

    @staticmethod
    def _require_company(actor: User) -> str:
        if not actor.company_id:
            raise MemberNotFoundError("Company not found")
        return actor.company_id

    def _require_manager(self, actor: User) -> None:
        self._require_company(actor)
        if not can_manage_team(actor):
            raise TeamPermissionError("Insufficient permissions")

    def _team_size(self, company_id: str) -> int:
        return self.session.query(func.count(User.id)).filter(User.company_id == company_id).scalar() or 0

    def _get_member(self, company_id: str, user_id: str) -> User:
        member = self.session.query(User).filter(
            User.id == user_id,
            User.company_id == company_id,
        ).first()
        if member is None:
            raise MemberNotFoundError("User not found")
        return member

    def _get_invite_by_token(self, token: str) -> Optional[TeamInvite]:
        return self.session.query(TeamInvite).filter(TeamInvite.token == token).first()

    def _get_pending_invite_by_email(self, company_id: str, email: str) -> Optional[TeamInvite]:
        return self.session.query(TeamInvite).filter(
            TeamInvite.company_id == company_id,
            TeamInvite.email == email,
            TeamInvite.status == InviteStatus.PENDING,
        ).first()

    @staticmethod
    def _member_dict(member: User) -> Dict[str, Any]:
        return {
            "id": member.id,
            "email": member.email,
            "name": member.name,
            "role": member.role,
            "is_active": member.is_active,
            "last_login_at": as_utc(member.last_login_at).isoformat() if member.last_login_at else None,
            "created_at": as_utc(member.created_at).isoformat() if member.created_at else None,
        }

    def _send_invite_email(self, company: Company, invite: TeamInvite) -> None:
        """Email failures are logged; the invite stays valid."""
        invite_url = f"{get_site_url()}/invite/{invite.token}"
        name = html.escape(company.name)
        body = f"""
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
  <h2>You're invited to join {name}</h2>
  <p>You've been invited to join {name} as a {invite.role}.</p>
  <p>Click the button below to accept your invitation:</p>
  <a href="{invite_url}" style="display: inline-block; background-color: #007bff; color: white; padding: 12px 24px; text-decoration: none; border-radius: 4px; margin: 16px 0;">Accept Invitation</a>
  <p>Or copy and paste this link: {invite_url}</p>
  <p>This invitation expires in {INVITE_EXPIRY_DAYS} days.</p>
</div>
"""
        try:
            sender = self._email_sender or EmailSender()
            sender.send(to=invite.email, subject=f"You're invited to join {company.name}", html=body)
        except EmailSendError as e:
            logger.warning("Invite email failed", extra={"invite_id": invite.id, "error": str(e)})
            self._emit(
                AuditAction.TEAM_MEMBER_INVITED,
                company.id,
                invite.invited_by,
                "invite",
                invite.id,
                {"email_sent": False},
                outcome=AuditOutcome.FAILURE,
            )

    # =========================================================================
    # Audit Event Emission
    # =========================================================================

    def _emit(
        self,
        action: AuditAction,
        company_id: str,
        user_id: Optional[str],
        resource_type: str,
        resource_id: Optional[str],
        metadata: Dict[str, Any],
        outcome: AuditOutcome = AuditOutcome.SUCCESS,
    ) -> None:
        write_audit_log_sync(
            db=self.session,
            event=AuditEvent(
                company_id=company_id,
                action=action,
                user_id=user_id or "system",
                resource_type=resource_type,
                resource_id=resource_id,
                correlation_id=self.correlation_id,
                metadata=metadata,
                outcome=outcome,
            ),
        )
