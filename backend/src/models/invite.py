"""
TeamInvite model for the team invitation flow.

Lifecycle:
1. Owner/admin creates invite via POST /api/team/invite (status=pending)
2. Invitee follows the emailed link /invite/{token}
3. TeamService.accept_invite() attaches the user to the company, marks accepted
4. Expired invites are marked by the invite expiry job

SECURITY:
- Invites expire after 7 days
- Duplicate pending invites for the same email+company are blocked
- Only pending, unexpired invites can be accepted
- The token is only ever sent to the invitee's email address
"""

import enum
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import Column, DateTime, Enum as SAEnum, ForeignKey, Index, String
from sqlalchemy.orm import relationship

from src.db_base import Base
from src.models.base import TimestampMixin, as_utc


class InviteStatus(str, enum.Enum):
    """Invitation lifecycle status."""
    PENDING = "pending"
    ACCEPTED = "accepted"
    EXPIRED = "expired"
    REVOKED = "revoked"


class TeamInvite(Base, TimestampMixin):
    """Pending or historical invitation for a user to join a company."""

    __tablename__ = "invites"

    id = Column(
        String(255),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
        comment="Internal UUID primary key"
    )

    company_id = Column(
        String(255),
        ForeignKey("companies.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="Company this invitation is for"
    )

    email = Column(
        String(255),
        nullable=False,
        index=True,
        comment="Email address of invitee (stored lowercase)"
    )

    role = Column(
        String(20),
        nullable=False,
        default="member",
        comment="Role to grant upon acceptance"
    )

    token = Column(
        String(64),
        nullable=False,
        unique=True,
        default=lambda: str(uuid.uuid4()),
        comment="Opaque token embedded in the invitation link"
    )

    status = Column(
        SAEnum(InviteStatus, name="invite_status", create_constraint=True),
        nullable=False,
        default=InviteStatus.PENDING,
        index=True,
        comment="Current invitation status"
    )

    expires_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc) + timedelta(days=7),
        comment="When invitation expires (default 7 days)"
    )

    invited_by = Column(
        String(255),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        comment="User ID of the inviter"
    )

    accepted_at = Column(
        DateTime(timezone=True),
        nullable=True,
        comment="When invitation was accepted"
    )

    accepted_by_user_id = Column(
        String(255),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        comment="User ID of acceptor"
    )

    company = relationship("Company", lazy="joined")

    __table_args__ = (
        Index("ix_invites_company_email", "company_id", "email"),
        Index("ix_invites_company_status", "company_id", "status"),
    )

    def __repr__(self) -> str:
        return (
            f"<TeamInvite(id={self.id}, company_id={self.company_id}, "
            f"status={self.status.value if self.status else None})>"
        )

    @property
    def is_expired(self) -> bool:
        """True if the invite is pending and past its expiry time."""
        if self.status != InviteStatus.PENDING:
            return False
        return datetime.now(timezone.utc) > as_utc(self.expires_at)

    @property
    def is_actionable(self) -> bool:
        """True if the invitation can still be accepted or revoked."""
        return self.status == InviteStatus.PENDING and not self.is_expired

    def accept(self, user_id: str) -> None:
        self.status = InviteStatus.ACCEPTED
        self.accepted_at = datetime.now(timezone.utc)
        self.accepted_by_user_id = user_id

    def mark_expired(self) -> None:
        self.status = InviteStatus.EXPIRED

    def revoke(self) -> None:
        self.status = InviteStatus.REVOKED

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "role": self.role,
            "status": self.status.value if self.status else None,
            "expires_at": as_utc(self.expires_at).isoformat() if self.expires_at else None,
            "created_at": as_utc(self.created_at).isoformat() if self.created_at else None,
        }

    @classmethod
    def create_invite(
        cls,
        company_id: str,
        email: str,
        role: str = "member",
        invited_by: Optional[str] = None,
        expires_in_days: int = 7,
    ) -> "TeamInvite":
        """
        Factory method for creating a new pending invite.

        Args:
            company_id: Target company ID
            email: Invitee email address
            role: Role to grant on acceptance
            invited_by: User ID of inviter
            expires_in_days: Days until expiration

        Returns:
            New TeamInvite instance with a fresh token
        """
        now = datetime.now(timezone.utc)
        return cls(
            company_id=company_id,
            email=email.strip().lower(),
            role=role,
            token=str(uuid.uuid4()),
            status=InviteStatus.PENDING,
            invited_by=invited_by,
            expires_at=now + timedelta(days=expires_in_days),
        )
