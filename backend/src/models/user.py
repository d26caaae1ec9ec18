"""
User model.

User.id is the identity provider subject (JWT "sub"). A user belongs to at
most one company; removing a member clears company_id and deactivates them.
"""

import enum

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, String
from sqlalchemy.orm import relationship

from src.db_base import Base
from src.models.base import TimestampMixin


class UserRole(str, enum.Enum):
    """Role within a company."""
    OWNER = "owner"
    ADMIN = "admin"
    MEMBER = "member"

    @classmethod
    def values(cls) -> list:
        return [role.value for role in cls]


class User(Base, TimestampMixin):
    """An authenticated person, optionally attached to a company."""

    __tablename__ = "users"

    id = Column(String(255), primary_key=True)
    company_id = Column(
        String(255),
        ForeignKey("companies.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    email = Column(String(255), nullable=False, index=True)
    name = Column(String(255), nullable=True)
    role = Column(String(20), nullable=False, default=UserRole.MEMBER.value)
    is_active = Column(Boolean, nullable=False, default=True)
    is_super_admin = Column(Boolean, nullable=False, default=False)
    last_login_at = Column(DateTime(timezone=True), nullable=True)

    # Terms of service consent
    terms_accepted_at = Column(DateTime(timezone=True), nullable=True)
    terms_version = Column(String(20), nullable=True)
    consent_ip_address = Column(String(45), nullable=True)

    company = relationship("Company", back_populates="users")

    def __repr__(self) -> str:
        return f"<User(id={self.id}, company_id={self.company_id}, role={self.role})>"

    @property
    def is_owner(self) -> bool:
        return self.role == UserRole.OWNER.value

    @property
    def is_owner_or_admin(self) -> bool:
        return self.role in (UserRole.OWNER.value, UserRole.ADMIN.value)
