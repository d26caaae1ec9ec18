"""
Impersonation log.

Each row is one super-admin "view as company" session. A row with
ended_at IS NULL is the admin's active impersonation; there is at most
one open row per admin (older ones are closed when a new one starts).
"""

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, ForeignKey, Index, String, Text
from sqlalchemy.orm import relationship

from src.db_base import Base
from src.models.base import TimestampMixin, as_utc, generate_uuid


class ImpersonationLog(Base, TimestampMixin):
    __tablename__ = "impersonation_logs"

    id = Column(String(255), primary_key=True, default=generate_uuid)
    super_admin_id = Column(String(255), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    target_company_id = Column(String(255), ForeignKey("companies.id", ondelete="CASCADE"), nullable=False)
    reason = Column(Text, nullable=False, default="Troubleshooting")
    started_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    ended_at = Column(DateTime(timezone=True), nullable=True)
    ip_address = Column(String(45), nullable=True)
    user_agent = Column(Text, nullable=True)

    target_company = relationship("Company", lazy="joined")

    __table_args__ = (
        Index("ix_impersonation_logs_admin_open", "super_admin_id", "ended_at"),
    )

    @property
    def is_active(self) -> bool:
        return self.ended_at is None

    def end(self) -> None:
        self.ended_at = datetime.now(timezone.utc)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "company_id": self.target_company_id,
            "company_name": self.target_company.name if self.target_company else None,
            "reason": self.reason,
            "started_at": as_utc(self.started_at).isoformat(),
            "ended_at": as_utc(self.ended_at).isoformat() if self.ended_at else None,
        }
