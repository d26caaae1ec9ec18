"""
Email digest recipients and delivery records.
"""

from datetime import datetime, timezone

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, String, Text, UniqueConstraint

from src.db_base import Base
from src.models.base import TimestampMixin, generate_uuid


class EmailRecipient(Base, TimestampMixin):
    """An address that receives the weekly digest for a company."""

    __tablename__ = "email_recipients"

    id = Column(String(255), primary_key=True, default=generate_uuid)
    company_id = Column(String(255), ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    email = Column(String(255), nullable=False)
    name = Column(String(255), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    __table_args__ = (
        UniqueConstraint("company_id", "email", name="uq_email_recipients_company_email"),
    )

    def to_dict(self) -> dict:
        return {"id": self.id, "email": self.email, "name": self.name, "is_active": self.is_active}


class EmailDigest(Base, TimestampMixin):
    """A sent weekly digest."""

    __tablename__ = "email_digests"

    id = Column(String(255), primary_key=True, default=generate_uuid)
    company_id = Column(String(255), ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    snapshot_id = Column(String(255), ForeignKey("analytics_snapshots.id", ondelete="SET NULL"), nullable=True)
    insight_id = Column(String(255), ForeignKey("ai_insights.id", ondelete="SET NULL"), nullable=True)
    recipients = Column(JSON, nullable=False, default=list)
    subject = Column(String(500), nullable=False)
    content = Column(Text, nullable=True)
    provider_message_id = Column(String(255), nullable=True)
    sent_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
