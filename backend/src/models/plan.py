"""
Billing plan catalog.

Plans are seeded by operators; Stripe price IDs are resolved from the
environment (see src.config.settings.get_stripe_price_id).
"""

from sqlalchemy import Boolean, Column, Integer, String, Text

from src.db_base import Base
from src.models.base import TimestampMixin


class Plan(Base, TimestampMixin):
    """A subscription plan and the features it unlocks."""

    __tablename__ = "plans"

    id = Column(String(64), primary_key=True, comment="e.g. starter, growth, enterprise")
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    price_cents = Column(Integer, nullable=False, default=0)
    currency = Column(String(3), nullable=False, default="usd")
    interval = Column(String(10), nullable=False, default="month")
    max_team_members = Column(Integer, nullable=True)

    # Feature flags
    ai_insights = Column(Boolean, nullable=False, default=True)
    slack_integration = Column(Boolean, nullable=False, default=False)
    email_digest = Column(Boolean, nullable=False, default=True)
    priority_support = Column(Boolean, nullable=False, default=False)

    is_popular = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)
    sort_order = Column(Integer, nullable=False, default=0)

    def __repr__(self) -> str:
        return f"<Plan(id={self.id}, price_cents={self.price_cents})>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "price_cents": self.price_cents,
            "currency": self.currency,
            "interval": self.interval,
            "max_team_members": self.max_team_members,
            "features": {
                "ai_insights": self.ai_insights,
                "slack_integration": self.slack_integration,
                "email_digest": self.email_digest,
                "priority_support": self.priority_support,
            },
            "is_popular": self.is_popular,
        }
