"""
Subscription and payment records, mirrored from Stripe webhooks.

One subscription row per company (company_id is unique). Status values
are Stripe's subscription statuses and are stored as plain strings.
"""

import enum

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from src.db_base import Base
from src.models.base import TimestampMixin, generate_uuid


class SubscriptionStatus(str, enum.Enum):
    TRIALING = "trialing"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    INCOMPLETE = "incomplete"
    UNPAID = "unpaid"


class Subscription(Base, TimestampMixin):
    """A company's current subscription."""

    __tablename__ = "subscriptions"

    id = Column(String(255), primary_key=True, default=generate_uuid)
    company_id = Column(
        String(255),
        ForeignKey("companies.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    plan_id = Column(String(64), ForeignKey("plans.id"), nullable=True)
    status = Column(String(32), nullable=False, default=SubscriptionStatus.INCOMPLETE.value, index=True)

    current_period_start = Column(DateTime(timezone=True), nullable=True)
    current_period_end = Column(DateTime(timezone=True), nullable=True)
    trial_end = Column(DateTime(timezone=True), nullable=True)
    cancel_at_period_end = Column(Boolean, nullable=False, default=False)
    canceled_at = Column(DateTime(timezone=True), nullable=True)

    stripe_customer_id = Column(String(255), nullable=True, index=True)
    stripe_subscription_id = Column(String(255), nullable=True, unique=True)

    company = relationship("Company", back_populates="subscription")
    plan = relationship("Plan", lazy="joined")

    def __repr__(self) -> str:
        return f"<Subscription(company_id={self.company_id}, plan_id={self.plan_id}, status={self.status})>"

    @property
    def is_active(self) -> bool:
        return self.status in (SubscriptionStatus.ACTIVE.value, SubscriptionStatus.TRIALING.value)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "plan_id": self.plan_id,
            "plan": self.plan.to_dict() if self.plan else None,
            "status": self.status,
            "current_period_start": self.current_period_start.isoformat() if self.current_period_start else None,
            "current_period_end": self.current_period_end.isoformat() if self.current_period_end else None,
            "trial_end": self.trial_end.isoformat() if self.trial_end else None,
            "cancel_at_period_end": self.cancel_at_period_end,
            "canceled_at": self.canceled_at.isoformat() if self.canceled_at else None,
        }


class Payment(Base, TimestampMixin):
    """A paid invoice. stripe_invoice_id is unique so replays are no-ops."""

    __tablename__ = "payments"

    id = Column(String(255), primary_key=True, default=generate_uuid)
    company_id = Column(String(255), ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    subscription_id = Column(String(255), ForeignKey("subscriptions.id", ondelete="SET NULL"), nullable=True)
    stripe_invoice_id = Column(String(255), nullable=False, unique=True)
    stripe_payment_intent_id = Column(String(255), nullable=True)
    amount_cents = Column(Integer, nullable=False, default=0)
    currency = Column(String(3), nullable=False, default="usd")
    status = Column(String(32), nullable=False, default="succeeded")
    paid_at = Column(DateTime(timezone=True), nullable=True)
