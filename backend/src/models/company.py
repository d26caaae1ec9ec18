"""
Company model: the tenant entity.

A company owns its users, its subscription, and its analytics provider
configuration. All tenant-scoped tables reference companies.id.

SECURITY:
- posthog_api_key_encrypted holds AES-GCM ciphertext (see src.utils.encryption)
- The decrypted key is only materialized by CompanyService when running queries
"""

import re
from typing import Optional

from sqlalchemy import JSON, Boolean, Column, DateTime, Integer, String
from sqlalchemy.orm import relationship

from src.db_base import Base
from src.models.base import TimestampMixin, as_utc, generate_uuid

_SLUG_INVALID_CHARS = re.compile(r"[^a-z0-9]+")


def slugify(value: str) -> str:
    """Lowercase, collapse non-alphanumeric runs to '-', strip edge dashes."""
    return _SLUG_INVALID_CHARS.sub("-", value.lower()).strip("-")


class Company(Base, TimestampMixin):
    """A customer account (tenant)."""

    __tablename__ = "companies"

    id = Column(String(255), primary_key=True, default=generate_uuid)
    name = Column(String(255), nullable=False)
    slug = Column(String(255), nullable=False, unique=True, index=True)
    domain = Column(String(255), nullable=True)
    billing_email = Column(String(255), nullable=True)
    stripe_customer_id = Column(String(255), nullable=True, unique=True)

    # Analytics provider (PostHog) configuration
    posthog_project_id = Column(String(64), nullable=True)
    posthog_api_key_encrypted = Column(String(1024), nullable=True)
    posthog_client_id = Column(
        String(255),
        nullable=True,
        comment="Value of the client_id event property; falls back to slug"
    )

    is_active = Column(Boolean, nullable=False, default=True)
    trial_ends_at = Column(DateTime(timezone=True), nullable=True)

    # Business context, fed into AI insight prompts and benchmarks
    industry = Column(String(64), nullable=True)
    business_model = Column(String(64), nullable=True)
    primary_goal = Column(String(255), nullable=True)
    audience_region = Column(String(64), nullable=True)
    traffic_sources = Column(JSON, nullable=True)
    monthly_visitors = Column(Integer, nullable=True)

    users = relationship("User", back_populates="company")
    subscription = relationship("Subscription", back_populates="company", uselist=False)

    def __repr__(self) -> str:
        return f"<Company(id={self.id}, slug={self.slug})>"

    @property
    def effective_client_id(self) -> str:
        return self.posthog_client_id or self.slug

    @property
    def has_analytics_config(self) -> bool:
        return bool(self.posthog_project_id and self.posthog_client_id)

    @property
    def plan_id(self) -> Optional[str]:
        return self.subscription.plan_id if self.subscription else None

    def to_dict(self) -> dict:
        """Client-facing profile; the encrypted PostHog key is never included."""
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "domain": self.domain,
            "billing_email": self.billing_email,
            "posthog_project_id": self.posthog_project_id,
            "posthog_client_id": self.posthog_client_id,
            "has_posthog_api_key": bool(self.posthog_api_key_encrypted),
            "is_active": self.is_active,
            "trial_ends_at": as_utc(self.trial_ends_at).isoformat() if self.trial_ends_at else None,
            "created_at": as_utc(self.created_at).isoformat() if self.created_at else None,
            "plan_id": self.plan_id,
            **self.business_context(),
        }

    def business_context(self) -> dict:
        """Business context fields used by the insight prompt."""
        return {
            "industry": self.industry,
            "business_model": self.business_model,
            "primary_goal": self.primary_goal,
            "audience_region": self.audience_region,
            "traffic_sources": self.traffic_sources or [],
            "monthly_visitors": self.monthly_visitors,
        }
