"""
Database models for companies, billing, teams, analytics and insights.

All company-scoped models carry a company_id foreign key; services are
responsible for filtering every query by it.
"""

from src.models.base import TimestampMixin, generate_uuid
from src.models.company import Company, slugify
from src.models.user import User, UserRole
from src.models.plan import Plan
from src.models.subscription import Subscription, SubscriptionStatus, Payment
from src.models.invite import TeamInvite, InviteStatus
from src.models.impersonation_log import ImpersonationLog
from src.models.analytics_snapshot import AnalyticsSnapshot, KPI_COLUMNS
from src.models.ai_insight import AIInsight, InsightStatus
from src.models.email import EmailRecipient, EmailDigest
from src.models.query_configuration import QueryConfiguration

__all__ = [
    "TimestampMixin",
    "generate_uuid",
    "Company",
    "slugify",
    "User",
    "UserRole",
    "Plan",
    "Subscription",
    "SubscriptionStatus",
    "Payment",
    "TeamInvite",
    "InviteStatus",
    "ImpersonationLog",
    "AnalyticsSnapshot",
    "KPI_COLUMNS",
    "AIInsight",
    "InsightStatus",
    "EmailRecipient",
    "EmailDigest",
    "QueryConfiguration",
]
