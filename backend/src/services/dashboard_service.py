"""
Dashboard overview: one read assembling what the dashboard page shows.
"""

import logging
from typing import Any, Dict

from sqlalchemy import func
from sqlalchemy.orm import Session

from src.models.ai_insight import AIInsight, InsightStatus
from src.models.analytics_snapshot import AnalyticsSnapshot
from src.models.company import Company
from src.models.user import User

logger = logging.getLogger(__name__)

RECENT_INSIGHTS_LIMIT = 5


class DashboardNotFoundError(Exception):
    pass


class DashboardService:

    def __init__(self, session: Session):
        self.session = session

    def get_dashboard(self, company_id: str) -> Dict[str, Any]:
        company = self.session.query(Company).filter(Company.id == company_id).first()
        if company is None:
            raise DashboardNotFoundError("Company not found")

        latest_snapshot = (
            self.session.query(AnalyticsSnapshot)
            .filter(AnalyticsSnapshot.company_id == company_id)
            .order_by(AnalyticsSnapshot.snapshot_date.desc())
            .first()
        )

        insights = (
            self.session.query(AIInsight)
            .filter(
                AIInsight.company_id == company_id,
                AIInsight.status != InsightStatus.ARCHIVED.value,
            )
            .order_by(AIInsight.created_at.desc())
            .limit(RECENT_INSIGHTS_LIMIT)
            .all()
        )

        team_count = (
            self.session.query(func.count(User.id))
            .filter(User.company_id == company_id, User.is_active == True)
            .scalar()
        ) or 0

        return {
            "company": company.to_dict(),
            "subscription": company.subscription.to_dict() if company.subscription else None,
            "latest_snapshot": latest_snapshot.to_dict() if latest_snapshot else None,
            "insights": [insight.to_dict() for insight in insights],
            "team_member_count": team_count,
        }
