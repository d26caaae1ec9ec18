"""
Per-company overrides for analytics queries.

When a company has an active row for a query_type, that query replaces
the standard template (see src.integrations.posthog.query_templates).
"""

from sqlalchemy import JSON, Boolean, Column, ForeignKey, Index, String

from src.db_base import Base
from src.models.base import TimestampMixin, generate_uuid


class QueryConfiguration(Base, TimestampMixin):
    __tablename__ = "query_configurations"

    id = Column(String(255), primary_key=True, default=generate_uuid)
    company_id = Column(String(255), ForeignKey("companies.id", ondelete="CASCADE"), nullable=False)
    query_type = Column(String(32), nullable=False, comment="traffic, funnel, retention, ...")
    query_config = Column(JSON, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)

    __table_args__ = (
        Index("ix_query_configurations_company_type", "company_id", "query_type"),
    )
