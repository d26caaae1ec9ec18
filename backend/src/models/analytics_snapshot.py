"""
Analytics snapshots: stored copies of a company's parsed KPIs.

Snapshots feed period-over-period comparison for AI insights and the
weekly digest. Each KPI family is stored in its own JSON column.
"""

from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Index, String

from src.db_base import Base
from src.models.base import TimestampMixin, as_utc, generate_uuid

# KPI dict key -> snapshot column
KPI_COLUMNS = {
    "traffic": "traffic_data",
    "funnel": "funnel_data",
    "lifecycle": "lifecycle_data",
    "device": "device_data",
    "retention": "retention_data",
    "geography": "geography_data",
}


class AnalyticsSnapshot(Base, TimestampMixin):
    __tablename__ = "analytics_snapshots"

    id = Column(String(255), primary_key=True, default=generate_uuid)
    company_id = Column(String(255), ForeignKey("companies.id", ondelete="CASCADE"), nullable=False)
    date_range = Column(String(16), nullable=False, default="7d")
    start_date = Column(DateTime(timezone=True), nullable=True)
    end_date = Column(DateTime(timezone=True), nullable=True)
    snapshot_date = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))

    traffic_data = Column(JSON, nullable=True)
    funnel_data = Column(JSON, nullable=True)
    lifecycle_data = Column(JSON, nullable=True)
    device_data = Column(JSON, nullable=True)
    retention_data = Column(JSON, nullable=True)
    geography_data = Column(JSON, nullable=True)
    data_source = Column(String(32), nullable=False, default="posthog")

    __table_args__ = (
        Index("ix_analytics_snapshots_company_date", "company_id", "snapshot_date"),
    )

    @classmethod
    def from_kpis(cls, company_id: str, kpis: dict, **kwargs) -> "AnalyticsSnapshot":
        columns = {column: kpis.get(key) for key, column in KPI_COLUMNS.items()}
        return cls(company_id=company_id, **columns, **kwargs)

    def to_kpis(self) -> dict:
        """Rebuild the KPI dict shape used by insight prompts."""
        return {key: getattr(self, column) or {} for key, column in KPI_COLUMNS.items()}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "date_range": self.date_range,
            "snapshot_date": as_utc(self.snapshot_date).isoformat(),
            "kpis": self.to_kpis(),
            "data_source": self.data_source,
        }
