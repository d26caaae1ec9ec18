"""
Stored AI insights.

Each row is one validated model response plus generation metadata
(model, token counts, latency, cost) and the KPI inputs it was built from.
"""

import enum

from sqlalchemy import JSON, Column, DateTime, Float, ForeignKey, Index, Integer, String, Text

from src.db_base import Base
from src.models.base import TimestampMixin, as_utc, generate_uuid


class InsightStatus(str, enum.Enum):
    GENERATED = "generated"
    ARCHIVED = "archived"


class AIInsight(Base, TimestampMixin):
    __tablename__ = "ai_insights"

    id = Column(String(255), primary_key=True, default=generate_uuid)
    company_id = Column(String(255), ForeignKey("companies.id", ondelete="CASCADE"), nullable=False)
    snapshot_id = Column(String(255), ForeignKey("analytics_snapshots.id", ondelete="SET NULL"), nullable=True)
    date_range = Column(String(16), nullable=False, default="7d")
    start_date = Column(DateTime(timezone=True), nullable=True)
    end_date = Column(DateTime(timezone=True), nullable=True)

    # Validated insight body
    headline = Column(String(500), nullable=False)
    summary = Column(Text, nullable=True)
    highlights = Column(JSON, nullable=True)
    bottleneck = Column(JSON, nullable=True)
    segments = Column(JSON, nullable=True)
    retention_analysis = Column(JSON, nullable=True)
    actions = Column(JSON, nullable=True)
    numbers_table = Column(JSON, nullable=True)
    meta = Column(JSON, nullable=True)

    # Inputs
    kpis_snapshot = Column(JSON, nullable=True)
    previous_kpis_snapshot = Column(JSON, nullable=True)

    # Generation metadata
    model_used = Column(String(64), nullable=True)
    generation_time_ms = Column(Integer, nullable=True)
    prompt_tokens = Column(Integer, nullable=True)
    completion_tokens = Column(Integer, nullable=True)
    total_tokens = Column(Integer, nullable=True)
    total_cost_cents = Column(Float, nullable=True)

    language = Column(String(8), nullable=False, default="en")
    industry = Column(String(64), nullable=True)
    status = Column(String(16), nullable=False, default=InsightStatus.GENERATED.value)
    quality_score = Column(Integer, nullable=True)
    user_feedback = Column(Text, nullable=True)

    __table_args__ = (
        Index("ix_ai_insights_company_created", "company_id", "created_at"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "date_range": self.date_range,
            "start_date": as_utc(self.start_date).isoformat() if self.start_date else None,
            "end_date": as_utc(self.end_date).isoformat() if self.end_date else None,
            "headline": self.headline,
            "summary": self.summary,
            "highlights": self.highlights or [],
            "bottleneck": self.bottleneck,
            "segments": self.segments,
            "retention": self.retention_analysis,
            "actions": self.actions or [],
            "numbers_table": self.numbers_table or [],
            "meta": self.meta,
            "model_used": self.model_used,
            "generation_time_ms": self.generation_time_ms,
            "total_tokens": self.total_tokens,
            "total_cost_cents": self.total_cost_cents,
            "language": self.language,
            "status": self.status,
            "quality_score": self.quality_score,
            "user_feedback": self.user_feedback,
            "created_at": as_utc(self.created_at).isoformat() if self.created_at else None,
        }
