"""
InsightService: generate, store, list and rate AI insights.

Generation flow:
1. Resolve prior-period KPIs (given, or the latest snapshot in the prior period)
2. Pick benchmarks from the company industry (else the requested industry)
3. Call InsightGenerator (OpenAI)
4. Save the current KPIs as a snapshot (best effort)
5. Persist the insight with token usage and cost, then audit
"""

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from src.insights.benchmarks import get_benchmarks
from src.insights.generator import GeneratedInsight, InsightGenerator
from src.insights.periods import calculate_prior_period
from src.models.ai_insight import AIInsight, InsightStatus
from src.models.analytics_snapshot import AnalyticsSnapshot
from src.models.company import Company
from src.platform.audit import AuditAction, AuditEvent, write_audit_log_sync

logger = logging.getLogger(__name__)

DEFAULT_LIST_LIMIT = 10


# =============================================================================
# Exceptions
# =============================================================================

class InsightServiceError(Exception):
    """Base exception for insight service errors."""
    pass


class InsightNotFoundError(InsightServiceError):
    pass


class InsightFeatureNotAvailableError(InsightServiceError):
    """Raised when the company's plan does not include AI insights."""
    pass


class InvalidInsightUpdateError(InsightServiceError):
    pass


# =============================================================================
# Service
# =============================================================================

class InsightService:

    def __init__(
        self,
        session: Session,
        generator: Optional[InsightGenerator] = None,
        correlation_id: Optional[str] = None,
    ):
        self.session = session
        self._generator = generator
        self.correlation_id = correlation_id or str(uuid.uuid4())

    @property
    def generator(self) -> InsightGenerator:
        if self._generator is None:
            self._generator = InsightGenerator()
        return self._generator

    # =========================================================================
    # Generation
    # =========================================================================

    async def generate_and_save(
        self,
        company_id: str,
        kpis: Dict[str, Any],
        previous_kpis: Optional[Dict[str, Any]] = None,
        date_range: str = "7d",
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        industry: Optional[str] = None,
        language: str = "en",
        user_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Generate an insight for ``kpis`` and persist it.

        Returns:
            Dict with insights, metadata and insight_id

        Raises:
            ValueError: If kpis is empty
            InsightFeatureNotAvailableError: If the plan excludes AI insights
            LLMError: If the OpenAI call fails
        """
        if not kpis:
            raise ValueError("KPIs data is required")

        company = self.session.query(Company).filter(Company.id == company_id).first()
        self._check_feature(company)

        now = datetime.now(timezone.utc)
        final_start = start_date or now - timedelta(days=7)
        final_end = end_date or now

        prior_kpis = previous_kpis
        if not prior_kpis and start_date and end_date:
            prior_kpis = self._find_prior_kpis(company_id, start_date, end_date)

        business_context = company.business_context() if company else None
        effective_industry = (business_context or {}).get("industry") or industry
        benchmarks = get_benchmarks(effective_industry)

        result = await self.generator.generate(
            current_kpis=kpis,
            prior_kpis=prior_kpis,
            benchmarks=benchmarks,
            language=language,
            business_context=business_context,
        )

        snapshot = self._save_snapshot(company_id, kpis, date_range, final_start, final_end)

        insight = self._to_row(
            company_id, result, kpis, prior_kpis, date_range, final_start, final_end,
            language, effective_industry,
        )
        insight.snapshot_id = snapshot.id if snapshot else None
        self.session.add(insight)
        self.session.flush()

        logger.info(
            "AI insight saved",
            extra={
                "company_id": company_id,
                "insight_id": insight.id,
                "total_tokens": result.total_tokens,
                "cost_cents": result.cost_cents,
            },
        )
        self._emit(
            company_id,
            AuditAction.AI_INSIGHT_GENERATED,
            user_id,
            insight.id,
            {"model": result.model, "total_tokens": result.total_tokens, "date_range": date_range},
        )

        return {
            "insights": result.insight,
            "metadata": result.metadata(),
            "insight_id": insight.id,
        }

    async def summarize(self, kpis: Dict[str, Any]) -> Dict[str, Any]:
        if not kpis:
            raise ValueError("KPIs data is required")
        summary = await self.generator.summarize(kpis)
        return summary.to_dict()

    # =========================================================================
    # Queries
    # =========================================================================

    def list_insights(
        self,
        company_id: str,
        date_range: Optional[str] = None,
        limit: int = DEFAULT_LIST_LIMIT,
    ) -> List[AIInsight]:
        query = self.session.query(AIInsight).filter(
            AIInsight.company_id == company_id,
            AIInsight.status != InsightStatus.ARCHIVED.value,
        )
        if date_range and date_range != "all":
            query = query.filter(AIInsight.date_range == date_range)
        return query.order_by(AIInsight.created_at.desc()).limit(limit).all()

    def get_insight(self, company_id: str, insight_id: str) -> AIInsight:
        insight = self.session.query(AIInsight).filter(
            AIInsight.id == insight_id,
            AIInsight.company_id == company_id,
        ).first()
        if insight is None:
            raise InsightNotFoundError(f"Insight {insight_id} not found")
        return insight

    def update_insight(
        self,
        company_id: str,
        insight_id: str,
        quality_score: Optional[int] = None,
        user_feedback: Optional[str] = None,
        status: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> AIInsight:
        """
        Record feedback on an insight, or archive it.

        Raises:
            InsightNotFoundError: If the insight is not in this company
            InvalidInsightUpdateError: If score or status is out of range
        """
        if quality_score is not None and not 1 <= quality_score <= 5:
            raise InvalidInsightUpdateError("quality_score must be between 1 and 5")
        if status is not None and status not in (s.value for s in InsightStatus):
            raise InvalidInsightUpdateError(f"Invalid status: {status}")

        insight = self.get_insight(company_id, insight_id)
        changes: Dict[str, Any] = {}
        if quality_score is not None:
            insight.quality_score = quality_score
            changes["quality_score"] = quality_score
        if user_feedback is not None:
            insight.user_feedback = user_feedback
            changes["has_feedback"] = True
        if status is not None:
            insight.status = status
            changes["status"] = status
        self.session.flush()

        if changes:
            self._emit(company_id, AuditAction.AI_INSIGHT_UPDATED, user_id, insight.id, changes)
        return insight

    # =========================================================================
    # Private Helpers
    # =========================================================================

    @staticmethod
    def _check_feature(company: Optional[Company]) -> None:
        subscription = company.subscription if company else None
        plan = subscription.plan if subscription else None
        if plan is not None and not plan.ai_insights:
            raise InsightFeatureNotAvailableError(
                f"AI insights are not included in the {plan.name} plan"
            )

    def _find_prior_kpis(self, company_id: str, start: datetime, end: datetime) -> Optional[Dict[str, Any]]:
        prior_start, prior_end = calculate_prior_period(start, end)
        snapshot = (
            self.session.query(AnalyticsSnapshot)
            .filter(
                AnalyticsSnapshot.company_id == company_id,
                AnalyticsSnapshot.snapshot_date >= prior_start,
                AnalyticsSnapshot.snapshot_date <= prior_end,
            )
            .order_by(AnalyticsSnapshot.snapshot_date.desc())
            .first()
        )
        return snapshot.to_kpis() if snapshot else None

    def _save_snapshot(
        self,
        company_id: str,
        kpis: Dict[str, Any],
        date_range: str,
        start: datetime,
        end: datetime,
    ) -> Optional[AnalyticsSnapshot]:
        """Best effort: a failed snapshot never fails generation."""
        snapshot = AnalyticsSnapshot.from_kpis(
            company_id,
            kpis,
            date_range=date_range,
            start_date=start,
            end_date=end,
        )
        try:
            self.session.add(snapshot)
            self.session.flush()
            return snapshot
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.warning("Failed to save KPI snapshot", extra={"company_id": company_id, "error": str(e)})
            return None

    @staticmethod
    def _to_row(
        company_id: str,
        result: GeneratedInsight,
        kpis: Dict[str, Any],
        prior_kpis: Optional[Dict[str, Any]],
        date_range: str,
        start: datetime,
        end: datetime,
        language: str,
        industry: Optional[str],
    ) -> AIInsight:
        body = result.insight
        return AIInsight(
            company_id=company_id,
            date_range=date_range,
            start_date=start,
            end_date=end,
            headline=body["headline"],
            summary=body["summary"],
            highlights=body["highlights"],
            bottleneck=body["bottleneck"],
            segments=body["segments"],
            retention_analysis=body["retention"],
            actions=body["actions"],
            numbers_table=body["numbers_table"],
            meta=body["meta"],
            kpis_snapshot=kpis,
            previous_kpis_snapshot=prior_kpis,
            model_used=result.model,
            generation_time_ms=result.generation_time_ms,
            prompt_tokens=result.prompt_tokens,
            completion_tokens=result.completion_tokens,
            total_tokens=result.total_tokens,
            total_cost_cents=result.cost_cents,
            language=language,
            industry=industry,
            status=InsightStatus.GENERATED.value,
        )

    def _emit(
        self,
        company_id: str,
        action: AuditAction,
        user_id: Optional[str],
        insight_id: str,
        metadata: Dict[str, Any],
    ) -> None:
        write_audit_log_sync(
            db=self.session,
            event=AuditEvent(
                company_id=company_id,
                action=action,
                user_id=user_id,
                resource_type="ai_insight",
                resource_id=insight_id,
                correlation_id=self.correlation_id,
                metadata=metadata,
            ),
        )
