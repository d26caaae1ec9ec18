"""
Tests for InsightService: plan gating, persistence, prior-period lookup
and feedback updates.
"""

import asyncio
import json
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from src.insights.generator import InsightGenerator
from src.insights.llm_client import CompletionResult
from src.models.ai_insight import AIInsight, InsightStatus
from src.models.analytics_snapshot import AnalyticsSnapshot
from src.platform.audit import AuditAction, AuditLog
from src.services.insight_service import (
    InsightFeatureNotAvailableError,
    InsightNotFoundError,
    InsightService,
    InvalidInsightUpdateError,
)

KPIS = {
    "traffic": {"unique_users": 120, "pageviews": 480},
    "funnel": {"conversion_rate": 0.04},
}


@pytest.fixture
def llm():
    client = AsyncMock()
    client.complete.return_value = CompletionResult(
        content=json.dumps({"headline": "Traffic up 20%", "summary": "Good week"}),
        model="gpt-4o-mini",
        usage={"prompt_tokens": 2000, "completion_tokens": 400, "total_tokens": 2400},
    )
    return client


@pytest.fixture
def service(test_db_session, llm):
    return InsightService(test_db_session, generator=InsightGenerator(llm), correlation_id="corr-ai")


def prompt_of(llm):
    return llm.complete.call_args.args[0]


# ============================================================================
# TEST SUITE: GENERATION
# ============================================================================

class TestGenerateAndSave:

    def test_persists_insight_and_snapshot(self, service, test_db_session, company):
        result = asyncio.run(service.generate_and_save(company.id, KPIS, date_range="30d", user_id="user-owner"))

        insight = test_db_session.query(AIInsight).filter(AIInsight.id == result["insight_id"]).one()
        assert insight.headline == "Traffic up 20%"
        assert insight.total_tokens == 2400
        assert insight.total_cost_cents > 0
        assert insight.date_range == "30d"
        assert insight.snapshot_id is not None
        assert result["insights"]["highlights"] == ["No highlights available"]
        assert result["metadata"]["model"] == "gpt-4o-mini"

        snapshot = test_db_session.query(AnalyticsSnapshot).one()
        assert snapshot.traffic_data == KPIS["traffic"]

        audit = test_db_session.query(AuditLog).filter(
            AuditLog.action == AuditAction.AI_INSIGHT_GENERATED.value
        ).one()
        assert audit.resource_id == insight.id

    def test_empty_kpis_rejected(self, service, company):
        with pytest.raises(ValueError):
            asyncio.run(service.generate_and_save(company.id, {}))

    def test_plan_without_ai_insights(self, service, test_db_session, active_subscription, growth_plan):
        growth_plan.ai_insights = False
        test_db_session.commit()

        with pytest.raises(InsightFeatureNotAvailableError):
            asyncio.run(service.generate_and_save(active_subscription.company_id, KPIS))

    def test_company_industry_wins(self, service, test_db_session, company, llm):
        company.industry = "ecommerce"
        test_db_session.commit()

        result = asyncio.run(service.generate_and_save(company.id, KPIS, industry="content"))

        insight = test_db_session.query(AIInsight).filter(AIInsight.id == result["insight_id"]).one()
        assert insight.industry == "ecommerce"
        assert "Industry: ecommerce" in prompt_of(llm)

    def test_prior_snapshot_used_when_no_previous_kpis(self, service, test_db_session, company, llm):
        start = datetime(2024, 3, 8, tzinfo=timezone.utc)
        end = datetime(2024, 3, 15, tzinfo=timezone.utc)
        test_db_session.add(AnalyticsSnapshot.from_kpis(
            company.id,
            {"traffic": {"unique_users": 77777}},
            snapshot_date=start - timedelta(days=2),
        ))
        test_db_session.commit()

        asyncio.run(service.generate_and_save(company.id, KPIS, start_date=start, end_date=end))

        assert "77777" in prompt_of(llm)


# ============================================================================
# TEST SUITE: LISTING AND FEEDBACK
# ============================================================================

@pytest.fixture
def stored_insight(test_db_session, company):
    insight = AIInsight(id="ins-1", company_id=company.id, headline="Stored", date_range="7d")
    test_db_session.add(insight)
    test_db_session.commit()
    return insight


class TestListAndUpdate:

    def test_list_filters_range_and_archived(self, service, test_db_session, company, stored_insight):
        test_db_session.add(AIInsight(company_id=company.id, headline="Old", date_range="30d"))
        test_db_session.add(AIInsight(
            company_id=company.id, headline="Gone", date_range="7d", status=InsightStatus.ARCHIVED.value,
        ))
        test_db_session.commit()

        assert [i.headline for i in service.list_insights(company.id, date_range="7d")] == ["Stored"]
        assert len(service.list_insights(company.id, date_range="all")) == 2
        assert len(service.list_insights(company.id, limit=1)) == 1

    def test_get_is_company_scoped(self, service, stored_insight):
        with pytest.raises(InsightNotFoundError):
            service.get_insight("other-company", stored_insight.id)

    def test_update_feedback(self, service, test_db_session, company, stored_insight):
        insight = service.update_insight(
            company.id, stored_insight.id, quality_score=4, user_feedback="Useful", user_id="user-owner",
        )

        assert insight.quality_score == 4
        assert insight.user_feedback == "Useful"
        assert test_db_session.query(AuditLog).filter(
            AuditLog.action == AuditAction.AI_INSIGHT_UPDATED.value
        ).count() == 1

    def test_archive(self, service, company, stored_insight):
        service.update_insight(company.id, stored_insight.id, status="archived")

        assert service.list_insights(company.id) == []

    @pytest.mark.parametrize("kwargs", [{"quality_score": 0}, {"quality_score": 6}, {"status": "deleted"}])
    def test_invalid_updates(self, service, company, stored_insight, kwargs):
        with pytest.raises(InvalidInsightUpdateError):
            service.update_insight(company.id, stored_insight.id, **kwargs)


class TestSummarize:

    def test_summary_dict(self, service, llm):
        llm.complete.return_value = CompletionResult(
            content=json.dumps({"headline": "Flat week", "highlights": ["a"], "bottleneck": "b", "actions": []}),
            model="gpt-4o-mini",
        )

        summary = asyncio.run(service.summarize(KPIS))

        assert summary == {"headline": "Flat week", "highlights": ["a"], "bottleneck": "b", "actions": []}

    def test_requires_kpis(self, service):
        with pytest.raises(ValueError):
            asyncio.run(service.summarize({}))
