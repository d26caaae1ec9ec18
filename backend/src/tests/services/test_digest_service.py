"""
Tests for the weekly digest: eligibility, rendering, AI fallback and
per-company failure isolation.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.insights.llm_client import CompletionResult, LLMError
from src.models.ai_insight import AIInsight
from src.models.analytics_snapshot import AnalyticsSnapshot
from src.models.company import Company
from src.models.email import EmailDigest, EmailRecipient
from src.models.subscription import Subscription
from src.platform.audit import AuditAction, AuditLog
from src.services.digest_service import (
    AI_UNAVAILABLE_TEXT,
    DigestError,
    DigestService,
    calculate_change,
    render_digest_html,
)

NOW = datetime(2024, 3, 18, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def llm():
    client = AsyncMock()
    client.complete.return_value = CompletionResult(
        content="Visitors grew 25% week over week.",
        model="gpt-4o-mini",
        usage={"prompt_tokens": 300, "completion_tokens": 120, "total_tokens": 420},
    )
    return client


@pytest.fixture
def email_sender():
    sender = MagicMock()
    sender.send.return_value = "email_1"
    return sender


@pytest.fixture
def service(test_db_session, llm, email_sender):
    return DigestService(test_db_session, llm_client=llm, email_sender=email_sender, correlation_id="corr-digest")


@pytest.fixture
def digest_ready(test_db_session, active_subscription):
    company_id = active_subscription.company_id
    test_db_session.add_all([
        AnalyticsSnapshot.from_kpis(
            company_id,
            {"traffic": {"unique_users": 100, "pageviews": 400}},
            snapshot_date=NOW - timedelta(days=9),
        ),
        AnalyticsSnapshot.from_kpis(
            company_id,
            {"traffic": {"unique_users": 125, "pageviews": 380, "top_pages": [{"page": "/pricing", "views": 90}]}},
            snapshot_date=NOW - timedelta(hours=2),
        ),
        EmailRecipient(company_id=company_id, email="ceo@acme.com"),
        EmailRecipient(company_id=company_id, email="gone@acme.com", is_active=False),
    ])
    test_db_session.commit()
    return test_db_session.query(Company).filter(Company.id == company_id).one()


# ============================================================================
# TEST SUITE: RENDERING
# ============================================================================

class TestRendering:

    def test_change_formatting(self):
        assert calculate_change(125, 100)["formatted"] == "+25.0%"
        assert calculate_change(80, 100) == {"value": -20.0, "formatted": "-20.0%", "positive": False}
        assert calculate_change(10, 0) is None

    def test_html_escapes_and_links(self, monkeypatch):
        monkeypatch.setenv("APP_URL", "https://app.example.com")

        body = render_digest_html(
            "<Acme>",
            {"traffic": {"unique_users": 1250, "pageviews": 10}},
            {"traffic": {"unique_users": 1000, "pageviews": 10}},
            "Line <one>",
            now=NOW,
        )

        assert "&lt;Acme&gt; &bull; 3/18/2024" in body
        assert "1,250" in body
        assert "+25.0% vs last week" in body
        assert "Line &lt;one&gt;" in body
        assert "https://app.example.com/dashboard" in body
        assert "No page data available" in body


# ============================================================================
# TEST SUITE: ELIGIBILITY
# ============================================================================

class TestEligibility:

    def test_requires_active_subscription_with_digest(self, service, test_db_session, active_subscription, growth_plan):
        test_db_session.add(Company(id="company-2", name="Beta", slug="beta"))
        test_db_session.add(Subscription(company_id="company-2", plan_id="growth", status="canceled"))
        test_db_session.commit()

        assert [c.id for c in service.get_eligible_companies()] == ["company-1"]

        growth_plan.email_digest = False
        test_db_session.commit()
        assert service.get_eligible_companies() == []

    def test_inactive_company_excluded(self, service, test_db_session, active_subscription, company):
        company.is_active = False
        test_db_session.commit()

        assert service.get_eligible_companies() == []


# ============================================================================
# TEST SUITE: SENDING
# ============================================================================

class TestSendDigest:

    def test_sends_to_active_recipients(self, service, test_db_session, digest_ready, email_sender, llm):
        result = asyncio.run(service.send_company_digest(digest_ready, now=NOW))

        assert result == {
            "company_id": "company-1",
            "success": True,
            "email_id": "email_1",
            "recipients_count": 1,
        }
        kwargs = email_sender.send.call_args.kwargs
        assert kwargs["to"] == ["ceo@acme.com"]
        assert kwargs["subject"] == "Weekly Analytics Digest - Acme Corp - 3/18/2024"
        assert "+25.0% vs last week" in kwargs["html"]
        assert "/pricing" in kwargs["html"]

        digest = test_db_session.query(EmailDigest).one()
        assert digest.provider_message_id == "email_1"
        insight = test_db_session.query(AIInsight).one()
        assert digest.insight_id == insight.id
        assert insight.summary == "Visitors grew 25% week over week."
        assert llm.complete.call_args.kwargs["max_tokens"] == 1000

    def test_ai_failure_uses_placeholder(self, service, test_db_session, digest_ready, email_sender, llm):
        llm.complete.side_effect = LLMError("quota")

        asyncio.run(service.send_company_digest(digest_ready, now=NOW))

        assert AI_UNAVAILABLE_TEXT in email_sender.send.call_args.kwargs["html"]
        assert test_db_session.query(AIInsight).count() == 0

    def test_no_snapshot(self, service, company):
        with pytest.raises(DigestError, match="No recent analytics data"):
            asyncio.run(service.send_company_digest(company, now=NOW))

    def test_no_recipients(self, service, test_db_session, company):
        test_db_session.add(AnalyticsSnapshot.from_kpis(company.id, {}, snapshot_date=NOW))
        test_db_session.commit()

        with pytest.raises(DigestError, match="No email recipients"):
            asyncio.run(service.send_company_digest(company, now=NOW))


class TestWeeklyRun:

    def test_failures_are_isolated(self, service, test_db_session, digest_ready, growth_plan):
        beta = Company(id="company-2", name="Beta", slug="beta")
        test_db_session.add(beta)
        test_db_session.add(Subscription(company_id="company-2", plan_id="growth", status="active"))
        test_db_session.commit()

        summary = asyncio.run(service.run_weekly_digest())

        assert summary["success"] is True
        assert summary["processed"] == 2
        by_company = {r["company_id"]: r for r in summary["results"]}
        assert by_company["company-1"]["success"] is True
        assert by_company["company-2"]["success"] is False
        assert "No recent analytics data" in by_company["company-2"]["error"]

        actions = [row.action for row in test_db_session.query(AuditLog)]
        assert AuditAction.DIGEST_SENT.value in actions
        assert AuditAction.DIGEST_FAILED.value in actions
