"""
Tests for the analytics preview and revenue reports.

PostHog is replaced by a fake query client keyed by query name.
"""

import asyncio

import pytest

from src.integrations.posthog.query_client import PostHogQueryError
from src.models.query_configuration import QueryConfiguration
from src.services.analytics_cache import AnalyticsCache
from src.services.analytics_service import AnalyticsService, build_kpis, select_queries
from src.services.company_service import AnalyticsNotConfiguredError
from src.services.query_config_service import QueryConfigService
from src.services.revenue_service import RevenueService, build_revenue_query, parse_revenue_breakdown


class FakeQueryClient:
    """Async context manager standing in for PostHogQueryClient."""

    def __init__(self, responses):
        self.responses = responses
        self.calls = []

    def __call__(self, api_key):
        self.api_key = api_key
        return self

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    async def run_query(self, project_id, query, name="query"):
        self.calls.append((project_id, name, query))
        response = self.responses.get(name, {"results": []})
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture
def configured_company(test_db_session, company, monkeypatch):
    monkeypatch.delenv("POSTHOG_ENCRYPTION_KEY", raising=False)
    company.posthog_project_id = "999"
    company.posthog_api_key_encrypted = "phx_key"
    company.posthog_client_id = "acme"
    test_db_session.commit()
    return company


# ============================================================================
# TEST SUITE: QUERY SELECTION
# ============================================================================

class TestQueryConfig:

    def test_templates_for_every_preview_type(self, test_db_session, company):
        config = QueryConfigService(test_db_session).get_query_config_for_company(company.id, "acme")

        assert {"traffic", "funnel", "renewalFunnel", "retention", "deviceMix"} <= set(config)

    def test_stored_override_gets_client_filter(self, test_db_session, company):
        test_db_session.add(QueryConfiguration(
            company_id=company.id,
            query_type="traffic",
            query_config={"kind": "InsightVizNode", "source": {"kind": "TrendsQuery"}},
        ))
        test_db_session.commit()

        config = QueryConfigService(test_db_session).get_query_config_for_company(company.id, "acme")

        assert config["traffic"]["source"]["properties"][0]["value"] == "acme"

    def test_set_query_config_rejects_unknown_type(self, test_db_session, company):
        with pytest.raises(ValueError):
            QueryConfigService(test_db_session).set_query_config(company.id, "bogus", {})

    def test_only_one_funnel_variant(self):
        config = {
            "funnel": {"kind": "InsightVizNode", "source": {}},
            "renewalFunnel": {"kind": "InsightVizNode", "source": {}},
            "unknownType": {"kind": "InsightVizNode"},
        }

        selected = select_queries(config, "30d", "renewal")

        assert list(selected) == ["renewalFunnel"]
        assert selected["renewalFunnel"]["source"]["dateRange"]["date_from"] == "-30d"


class TestBuildKpis:

    def test_failed_query_keeps_default_and_reports_error(self):
        kpis = build_kpis(
            {"traffic": PostHogQueryError("timeout"), "deviceMix": {"results": []}},
            "7d",
            "acme",
            "profile",
            False,
        )

        assert kpis["traffic"]["pageviews"] == 0
        assert kpis["device"] == {"device_mix": {}}
        assert kpis["meta"]["errors"] == ["Traffic query failed: timeout"]
        assert kpis["meta"]["clientId"] == "acme"


# ============================================================================
# TEST SUITE: PREVIEW
# ============================================================================

class TestAnalyticsPreview:

    def test_preview_runs_queries_and_caches(self, test_db_session, configured_company):
        fake = FakeQueryClient({"traffic": {"results": [{"data": [3, 4], "count": 5}]}})
        service = AnalyticsService(test_db_session, cache=AnalyticsCache(), client_factory=fake)

        kpis = asyncio.run(service.get_preview(configured_company.id, date_range="7d"))

        assert kpis["traffic"]["pageviews"] == 7
        assert kpis["meta"]["funnelType"] == "profile"
        assert fake.api_key == "phx_key"
        assert {name for _, name, _ in fake.calls} >= {"traffic", "funnel", "retention"}
        assert "renewalFunnel" not in {name for _, name, _ in fake.calls}

        call_count = len(fake.calls)
        assert asyncio.run(service.get_preview(configured_company.id, date_range="7d")) is kpis
        assert len(fake.calls) == call_count

    def test_refresh_bypasses_cache(self, test_db_session, configured_company):
        fake = FakeQueryClient({})
        service = AnalyticsService(test_db_session, cache=AnalyticsCache(), client_factory=fake)

        asyncio.run(service.get_preview(configured_company.id))
        call_count = len(fake.calls)
        asyncio.run(service.get_preview(configured_company.id, refresh=True))

        assert len(fake.calls) == 2 * call_count

    def test_compare_uses_separate_cache_entry(self, test_db_session, configured_company):
        fake = FakeQueryClient({})
        service = AnalyticsService(test_db_session, cache=AnalyticsCache(), client_factory=fake)

        plain = asyncio.run(service.get_preview(configured_company.id))
        compared = asyncio.run(service.get_preview(configured_company.id, compare=True))

        assert plain["meta"]["comparisonEnabled"] is False
        assert compared["meta"]["comparisonEnabled"] is True

    def test_unconfigured_company(self, test_db_session, company):
        service = AnalyticsService(test_db_session, cache=AnalyticsCache(), client_factory=FakeQueryClient({}))

        with pytest.raises(AnalyticsNotConfiguredError):
            asyncio.run(service.get_preview(company.id))


# ============================================================================
# TEST SUITE: REVENUE
# ============================================================================

class TestRevenue:

    def test_revenue_query_shape(self):
        query = build_revenue_query("utm_source", "30d", "now")

        source = query["source"]
        assert source["series"][0]["math_property"] == "revenue"
        assert source["breakdownFilter"]["breakdown"] == "utm_source"
        assert source["dateRange"] == {"date_from": "-30d", "date_to": None}

    def test_parse_sorts_and_drops_zero(self):
        points = parse_revenue_breakdown({
            "results": [
                {"breakdown_value": "google", "count": 10},
                {"breakdown_value": None, "aggregated_value": 50},
                {"breakdown_value": "bing", "count": 0},
            ]
        }, "direct")

        assert points == [{"label": "direct", "value": 50}, {"label": "google", "value": 10}]

    def test_revenue_by_channel_is_client_scoped(self, test_db_session, configured_company):
        fake = FakeQueryClient({"revenue_by_utm_source": {"results": [{"breakdown_value": "google", "count": 12}]}})

        points = asyncio.run(RevenueService(test_db_session, client_factory=fake).get_revenue_by_channel(
            configured_company.id
        ))

        assert points == [{"label": "google", "value": 12}]
        query = fake.calls[0][2]
        assert query["source"]["properties"][0]["value"] == "acme"

    def test_top_revenue_limited(self, test_db_session, configured_company):
        results = [{"breakdown_value": f"p{i}", "count": i + 1} for i in range(15)]
        fake = FakeQueryClient({"revenue_by_product_name": {"results": results}})

        points = asyncio.run(RevenueService(test_db_session, client_factory=fake).get_top_revenue(configured_company.id))

        assert len(points) == 10
        assert points[0] == {"label": "p14", "value": 15}

    def test_errors_yield_empty_list(self, test_db_session, configured_company):
        fake = FakeQueryClient({"revenue_by_utm_source": PostHogQueryError("boom")})

        assert asyncio.run(RevenueService(test_db_session, client_factory=fake).get_revenue_by_channel(
            configured_company.id
        )) == []

    def test_unconfigured_company_yields_empty_list(self, test_db_session, company):
        service = RevenueService(test_db_session, client_factory=FakeQueryClient({}))

        assert asyncio.run(service.get_revenue_by_channel(company.id)) == []
