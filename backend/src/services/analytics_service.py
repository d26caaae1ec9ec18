"""
Analytics preview: runs a company's PostHog queries and parses them
into the KPI dict consumed by the dashboard and AI insights.

Queries run concurrently. A failed query never fails the preview: its
KPI key keeps an empty default and the error is reported in
kpis["meta"]["errors"].
"""

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from src.integrations.posthog.parsers import (
    parse_city_geography,
    parse_device_mix,
    parse_funnel,
    parse_geography,
    parse_lifecycle,
    parse_retention,
    parse_traffic,
)
from src.integrations.posthog.query_builder import apply_date_range, get_date_range_filter
from src.integrations.posthog.query_client import PostHogQueryClient
from src.services.analytics_cache import AnalyticsCache, get_analytics_cache
from src.services.company_service import CompanyService
from src.services.query_config_service import QueryConfigService

logger = logging.getLogger(__name__)

FUNNEL_TYPES = ("profile", "renewal")


def _empty_kpis() -> Dict[str, Dict[str, Any]]:
    return {
        "traffic": {"unique_users": 0, "pageviews": 0, "series": [], "labels": []},
        "funnel": {"steps": [], "conversion_rate": 0},
        "renewalFunnel": {"steps": [], "conversion_rate": 0},
        "lifecycle": {
            "labels": [],
            "series": {"new": [], "returning": [], "resurrecting": [], "dormant": []},
        },
        "retention": {"d7_retention": 0, "values": []},
        "device": {"device_mix": {}},
        "geography": {"countries": {}},
        "cityGeography": {"cities": {}},
    }


# query_type -> (KPI key, label used in error messages, parser)
QUERY_HANDLERS: Dict[str, Tuple[str, str, Callable[..., Dict[str, Any]]]] = {
    "traffic": ("traffic", "Traffic", parse_traffic),
    "funnel": ("funnel", "Funnel", parse_funnel),
    "renewalFunnel": ("renewalFunnel", "Renewal Funnel", parse_funnel),
    "lifecycle": ("lifecycle", "Lifecycle", parse_lifecycle),
    "deviceMix": ("device", "Device", parse_device_mix),
    "geography": ("geography", "Geography", parse_geography),
    "cityGeography": ("cityGeography", "City Geography", parse_city_geography),
    "retention": ("retention", "Retention", parse_retention),
}


def select_queries(
    query_config: Dict[str, Dict[str, Any]],
    date_range: str,
    funnel_type: str,
) -> Dict[str, Dict[str, Any]]:
    """Date-ranged queries to run; only one funnel variant is included."""
    date_filter = get_date_range_filter(date_range)
    selected = {}
    for query_type, query in query_config.items():
        if query_type not in QUERY_HANDLERS or not query:
            continue
        if query_type == "funnel" and funnel_type != "profile":
            continue
        if query_type == "renewalFunnel" and funnel_type != "renewal":
            continue
        selected[query_type] = apply_date_range(query, date_filter)
    return selected


def build_kpis(
    results: Dict[str, Any],
    date_range: str,
    client_id: str,
    funnel_type: str,
    compare: bool,
) -> Dict[str, Any]:
    """
    Parse query results into KPIs.

    ``results`` maps query_type to decoded JSON or the exception the
    query raised.
    """
    defaults = _empty_kpis()
    kpis: Dict[str, Any] = {
        "meta": {
            "comparisonEnabled": compare,
            "dateRange": date_range,
            "clientId": client_id,
            "funnelType": funnel_type,
            "errors": [],
        }
    }

    for query_type, result in results.items():
        kpi_key, label, parser = QUERY_HANDLERS[query_type]
        kpis[kpi_key] = defaults[kpi_key]
        if isinstance(result, BaseException):
            kpis["meta"]["errors"].append(f"{label} query failed: {result}")
            continue
        try:
            if query_type == "retention":
                kpis[kpi_key] = parser(result, date_range)
            else:
                kpis[kpi_key] = parser(result)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(
                "Failed to parse analytics result",
                extra={"query_type": query_type, "client_id": client_id, "error": str(e)},
            )
            kpis["meta"]["errors"].append(f"{label} query failed: {e}")

    return kpis


class AnalyticsService:
    """KPI previews for a company, backed by the process-wide TTL cache."""

    def __init__(
        self,
        session: Session,
        cache: Optional[AnalyticsCache] = None,
        client_factory: Callable[..., PostHogQueryClient] = PostHogQueryClient,
    ):
        self.session = session
        self.cache = cache or get_analytics_cache()
        self.client_factory = client_factory
        self.company_service = CompanyService(session)
        self.query_config_service = QueryConfigService(session)

    async def get_preview(
        self,
        company_id: str,
        date_range: str = "30d",
        funnel_type: str = "profile",
        compare: bool = False,
        refresh: bool = False,
    ) -> Dict[str, Any]:
        """
        Raises:
            CompanyNotFoundError: If the company is missing or inactive
            AnalyticsNotConfiguredError: If PostHog is not configured
        """
        config = self.company_service.get_company_posthog_config(company_id)
        client_id = config["client_id"]
        comparison_mode = f"{funnel_type}:compare" if compare else funnel_type

        if not refresh:
            cached, is_stale = self.cache.get(
                client_id=client_id,
                date_range=date_range,
                comparison_mode=comparison_mode,
            )
            if cached is not None:
                logger.debug(
                    "Analytics cache hit",
                    extra={"client_id": client_id, "date_range": date_range, "is_stale": is_stale},
                )
                return cached

        query_config = self.query_config_service.get_query_config_for_company(company_id, client_id)
        queries = select_queries(query_config, date_range, funnel_type)
        results = await self._run_queries(config["api_key"], config["project_id"], queries)

        kpis = build_kpis(results, date_range, client_id, funnel_type, compare)
        if kpis["meta"]["errors"]:
            logger.warning(
                "Analytics preview completed with errors",
                extra={"company_id": company_id, "error_count": len(kpis["meta"]["errors"])},
            )

        self.cache.set(kpis, client_id=client_id, date_range=date_range, comparison_mode=comparison_mode)
        return kpis

    async def _run_queries(
        self,
        api_key: str,
        project_id: str,
        queries: Dict[str, Dict[str, Any]],
    ) -> Dict[str, Any]:
        names: List[str] = list(queries)
        async with self.client_factory(api_key) as client:
            outcomes = await asyncio.gather(
                *(client.run_query(project_id, queries[name], name=name) for name in names),
                return_exceptions=True,
            )
        return dict(zip(names, outcomes))
