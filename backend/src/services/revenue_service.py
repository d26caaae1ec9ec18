"""
Revenue analytics from checkout_completed events.

Both reports sum the ``revenue`` event property with a TrendsQuery
breakdown. Failures are logged and reported as an empty list so a
misconfigured company sees an empty card rather than an error page.
"""

import logging
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from src.integrations.posthog.query_builder import DATE_RANGE_FROM, inject_client_filter
from src.integrations.posthog.query_client import PostHogQueryClient, PostHogQueryError
from src.services.company_service import CompanyService, CompanyServiceError

logger = logging.getLogger(__name__)

REVENUE_EVENT = "checkout_completed"
TOP_REVENUE_LIMIT = 10


def _date_from(value: Optional[str]) -> str:
    if not value or value == "now":
        return "-7d"
    return DATE_RANGE_FROM.get(value, value)


def _date_to(value: Optional[str]) -> Optional[str]:
    if not value or value == "now":
        return None
    return value


def build_revenue_query(breakdown: str, date_from: Optional[str], date_to: Optional[str]) -> Dict[str, Any]:
    return {
        "kind": "InsightVizNode",
        "source": {
            "kind": "TrendsQuery",
            "series": [
                {
                    "kind": "EventsNode",
                    "event": REVENUE_EVENT,
                    "name": REVENUE_EVENT,
                    "math": "sum",
                    "math_property": "revenue",
                }
            ],
            "breakdownFilter": {"breakdown": breakdown, "breakdown_type": "event"},
            "dateRange": {"date_from": _date_from(date_from), "date_to": _date_to(date_to)},
            "filterTestAccounts": False,
        },
    }


def parse_revenue_breakdown(json: Any, default_label: str) -> List[Dict[str, Any]]:
    """Non-zero {label, value} points, highest revenue first."""
    results = json.get("results") if isinstance(json, dict) else json
    points = []
    for series in results or []:
        if not isinstance(series, dict):
            continue
        value = series.get("count") or series.get("aggregated_value") or 0
        if value > 0:
            points.append({
                "label": series.get("breakdown_value") or series.get("label") or default_label,
                "value": value,
            })
    points.sort(key=lambda point: point["value"], reverse=True)
    return points


class RevenueService:

    def __init__(
        self,
        session: Session,
        client_factory: Callable[..., PostHogQueryClient] = PostHogQueryClient,
    ):
        self.company_service = CompanyService(session)
        self.client_factory = client_factory

    async def get_revenue_by_channel(
        self,
        company_id: str,
        date_from: Optional[str] = "30d",
        date_to: Optional[str] = "now",
    ) -> List[Dict[str, Any]]:
        return await self._breakdown(company_id, "utm_source", "direct", date_from, date_to)

    async def get_top_revenue(
        self,
        company_id: str,
        date_from: Optional[str] = "30d",
        date_to: Optional[str] = "now",
    ) -> List[Dict[str, Any]]:
        points = await self._breakdown(company_id, "product_name", "unknown", date_from, date_to)
        return points[:TOP_REVENUE_LIMIT]

    async def _breakdown(
        self,
        company_id: str,
        breakdown: str,
        default_label: str,
        date_from: Optional[str],
        date_to: Optional[str],
    ) -> List[Dict[str, Any]]:
        try:
            config = self.company_service.get_company_posthog_config(company_id)
            query = inject_client_filter(
                build_revenue_query(breakdown, date_from, date_to),
                config["client_id"],
            )
            async with self.client_factory(config["api_key"]) as client:
                json = await client.run_query(config["project_id"], query, name=f"revenue_by_{breakdown}")
            return parse_revenue_breakdown(json, default_label)
        except (CompanyServiceError, PostHogQueryError, TypeError, ValueError) as e:
            logger.warning(
                "Revenue query failed",
                extra={"company_id": company_id, "breakdown": breakdown, "error": str(e)},
            )
            return []
