"""
Helpers that rewrite PostHog query nodes.

All functions return new dicts; the input query is never mutated.
"""

import copy
from typing import Any, Dict, Optional

# UI date range -> relative PostHog date_from
DATE_RANGE_FROM = {
    "7d": "-7d",
    "30d": "-30d",
    "24h": "-24h",
    "1h": "-1h",
    "30m": "-30m",
    "14d": "-14d",
    "90d": "-90d",
}

DEFAULT_DATE_FROM = "-7d"


def get_date_range_filter(date_range: Optional[str]) -> Dict[str, Optional[str]]:
    """Convert a UI range ("30d") to a PostHog dateRange; unknown ranges mean 7 days."""
    return {
        "date_from": DATE_RANGE_FROM.get(date_range or "", DEFAULT_DATE_FROM),
        "date_to": None,
    }


def apply_date_range(query: Dict[str, Any], date_filter: Dict[str, Any]) -> Dict[str, Any]:
    """
    Set the date range on an insight or funnel query.

    InsightVizNode: sets source.dateRange. Bare FunnelsQuery: sets dateRange.
    Other kinds are returned as an unchanged copy.
    """
    result = copy.deepcopy(query)
    kind = result.get("kind")
    if kind == "InsightVizNode" and result.get("source"):
        result["source"]["dateRange"] = dict(date_filter)
    elif kind == "FunnelsQuery":
        result["dateRange"] = dict(date_filter)
    return result


def _client_filter(client_id: str) -> Dict[str, Any]:
    return {"type": "event", "key": "client_id", "value": client_id, "operator": "exact"}


def inject_client_filter(query: Dict[str, Any], client_id: str) -> Dict[str, Any]:
    """
    Scope a query to one tracked site by its client_id event property.

    The filter is appended to the source's property list. Funnel steps
    are filtered individually as well, since funnel series ignore the
    top-level filter for later steps.
    """
    if not isinstance(query, dict) or not client_id:
        return query

    result = copy.deepcopy(query)
    nested = result.get("query")
    if isinstance(result.get("source"), dict):
        src = result["source"]
    elif isinstance(nested, dict) and isinstance(nested.get("source"), dict):
        src = nested["source"]
    else:
        src = result

    properties = src.get("properties")
    if properties is None:
        src["properties"] = [_client_filter(client_id)]
    elif isinstance(properties, list):
        properties.append(_client_filter(client_id))
    elif isinstance(properties, dict) and isinstance(properties.get("values"), list):
        # Grouped filter: {"type": "AND", "values": [...]}
        properties["values"].append({"type": "AND", "values": [_client_filter(client_id)]})

    if src.get("kind") == "FunnelsQuery" and isinstance(src.get("series"), list):
        for step in src["series"]:
            if isinstance(step, dict) and step.get("kind") == "EventsNode":
                step["properties"] = list(step.get("properties") or []) + [_client_filter(client_id)]

    return result
