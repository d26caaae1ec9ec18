"""
Standard PostHog queries, parameterized by client_id.

Every tracked site sends a client_id event property; each template
filters on it so a single PostHog project can host many companies.
Companies can override any template via query_configurations.
"""

from typing import Any, Callable, Dict, List, Optional

PAGEVIEW = "$pageview"


def _client_property(client_id: str) -> Dict[str, Any]:
    return {"key": "client_id", "value": [client_id], "operator": "exact", "type": "event"}


def _grouped_client_filter(client_id: str) -> Dict[str, Any]:
    return {"type": "AND", "values": [{"type": "AND", "values": [_client_property(client_id)]}]}


def _pageview_series(client_id: str, math: str, custom_name: Optional[str] = None) -> Dict[str, Any]:
    series = {
        "kind": "EventsNode",
        "event": PAGEVIEW,
        "name": PAGEVIEW,
        "math": math,
        "properties": [_client_property(client_id)],
    }
    if custom_name:
        series["custom_name"] = custom_name
    return series


def _funnel(client_id: str, steps: List[Dict[str, str]]) -> Dict[str, Any]:
    series = []
    for index, step in enumerate(steps):
        node = {"kind": "EventsNode", "event": step["event"], "name": step["event"], "custom_name": step["label"]}
        if index == 0:
            node["properties"] = [_client_property(client_id)]
        series.append(node)
    return {
        "kind": "InsightVizNode",
        "source": {
            "kind": "FunnelsQuery",
            "series": series,
            "interval": "day",
            "funnelsFilter": {"layout": "vertical", "funnelVizType": "steps"},
        },
        "full": True,
    }


def traffic(client_id: str) -> Dict[str, Any]:
    """Unique visitors and page views per day."""
    return {
        "kind": "InsightVizNode",
        "source": {
            "kind": "TrendsQuery",
            "series": [
                _pageview_series(client_id, "dau", "Unique visitors"),
                _pageview_series(client_id, "total", "Page views"),
            ],
            "version": 2,
            "trendsFilter": {"display": "ActionsLineGraph", "showValuesOnSeries": True},
            "interval": "day",
        },
        "full": True,
    }


def funnel(client_id: str) -> Dict[str, Any]:
    """Visit to checkout funnel."""
    return _funnel(client_id, [
        {"event": PAGEVIEW, "label": "Visited site"},
        {"event": "signup_started", "label": "Signup started"},
        {"event": "checkout_started", "label": "Checkout started"},
        {"event": "checkout_completed", "label": "Checkout completed"},
    ])


def renewal_funnel(client_id: str) -> Dict[str, Any]:
    return _funnel(client_id, [
        {"event": "renewal_started", "label": "Renewal started"},
        {"event": "product_selected", "label": "Product selected"},
        {"event": "checkout_viewed", "label": "Checkout viewed"},
        {"event": "checkout_submitted", "label": "Checkout submitted"},
    ])


def lifecycle(client_id: str) -> Dict[str, Any]:
    """New / returning / resurrecting / dormant users."""
    return {
        "kind": "InsightVizNode",
        "source": {
            "kind": "LifecycleQuery",
            "series": [{"kind": "EventsNode", "event": PAGEVIEW, "name": PAGEVIEW, "math": "total"}],
            "properties": _grouped_client_filter(client_id),
        },
    }


def retention(client_id: str) -> Dict[str, Any]:
    """Daily first-time retention over 8 intervals (day 0 through day 7)."""
    return {
        "kind": "InsightVizNode",
        "source": {
            "kind": "RetentionQuery",
            "version": 2,
            "retentionFilter": {
                "period": "Day",
                "targetEntity": {
                    "id": PAGEVIEW,
                    "name": PAGEVIEW,
                    "type": "events",
                    "order": 0,
                    "properties": [_client_property(client_id)],
                },
                "retentionType": "retention_first_time",
                "totalIntervals": 8,
                "returningEntity": {"id": PAGEVIEW, "name": PAGEVIEW, "type": "events"},
                "meanRetentionCalculation": "simple",
                "cumulative": False,
            },
        },
        "full": True,
    }


def device_mix(client_id: str) -> Dict[str, Any]:
    return {
        "kind": "InsightVizNode",
        "source": {
            "kind": "TrendsQuery",
            "series": [_pageview_series(client_id, "dau")],
            "version": 2,
            "interval": "day",
            "trendsFilter": {"display": "ActionsPie"},
            "breakdownFilter": {"breakdown": "$device_type", "breakdown_type": "event"},
            "filterTestAccounts": True,
        },
        "full": True,
    }


def geography(client_id: str) -> Dict[str, Any]:
    return {
        "kind": "InsightVizNode",
        "source": {
            "kind": "TrendsQuery",
            "breakdownFilter": {"breakdown": "$geoip_country_code", "breakdown_type": "event"},
            "series": [_pageview_series(client_id, "dau")],
            "trendsFilter": {"display": "WorldMap"},
            "filterTestAccounts": False,
            "properties": _grouped_client_filter(client_id),
            "version": 2,
        },
        "full": True,
    }


def city_geography(client_id: str) -> Dict[str, Any]:
    return {
        "kind": "InsightVizNode",
        "source": {
            "kind": "TrendsQuery",
            "breakdownFilter": {
                "breakdowns": [
                    {"property": "$geoip_country_code", "type": "event"},
                    {"property": "$geoip_city_name", "type": "event"},
                ]
            },
            "series": [_pageview_series(client_id, "dau")],
            "trendsFilter": {"display": "ActionsTable"},
            "filterTestAccounts": False,
            "properties": _grouped_client_filter(client_id),
            "version": 2,
        },
        "full": True,
    }


# query_type -> template
QUERY_TEMPLATES: Dict[str, Callable[[str], Dict[str, Any]]] = {
    "traffic": traffic,
    "funnel": funnel,
    "renewalFunnel": renewal_funnel,
    "lifecycle": lifecycle,
    "retention": retention,
    "deviceMix": device_mix,
    "geography": geography,
    "cityGeography": city_geography,
}


def get_query_template(query_type: str, client_id: str) -> Optional[Dict[str, Any]]:
    template = QUERY_TEMPLATES.get(query_type)
    if template is None:
        return None
    return template(client_id)


def generate_standard_queries(client_id: str) -> Dict[str, Dict[str, Any]]:
    """All standard queries for a client, keyed by query_type."""
    return {query_type: template(client_id) for query_type, template in QUERY_TEMPLATES.items()}
