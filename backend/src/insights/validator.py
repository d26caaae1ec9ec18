"""
Coerce language-model output into the insight schema.

The model is asked for strict JSON but may omit fields, return numbers
as strings, or exceed list limits. validate_ai_response() never raises:
every field is clamped, defaulted or truncated so the stored insight
always has the full shape the dashboard expects.
"""

import math
from typing import Any, Dict, List, Optional

BENCHMARK_STATUSES = ("below", "meets", "exceeds", "unknown")
ACTION_TAGS = ("funnel", "mobile", "content", "geo", "retention", "performance")
PERIOD_COMPARED_VALUES = ("none", "prior_provided", "insufficient_prior")

MAX_HIGHLIGHTS = 3
MAX_HYPOTHESES = 3
MAX_ACTIONS = 5
MAX_TABLE_ROWS = 6


def _to_number(value: Any) -> float:
    """Best-effort numeric conversion; NaN when not numeric."""
    if value is None:
        return math.nan
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        stripped = value.strip().rstrip("%")
        if not stripped:
            return math.nan
        try:
            return float(stripped)
        except ValueError:
            return math.nan
    return math.nan


def coerce_percentage(value: Any) -> Optional[float]:
    """Clamp to 0..100; None when missing or not numeric."""
    number = _to_number(value)
    if math.isnan(number):
        return None
    return max(0.0, min(100.0, number))


def coerce_rating(value: Any) -> int:
    """Round and clamp to 1..5; 3 when not numeric or negative infinity."""
    number = _to_number(value)
    if math.isnan(number) or number == -math.inf:
        return 3
    if number == math.inf:
        return 5
    return int(max(1, min(5, round(number))))


def coerce_confidence(value: Any) -> float:
    """Clamp to 0..1; 0.5 when not numeric."""
    number = _to_number(value)
    if math.isnan(number):
        return 0.5
    return max(0.0, min(1.0, number))


def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _validate_segment(value: Any) -> Optional[Dict[str, str]]:
    if not value:
        return None
    segment = _as_dict(value)
    return {
        "segment": segment.get("segment") or "unknown",
        "insight": segment.get("insight") or "",
        "action_hint": segment.get("action_hint") or "",
    }


def _validate_action(value: Any) -> Dict[str, Any]:
    action = _as_dict(value)
    tag = action.get("tag")
    return {
        "title": action.get("title") or "Untitled action",
        "why": action.get("why") or "",
        "impact": coerce_rating(action.get("impact")),
        "effort": coerce_rating(action.get("effort")),
        "confidence": coerce_confidence(action.get("confidence")),
        "expected_lift_pct": coerce_percentage(action.get("expected_lift_pct")),
        "tag": tag if tag in ACTION_TAGS else "funnel",
    }


def _validate_row(value: Any) -> Dict[str, Any]:
    row = _as_dict(value)
    return {
        "metric": row.get("metric") or "",
        "current": row.get("current") or "-",
        "prior": row.get("prior") or None,
        "delta": row.get("delta") or None,
    }


def _list(value: Any) -> List[Any]:
    return value if isinstance(value, list) else []


def validate_ai_response(response: Any) -> Dict[str, Any]:
    """
    Return a schema-complete insight dict built from ``response``.

    Non-dict input is treated as an empty object.
    """
    response = _as_dict(response)
    bottleneck = _as_dict(response.get("bottleneck"))
    segments = _as_dict(response.get("segments"))
    retention = _as_dict(response.get("retention"))
    meta = _as_dict(response.get("meta"))

    benchmark_status = retention.get("benchmark_status")
    period_compared = meta.get("period_compared")
    highlights = response.get("highlights")

    return {
        "headline": response.get("headline") or "Analytics Summary",
        "summary": response.get("summary") or "Unable to generate summary",
        "highlights": highlights[:MAX_HIGHLIGHTS] if isinstance(highlights, list) else ["No highlights available"],
        "bottleneck": {
            "step_from": bottleneck.get("step_from") or None,
            "step_to": bottleneck.get("step_to") or None,
            "drop_rate_pct": coerce_percentage(bottleneck.get("drop_rate_pct")),
            "diagnosis": bottleneck.get("diagnosis") or "No bottleneck identified",
            "hypotheses": _list(bottleneck.get("hypotheses"))[:MAX_HYPOTHESES],
        },
        "segments": {
            "by_device": _validate_segment(segments.get("by_device")),
            "by_geo": _validate_segment(segments.get("by_geo")),
        },
        "retention": {
            "d7_pct": coerce_percentage(retention.get("d7_pct")),
            "benchmark_status": benchmark_status if benchmark_status in BENCHMARK_STATUSES else "unknown",
            "note": retention.get("note") or "",
        },
        "actions": [_validate_action(a) for a in _list(response.get("actions"))[:MAX_ACTIONS]],
        "numbers_table": [_validate_row(r) for r in _list(response.get("numbers_table"))[:MAX_TABLE_ROWS]],
        "meta": {
            "period_compared": period_compared if period_compared in PERIOD_COMPARED_VALUES else "none",
            "data_gaps": _list(meta.get("data_gaps")),
        },
    }


def fallback_insight() -> Dict[str, Any]:
    """Insight used when the model output cannot be parsed as JSON."""
    return {
        "headline": "Weekly Analytics Summary",
        "summary": "Unable to generate detailed insights due to data parsing issues.",
        "highlights": ["Unable to generate detailed insights"],
        "bottleneck": {
            "step_from": None,
            "step_to": None,
            "drop_rate_pct": None,
            "diagnosis": "Data parsing issues detected",
            "hypotheses": [],
        },
        "segments": {"by_device": None, "by_geo": None},
        "retention": {"d7_pct": None, "benchmark_status": "unknown", "note": "Data unavailable"},
        "actions": [
            {
                "title": "Check data connections",
                "why": "Unable to parse analytics data",
                "impact": 5,
                "effort": 2,
                "confidence": 0.9,
                "expected_lift_pct": None,
                "tag": "performance",
            },
            {
                "title": "Verify PostHog setup",
                "why": "Ensure events are being tracked correctly",
                "impact": 5,
                "effort": 2,
                "confidence": 0.9,
                "expected_lift_pct": None,
                "tag": "performance",
            },
            {
                "title": "Review analytics configuration",
                "why": "Check for configuration issues",
                "impact": 4,
                "effort": 3,
                "confidence": 0.8,
                "expected_lift_pct": None,
                "tag": "performance",
            },
        ],
        "numbers_table": [],
        "meta": {"period_compared": "none", "data_gaps": ["Unable to parse AI response"]},
    }
