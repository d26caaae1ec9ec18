"""
Prompt builders for insight generation, quick summaries and the weekly digest.
"""

import json
from typing import Any, Dict, Optional

INSIGHT_SCHEMA = """{
  "headline": string,                     // One sentence with the single most important change. Include % change if prior is present.
  "summary": string,                      // 2-3 lines: what is up/down and why it matters.
  "highlights": [string, string, string], // Exactly 3 concise bullets with numbers.
  "bottleneck": {
    "step_from": string | null,
    "step_to": string | null,
    "drop_rate_pct": number | null,       // 0-100
    "diagnosis": string,                  // Plain-language explanation
    "hypotheses": string[]                // Up to 3 root-cause ideas tied to observed data
  },
  "segments": {
    "by_device": {"segment": string, "insight": string, "action_hint": string} | null,
    "by_geo": {"segment": string, "insight": string, "action_hint": string} | null
  },
  "retention": {
    "d7_pct": number | null,              // 0-100
    "benchmark_status": "below" | "meets" | "exceeds" | "unknown",
    "note": string
  },
  "actions": [                            // Ranked by impact, max 5
    {
      "title": string,
      "why": string,                      // Tie to a data point or benchmark gap
      "impact": 1|2|3|4|5,
      "effort": 1|2|3|4|5,
      "confidence": number,               // 0-1
      "expected_lift_pct": number | null, // 0-100
      "tag": "funnel"|"mobile"|"content"|"geo"|"retention"|"performance"
    }
  ],
  "numbers_table": [                      // 3-6 rows for the UI
    {"metric": string, "current": string, "prior": string | null, "delta": string | null}
  ],
  "meta": {
    "period_compared": "none"|"prior_provided"|"insufficient_prior",
    "data_gaps": string[]
  }
}"""

INSIGHT_RULES = """- Use ONLY provided fields; do not invent events, steps, or channels.
- Percentages: show with % sign, 1 decimal max, include sign (e.g. "+12.3%").
- Time: use seconds or minutes (e.g. "3m 10s").
- If prior KPIs are null: set "period_compared" to "insufficient_prior" and leave deltas null.
- Pick at most ONE device and ONE geo segment. If there is no clear story, set them to null.
- "actions": 3-5 items, each tied to a specific metric or benchmark gap.
- Keep language clear and friendly; avoid jargon."""

NOT_SPECIFIED = "Not specified"


def _dump(value: Any) -> str:
    return json.dumps(value, indent=2, default=str)


def build_business_context_section(context: Optional[Dict[str, Any]]) -> str:
    """Context block; empty unless an industry is known."""
    if not context or not context.get("industry"):
        return ""
    traffic_sources = context.get("traffic_sources") or []
    monthly_visitors = context.get("monthly_visitors")
    return f"""
=== CLIENT BUSINESS CONTEXT ===
Industry: {context.get("industry") or NOT_SPECIFIED}
Business Model: {context.get("business_model") or NOT_SPECIFIED}
Primary Goal: {context.get("primary_goal") or NOT_SPECIFIED}
Audience Region: {context.get("audience_region") or NOT_SPECIFIED}
Traffic Sources: {", ".join(traffic_sources) if traffic_sources else NOT_SPECIFIED}
Monthly Visitors: {f"{monthly_visitors:,}" if monthly_visitors else NOT_SPECIFIED}

Use this context to tailor insights to this business type, explain metrics
in terms of its business model, and reference its primary goal when
suggesting actions.
"""


def build_insight_prompt(
    current_kpis: Dict[str, Any],
    prior_kpis: Optional[Dict[str, Any]],
    benchmarks: Dict[str, Any],
    language: str = "en",
    business_context: Optional[Dict[str, Any]] = None,
) -> str:
    return f"""You are a no-nonsense analytics consultant. Use ONLY the data provided.
Return STRICT JSON matching the schema below. Do not include any extra text.
{build_business_context_section(business_context)}
=== CONTEXT ===
- Audience: non-technical small-business operators.
- Goal: quickly explain what changed, where the funnel leaks, and what to do next.
- Language: {language} (use plain words; avoid jargon)

=== BENCHMARKS ===
Use these as reference, do not invent others.
{_dump(benchmarks)}

=== CURRENT KPIs (required) ===
{_dump(current_kpis)}

=== PRIOR KPIs (same period, optional) ===
{_dump(prior_kpis)}

=== SCHEMA (return exactly this shape) ===
{INSIGHT_SCHEMA}

=== RULES ===
{INSIGHT_RULES}

Return ONLY the JSON object."""


def build_summary_prompt(kpis: Dict[str, Any]) -> str:
    return f"""You are an analytics consultant. Analyze these KPIs and return STRICT JSON:
{{
  "headline": string,       // 1 sentence summary with the key metric
  "highlights": string[3],  // 3 bullets with specific numbers
  "bottleneck": string,     // Biggest conversion issue with a percentage
  "actions": string[3]      // 3 specific, actionable recommendations
}}

Focus on conversion rate (target >5%), D7 retention (target >20%),
traffic quality and device mix, and specific funnel drop-off points.

KPIs JSON:
{json.dumps(kpis, default=str)}"""


DIGEST_SYSTEM_PROMPT = (
    "You are an analytics expert. Generate a weekly digest email with insights and "
    "recommendations based on the analytics data. Focus on key metrics, trends, and "
    "actionable insights. Keep it concise and business-focused."
)


def build_digest_prompt(company_name: str, current: Dict[str, Any], previous: Optional[Dict[str, Any]]) -> str:
    previous_block = _dump(previous) if previous else "No previous data available"
    return f"""Company: {company_name}

Current week data:
{_dump(current)}

Previous week data (for comparison):
{previous_block}

Generate a weekly analytics digest with:
1. Key performance metrics
2. Week-over-week changes (if previous data available)
3. Top insights and trends
4. Actionable recommendations"""
