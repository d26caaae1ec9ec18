"""
Insight generation from KPI dicts.

The generator owns prompt assembly, the model call and validation of
the returned JSON. Persistence lives in InsightService.
"""

import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from src.insights.benchmarks import get_benchmarks
from src.insights.llm_client import LLMClient
from src.insights.prompts import build_insight_prompt, build_summary_prompt
from src.insights.validator import fallback_insight, validate_ai_response

logger = logging.getLogger(__name__)

INSIGHT_TEMPERATURE = 0.25
SUMMARY_TEMPERATURE = 0.2

# gpt-4o-mini list prices, USD per 1M tokens
INPUT_PRICE_PER_MILLION = 0.15
OUTPUT_PRICE_PER_MILLION = 0.60


def estimate_cost_cents(prompt_tokens: int, completion_tokens: int) -> float:
    dollars = (
        prompt_tokens / 1_000_000 * INPUT_PRICE_PER_MILLION
        + completion_tokens / 1_000_000 * OUTPUT_PRICE_PER_MILLION
    )
    return dollars * 100


@dataclass
class GeneratedInsight:
    """Validated insight plus generation metadata."""
    insight: Dict[str, Any]
    model: str
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    generation_time_ms: int = 0
    used_fallback: bool = False

    @property
    def cost_cents(self) -> float:
        return estimate_cost_cents(self.prompt_tokens, self.completion_tokens)

    def metadata(self) -> Dict[str, Any]:
        return {
            "model": self.model,
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
            "generation_time_ms": self.generation_time_ms,
        }


@dataclass
class WeeklySummary:
    headline: str
    highlights: List[str] = field(default_factory=list)
    bottleneck: str = ""
    actions: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "headline": self.headline,
            "highlights": self.highlights,
            "bottleneck": self.bottleneck,
            "actions": self.actions,
        }


def _parse_json(content: str) -> Optional[Any]:
    try:
        return json.loads(content)
    except (TypeError, ValueError):
        return None


class InsightGenerator:
    """
    Turns KPIs into structured insights using the language model.

    Raises LLMError from the client on API failure; malformed output
    never raises and yields the fallback insight instead.
    """

    def __init__(self, llm_client: Optional[LLMClient] = None):
        self.llm_client = llm_client or LLMClient()

    async def generate(
        self,
        current_kpis: Dict[str, Any],
        prior_kpis: Optional[Dict[str, Any]] = None,
        benchmarks: Optional[Dict[str, Any]] = None,
        language: str = "en",
        business_context: Optional[Dict[str, Any]] = None,
    ) -> GeneratedInsight:
        prompt = build_insight_prompt(
            current_kpis=current_kpis,
            prior_kpis=prior_kpis,
            benchmarks=benchmarks or get_benchmarks(),
            language=language,
            business_context=business_context,
        )

        started = time.monotonic()
        result = await self.llm_client.complete(
            prompt,
            temperature=INSIGHT_TEMPERATURE,
            json_mode=True,
        )
        generation_time_ms = int((time.monotonic() - started) * 1000)

        parsed = _parse_json(result.content)
        used_fallback = not isinstance(parsed, dict)
        if used_fallback:
            logger.warning(
                "AI response was not valid JSON, using fallback insight",
                extra={"model": result.model, "content_length": len(result.content)},
            )
            insight = fallback_insight()
        else:
            insight = validate_ai_response(parsed)

        logger.info(
            "Insight generated",
            extra={
                "model": result.model,
                "total_tokens": result.total_tokens,
                "generation_time_ms": generation_time_ms,
                "used_fallback": used_fallback,
            },
        )

        return GeneratedInsight(
            insight=insight,
            model=result.model,
            prompt_tokens=result.prompt_tokens,
            completion_tokens=result.completion_tokens,
            total_tokens=result.total_tokens,
            generation_time_ms=generation_time_ms,
            used_fallback=used_fallback,
        )

    async def summarize(self, kpis: Dict[str, Any]) -> WeeklySummary:
        """Short weekly summary: headline, 3 highlights, bottleneck, 3 actions."""
        result = await self.llm_client.complete(
            build_summary_prompt(kpis),
            temperature=SUMMARY_TEMPERATURE,
            json_mode=True,
        )
        parsed = _parse_json(result.content)
        if not isinstance(parsed, dict):
            return WeeklySummary(headline="Weekly Analytics Summary", highlights=[result.content])

        return WeeklySummary(
            headline=parsed.get("headline") or "Weekly Analytics Summary",
            highlights=list(parsed.get("highlights") or [])[:3],
            bottleneck=parsed.get("bottleneck") or "",
            actions=list(parsed.get("actions") or [])[:3],
        )
