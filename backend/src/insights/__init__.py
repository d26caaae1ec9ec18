"""
AI insights for company analytics.

This module provides:
- Industry benchmarks and prior-period helpers
- Prompt construction for insights, summaries and the weekly digest
- Validation that coerces model output into the insight schema
- InsightGenerator, which calls OpenAI and returns validated insights

CONSTRAINTS:
- Prompts only ever carry aggregated KPIs (no raw events, no PII)
- Model output is never trusted: it always passes through the validator
"""

from src.insights.benchmarks import get_benchmarks
from src.insights.generator import (
    GeneratedInsight,
    InsightGenerator,
    WeeklySummary,
    estimate_cost_cents,
)
from src.insights.llm_client import LLMClient, LLMError, LLMNotConfiguredError
from src.insights.periods import calculate_prior_period
from src.insights.validator import fallback_insight, validate_ai_response

__all__ = [
    "GeneratedInsight",
    "InsightGenerator",
    "LLMClient",
    "LLMError",
    "LLMNotConfiguredError",
    "WeeklySummary",
    "calculate_prior_period",
    "estimate_cost_cents",
    "fallback_insight",
    "get_benchmarks",
    "validate_ai_response",
]
