"""
Industry benchmarks used to judge KPIs in insight prompts.

All values are ratios (0.05 == 5%). Industry overrides replace whole
benchmark entries (shallow merge over the defaults).
"""

import copy
from typing import Dict, Optional

Benchmarks = Dict[str, Dict[str, float]]

DEFAULT_BENCHMARKS: Benchmarks = {
    "saas_conv_rate_target": {"low": 0.03, "good": 0.05},
    "d7_retention_target": {"low": 0.20, "good": 0.25},
    "mobile_share_norm": {"low": 0.45, "high": 0.65},
}

INDUSTRY_BENCHMARKS: Dict[str, Benchmarks] = {
    "ecommerce": {
        "saas_conv_rate_target": {"low": 0.02, "good": 0.04},
        "mobile_share_norm": {"low": 0.60, "high": 0.75},
    },
    "content": {
        "saas_conv_rate_target": {"low": 0.01, "good": 0.03},
        "d7_retention_target": {"low": 0.15, "good": 0.20},
    },
    "app": {
        "d7_retention_target": {"low": 0.25, "good": 0.35},
        "mobile_share_norm": {"low": 0.75, "high": 0.90},
    },
}


def get_benchmarks(industry: Optional[str] = None) -> Benchmarks:
    """Defaults, with the industry's overrides applied when known."""
    benchmarks = copy.deepcopy(DEFAULT_BENCHMARKS)
    overrides = INDUSTRY_BENCHMARKS.get((industry or "").lower())
    if overrides:
        benchmarks.update(copy.deepcopy(overrides))
    return benchmarks
