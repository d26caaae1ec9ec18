"""
Application settings read from the environment.

Values are read on every call rather than cached at import time so that
tests can monkeypatch the environment.
"""

import os
from typing import Dict, Optional

# Team size limits per plan (members including the owner)
PLAN_TEAM_LIMITS: Dict[str, int] = {
    "starter": 5,
    "growth": 20,
    "enterprise": 100,
}

# Fallback for companies without a recognized plan
DEFAULT_TEAM_LIMIT = 1

INVITE_EXPIRY_DAYS = 7

DEFAULT_TERMS_VERSION = "1.0"

# Stripe price environment variables, keyed by full plan id
STRIPE_PRICE_ENV_VARS: Dict[str, str] = {
    "basic": "STRIPE_PRICE_BASIC_MONTHLY",
    "basic_yearly": "STRIPE_PRICE_BASIC_YEARLY",
    "premium": "STRIPE_PRICE_PREMIUM_MONTHLY",
    "premium_yearly": "STRIPE_PRICE_PREMIUM_YEARLY",
    "enterprise": "STRIPE_PRICE_ENTERPRISE_MONTHLY",
    "enterprise_yearly": "STRIPE_PRICE_ENTERPRISE_YEARLY",
    "starter": "STRIPE_PRICE_STARTER_MONTHLY",
    "starter_yearly": "STRIPE_PRICE_STARTER_YEARLY",
    "growth": "STRIPE_PRICE_GROWTH_MONTHLY",
    "growth_yearly": "STRIPE_PRICE_GROWTH_YEARLY",
}


def get_site_url() -> str:
    """Public URL of the web app, used in email links and Stripe redirects."""
    return os.getenv("APP_URL", "http://localhost:3000").rstrip("/")


def get_from_email() -> str:
    return os.getenv("FROM_EMAIL", "AskMe Analytics <noreply@askme-analytics.app>")


def get_contact_email() -> str:
    return os.getenv("CONTACT_EMAIL", "support@askme-analytics.app")


def get_resend_api_key() -> Optional[str]:
    return os.getenv("RESEND_API_KEY")


def get_cron_secret() -> Optional[str]:
    return os.getenv("CRON_SECRET")


def get_openai_api_key() -> Optional[str]:
    return os.getenv("OPENAI_API_KEY")


def get_openai_model() -> str:
    return os.getenv("OPENAI_MODEL", "gpt-4o-mini")


def get_posthog_host() -> str:
    return os.getenv("POSTHOG_HOST", "https://us.posthog.com").rstrip("/")


def get_posthog_capture_host() -> str:
    return os.getenv("POSTHOG_CAPTURE_HOST", "https://us.i.posthog.com").rstrip("/")


def get_posthog_project_api_key() -> Optional[str]:
    """Project key for server-side product events; capture is off without it."""
    return os.getenv("POSTHOG_PROJECT_API_KEY")


def get_stripe_secret_key() -> Optional[str]:
    return os.getenv("STRIPE_SECRET_KEY")


def get_stripe_webhook_secret() -> Optional[str]:
    return os.getenv("STRIPE_WEBHOOK_SECRET")


def get_stripe_price_id(full_plan_id: str) -> Optional[str]:
    """
    Resolve the Stripe price ID for a plan.

    Args:
        full_plan_id: Plan identifier, with "_yearly" suffix for annual billing

    Returns:
        Price ID, or None if the plan is unknown or the variable is unset
    """
    env_var = STRIPE_PRICE_ENV_VARS.get(full_plan_id)
    if not env_var:
        return None
    return os.getenv(env_var) or None


def get_team_limit(plan_id: Optional[str]) -> int:
    """Maximum team size for a plan; yearly variants share the monthly limit."""
    if not plan_id:
        return DEFAULT_TEAM_LIMIT
    base_plan = plan_id[: -len("_yearly")] if plan_id.endswith("_yearly") else plan_id
    return PLAN_TEAM_LIMITS.get(base_plan, DEFAULT_TEAM_LIMIT)


def get_analytics_cache_ttl() -> int:
    return int(os.getenv("ANALYTICS_CACHE_TTL_SECONDS", "300"))


def get_analytics_cache_stale() -> int:
    return int(os.getenv("ANALYTICS_CACHE_STALE_SECONDS", "120"))
