"""Configuration module for backend services."""

from src.config.settings import (
    DEFAULT_TEAM_LIMIT,
    DEFAULT_TERMS_VERSION,
    INVITE_EXPIRY_DAYS,
    PLAN_TEAM_LIMITS,
    get_site_url,
    get_stripe_price_id,
    get_team_limit,
)

__all__ = [
    "DEFAULT_TEAM_LIMIT",
    "DEFAULT_TERMS_VERSION",
    "INVITE_EXPIRY_DAYS",
    "PLAN_TEAM_LIMITS",
    "get_site_url",
    "get_stripe_price_id",
    "get_team_limit",
]
