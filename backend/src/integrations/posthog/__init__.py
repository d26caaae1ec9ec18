"""
PostHog Query API integration.

- query_client: async HTTP client for /api/projects/{id}/query/
- query_builder: date range and client filter injection
- query_templates: standard per-client queries
- parsers: raw query results -> KPI dicts
- capture_client: server-side event capture for product analytics
"""

from src.integrations.posthog.query_client import PostHogQueryClient, PostHogQueryError

__all__ = ["PostHogQueryClient", "PostHogQueryError"]
