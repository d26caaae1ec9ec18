"""
PostHog Query API client.

Runs HogQL/insight queries against a project with a personal API key:

    POST {host}/api/projects/{project_id}/query/
    Authorization: Bearer <api key>
    {"query": {...}}
"""

import logging
from typing import Any, Dict, Optional

import httpx

from src.config.settings import get_posthog_host

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0


class PostHogQueryError(Exception):
    """Error from the PostHog Query API."""

    def __init__(self, message: str, status_code: Optional[int] = None, details: Optional[Dict] = None):
        super().__init__(message)
        self.status_code = status_code
        self.details = details or {}


def to_api_host(host: str) -> str:
    """
    Map an ingestion host to its API host.

    Capture hosts look like https://us.i.posthog.com; the Query API lives
    on https://us.posthog.com.
    """
    host = host.rstrip("/")
    return host.replace(".i.posthog.com", ".posthog.com")


class PostHogQueryClient:
    """
    Async client for the PostHog Query API.

    Use as an async context manager so the underlying connection pool is
    closed:

        async with PostHogQueryClient(api_key) as client:
            result = await client.run_query(project_id, query)
    """

    def __init__(
        self,
        api_key: str,
        host: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.host = to_api_host(host or get_posthog_host())
        self._client = httpx.AsyncClient(
            headers={
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            },
            timeout=timeout,
            transport=transport,
        )

    async def close(self):
        await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def run_query(self, project_id: str, query: Dict[str, Any], name: str = "query") -> Any:
        """
        Execute a query and return the decoded JSON body.

        Args:
            project_id: PostHog project ID
            query: Query node (InsightVizNode, FunnelsQuery, HogQLQuery...)
            name: Label used in logs

        Raises:
            PostHogQueryError: On transport failure, non-2xx status, or an
                error payload
        """
        url = f"{self.host}/api/projects/{project_id}/query/"
        try:
            response = await self._client.post(url, json={"query": query})
        except httpx.RequestError as e:
            logger.error("PostHog request failed", extra={
                "query_name": name,
                "project_id": project_id,
                "error": str(e),
            })
            raise PostHogQueryError(f"Request failed: {str(e)}")

        if response.status_code >= 400:
            logger.error("PostHog API error", extra={
                "query_name": name,
                "project_id": project_id,
                "status_code": response.status_code,
                "response": response.text[:500],
            })
            raise PostHogQueryError(
                f"PostHog API error: {response.status_code} {response.reason_phrase}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError:
            raise PostHogQueryError("PostHog API returned invalid JSON", status_code=response.status_code)

        if isinstance(data, dict) and data.get("error"):
            raise PostHogQueryError(f"PostHog query error: {data['error']}", details={"error": data["error"]})

        logger.debug("PostHog query completed", extra={
            "query_name": name,
            "project_id": project_id,
            "result_count": len(data.get("results") or []) if isinstance(data, dict) else len(data),
        })
        return data
