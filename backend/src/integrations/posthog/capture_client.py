"""
PostHog capture client for server-side product events.

    POST {capture host}/capture/
    {"api_key": "...", "event": "...", "distinct_id": "...", "properties": {...}}
"""

import logging
from typing import Any, Dict, Optional

import httpx

from src.config.settings import get_posthog_capture_host, get_posthog_project_api_key

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 5.0

SERVER_DISTINCT_ID = "askme-server"


class PostHogCaptureClient:
    """Synchronous single-event sender exposing capture(name, props)."""

    def __init__(
        self,
        api_key: str,
        host: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.api_key = api_key
        self.host = (host or get_posthog_capture_host()).rstrip("/")
        self._client = httpx.Client(timeout=timeout, transport=transport)

    def capture(self, name: str, props: Dict[str, Any]) -> None:
        properties = dict(props)
        distinct_id = properties.pop("distinct_id", None) or SERVER_DISTINCT_ID
        response = self._client.post(
            f"{self.host}/capture/",
            json={
                "api_key": self.api_key,
                "event": name,
                "distinct_id": distinct_id,
                "properties": properties,
            },
        )
        response.raise_for_status()
        logger.debug("Event captured", extra={"event": name, "distinct_id": distinct_id})

    def close(self) -> None:
        self._client.close()


def get_capture_client() -> Optional[PostHogCaptureClient]:
    """Client for the configured project key, or None when capture is disabled."""
    api_key = get_posthog_project_api_key()
    if not api_key:
        return None
    return PostHogCaptureClient(api_key)
