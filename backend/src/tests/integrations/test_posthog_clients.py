"""
Tests for the PostHog HTTP clients.

Both clients accept an httpx transport, so requests are served by
httpx.MockTransport handlers and never leave the process.
"""

import asyncio
import json

import httpx
import pytest

from src.integrations.posthog.capture_client import PostHogCaptureClient, get_capture_client
from src.integrations.posthog.query_client import PostHogQueryClient, PostHogQueryError, to_api_host

QUERY = {"kind": "HogQLQuery", "query": "select 1"}


def run_query(handler, host="https://us.posthog.com"):
    async def _run():
        async with PostHogQueryClient("phx_key", host=host, transport=httpx.MockTransport(handler)) as client:
            return await client.run_query("123", QUERY, name="smoke_query")

    return asyncio.run(_run())


# ============================================================================
# TEST SUITE: HOST MAPPING
# ============================================================================

class TestApiHost:

    @pytest.mark.parametrize("host,expected", [
        ("https://us.i.posthog.com", "https://us.posthog.com"),
        ("https://eu.i.posthog.com/", "https://eu.posthog.com"),
        ("https://us.posthog.com", "https://us.posthog.com"),
        ("https://posthog.internal.example.com", "https://posthog.internal.example.com"),
    ])
    def test_to_api_host(self, host, expected):
        assert to_api_host(host) == expected

    def test_client_uses_mapped_host(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            return httpx.Response(200, json={"results": []})

        run_query(handler, host="https://us.i.posthog.com")

        assert seen["url"] == "https://us.posthog.com/api/projects/123/query/"


# ============================================================================
# TEST SUITE: QUERY CLIENT
# ============================================================================

class TestQueryClient:

    def test_success_returns_body(self):
        seen = {}

        def handler(request):
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"results": [[1]]})

        assert run_query(handler) == {"results": [[1]]}
        assert seen["auth"] == "Bearer phx_key"
        assert seen["body"] == {"query": QUERY}

    def test_non_2xx_raises_with_status(self):
        with pytest.raises(PostHogQueryError) as exc_info:
            run_query(lambda request: httpx.Response(403, json={"detail": "forbidden"}))

        assert exc_info.value.status_code == 403

    def test_error_payload_raises(self):
        with pytest.raises(PostHogQueryError) as exc_info:
            run_query(lambda request: httpx.Response(200, json={"error": "Unknown table"}))

        assert exc_info.value.details == {"error": "Unknown table"}

    def test_invalid_json_raises(self):
        with pytest.raises(PostHogQueryError, match="invalid JSON"):
            run_query(lambda request: httpx.Response(200, content=b"<html>"))

    def test_transport_error_raises(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(PostHogQueryError, match="Request failed") as exc_info:
            run_query(handler)

        assert exc_info.value.status_code is None


# ============================================================================
# TEST SUITE: CAPTURE CLIENT
# ============================================================================

class TestCaptureClient:

    def test_capture_posts_event(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"status": 1})

        client = PostHogCaptureClient(
            "phc_key",
            host="https://us.i.posthog.com/",
            transport=httpx.MockTransport(handler),
        )
        client.capture("checkout_completed", {"distinct_id": "company-1", "revenue": "49.00"})

        assert seen["url"] == "https://us.i.posthog.com/capture/"
        assert seen["body"] == {
            "api_key": "phc_key",
            "event": "checkout_completed",
            "distinct_id": "company-1",
            "properties": {"revenue": "49.00"},
        }

    def test_capture_raises_on_error_status(self):
        client = PostHogCaptureClient(
            "phc_key",
            transport=httpx.MockTransport(lambda request: httpx.Response(500)),
        )

        with pytest.raises(httpx.HTTPStatusError):
            client.capture("checkout_completed", {})

    def test_disabled_without_project_key(self, monkeypatch):
        monkeypatch.delenv("POSTHOG_PROJECT_API_KEY", raising=False)
        assert get_capture_client() is None

        monkeypatch.setenv("POSTHOG_PROJECT_API_KEY", "phc_key")
        assert get_capture_client().api_key == "phc_key"
