"""
Tests for the Redis sliding-window rate limiter.

Redis is replaced by a small in-memory stand-in that implements the
sorted-set pipeline commands the limiter uses.
"""

from unittest.mock import MagicMock, patch

import pytest
import redis
from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient

from src.middleware.rate_limit import RateLimiter, rate_limit_dependency
from src.platform.errors import register_error_handlers


class FakePipeline:
    def __init__(self, store):
        self.store = store
        self.ops = []

    def zremrangebyscore(self, key, _min, max_score):
        self.ops.append(("zrem", key, max_score))

    def zcard(self, key):
        self.ops.append(("zcard", key))

    def zrange(self, key, start, end, withscores=False):
        self.ops.append(("zrange", key))

    def zadd(self, key, mapping):
        self.ops.append(("zadd", key, mapping))

    def expire(self, key, seconds):
        self.ops.append(("expire", key))

    def execute(self):
        results = []
        for op in self.ops:
            members = self.store.setdefault(op[1], {})
            if op[0] == "zrem":
                for member in [m for m, s in members.items() if s <= op[2]]:
                    del members[member]
                results.append(None)
            elif op[0] == "zcard":
                results.append(len(members))
            elif op[0] == "zrange":
                ordered = sorted(members.items(), key=lambda item: item[1])
                results.append(ordered[:1])
            elif op[0] == "zadd":
                members.update(op[2])
                results.append(1)
            else:
                results.append(True)
        self.ops = []
        return results


class FakeRedis:
    def __init__(self):
        self.store = {}

    def pipeline(self, transaction=True):
        return FakePipeline(self.store)


@pytest.fixture
def limiter():
    limiter = RateLimiter(redis_url="redis://unused", default_limit=3, window_seconds=60)
    limiter._redis = FakeRedis()
    return limiter


class TestRateLimiter:

    def test_allows_up_to_limit(self, limiter):
        results = [limiter.check_rate_limit("user:1", "contact") for _ in range(3)]

        assert all(r.allowed for r in results)
        assert [r.remaining for r in results] == [2, 1, 0]

    def test_blocks_over_limit_with_retry_after(self, limiter):
        for _ in range(3):
            limiter.check_rate_limit("user:1", "contact")

        result = limiter.check_rate_limit("user:1", "contact")

        assert result.allowed is False
        assert result.remaining == 0
        assert 1 <= result.retry_after <= 60

    def test_limits_are_per_identity_and_endpoint(self, limiter):
        for _ in range(3):
            limiter.check_rate_limit("user:1", "contact")

        assert limiter.check_rate_limit("user:2", "contact").allowed
        assert limiter.check_rate_limit("user:1", "ai_summary").allowed

    def test_window_expiry(self, limiter):
        with patch("src.middleware.rate_limit.time.time", return_value=1000.0):
            for _ in range(3):
                limiter.check_rate_limit("user:1", "contact")
        with patch("src.middleware.rate_limit.time.time", return_value=1061.0):
            assert limiter.check_rate_limit("user:1", "contact").allowed

    def test_per_call_overrides(self, limiter):
        assert limiter.check_rate_limit("user:1", "ai_insights", limit=1).allowed
        assert not limiter.check_rate_limit("user:1", "ai_insights", limit=1).allowed

    def test_fails_open_when_redis_down(self, limiter):
        broken = MagicMock()
        broken.pipeline.side_effect = redis.ConnectionError("down")
        limiter._redis = broken

        result = limiter.check_rate_limit("user:1", "contact")

        assert result.allowed is True
        assert result.remaining == 3


class TestRateLimitDependency:

    def _client(self, limiter):
        app = FastAPI()
        register_error_handlers(app)

        @app.post("/contact")
        async def contact(_rate_limit=Depends(rate_limit_dependency("contact", limit=1, window=3600))):
            return {"ok": True}

        return TestClient(app)

    def test_returns_429_with_retry_after(self, limiter, monkeypatch):
        monkeypatch.setenv("RATE_LIMIT_ENABLED", "true")
        with patch("src.middleware.rate_limit.get_rate_limiter", return_value=limiter):
            client = self._client(limiter)
            assert client.post("/contact").status_code == 200
            response = client.post("/contact")

        assert response.status_code == 429
        assert int(response.headers["Retry-After"]) >= 1
        assert response.json()["error"]["code"] == "RATE_LIMIT_EXCEEDED"

    def test_disabled_by_kill_switch(self, limiter, monkeypatch):
        monkeypatch.setenv("RATE_LIMIT_ENABLED", "false")
        with patch("src.middleware.rate_limit.get_rate_limiter", return_value=limiter):
            client = self._client(limiter)
            responses = [client.post("/contact").status_code for _ in range(3)]

        assert responses == [200, 200, 200]
