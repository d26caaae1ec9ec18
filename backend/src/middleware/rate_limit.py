"""
Rate limiting using a Redis sliding window.

Protects the expensive or abuse-prone endpoints (AI insight generation,
AI summary, contact form) with per-identity, per-endpoint limits.

- Identity is the authenticated user when the request carries one
  (request.state.auth set by require_auth), otherwise the client IP
- Raises RateLimitError (429 with a Retry-After header) when the limit is exceeded
- Fails open if Redis is unavailable (request allowed, warning logged)

Configuration (environment variables):
- RATE_LIMIT_DEFAULT:        Max requests per window (default: "20")
- RATE_LIMIT_WINDOW_SECONDS: Window duration in seconds (default: "60")
- RATE_LIMIT_ENABLED:        Kill switch (default: "true")
- REDIS_URL:                 Redis connection URL (default: "redis://localhost:6379/0")

Usage:
    @router.post("/api/contact")
    async def contact(_rate_limit=Depends(rate_limit_dependency("contact", limit=5, window=3600))):
        ...
"""

import logging
import os
import time
from dataclasses import dataclass
from typing import Callable, Optional

import redis
from fastapi import Request

from src.platform.audit import extract_client_info
from src.platform.errors import RateLimitError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

def _is_rate_limit_enabled() -> bool:
    return os.getenv("RATE_LIMIT_ENABLED", "true").lower() in ("true", "1", "yes")


def _get_default_limit() -> int:
    return int(os.getenv("RATE_LIMIT_DEFAULT", "20"))


def _get_default_window() -> int:
    return int(os.getenv("RATE_LIMIT_WINDOW_SECONDS", "60"))


@dataclass
class RateLimitResult:
    """
    Result of a rate limit check.

    Attributes:
        allowed:     Whether the request is allowed.
        remaining:   Requests remaining in the current window.
        limit:       Maximum requests per window.
        reset_at:    Unix timestamp when the window resets.
        retry_after: Seconds until the client should retry (0 if allowed).
    """

    allowed: bool
    remaining: int
    limit: int
    reset_at: float
    retry_after: int

    @classmethod
    def allow(cls, limit: int, window: int, now: float) -> "RateLimitResult":
        return cls(allowed=True, remaining=limit, limit=limit, reset_at=now + window, retry_after=0)


class RateLimiter:
    """
    Redis-backed sliding window rate limiter.

    Each request is a sorted-set member scored by its timestamp. On every
    check the set is trimmed to the window and its size compared to the
    limit.
    """

    def __init__(
        self,
        redis_url: str,
        default_limit: int = 20,
        window_seconds: int = 60,
    ):
        self.redis_url = redis_url
        self.default_limit = default_limit
        self.window_seconds = window_seconds
        self._redis: Optional[redis.Redis] = None

    def _get_redis(self) -> redis.Redis:
        # Lazy so the module imports without a reachable Redis
        if self._redis is None:
            self._redis = redis.from_url(
                self.redis_url,
                decode_responses=True,
                socket_connect_timeout=2,
                socket_timeout=2,
            )
        return self._redis

    def check_rate_limit(
        self,
        identity: str,
        endpoint: str,
        limit: Optional[int] = None,
        window: Optional[int] = None,
    ) -> RateLimitResult:
        """
        Check whether a request is allowed and record it if so.

        Key: ``ratelimit:{endpoint}:{identity}``

        Args:
            identity: "user:<id>" or "ip:<address>".
            endpoint: Logical endpoint name (e.g. ``"ai_insights"``).
            limit:    Override for the per-window request limit.
            window:   Override for the window duration in seconds.
        """
        effective_limit = limit if limit is not None else self.default_limit
        effective_window = window if window is not None else self.window_seconds

        now = time.time()
        window_start = now - effective_window
        key = f"ratelimit:{endpoint}:{identity}"

        try:
            r = self._get_redis()

            pipe = r.pipeline(transaction=True)
            pipe.zremrangebyscore(key, "-inf", window_start)
            pipe.zcard(key)
            pipe.zrange(key, 0, 0, withscores=True)
            _, current_count, oldest = pipe.execute()

            if current_count >= effective_limit:
                # Retry once the oldest request leaves the window
                oldest_score = oldest[0][1] if oldest else now
                reset_at = oldest_score + effective_window
                return RateLimitResult(
                    allowed=False,
                    remaining=0,
                    limit=effective_limit,
                    reset_at=reset_at,
                    retry_after=max(1, int(reset_at - now + 0.999)),
                )

            member = f"{now}:{current_count}"
            pipe = r.pipeline(transaction=True)
            pipe.zadd(key, {member: now})
            pipe.expire(key, effective_window + 10)
            pipe.execute()

            return RateLimitResult(
                allowed=True,
                remaining=max(0, effective_limit - current_count - 1),
                limit=effective_limit,
                reset_at=now + effective_window,
                retry_after=0,
            )

        except redis.RedisError as exc:
            logger.warning(
                "Redis unavailable for rate limiting - allowing request (fail-open)",
                extra={
                    "error": str(exc),
                    "error_type": type(exc).__name__,
                    "endpoint": endpoint,
                },
            )
            return RateLimitResult.allow(effective_limit, effective_window, now)


_rate_limiter_instance: Optional[RateLimiter] = None


def get_rate_limiter() -> RateLimiter:
    """Return the module-level RateLimiter singleton."""
    global _rate_limiter_instance
    if _rate_limiter_instance is None:
        _rate_limiter_instance = RateLimiter(
            redis_url=os.getenv("REDIS_URL", "redis://localhost:6379/0"),
            default_limit=_get_default_limit(),
            window_seconds=_get_default_window(),
        )
    return _rate_limiter_instance


def get_rate_limit_identity(request: Request) -> str:
    """Authenticated user if known, else client IP."""
    auth = getattr(request.state, "auth", None)
    if auth is not None and getattr(auth, "user_id", None):
        return f"user:{auth.user_id}"
    ip_address, _ = extract_client_info(request)
    return f"ip:{ip_address or 'unknown'}"


def rate_limit_dependency(
    endpoint_name: str,
    limit: Optional[int] = None,
    window: Optional[int] = None,
) -> Callable:
    """
    Create a FastAPI dependency that enforces rate limiting.

    Declare it after the auth dependency in the route signature so the
    limit is keyed by user rather than IP.
    """

    async def _dependency(request: Request) -> RateLimitResult:
        if not _is_rate_limit_enabled():
            return RateLimitResult.allow(_get_default_limit(), _get_default_window(), time.time())

        identity = get_rate_limit_identity(request)
        limiter = get_rate_limiter()
        result = limiter.check_rate_limit(
            identity=identity,
            endpoint=endpoint_name,
            limit=limit,
            window=window,
        )

        if not result.allowed:
            logger.warning(
                "Rate limit triggered",
                extra={
                    "action": "rate_limit.triggered",
                    "identity": identity,
                    "endpoint": endpoint_name,
                    "limit": result.limit,
                    "retry_after": result.retry_after,
                    "path": request.url.path,
                    "method": request.method,
                },
            )
            raise RateLimitError("Too many requests. Please wait before retrying.", retry_after=result.retry_after)

        return result

    return _dependency
