"""
Error handling for AskMe Analytics.

Routes map service exceptions to HTTPException for the plain 4xx cases
(FastAPI renders those as {"detail": ...}). Plan gating, rate limiting
and upstream provider failures raise AppError subclasses instead, which
render as:

    {"error": {"code": "...", "message": "...", "details": {...}}}

Anything else that escapes a route becomes a generic 500 carrying only
the correlation ID. Stack traces are NEVER returned to clients.
"""

import logging
import uuid
from typing import Any, Optional

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)

CORRELATION_HEADER = "X-Correlation-ID"

# Matches the audit_logs.correlation_id column width
MAX_CORRELATION_ID_LENGTH = 36


class AppError(Exception):
    """Base API error with a stable machine-readable code."""

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "details": self.details,
            }
        }


class PaymentRequiredError(AppError):
    """The company's plan does not include the feature (402)."""

    def __init__(self, message: str = "This feature requires a paid plan", details: Optional[dict[str, Any]] = None):
        super().__init__("PAYMENT_REQUIRED", message, status.HTTP_402_PAYMENT_REQUIRED, details)


class RateLimitError(AppError):
    """Too many requests for the identity and endpoint (429)."""

    def __init__(self, message: str = "Rate limit exceeded", retry_after: Optional[int] = None):
        details = {"retry_after_seconds": retry_after} if retry_after else {}
        super().__init__("RATE_LIMIT_EXCEEDED", message, status.HTTP_429_TOO_MANY_REQUESTS, details)

    @property
    def retry_after(self) -> Optional[int]:
        return self.details.get("retry_after_seconds")


class ExternalServiceError(AppError):
    """PostHog, OpenAI, Stripe or Resend call failed (502)."""

    def __init__(self, service: str, message: Optional[str] = None):
        super().__init__(
            "EXTERNAL_SERVICE_ERROR",
            message or f"{service} request failed",
            status.HTTP_502_BAD_GATEWAY,
            {"service": service},
        )


class ServiceUnavailableError(AppError):
    """An integration is not configured on this deployment (503)."""

    def __init__(self, message: str = "Service temporarily unavailable"):
        super().__init__("SERVICE_UNAVAILABLE", message, status.HTTP_503_SERVICE_UNAVAILABLE)


def is_valid_correlation_id(value: Optional[str]) -> bool:
    """UUID-shaped and short enough to store alongside audit rows."""
    if not value or len(value) > MAX_CORRELATION_ID_LENGTH:
        return False
    try:
        uuid.UUID(value)
    except ValueError:
        return False
    return True


def get_correlation_id(request: Request) -> str:
    """
    Inbound X-Correlation-ID header, then request state, then a new UUID.

    Headers that are not UUIDs are ignored and replaced.
    """
    correlation_id = request.headers.get(CORRELATION_HEADER)
    if is_valid_correlation_id(correlation_id):
        return correlation_id
    if hasattr(request.state, "correlation_id"):
        return request.state.correlation_id
    return str(uuid.uuid4())


def _request_extra(request: Request, correlation_id: str) -> dict:
    return {
        "correlation_id": correlation_id,
        "path": request.url.path,
        "method": request.method,
    }


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    correlation_id = get_correlation_id(request)
    logger.warning(
        "Application error",
        extra={**_request_extra(request, correlation_id), "error_code": exc.code, "status_code": exc.status_code},
    )
    headers = {CORRELATION_HEADER: correlation_id}
    if isinstance(exc, RateLimitError) and exc.retry_after:
        headers["Retry-After"] = str(exc.retry_after)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, app_error_handler)


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """
    Assigns the request correlation ID, echoes it on every response and
    turns unhandled exceptions into a generic 500.
    """

    async def dispatch(self, request: Request, call_next):
        correlation_id = get_correlation_id(request)
        request.state.correlation_id = correlation_id

        try:
            response = await call_next(request)
        except Exception as e:
            # Full exception stays server-side
            logger.exception(
                "Unhandled exception",
                extra={**_request_extra(request, correlation_id), "error_type": type(e).__name__},
            )
            return JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content={
                    "error": {
                        "code": "INTERNAL_ERROR",
                        "message": "An unexpected error occurred",
                        "details": {"correlation_id": correlation_id},
                    }
                },
                headers={CORRELATION_HEADER: correlation_id},
            )

        response.headers[CORRELATION_HEADER] = correlation_id
        return response
