"""Dashboard exceptions and the FastAPI handlers that render them."""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .guardrails import RateLimitResult
from .schemas import iso_timestamp

logger = logging.getLogger(__name__)


class DashboardError(Exception):
    """Base exception with HTTP status code."""

    def __init__(self, message: str, status_code: int = 500):
        super().__init__(message)
        self.status_code = status_code


class BadRequestError(DashboardError):
    def __init__(self, message: str):
        super().__init__(message, status_code=400)


class UpstreamUnavailableError(DashboardError):
    """The weather provider is unconfigured or failed; routes recover from this."""

    def __init__(self, message: str = "Weather provider unavailable"):
        super().__init__(message, status_code=503)


class QuotaExceededError(DashboardError):
    def __init__(self, result: RateLimitResult, error: str, message: str, header_prefix: str = "X-RateLimit"):
        super().__init__(message, status_code=429)
        self.result = result
        self.error = error
        self.header_prefix = header_prefix


def quota_headers(result: RateLimitResult, prefix: str = "X-RateLimit") -> dict[str, str]:
    return {
        f"{prefix}-Limit": str(result.limit),
        f"{prefix}-Remaining": str(result.remaining),
        f"{prefix}-Reset": iso_timestamp(result.reset_time),
    }


def quota_exceeded_response(exc: QuotaExceededError) -> JSONResponse:
    retry_after = exc.result.retry_after
    headers = quota_headers(exc.result, exc.header_prefix)
    headers["Retry-After"] = str(retry_after)
    return JSONResponse(
        {
            "error": exc.error,
            "message": str(exc),
            "resetTime": iso_timestamp(exc.result.reset_time),
            "retryAfter": retry_after,
        },
        status_code=429,
        headers=headers,
    )


def internal_error_response() -> JSONResponse:
    return JSONResponse(
        {"error": "Internal server error", "message": "Something went wrong. Please try again later."},
        status_code=500,
    )


def register_error_handlers(app: FastAPI) -> None:
    """Register centralized exception handlers on the FastAPI app."""

    @app.exception_handler(QuotaExceededError)
    async def handle_quota_exceeded(_request: Request, exc: QuotaExceededError):
        return quota_exceeded_response(exc)

    @app.exception_handler(DashboardError)
    async def handle_dashboard_error(_request: Request, exc: DashboardError):
        return JSONResponse({"error": str(exc)}, status_code=exc.status_code)

    @app.exception_handler(Exception)
    async def handle_unexpected(_request: Request, exc: Exception):
        logger.exception("Unhandled error: %s", exc)
        return internal_error_response()
