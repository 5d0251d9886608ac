"""HTTP wiring for the general and weather-API quotas."""

import logging

from fastapi import Request

from .errors import QuotaExceededError, internal_error_response, quota_exceeded_response, quota_headers
from .guardrails import RateLimitResult, SlidingWindowRateLimiter, client_identity

logger = logging.getLogger(__name__)

GENERAL_HEADER_PREFIX = "X-RateLimit"
WEATHER_HEADER_PREFIX = "X-Weather-RateLimit"

EXPOSED_HEADERS = [
    f"{prefix}-{suffix}"
    for prefix in (GENERAL_HEADER_PREFIX, WEATHER_HEADER_PREFIX)
    for suffix in ("Limit", "Remaining", "Reset")
] + ["Retry-After"]


def _limiter(request: Request) -> SlidingWindowRateLimiter:
    return request.app.state.rate_limiter


async def general_rate_limit(request: Request, call_next):
    """
    Applies the per-IP general quota to every request.

    Rejected requests are answered here and never reach a route, the cache or
    the upstream client. Allowed responses get the general quota headers, plus
    the weather quota headers when a route recorded one on ``request.state``.
    Unhandled route errors become a 500 here so they carry the same headers.
    """
    ip = client_identity(request)
    result = _limiter(request).check_general(ip)
    if result.limited:
        logger.warning("Rate limit exceeded for IP: %s", ip)
        return quota_exceeded_response(
            QuotaExceededError(
                result,
                error="Too many requests",
                message="Rate limit exceeded. Please try again later.",
                header_prefix=GENERAL_HEADER_PREFIX,
            )
        )

    try:
        response = await call_next(request)
    except Exception as exc:
        # answered here so the 500 still gets quota and CORS headers
        logger.exception("Unhandled error: %s", exc)
        response = internal_error_response()
    response.headers.update(quota_headers(result, GENERAL_HEADER_PREFIX))

    weather_result = getattr(request.state, "weather_quota", None)
    if weather_result is not None:
        response.headers.update(quota_headers(weather_result, WEATHER_HEADER_PREFIX))
    return response


async def weather_api_quota(request: Request) -> RateLimitResult:
    """Stricter per-IP quota for routes that call the weather provider."""
    ip = client_identity(request)
    result = _limiter(request).check_endpoint(ip)
    request.state.weather_quota = result

    if result.limited:
        logger.warning("Weather API rate limit exceeded for IP: %s", ip)
        raise QuotaExceededError(
            result,
            error="Weather API rate limit exceeded",
            message="Too many weather API requests. Please try again later.",
            header_prefix=WEATHER_HEADER_PREFIX,
        )

    logger.debug("Weather API request allowed for IP: %s (%d remaining)", ip, result.remaining)
    return result
