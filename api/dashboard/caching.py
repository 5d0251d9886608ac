import functools
import json
import logging
from datetime import datetime, timezone

from fastapi import Request, Response
from pydantic import BaseModel

from .guardrails import TTLCache

logger = logging.getLogger(__name__)


def cache_key(request: Request) -> str:
    """
    Request URL followed by its query parameters serialized as received.

    Parameter order matters: ``?lat=1&lon=2`` and ``?lon=2&lat=1`` are
    distinct keys.
    """
    url = request.url.path
    if request.url.query:
        url = f"{url}?{request.url.query}"
    params = json.dumps(dict(request.query_params), separators=(",", ":"))
    return f"{url}{params}"


def cached(ttl_setting: str):
    """
    Cache the successful result of an async route handler.

    ``ttl_setting`` names the ``Settings`` field holding the TTL in seconds.
    The handler must accept ``request: Request``. Plain payloads (dicts or
    pydantic models) are stored; ``Response`` objects and exceptions pass
    through uncached.
    """
    def decorator(handler):
        @functools.wraps(handler)
        async def wrapper(*args, **kwargs):
            request: Request = kwargs["request"]
            cache: TTLCache = request.app.state.cache
            key = cache_key(request)

            payload = cache.get(key)
            if payload is not None:
                logger.debug("Cache HIT for %s", key)
                return {
                    **payload,
                    "cached": True,
                    "cacheTimestamp": datetime.now(timezone.utc).isoformat(),
                }

            logger.debug("Cache MISS for %s", key)
            result = await handler(*args, **kwargs)
            if isinstance(result, Response):
                return result
            if isinstance(result, BaseModel):
                result = result.model_dump(by_alias=True, mode="json")

            ttl = getattr(request.app.state.settings, ttl_setting)
            cache.set(key, result, ttl)
            logger.debug("Cached response for %s (ttl=%ss)", key, ttl)
            return result

        return wrapper

    return decorator
