import logging
import math
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

import uvicorn
from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .caching import cached
from .errors import BadRequestError, UpstreamUnavailableError, register_error_handlers
from .guardrails import SlidingWindowRateLimiter, TTLCache, client_identity
from .housekeeping import start_housekeeping, stop_housekeeping
from .ratelimit import EXPOSED_HEADERS, general_rate_limit, weather_api_quota
from .schemas import HealthResponse, LocationSearchResponse
from .settings import Settings
from .weather_client import DEFAULT_LAT, DEFAULT_LON, POPULAR_LOCATIONS, WeatherClient, mock_weather_data

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")


def configure_logging(level: str) -> None:
    logging.basicConfig(level=level.upper(), format="%(asctime)s %(levelname)s %(name)s: %(message)s")


def _parse_coordinate(raw: Optional[str], name: str, default: float, bound: float) -> float:
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError:
        raise BadRequestError(f'Query parameter "{name}" must be a number')
    if not math.isfinite(value) or abs(value) > bound:
        raise BadRequestError(f'Query parameter "{name}" must be between -{bound:g} and {bound:g}')
    return value


@router.get("/health", response_model=HealthResponse)
async def health(request: Request):
    state = request.app.state
    return HealthResponse(
        status="OK",
        message="Live Weather Dashboard API is running",
        timestamp=datetime.now(timezone.utc).isoformat(),
        cache=state.cache.stats(),
        rate_limit=state.rate_limiter.status(client_identity(request)),
    )


@router.get("/weather", dependencies=[Depends(weather_api_quota)])
@cached("weather_cache_ttl_seconds")
async def weather(request: Request, lat: Optional[str] = None, lon: Optional[str] = None):
    lat_v = _parse_coordinate(lat, "lat", DEFAULT_LAT, 90)
    lon_v = _parse_coordinate(lon, "lon", DEFAULT_LON, 180)

    client: WeatherClient = request.app.state.weather_client
    try:
        data = await client.get_comprehensive_weather_data(lat_v, lon_v)
    except UpstreamUnavailableError as e:
        # mock data is a successful response and is cached like real data
        logger.warning("Serving mock weather for (%s, %s): %s", lat_v, lon_v, e)
        data = mock_weather_data(lat_v, lon_v)

    return data.to_payload()


def _suggestions_response(error: str) -> JSONResponse:
    return JSONResponse(
        {"error": error, "suggestions": [loc.to_payload() for loc in POPULAR_LOCATIONS]},
        status_code=503,
    )


@router.get("/search-location", dependencies=[Depends(weather_api_quota)])
@cached("search_cache_ttl_seconds")
async def search_location(request: Request, q: Optional[str] = None):
    query = (q or "").strip()
    if not query:
        raise BadRequestError('Query parameter "q" is required')

    client: WeatherClient = request.app.state.weather_client
    if not client.configured:
        return _suggestions_response("Location search is unavailable: no weather API key configured")

    try:
        locations = await client.search_locations(query)
    except UpstreamUnavailableError as e:
        logger.warning("Location search failed for %r: %s", query, e)
        return _suggestions_response("Location search is temporarily unavailable")

    return LocationSearchResponse(locations=locations).to_payload()


@asynccontextmanager
async def lifespan(app: FastAPI):
    start_housekeeping(app)
    try:
        yield
    finally:
        await stop_housekeeping(app)


def create_app(
    settings: Optional[Settings] = None,
    weather_client: Optional[WeatherClient] = None,
    cache: Optional[TTLCache] = None,
    rate_limiter: Optional[SlidingWindowRateLimiter] = None,
) -> FastAPI:
    settings = settings or Settings()
    configure_logging(settings.log_level)

    app = FastAPI(title="Live Weather Dashboard API", version="1.0.0", lifespan=lifespan)

    # One instance of each per process, shared by every request
    app.state.settings = settings
    if cache is None:
        cache = TTLCache(default_ttl=settings.weather_cache_ttl_seconds)
    if rate_limiter is None:
        rate_limiter = SlidingWindowRateLimiter(settings.rate_limit_config())
    if weather_client is None:
        weather_client = WeatherClient.from_settings(settings)
    app.state.cache = cache
    app.state.rate_limiter = rate_limiter
    app.state.weather_client = weather_client

    if not weather_client.configured:
        logger.warning("OPENWEATHER_API_KEY is not set; serving mock weather data")

    app.middleware("http")(general_rate_limit)
    # outermost, so 429s carry CORS headers too
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=EXPOSED_HEADERS,
    )

    register_error_handlers(app)
    app.include_router(router)
    return app


app = create_app()


def run() -> None:
    settings = app.state.settings
    logger.info("Live Weather Dashboard API running on port %s", settings.port)
    uvicorn.run(app, host=settings.host, port=settings.port)


if __name__ == "__main__":
    run()
