from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Wire format uses camelCase keys; Python code uses snake_case."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_payload(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")


class Coordinates(CamelModel):
    lat: float
    lon: float


class WeatherLocation(CamelModel):
    city: str
    country: str
    coordinates: Coordinates


class CurrentWeather(CamelModel):
    temperature: float
    humidity: float
    wind_speed: float
    wind_direction: str
    pressure: float
    visibility: float
    uv_index: float
    condition: str
    icon: str


class DailyForecast(CamelModel):
    date: str
    high: float
    low: float
    condition: str
    precipitation: float


class HourlyWeather(CamelModel):
    hour: int = Field(..., ge=0, le=23)
    temperature: float
    humidity: float
    wind_speed: float
    precipitation: float


class WeatherData(CamelModel):
    location: WeatherLocation
    current: CurrentWeather
    forecast: List[DailyForecast]
    hourly: List[HourlyWeather]
    last_updated: str


class LocationResult(CamelModel):
    name: str
    country: str
    state: Optional[str] = None
    lat: float
    lon: float


class LocationSearchResponse(CamelModel):
    locations: List[LocationResult]


class CacheStats(CamelModel):
    total_items: int
    valid_items: int
    expired_items: int


def iso_timestamp(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


class QuotaStatus(CamelModel):
    limit: int
    remaining: int
    reset_time: float
    limited: bool

    @field_serializer("reset_time", when_used="json")
    def _serialize_reset_time(self, value: float) -> str:
        return iso_timestamp(value)


class RateLimitStatus(CamelModel):
    general: QuotaStatus
    weather_api: QuotaStatus


class HealthResponse(CamelModel):
    status: str
    message: str
    timestamp: str
    cache: CacheStats
    rate_limit: RateLimitStatus
