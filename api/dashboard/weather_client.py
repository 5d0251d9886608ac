import asyncio
import logging
import math
import random
import re
from datetime import datetime, timedelta, timezone
from typing import Any, List, Optional, Sequence

import httpx

from .errors import UpstreamUnavailableError
from .schemas import (
    Coordinates,
    CurrentWeather,
    DailyForecast,
    HourlyWeather,
    LocationResult,
    WeatherData,
    WeatherLocation,
)

logger = logging.getLogger(__name__)

OPENWEATHER_URL = "https://api.openweathermap.org/data/2.5"
GEOCODING_URL = "https://api.openweathermap.org/geo/1.0"

DEFAULT_LAT = 37.7749
DEFAULT_LON = -122.4194

WIND_DIRECTIONS = [
    "N", "NNE", "NE", "ENE", "E", "ESE", "SE", "SSE",
    "S", "SSW", "SW", "WSW", "W", "WNW", "NW", "NNW",
]

ICON_MAP = {
    "01d": "sunny",
    "01n": "clear-night",
    "02d": "partly-cloudy",
    "02n": "partly-cloudy-night",
    "03d": "cloudy",
    "03n": "cloudy",
    "04d": "cloudy",
    "04n": "cloudy",
    "09d": "rainy",
    "09n": "rainy",
    "10d": "rainy",
    "10n": "rainy",
    "11d": "stormy",
    "11n": "stormy",
    "13d": "snowy",
    "13n": "snowy",
    "50d": "fog",
    "50n": "fog",
}

# Offered by location search when the provider cannot be queried
POPULAR_LOCATIONS = [
    LocationResult(name="Sredets", country="BG", lat=42.6500, lon=25.3167),
    LocationResult(name="Sofia", country="BG", lat=42.6977, lon=23.3219),
    LocationResult(name="London", country="GB", lat=51.5074, lon=-0.1278),
    LocationResult(name="Paris", country="FR", lat=48.8566, lon=2.3522),
    LocationResult(name="New York", country="US", lat=40.7128, lon=-74.0060),
    LocationResult(name="Tokyo", country="JP", lat=35.6762, lon=139.6503),
    LocationResult(name="Berlin", country="DE", lat=52.5200, lon=13.4050),
    LocationResult(name="Sydney", country="AU", lat=-33.8688, lon=151.2093),
]


def round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def wind_direction(degrees: float) -> str:
    return WIND_DIRECTIONS[round_half_up(degrees / 22.5) % 16]


def map_weather_icon(icon_code: str) -> str:
    return ICON_MAP.get(icon_code, "partly-cloudy")


def capitalize_words(text: str) -> str:
    return re.sub(r"\w\S*", lambda m: m.group(0)[0].upper() + m.group(0)[1:].lower(), text)


def format_current_weather(data: dict) -> CurrentWeather:
    main = data["main"]
    wind = data.get("wind", {})
    weather = data["weather"][0]
    return CurrentWeather(
        temperature=round_half_up(main["temp"]),
        humidity=main["humidity"],
        wind_speed=round_half_up(wind.get("speed", 0) * 3.6),  # m/s -> km/h
        wind_direction=wind_direction(wind.get("deg") or 0),
        pressure=main["pressure"],
        visibility=round_half_up((data.get("visibility") or 10000) / 1000),  # m -> km
        uv_index=0,  # not part of the current-weather payload
        condition=capitalize_words(weather["description"]),
        icon=map_weather_icon(weather["icon"]),
    )


def format_forecast(data: dict, now: Optional[datetime] = None) -> tuple[List[HourlyWeather], List[DailyForecast]]:
    """
    Split the 3-hourly forecast list into hourly and daily views.

    Hourly covers the first 24 slots. Daily keeps the first slot seen for each
    UTC date, up to five days.
    """
    now = now or datetime.now()
    items = data["list"]

    hourly = [
        HourlyWeather(
            hour=(now.hour + index) % 24,
            temperature=round_half_up(item["main"]["temp"]),
            humidity=item["main"]["humidity"],
            wind_speed=round_half_up(item["wind"]["speed"] * 3.6),
            precipitation=item.get("pop", 0) * 100,
        )
        for index, item in enumerate(items[:24])
    ]

    daily: List[DailyForecast] = []
    seen_dates = set()
    for item in items:
        if len(daily) >= 5:
            break
        date = datetime.fromtimestamp(item["dt"], tz=timezone.utc).date().isoformat()
        if date in seen_dates:
            continue
        seen_dates.add(date)
        daily.append(
            DailyForecast(
                date=date,
                high=round_half_up(item["main"]["temp_max"]),
                low=round_half_up(item["main"]["temp_min"]),
                condition=capitalize_words(item["weather"][0]["description"]),
                precipitation=round_half_up(item.get("pop", 0) * 100),
            )
        )

    return hourly, daily


def mock_weather_data(lat: float = DEFAULT_LAT, lon: float = DEFAULT_LON, rng: Optional[random.Random] = None) -> WeatherData:
    """Synthetic weather with the same shape as a real upstream record."""
    rng = rng or random.Random()
    now = datetime.now(timezone.utc)

    def day(offset: int) -> str:
        return (now + timedelta(days=offset)).date().isoformat()

    return WeatherData(
        location=WeatherLocation(
            city="San Francisco",
            country="US",
            coordinates=Coordinates(lat=lat, lon=lon),
        ),
        current=CurrentWeather(
            temperature=round_half_up(18 + rng.random() * 10),
            humidity=round_half_up(50 + rng.random() * 30),
            wind_speed=round_half_up(5 + rng.random() * 15),
            wind_direction="NW",
            pressure=round_half_up(1010 + rng.random() * 10),
            visibility=round_half_up(8 + rng.random() * 4),
            uv_index=round_half_up(rng.random() * 10),
            condition="Partly Cloudy",
            icon="partly-cloudy",
        ),
        forecast=[
            DailyForecast(
                date=day(0),
                high=round_half_up(22 + rng.random() * 6),
                low=round_half_up(15 + rng.random() * 5),
                condition="Partly Cloudy",
                precipitation=round_half_up(rng.random() * 30),
            ),
            DailyForecast(
                date=day(1),
                high=round_half_up(24 + rng.random() * 6),
                low=round_half_up(17 + rng.random() * 5),
                condition="Sunny",
                precipitation=round_half_up(rng.random() * 10),
            ),
            DailyForecast(
                date=day(2),
                high=round_half_up(21 + rng.random() * 6),
                low=round_half_up(14 + rng.random() * 5),
                condition="Light Rain",
                precipitation=round_half_up(60 + rng.random() * 30),
            ),
        ],
        hourly=[
            HourlyWeather(
                hour=i,
                temperature=round_half_up(16 + rng.random() * 8 + math.sin(i * math.pi / 12) * 4),
                humidity=round_half_up(45 + rng.random() * 35 + math.cos(i * math.pi / 8) * 10),
                wind_speed=round_half_up(3 + rng.random() * 12 + math.sin(i * math.pi / 6) * 3),
                precipitation=rng.random() * 100,
            )
            for i in range(24)
        ],
        last_updated=now.isoformat(),
    )


class WeatherClient:
    """
    OpenWeatherMap client.

    Every failure, including a missing API key, surfaces as
    ``UpstreamUnavailableError`` so routes can degrade in one place.
    """

    def __init__(
        self,
        api_key: Optional[str],
        base_url: str = OPENWEATHER_URL,
        geocoding_url: str = GEOCODING_URL,
        timeout: float = 10.0,
        retry_delays: Sequence[float] = (0.5, 1.0),
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.geocoding_url = geocoding_url.rstrip("/")
        self.timeout = timeout
        self.retry_delays = list(retry_delays)
        self._transport = transport

    @classmethod
    def from_settings(cls, settings) -> "WeatherClient":
        return cls(
            api_key=settings.openweather_api_key,
            base_url=settings.openweather_base_url,
            geocoding_url=settings.openweather_geocoding_url,
            timeout=settings.upstream_timeout_seconds,
        )

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    async def _get(self, url: str, params: dict) -> Any:
        if not self.configured:
            raise UpstreamUnavailableError("OpenWeatherMap API key is not configured")

        params = {**params, "appid": self.api_key}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                # Retry on 5xx only; 4xx means the request itself is wrong
                for delay in [0.0] + self.retry_delays:
                    if delay:
                        await asyncio.sleep(delay)

                    r = await client.get(url, params=params)
                    if 500 <= r.status_code < 600:
                        logger.warning("Upstream %s returned %s", url, r.status_code)
                        continue
                    r.raise_for_status()
                    return r.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise UpstreamUnavailableError(f"Request to {url} failed: {exc}") from exc

        raise UpstreamUnavailableError(f"{url} is temporarily unavailable.")

    async def get_current_weather(self, lat: float, lon: float) -> CurrentWeather:
        data = await self._get(f"{self.base_url}/weather", {"lat": lat, "lon": lon, "units": "metric"})
        try:
            return format_current_weather(data)
        except (KeyError, IndexError, TypeError, ValueError) as exc:
            raise UpstreamUnavailableError(f"Malformed current weather payload: {exc}") from exc

    async def get_forecast(self, lat: float, lon: float) -> tuple[List[HourlyWeather], List[DailyForecast]]:
        data = await self._get(f"{self.base_url}/forecast", {"lat": lat, "lon": lon, "units": "metric"})
        try:
            return format_forecast(data)
        except (KeyError, IndexError, TypeError, ValueError) as exc:
            raise UpstreamUnavailableError(f"Malformed forecast payload: {exc}") from exc

    async def reverse_geocode(self, lat: float, lon: float) -> dict:
        data = await self._get(f"{self.geocoding_url}/reverse", {"lat": lat, "lon": lon, "limit": 1})
        if isinstance(data, list) and data:
            return data[0]
        return {}

    async def search_locations(self, query: str, limit: int = 5) -> List[LocationResult]:
        data = await self._get(f"{self.geocoding_url}/direct", {"q": query, "limit": limit})
        try:
            return [
                LocationResult(
                    name=item["name"],
                    country=item["country"],
                    state=item.get("state"),
                    lat=item["lat"],
                    lon=item["lon"],
                )
                for item in data
            ]
        except (KeyError, TypeError, ValueError) as exc:
            raise UpstreamUnavailableError(f"Malformed geocoding payload: {exc}") from exc

    async def get_comprehensive_weather_data(self, lat: float, lon: float) -> WeatherData:
        tasks = [
            asyncio.ensure_future(self.get_current_weather(lat, lon)),
            asyncio.ensure_future(self.get_forecast(lat, lon)),
        ]
        try:
            current, (hourly, daily) = await asyncio.gather(*tasks)
        except BaseException:
            # first failure wins; cancel and collect the sibling fetch
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise
        place = await self.reverse_geocode(lat, lon)

        return WeatherData(
            location=WeatherLocation(
                city=place.get("name") or "Unknown",
                country=place.get("country") or "Unknown",
                coordinates=Coordinates(lat=lat, lon=lon),
            ),
            current=current,
            forecast=daily,
            hourly=hourly,
            last_updated=datetime.now(timezone.utc).isoformat(),
        )
