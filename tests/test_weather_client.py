import asyncio
import unittest
from datetime import datetime

import httpx

from api.dashboard.errors import UpstreamUnavailableError
from api.dashboard.weather_client import (
    WeatherClient,
    capitalize_words,
    format_forecast,
    map_weather_icon,
    mock_weather_data,
    wind_direction,
)

# 2024-01-01T00:00:00Z
START = 1704067200

CURRENT = {
    "main": {"temp": 21.6, "humidity": 64, "pressure": 1012},
    "wind": {"speed": 5.0, "deg": 300},
    "visibility": 8000,
    "weather": [{"description": "light rain", "icon": "10d"}],
}

FORECAST = {
    "list": [
        {
            "dt": START + i * 3 * 3600,
            "main": {"temp": 10 + i, "temp_max": 12.5 + i, "temp_min": 8.4, "humidity": 70},
            "wind": {"speed": 2.0},
            "pop": 0.25,
            "weather": [{"description": "SCATTERED clouds", "icon": "03d"}],
        }
        for i in range(10)
    ]
}

REVERSE = [{"name": "Sofia", "country": "BG"}]

DIRECT = [
    {"name": "Sofia", "country": "BG", "lat": 42.6977, "lon": 23.3219},
    {"name": "Springfield", "country": "US", "state": "Illinois", "lat": 39.8, "lon": -89.6},
]


def make_client(handler, api_key="test-key"):
    return WeatherClient(api_key=api_key, retry_delays=(0, 0), transport=httpx.MockTransport(handler))


def provider(request: httpx.Request) -> httpx.Response:
    path = request.url.path
    if path.endswith("/data/2.5/weather"):
        return httpx.Response(200, json=CURRENT)
    if path.endswith("/data/2.5/forecast"):
        return httpx.Response(200, json=FORECAST)
    if path.endswith("/geo/1.0/reverse"):
        return httpx.Response(200, json=REVERSE)
    if path.endswith("/geo/1.0/direct"):
        return httpx.Response(200, json=DIRECT)
    return httpx.Response(404)


class WeatherClientTests(unittest.IsolatedAsyncioTestCase):
    async def test_comprehensive_weather_data(self):
        seen = []

        def handler(request):
            seen.append(request)
            return provider(request)

        data = await make_client(handler).get_comprehensive_weather_data(42.6977, 23.3219)

        self.assertEqual(data.location.city, "Sofia")
        self.assertEqual(data.location.country, "BG")
        self.assertEqual(data.location.coordinates.lat, 42.6977)
        self.assertEqual(data.current.temperature, 22)
        self.assertEqual(data.current.wind_speed, 18)
        self.assertEqual(data.current.wind_direction, "WNW")
        self.assertEqual(data.current.visibility, 8)
        self.assertEqual(data.current.condition, "Light Rain")
        self.assertEqual(data.current.icon, "rainy")
        self.assertEqual(len(data.hourly), 10)
        self.assertEqual([d.date for d in data.forecast], ["2024-01-01", "2024-01-02"])

        self.assertEqual(len(seen), 3)
        for request in seen:
            self.assertEqual(request.url.params["appid"], "test-key")

    async def test_reverse_geocode_without_match_uses_unknown(self):
        def handler(request):
            if request.url.path.endswith("/reverse"):
                return httpx.Response(200, json=[])
            return provider(request)

        data = await make_client(handler).get_comprehensive_weather_data(0, 0)
        self.assertEqual(data.location.city, "Unknown")
        self.assertEqual(data.location.country, "Unknown")

    async def test_failed_current_weather_cancels_forecast_fetch(self):
        cancelled = []

        async def handler(request):
            if request.url.path.endswith("/weather"):
                return httpx.Response(401)
            if request.url.path.endswith("/forecast"):
                try:
                    await asyncio.sleep(5)
                except asyncio.CancelledError:
                    cancelled.append(request.url.path)
                    raise
            return provider(request)

        with self.assertRaises(UpstreamUnavailableError):
            await asyncio.wait_for(make_client(handler).get_comprehensive_weather_data(1, 1), timeout=2)
        self.assertEqual(len(cancelled), 1)

    async def test_missing_api_key_fails_without_calling_provider(self):
        calls = []

        def handler(request):
            calls.append(request)
            return provider(request)

        client = make_client(handler, api_key=None)
        self.assertFalse(client.configured)
        with self.assertRaises(UpstreamUnavailableError):
            await client.get_current_weather(1, 1)
        self.assertEqual(calls, [])

    async def test_server_errors_are_retried_then_reported(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(502)

        with self.assertRaises(UpstreamUnavailableError):
            await make_client(handler).get_current_weather(1, 1)
        self.assertEqual(len(calls), 3)

    async def test_client_errors_are_not_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(401, json={"message": "Invalid API key"})

        with self.assertRaises(UpstreamUnavailableError):
            await make_client(handler).get_forecast(1, 1)
        self.assertEqual(len(calls), 1)

    async def test_transport_errors_are_wrapped(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with self.assertRaises(UpstreamUnavailableError):
            await make_client(handler).get_current_weather(1, 1)

    async def test_malformed_payload_is_wrapped(self):
        def handler(request):
            return httpx.Response(200, json={"unexpected": True})

        with self.assertRaises(UpstreamUnavailableError):
            await make_client(handler).get_current_weather(1, 1)

    async def test_search_locations(self):
        locations = await make_client(provider).search_locations("Spring")
        self.assertEqual(len(locations), 2)
        self.assertIsNone(locations[0].state)
        self.assertEqual(locations[1].state, "Illinois")


class FormattingTests(unittest.TestCase):
    def test_wind_direction(self):
        self.assertEqual(wind_direction(0), "N")
        self.assertEqual(wind_direction(11.25), "NNE")
        self.assertEqual(wind_direction(180), "S")
        self.assertEqual(wind_direction(359), "N")

    def test_icon_mapping_defaults(self):
        self.assertEqual(map_weather_icon("01n"), "clear-night")
        self.assertEqual(map_weather_icon("unknown"), "partly-cloudy")

    def test_capitalize_words(self):
        self.assertEqual(capitalize_words("overcast CLOUDS"), "Overcast Clouds")

    def test_forecast_hours_follow_current_hour(self):
        hourly, daily = format_forecast(FORECAST, now=datetime(2024, 1, 1, 22, 0))
        self.assertEqual([h.hour for h in hourly[:4]], [22, 23, 0, 1])
        self.assertEqual(hourly[0].precipitation, 25)
        self.assertEqual(daily[0].high, 13)
        self.assertEqual(daily[0].low, 8)
        self.assertEqual(daily[0].precipitation, 25)
        self.assertEqual(daily[0].condition, "Scattered Clouds")

    def test_daily_forecast_capped_at_five_days(self):
        week = {"list": [dict(FORECAST["list"][0], dt=START + day * 86400) for day in range(7)]}
        _, daily = format_forecast(week)
        self.assertEqual(len(daily), 5)

    def test_mock_weather_data_shape(self):
        data = mock_weather_data(42.34, 27.19)
        self.assertEqual(data.location.coordinates.lat, 42.34)
        self.assertEqual(data.location.coordinates.lon, 27.19)
        self.assertEqual([h.hour for h in data.hourly], list(range(24)))
        self.assertEqual([f.condition for f in data.forecast], ["Partly Cloudy", "Sunny", "Light Rain"])
        self.assertIn("uvIndex", data.to_payload()["current"])


if __name__ == "__main__":
    unittest.main()
