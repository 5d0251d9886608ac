from pydantic_settings import BaseSettings, SettingsConfigDict

from .guardrails import RateLimitConfig


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # OpenWeatherMap; without a key the API serves mock weather data
    openweather_api_key: str | None = None
    openweather_base_url: str = "https://api.openweathermap.org/data/2.5"
    openweather_geocoding_url: str = "https://api.openweathermap.org/geo/1.0"
    upstream_timeout_seconds: float = 10.0

    rate_limit_window_seconds: int = 60
    rate_limit_general: int = 100
    rate_limit_weather: int = 10

    weather_cache_ttl_seconds: int = 5 * 60
    search_cache_ttl_seconds: int = 10 * 60
    cache_sweep_interval_seconds: float = 60
    rate_limit_sweep_interval_seconds: float = 5 * 60

    cors_origins: list[str] = ["*"]
    log_level: str = "INFO"
    host: str = "0.0.0.0"
    port: int = 5001

    def rate_limit_config(self) -> RateLimitConfig:
        return RateLimitConfig(
            window_seconds=self.rate_limit_window_seconds,
            general_limit=self.rate_limit_general,
            endpoint_limit=self.rate_limit_weather,
        )
