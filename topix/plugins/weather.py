"""Weather plugin.

Fetches current conditions and a 7-day forecast from the Open-Meteo API
(no API key required) and produces one weather headline per fetch.
"""

import logging
from datetime import date
from typing import Any, Dict, List

import httpx

from topix.server.plugins.base import BasePlugin, FetchContext
from topix.server.plugins.types import (
    Headline,
    HealthStatus,
    PluginDescriptor,
    RetentionPolicy,
    ValidationResult,
)

logger = logging.getLogger(__name__)

FORECAST_URL = "https://api.open-meteo.com/v1/forecast"

# WMO weather interpretation codes
WEATHER_CODES = {
    0: "Clear sky",
    1: "Mainly clear",
    2: "Partly cloudy",
    3: "Overcast",
    45: "Foggy",
    48: "Depositing rime fog",
    51: "Light drizzle",
    53: "Moderate drizzle",
    55: "Dense drizzle",
    61: "Slight rain",
    63: "Moderate rain",
    65: "Heavy rain",
    71: "Slight snow",
    73: "Moderate snow",
    75: "Heavy snow",
    77: "Snow grains",
    80: "Slight rain showers",
    81: "Moderate rain showers",
    82: "Violent rain showers",
    85: "Slight snow showers",
    86: "Heavy snow showers",
    95: "Thunderstorm",
    96: "Thunderstorm with slight hail",
    99: "Thunderstorm with heavy hail",
}

# Codes worth calling out in the headline when they show up in the forecast
SEVERE_CODES = {65, 75, 82, 86, 95, 96, 99}


def describe_weather(code: int) -> str:
    return WEATHER_CODES.get(code, "Unknown conditions")


class WeatherPlugin(BasePlugin):
    """Weather updates and forecasts for one location."""

    descriptor = PluginDescriptor(
        id="weather",
        name="Weather",
        version="0.1.0",
        author="Topix",
        description="Get weather updates and forecasts for your location",
    )

    def __init__(self, timeout: float = 15.0) -> None:
        super().__init__()
        self.timeout = timeout

    def describe_config_schema(self) -> Dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "latitude": {
                    "type": "number",
                    "description": "Latitude of your location",
                    "default": 37.7749,
                },
                "longitude": {
                    "type": "number",
                    "description": "Longitude of your location",
                    "default": -122.4194,
                },
                "location": {
                    "type": "string",
                    "description": 'Display name for your location (e.g., "San Francisco, CA")',
                    "default": "San Francisco, CA",
                },
                "temperature_unit": {
                    "type": "string",
                    "description": "Temperature unit",
                    "default": "fahrenheit",
                    "enum": ["fahrenheit", "celsius"],
                },
            },
            "required": ["latitude", "longitude", "location"],
        }

    def validate_config(self, raw: Any) -> ValidationResult:
        """Validate the schema, then the coordinate ranges."""
        result = super().validate_config(raw)
        if not isinstance(raw, dict):
            return result

        errors = list(result.errors)
        latitude = raw.get("latitude")
        if isinstance(latitude, (int, float)) and not -90 <= latitude <= 90:
            errors.append("Latitude must be a number between -90 and 90")
        longitude = raw.get("longitude")
        if isinstance(longitude, (int, float)) and not -180 <= longitude <= 180:
            errors.append("Longitude must be a number between -180 and 180")
        return ValidationResult(valid=not errors, errors=errors)

    def retention_policy(self) -> RetentionPolicy:
        # Only the latest conditions matter
        return RetentionPolicy.count(1)

    async def fetch(self, context: FetchContext) -> List[Headline]:
        """Fetch the forecast and build one headline.

        Raises:
            httpx.HTTPError: If the Open-Meteo request fails
        """
        data = await self._fetch_forecast()
        unit_symbol = "°C" if self.config_value("temperature_unit") == "celsius" else "°F"
        location = self.config_value("location")

        current = data["current"]
        condition = describe_weather(current["weather_code"])
        temperature = round(current["temperature_2m"])
        title = f"{condition}, {temperature}{unit_symbol} in {location}"

        outlook = self._notable_outlook(data.get("daily", {}))
        if outlook:
            title = f"{title}; {outlook}"

        headline = Headline.create(
            self.descriptor.id,
            title,
            description=f"Weather update for {location}",
            category="weather",
            tags=["weather", "forecast"],
            importance_score=0.5,
            metadata={
                "temperature": current["temperature_2m"],
                "weather_code": current["weather_code"],
                "wind_speed": current.get("wind_speed_10m"),
                "humidity": current.get("relative_humidity_2m"),
                "location": location,
            },
        )
        return [headline]

    async def health_check(self) -> HealthStatus:
        """Check that the Open-Meteo API is reachable."""
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(
                    FORECAST_URL,
                    params={"latitude": 0, "longitude": 0, "current": "temperature_2m"},
                )
        except httpx.HTTPError as e:
            return HealthStatus(healthy=False, message=f"Failed to reach Weather API: {e}")

        if response.status_code != 200:
            return HealthStatus(
                healthy=False,
                message=f"Weather API returned {response.status_code}: {response.reason_phrase}",
            )
        return HealthStatus(healthy=True, message="Weather API is accessible")

    async def _fetch_forecast(self) -> Dict[str, Any]:
        params = {
            "latitude": self.config_value("latitude"),
            "longitude": self.config_value("longitude"),
            "current": "temperature_2m,weather_code,wind_speed_10m,precipitation,relative_humidity_2m",
            "daily": "weather_code,temperature_2m_max,temperature_2m_min,precipitation_probability_max",
            "temperature_unit": self.config_value("temperature_unit"),
            "timezone": "auto",
        }
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.get(FORECAST_URL, params=params)
            response.raise_for_status()
            return response.json()

    def _notable_outlook(self, daily: Dict[str, Any]) -> str:
        """Name the first upcoming day with severe weather, if any."""
        days = daily.get("time", [])[1:7]
        codes = daily.get("weather_code", [])[1:7]
        for day, code in zip(days, codes):
            if code in SEVERE_CODES:
                weekday = date.fromisoformat(day).strftime("%A")
                return f"{describe_weather(code).lower()} on {weekday}"
        return ""
