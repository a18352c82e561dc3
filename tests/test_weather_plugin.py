"""Tests for the built-in weather plugin."""

import asyncio

import httpx
import pytest

from topix.plugins.weather import FORECAST_URL, WeatherPlugin, describe_weather
from topix.server.plugins.base import FetchContext
from topix.server.plugins.types import PluginRuntimeConfig, RetentionPolicy

PARIS = {"latitude": 48.85, "longitude": 2.35, "location": "Paris", "temperature_unit": "celsius"}


def forecast(code=61, temperature=11.6, daily_codes=None):
    return {
        "current": {
            "temperature_2m": temperature,
            "weather_code": code,
            "wind_speed_10m": 14.2,
            "relative_humidity_2m": 81,
        },
        "daily": {
            "time": ["2024-03-04", "2024-03-05", "2024-03-06", "2024-03-07"],
            "weather_code": daily_codes or [61, 3, 2, 1],
        },
    }


@pytest.fixture
def plugin():
    plugin = WeatherPlugin(timeout=5.0)
    asyncio.run(plugin.initialize(PluginRuntimeConfig("weather", True, "0 * * * *", config=dict(PARIS))))
    return plugin


class TestWeatherConfig:
    """Test cases for weather config validation."""

    def test_valid(self):
        assert WeatherPlugin().validate_config(PARIS).valid

    def test_coordinates_out_of_range(self):
        result = WeatherPlugin().validate_config({**PARIS, "latitude": 91, "longitude": -200})

        assert not result.valid
        assert "Latitude must be a number between -90 and 90" in result.errors
        assert "Longitude must be a number between -180 and 180" in result.errors

    def test_required_fields(self):
        result = WeatherPlugin().validate_config({"latitude": 1})
        assert "Missing required field: longitude" in result.errors
        assert "Missing required field: location" in result.errors

    def test_unit_enum(self):
        assert not WeatherPlugin().validate_config({**PARIS, "temperature_unit": "kelvin"}).valid

    def test_keeps_only_latest(self):
        assert WeatherPlugin().retention_policy() == RetentionPolicy.count(1)


class TestWeatherFetch:
    """Test cases for WeatherPlugin.fetch."""

    def test_builds_headline(self, plugin, httpx_mock):
        httpx_mock.add_response(method="GET", json=forecast())

        headlines = asyncio.run(plugin.fetch(FetchContext("weather", PARIS)))

        assert len(headlines) == 1
        headline = headlines[0]
        assert headline.title == "Slight rain, 12°C in Paris"
        assert headline.plugin_id == "weather"
        assert headline.category == "weather"
        assert headline.metadata["humidity"] == 81
        assert headline.metadata["location"] == "Paris"

        request = httpx_mock.get_requests()[0]
        assert str(request.url).startswith(FORECAST_URL)
        assert request.url.params["latitude"] == "48.85"
        assert request.url.params["temperature_unit"] == "celsius"

    def test_mentions_severe_forecast(self, plugin, httpx_mock):
        httpx_mock.add_response(method="GET", json=forecast(code=0, temperature=20, daily_codes=[0, 3, 95, 1]))

        headline = asyncio.run(plugin.fetch(FetchContext("weather", PARIS)))[0]

        assert headline.title == "Clear sky, 20°C in Paris; thunderstorm on Wednesday"

    def test_fahrenheit_default(self, httpx_mock):
        plugin = WeatherPlugin()
        config = {k: v for k, v in PARIS.items() if k != "temperature_unit"}
        asyncio.run(plugin.initialize(PluginRuntimeConfig("weather", True, "0 * * * *", config=config)))
        httpx_mock.add_response(method="GET", json=forecast(code=3, temperature=52.4))

        headline = asyncio.run(plugin.fetch(FetchContext("weather", config)))[0]

        assert headline.title == "Overcast, 52°F in Paris"
        assert httpx_mock.get_requests()[0].url.params["temperature_unit"] == "fahrenheit"

    def test_api_error_propagates(self, plugin, httpx_mock):
        httpx_mock.add_response(method="GET", status_code=503)

        with pytest.raises(httpx.HTTPStatusError):
            asyncio.run(plugin.fetch(FetchContext("weather", PARIS)))

    def test_unknown_code(self):
        assert describe_weather(12345) == "Unknown conditions"


class TestWeatherHealth:
    def test_healthy(self, plugin, httpx_mock):
        httpx_mock.add_response(method="GET", json={"current": {"temperature_2m": 25}})
        status = asyncio.run(plugin.health_check())
        assert status.healthy

    def test_unreachable(self, plugin, httpx_mock):
        httpx_mock.add_exception(httpx.ConnectError("no route"))
        status = asyncio.run(plugin.health_check())
        assert not status.healthy
        assert "Failed to reach Weather API" in status.message

    def test_error_status(self, plugin, httpx_mock):
        httpx_mock.add_response(method="GET", status_code=500)
        assert not asyncio.run(plugin.health_check()).healthy
