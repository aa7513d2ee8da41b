"""
Unit tests for weather fetching, enrichment and detail-view processing.
"""
import datetime

import httpx
import pytest

from cityweather.errors import UpstreamError
from cityweather.geocode import reverse_geocode
from cityweather.weather import (
    WeatherClient,
    build_map_url,
    build_weather_view,
    daily_forecast,
    get_background_key,
    normalize_units,
    parse_current,
)

from conftest import current_payload, forecast_payload


@pytest.mark.parametrize("code,expected", [
    (200, "thunderstorm"),
    (232, "thunderstorm"),
    (301, "rainy"),
    (501, "rainy"),
    (601, "snowy"),
    (701, "mist"),
    (721, "mist"),
    (800, "sunny"),
    (801, "cloudy"),
    (804, "cloudy"),
    (900, "default"),
    (None, "sunny"),
])
def test_get_background_key(code, expected):
    assert get_background_key(code) == expected


def test_normalize_units():
    assert normalize_units("imperial") == "imperial"
    assert normalize_units("metric") == "metric"
    assert normalize_units(None) == "metric"
    assert normalize_units("kelvin") == "metric"


def test_build_map_url():
    url = build_map_url(10.0, 20.0)

    assert url.startswith("https://www.openstreetmap.org/export/embed.html?bbox=19.95%2C9.95%2C20.05%2C10.05")
    assert url.endswith("&layer=mapnik&marker=10.0%2C20.0")


def test_daily_forecast_takes_every_eighth_entry():
    payload = forecast_payload(steps=40)

    days = daily_forecast(payload)

    assert len(days) == 5
    assert [d.dt for d in days] == [payload["list"][i]["dt"] for i in (0, 8, 16, 24, 32)]
    assert days[1].high == 15.0 + 8
    assert days[1].low == 10.0 + 8
    assert days[1].description == "step 8"
    assert days[0].date == datetime.datetime.fromtimestamp(payload["list"][0]["dt"], tz=datetime.timezone.utc).date()


def test_daily_forecast_skips_malformed_entries():
    payload = {"list": [{"dt": 1}] + [{} for _ in range(7)] + [
        {"dt": 2, "main": {"temp_min": 1.0, "temp_max": 2.0}, "weather": []},
    ]}

    days = daily_forecast(payload)

    assert [d.dt for d in days] == [2]
    assert days[0].description == ""


def test_daily_forecast_empty():
    assert daily_forecast({}) == []


def test_parse_current_incomplete_payload():
    with pytest.raises(UpstreamError):
        parse_current({"name": "Paris", "main": {}})


def test_build_weather_view_imperial_labels():
    view = build_weather_view("Paris", "imperial", current_payload("Paris", 50.0, 60.0), forecast_payload())

    assert view.temp_unit == "°F"
    assert view.wind_unit == "mph"
    assert view.background == "cloudy"
    assert view.current.temp == 55.0
    assert view.current.description == "few clouds"
    assert len(view.forecast) == 5


@pytest.mark.asyncio
async def test_enrich_returns_high_and_low(http, upstream, test_settings):
    client = WeatherClient(http, test_settings)

    result = await client.enrich("Paris")

    assert result.high == 18.5
    assert result.low == 12.0
    assert result.raw["name"] == "Paris"
    params = upstream.calls("/weather")[0].url.params
    assert params["units"] == "metric"
    assert params["appid"] == "test-key"


@pytest.mark.asyncio
async def test_enrich_not_found_returns_none(http, upstream, test_settings):
    client = WeatherClient(http, test_settings)

    assert await client.enrich("Atlantis") is None


@pytest.mark.asyncio
async def test_enrich_network_error_returns_none(test_settings):
    def handler(request):
        raise httpx.ConnectError("boom", request=request)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
        assert await WeatherClient(http, test_settings).enrich("Paris") is None


@pytest.mark.asyncio
@pytest.mark.parametrize("response", [
    httpx.Response(200, text="<html>"),
    httpx.Response(200, json={"name": "Paris"}),
    httpx.Response(200, json={"main": {"temp_max": None, "temp_min": 1}}),
    httpx.Response(200, json=[1, 2]),
])
async def test_enrich_bad_payload_returns_none(test_settings, response):
    async with httpx.AsyncClient(transport=httpx.MockTransport(lambda request: response)) as http:
        assert await WeatherClient(http, test_settings).enrich("Paris") is None


@pytest.mark.asyncio
async def test_fetch_city_weather(http, upstream, test_settings):
    client = WeatherClient(http, test_settings)

    current, forecast = await client.fetch_city_weather("Paris", "imperial")

    assert current["name"] == "Paris"
    assert len(forecast["list"]) == 40
    assert {r.url.params["units"] for r in upstream.requests} == {"imperial"}


@pytest.mark.asyncio
async def test_fetch_city_weather_unknown_city(http, upstream, test_settings):
    client = WeatherClient(http, test_settings)

    with pytest.raises(UpstreamError, match="Failed to fetch current weather"):
        await client.fetch_city_weather("Atlantis", "metric")


@pytest.mark.asyncio
async def test_fetch_city_weather_forecast_failure(http, upstream, test_settings):
    upstream.forecast_status = 500
    client = WeatherClient(http, test_settings)

    with pytest.raises(UpstreamError, match="Failed to fetch forecast"):
        await client.fetch_city_weather("Paris", "metric")


@pytest.mark.asyncio
async def test_fetch_coords_weather_error_includes_body(http, upstream, test_settings):
    upstream.forecast_status = 502
    client = WeatherClient(http, test_settings)

    with pytest.raises(UpstreamError) as exc:
        await client.fetch_coords_weather(48.85, 2.35, "metric")

    assert str(exc.value) == "Forecast API error (502): forecast down"
    assert exc.value.status_code == 502


@pytest.mark.asyncio
async def test_reverse_geocode_uses_city_name(http, upstream, test_settings):
    assert await reverse_geocode(http, 48.85, 2.35, test_settings) == "Paris"
    assert upstream.requests[0].headers["User-Agent"] == test_settings.GEOCODER_USER_AGENT


@pytest.mark.asyncio
async def test_reverse_geocode_falls_back_to_coordinates(http, upstream, test_settings):
    upstream.place = None

    assert await reverse_geocode(http, 48.856613, 2.352222, test_settings) == "48.8566, 2.3522"


@pytest.mark.asyncio
async def test_reverse_geocode_town_and_village(test_settings):
    responses = iter([
        httpx.Response(200, json={"address": {"town": "Smallville"}}),
        httpx.Response(200, json={"address": {"village": "Tinyton"}}),
        httpx.Response(200, json={"address": {}}),
    ])
    async with httpx.AsyncClient(transport=httpx.MockTransport(lambda request: next(responses))) as http:
        assert await reverse_geocode(http, 1.0, 2.0, test_settings) == "Smallville"
        assert await reverse_geocode(http, 1.0, 2.0, test_settings) == "Tinyton"
        assert await reverse_geocode(http, 1.0, 2.0, test_settings) == "1.0000, 2.0000"
