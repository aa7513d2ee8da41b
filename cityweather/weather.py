"""
Weather data fetching and processing module.

Integrates with the OpenWeatherMap current-weather and 5-day forecast APIs,
both for best-effort temperature enrichment of search results and for the
per-city detail views.
"""
import asyncio
import datetime
from typing import Any, Dict, List, Optional, Tuple

import httpx

from .config import Settings, settings as default_settings
from .errors import UpstreamError
from .log import get_logger
from .schemas import CurrentConditions, Enrichment, ForecastDay, Units, WeatherView

logger = get_logger(__name__)

# The forecast API returns 3-hour steps; every 8th entry is one per day
FORECAST_STEPS_PER_DAY: int = 8

# Half-width of the embedded map's bounding box, in degrees
MAP_DELTA_DEG: float = 0.05

UNIT_LABELS: Dict[str, Tuple[str, str]] = {
    "metric": ("°C", "m/s"),
    "imperial": ("°F", "mph"),
}


def normalize_units(value: Optional[str]) -> Units:
    """Anything other than "imperial" means metric."""
    return "imperial" if value == "imperial" else "metric"


def get_background_key(code: Optional[int]) -> str:
    """
    Map an OpenWeatherMap condition id to a background image key.

    Args:
        code: Condition id (e.g. 500, 800); None is treated as clear sky

    Returns:
        One of thunderstorm, rainy, snowy, mist, sunny, cloudy, default
    """
    if code is None:
        code = 800
    group = code // 100
    if group == 2:
        return "thunderstorm"
    if group in (3, 5):
        return "rainy"
    if group == 6:
        return "snowy"
    if group == 7:
        return "mist"
    if group == 8:
        return "sunny" if code == 800 else "cloudy"
    return "default"


def build_map_url(lat: float, lon: float) -> str:
    """OpenStreetMap embed URL centred on a marker at (lat, lon)."""
    return (
        "https://www.openstreetmap.org/export/embed.html"
        f"?bbox={lon - MAP_DELTA_DEG}%2C{lat - MAP_DELTA_DEG}%2C{lon + MAP_DELTA_DEG}%2C{lat + MAP_DELTA_DEG}"
        f"&layer=mapnik&marker={lat}%2C{lon}"
    )


def parse_current(payload: Dict[str, Any]) -> CurrentConditions:
    """
    Extract the displayed fields from a current-weather payload.

    Raises:
        UpstreamError: if temperature or coordinates are missing
    """
    try:
        main = payload["main"]
        coord = payload["coord"]
        weather = (payload.get("weather") or [{}])[0]
        return CurrentConditions(
            temp=main["temp"],
            feels_like=main.get("feels_like", main["temp"]),
            humidity=main.get("humidity"),
            pressure=main.get("pressure"),
            description=weather.get("description", ""),
            wind_speed=(payload.get("wind") or {}).get("speed", 0.0),
            weather_id=weather.get("id", 800),
            lat=coord["lat"],
            lon=coord["lon"],
        )
    except (KeyError, TypeError, IndexError) as e:
        raise UpstreamError(f"Weather API returned an incomplete payload: {e}") from e


def daily_forecast(payload: Dict[str, Any]) -> List[ForecastDay]:
    """
    Reduce the 3-hourly forecast list to one entry per day.

    Args:
        payload: Raw forecast response with a ``list`` array

    Returns:
        Entries at index 0, 8, 16, ...; malformed entries are skipped
    """
    items: List[Dict[str, Any]] = payload.get("list") or []
    out: List[ForecastDay] = []
    for item in items[::FORECAST_STEPS_PER_DAY]:
        main = item.get("main") or {}
        if "dt" not in item or "temp_max" not in main or "temp_min" not in main:
            continue
        weather = (item.get("weather") or [{}])[0]
        out.append(ForecastDay(
            dt=item["dt"],
            date=datetime.datetime.fromtimestamp(item["dt"], tz=datetime.timezone.utc).date(),
            high=main["temp_max"],
            low=main["temp_min"],
            description=weather.get("description", ""),
        ))
    return out


def build_weather_view(
    name: str,
    units: Units,
    current: Dict[str, Any],
    forecast: Dict[str, Any],
) -> WeatherView:
    conditions = parse_current(current)
    temp_unit, wind_unit = UNIT_LABELS[units]
    return WeatherView(
        name=name,
        units=units,
        temp_unit=temp_unit,
        wind_unit=wind_unit,
        background=get_background_key(conditions.weather_id),
        map_url=build_map_url(conditions.lat, conditions.lon),
        current=conditions,
        forecast=daily_forecast(forecast),
    )


class WeatherClient:
    """Current weather and forecast lookups against OpenWeatherMap."""

    def __init__(self, http: httpx.AsyncClient, settings: Settings = default_settings) -> None:
        self._http = http
        self._settings = settings
        # Limits concurrent detail-view requests; enrichment batches are not gated
        self._sem = asyncio.Semaphore(settings.MAX_CONCURRENT_WEATHER_REQUESTS)

    async def _get(self, url: str, params: Dict[str, Any], limited: bool = True) -> httpx.Response:
        params = {**params, "appid": self._settings.WEATHER_API_KEY}
        if not limited:
            return await self._http.get(url, params=params)
        async with self._sem:
            return await self._http.get(url, params=params)

    async def enrich(self, city_name: str) -> Optional[Enrichment]:
        """
        Best-effort high/low temperature for a city, in metric units.

        Args:
            city_name: Name passed verbatim as the ``q`` parameter

        Returns:
            Enrichment, or None on any network error, non-success response
            or missing temperature fields. Never raises.
        """
        try:
            r = await self._get(self._settings.WEATHER_API_URL, {"q": city_name, "units": "metric"}, limited=False)
            if not r.is_success:
                logger.debug("enrich_failed", city=city_name, status=r.status_code)
                return None
            data = r.json()
            main = data["main"]
            return Enrichment(high=main["temp_max"], low=main["temp_min"], raw=data)
        except (httpx.HTTPError, ValueError, KeyError, TypeError) as e:
            logger.debug("enrich_failed", city=city_name, error=str(e))
            return None

    async def fetch_city_weather(self, city: str, units: Units) -> Tuple[Dict[str, Any], Dict[str, Any]]:
        """
        Fetch current conditions and the 5-day forecast for a city name.

        Returns:
            (current payload, forecast payload)

        Raises:
            UpstreamError: if either request fails
        """
        params = {"q": city, "units": units}
        try:
            current_res, forecast_res = await asyncio.gather(
                self._get(self._settings.WEATHER_API_URL, params),
                self._get(self._settings.FORECAST_API_URL, params),
            )
        except httpx.HTTPError as e:
            raise UpstreamError(f"Failed to fetch weather: {e}") from e
        if not current_res.is_success:
            raise UpstreamError("Failed to fetch current weather", status_code=current_res.status_code)
        if not forecast_res.is_success:
            raise UpstreamError("Failed to fetch forecast", status_code=forecast_res.status_code)
        return _json(current_res), _json(forecast_res)

    async def fetch_coords_weather(self, lat: float, lon: float, units: Units) -> Tuple[Dict[str, Any], Dict[str, Any]]:
        """Same as fetch_city_weather, keyed by coordinates; errors include the response body."""
        params = {"lat": lat, "lon": lon, "units": units}
        try:
            current_res, forecast_res = await asyncio.gather(
                self._get(self._settings.WEATHER_API_URL, params),
                self._get(self._settings.FORECAST_API_URL, params),
            )
        except httpx.HTTPError as e:
            raise UpstreamError(f"Failed to fetch weather: {e}") from e
        if not current_res.is_success:
            raise UpstreamError(
                f"Weather API error ({current_res.status_code}): {current_res.text}",
                status_code=current_res.status_code,
            )
        if not forecast_res.is_success:
            raise UpstreamError(
                f"Forecast API error ({forecast_res.status_code}): {forecast_res.text}",
                status_code=forecast_res.status_code,
            )
        return _json(current_res), _json(forecast_res)


def _json(response: httpx.Response) -> Dict[str, Any]:
    try:
        data = response.json()
    except ValueError as e:
        raise UpstreamError("Weather API returned invalid JSON") from e
    if not isinstance(data, dict):
        raise UpstreamError("Weather API returned an unexpected payload")
    return data
