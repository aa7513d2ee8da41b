"""
Reverse geocoding through Nominatim.
"""
import httpx

from .config import Settings, settings as default_settings
from .log import get_logger

logger = get_logger(__name__)


def format_coords(lat: float, lon: float) -> str:
    return f"{lat:.4f}, {lon:.4f}"


async def reverse_geocode(
    http: httpx.AsyncClient,
    lat: float,
    lon: float,
    settings: Settings = default_settings,
) -> str:
    """
    Resolve coordinates to a city, town or village name.

    Falls back to the formatted coordinates on any failure; never raises.
    """
    try:
        r = await http.get(
            settings.GEOCODER_URL,
            params={"lat": lat, "lon": lon, "format": "json"},
            headers={"User-Agent": settings.GEOCODER_USER_AGENT},
        )
        r.raise_for_status()
        address = r.json().get("address") or {}
        name = address.get("city") or address.get("town") or address.get("village")
        if name:
            return name
    except (httpx.HTTPError, ValueError, AttributeError) as e:
        logger.debug("reverse_geocode_failed", lat=lat, lon=lon, error=str(e))
    return format_coords(lat, lon)
