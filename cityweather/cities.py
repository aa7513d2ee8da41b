"""
City directory client.

Wraps the OpenDataSoft geonames search endpoint used both for the paginated
city table and for autocomplete suggestions.
"""
from typing import Any, Dict, List, Optional

import httpx

from .config import Settings, settings as default_settings
from .errors import UpstreamError
from .log import get_logger
from .schemas import City

logger = get_logger(__name__)


def parse_record(record: Dict[str, Any]) -> City:
    """
    Map one raw search record to a bare (unenriched) City.

    Args:
        record: Item of the ``records`` array, with a ``fields`` mapping

    Returns:
        City with name, country and timezone; missing fields become ""
    """
    fields = record.get("fields")
    if not isinstance(fields, dict):
        fields = {}
    return City(
        name=str(fields.get("name") or ""),
        country=str(fields.get("cou_name_en") or ""),
        timezone=str(fields.get("timezone") or ""),
    )


def records_of(payload: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Record objects of a search payload; anything that is not a mapping is dropped."""
    records = payload.get("records")
    if not isinstance(records, list):
        return []
    return [rec for rec in records if isinstance(rec, dict)]


class CitySearchClient:
    def __init__(self, http: httpx.AsyncClient, settings: Settings = default_settings) -> None:
        self._http = http
        self._settings = settings

    async def fetch_records(
        self,
        term: str,
        rows: int,
        start: int = 0,
        sort: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Fetch one window of search records.

        Raises:
            UpstreamError: on transport failure, non-success status or a body
                that is not a JSON object
        """
        params: Dict[str, Any] = {
            "dataset": self._settings.CITY_DATASET,
            "q": term,
            "rows": rows,
            "start": start,
        }
        if sort:
            params["sort"] = sort
        try:
            r = await self._http.get(self._settings.CITY_SEARCH_URL, params=params)
            r.raise_for_status()
            payload = r.json()
        except httpx.HTTPStatusError as e:
            raise UpstreamError(
                f"City search failed ({e.response.status_code})",
                status_code=e.response.status_code,
                endpoint=self._settings.CITY_SEARCH_URL,
            ) from e
        except httpx.HTTPError as e:
            raise UpstreamError(f"City search failed: {e}", endpoint=self._settings.CITY_SEARCH_URL) from e
        except ValueError as e:
            raise UpstreamError("City search returned invalid JSON", endpoint=self._settings.CITY_SEARCH_URL) from e

        if not isinstance(payload, dict):
            raise UpstreamError("City search returned an unexpected payload", endpoint=self._settings.CITY_SEARCH_URL)
        logger.debug("city_search", term=term, rows=rows, start=start, nhits=payload.get("nhits"))
        return payload

    async def fetch_names(self, term: str, rows: int) -> List[str]:
        """Raw candidate names for ``term``, in collaborator order."""
        payload = await self.fetch_records(term, rows)
        names = []
        for record in records_of(payload):
            fields = record.get("fields")
            name = fields.get("name") if isinstance(fields, dict) else None
            if isinstance(name, str):
                names.append(name)
        return names
