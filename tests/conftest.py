"""
Test configuration and fixtures.

All collaborators are served by ``FakeUpstream`` through an
``httpx.MockTransport``; storage is a throwaway SQLite file per test.
"""
import asyncio
from typing import Any, Dict, List, Optional, Tuple

import httpx
import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

from cityweather.config import Settings
from cityweather.db import build_engine, build_sessionmaker, create_tables
from cityweather.main import create_app
from cityweather.store import SnapshotStorage

CITY_RECORDS: List[Dict[str, str]] = [
    {"name": "Paris", "cou_name_en": "France", "timezone": "Europe/Paris"},
    {"name": "Paris", "cou_name_en": "United States", "timezone": "America/Chicago"},
    {"name": "Paramaribo", "cou_name_en": "Suriname", "timezone": "America/Paramaribo"},
    {"name": "Berlin", "cou_name_en": "Germany", "timezone": "Europe/Berlin"},
    {"name": "London", "cou_name_en": "United Kingdom", "timezone": "Europe/London"},
]

# (temp_min, temp_max); cities missing here answer 404
TEMPS: Dict[str, Tuple[float, float]] = {
    "Paris": (12.0, 18.5),
    "Paramaribo": (24.0, 31.0),
    "Berlin": (8.0, 14.0),
}


def current_payload(name: str, low: float, high: float, lat: float = 48.85, lon: float = 2.35) -> dict:
    return {
        "name": name,
        "coord": {"lat": lat, "lon": lon},
        "main": {
            "temp": (low + high) / 2,
            "temp_min": low,
            "temp_max": high,
            "feels_like": (low + high) / 2 - 1,
            "humidity": 70,
            "pressure": 1012,
        },
        "weather": [{"id": 801, "description": "few clouds"}],
        "wind": {"speed": 3.6},
    }


def forecast_payload(start_dt: int = 1_700_006_400, steps: int = 40) -> dict:
    return {
        "list": [
            {
                "dt": start_dt + i * 3 * 3600,
                "main": {"temp_min": 10.0 + i, "temp_max": 15.0 + i},
                "weather": [{"description": f"step {i}"}],
            }
            for i in range(steps)
        ]
    }


class FakeUpstream:
    """City search, weather, forecast and reverse geocoding in one handler."""

    def __init__(self) -> None:
        self.records: List[Dict[str, str]] = list(CITY_RECORDS)
        self.temps: Dict[str, Tuple[float, float]] = dict(TEMPS)
        self.nhits: Optional[int] = None
        self.search_status = 200
        self.forecast_status = 200
        self.place: Optional[str] = "Paris"
        self.requests: List[httpx.Request] = []
        # q -> event; a search for q waits until the event is set
        self.search_gates: Dict[str, asyncio.Event] = {}
        # replaces the generated search body when set
        self.search_payload: Any = None
        self.weather_delay = 0.0
        self.weather_in_flight = 0
        self.peak_weather_in_flight = 0

    def calls(self, path_suffix: str) -> List[httpx.Request]:
        return [r for r in self.requests if r.url.path.endswith(path_suffix)]

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        params = request.url.params
        path = request.url.path
        if request.url.host == "public.opendatasoft.com":
            return await self._search(params)
        if request.url.host == "nominatim.openstreetmap.org":
            if self.place is None:
                return httpx.Response(500)
            return httpx.Response(200, json={"address": {"city": self.place}})
        if path.endswith("/forecast"):
            if self.forecast_status != 200:
                return httpx.Response(self.forecast_status, text="forecast down")
            return httpx.Response(200, json=forecast_payload())
        if path.endswith("/weather"):
            if "lat" in params:
                return httpx.Response(200, json=current_payload("Somewhere", 5.0, 9.0,
                                                               float(params["lat"]), float(params["lon"])))
            name = params.get("q", "")
            if self.weather_delay:
                self.weather_in_flight += 1
                self.peak_weather_in_flight = max(self.peak_weather_in_flight, self.weather_in_flight)
                try:
                    await asyncio.sleep(self.weather_delay)
                finally:
                    self.weather_in_flight -= 1
            if name not in self.temps:
                return httpx.Response(404, json={"cod": "404", "message": "city not found"})
            low, high = self.temps[name]
            return httpx.Response(200, json=current_payload(name, low, high))
        return httpx.Response(404)

    async def _search(self, params: httpx.QueryParams) -> httpx.Response:
        q = params.get("q", "")
        gate = self.search_gates.get(q)
        if gate is not None:
            await gate.wait()
        if self.search_status != 200:
            return httpx.Response(self.search_status)
        if self.search_payload is not None:
            return httpx.Response(200, json=self.search_payload)
        matching = [r for r in self.records if q.lower() in r["name"].lower()]
        rows = int(params.get("rows", 10))
        start = int(params.get("start", 0))
        window = matching[start:start + rows]
        return httpx.Response(200, json={
            "nhits": self.nhits if self.nhits is not None else len(matching),
            "records": [{"fields": dict(r)} for r in window],
        })


@pytest.fixture
def upstream():
    return FakeUpstream()


@pytest.fixture
def test_settings(tmp_path):
    return Settings(
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        WEATHER_API_KEY="test-key",
        SEARCH_DEBOUNCE_SECONDS=0.05,
        SUGGEST_DEBOUNCE_SECONDS=0.03,
    )


@pytest_asyncio.fixture
async def http(upstream):
    async with httpx.AsyncClient(transport=httpx.MockTransport(upstream)) as client:
        yield client


@pytest_asyncio.fixture
async def storage(test_settings):
    """SnapshotStorage on a fresh database."""
    engine = build_engine(test_settings.DATABASE_URL)
    await create_tables(engine)
    yield SnapshotStorage(build_sessionmaker(engine))
    await engine.dispose()


@pytest.fixture
def client(test_settings, upstream):
    app = create_app(test_settings, transport=httpx.MockTransport(upstream))
    with TestClient(app) as c:
        yield c
