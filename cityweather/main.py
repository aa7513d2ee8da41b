import contextlib
from typing import Optional, get_args

import httpx
from fastapi import Depends, FastAPI, HTTPException, Query, Request
from pydantic import BaseModel

from .cache import get_cached, put_cached
from .config import Settings, settings as default_settings
from .db import build_engine, build_sessionmaker, create_tables, get_session
from .errors import UpstreamError
from .geocode import reverse_geocode
from .log import configure_logging, get_logger
from .schemas import ExplorerView, ScrollPosition, SearchPage, SortColumn, ViewFilterState, WeatherView
from .session import ExplorerSession
from .store import SnapshotStorage
from .suggest import ghost_completion
from .weather import build_weather_view, normalize_units

logger = get_logger(__name__)


class QueryBody(BaseModel):
    q: str = ""


class KeyBody(BaseModel):
    key: str


class FiltersBody(BaseModel):
    city: str = ""
    country: str = ""
    timezone: str = ""


def get_explorer(request: Request) -> ExplorerSession:
    return request.app.state.explorer


def create_app(
    settings: Settings = default_settings,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """
    Build the application.

    ``transport`` replaces the network for every collaborator call (tests
    pass an ``httpx.MockTransport``).
    """
    configure_logging(settings)

    @contextlib.asynccontextmanager
    async def lifespan(app: FastAPI):
        engine = build_engine(settings.DATABASE_URL)
        await create_tables(engine)
        app.state.sessionmaker = build_sessionmaker(engine)
        http = httpx.AsyncClient(timeout=settings.WEATHER_API_TIMEOUT, transport=transport)
        explorer = ExplorerSession(http, SnapshotStorage(app.state.sessionmaker), settings)
        await explorer.hydrate()
        app.state.explorer = explorer
        try:
            yield
        finally:
            await explorer.close()
            await http.aclose()
            await engine.dispose()

    app = FastAPI(title="City Weather Explorer", lifespan=lifespan)

    # ---------- City search ----------
    @app.get("/api/cities", response_model=SearchPage)
    async def search_cities(
        q: str = "",
        page: int = Query(1, ge=1),
        explorer: ExplorerSession = Depends(get_explorer),
    ):
        try:
            return await explorer.driver.search(q, page)
        except UpstreamError as e:
            raise HTTPException(status_code=502, detail=f"Error: {e}")

    @app.get("/api/suggestions")
    async def suggestions(q: str = "", explorer: ExplorerSession = Depends(get_explorer)):
        try:
            names = await explorer.suggestions.suggest(q)
        except UpstreamError:
            names = []
        return {"suggestions": names, "ghost": ghost_completion(q, names)}

    # ---------- Explorer session ----------
    @app.get("/api/explorer", response_model=ExplorerView)
    async def explorer_view(explorer: ExplorerSession = Depends(get_explorer)):
        return explorer.view()

    @app.post("/api/explorer/query", response_model=ExplorerView)
    async def explorer_query(body: QueryBody, explorer: ExplorerSession = Depends(get_explorer)):
        explorer.type_query(body.q)
        return explorer.view()

    @app.post("/api/explorer/submit", response_model=ExplorerView)
    async def explorer_submit(body: QueryBody, explorer: ExplorerSession = Depends(get_explorer)):
        await explorer.submit_query(body.q)
        return explorer.view()

    @app.post("/api/explorer/scroll")
    async def explorer_scroll(position: ScrollPosition, explorer: ExplorerSession = Depends(get_explorer)):
        task = explorer.scroll(position)
        if task is not None:
            await task
        return {"requested": task is not None, "view": explorer.view()}

    @app.put("/api/explorer/filters", response_model=ViewFilterState)
    async def explorer_filters(body: FiltersBody, explorer: ExplorerSession = Depends(get_explorer)):
        return explorer.set_filters(body.city, body.country, body.timezone)

    @app.post("/api/explorer/sort/{column}", response_model=ViewFilterState)
    async def explorer_sort(column: str, explorer: ExplorerSession = Depends(get_explorer)):
        if column not in get_args(SortColumn):
            raise HTTPException(400, "column must be name|country|timezone|high_temp|low_temp")
        return explorer.sort_by(column)

    @app.post("/api/explorer/accept")
    async def explorer_accept(body: KeyBody, explorer: ExplorerSession = Depends(get_explorer)):
        handled = explorer.accept_completion(body.key)
        return {"handled": handled, "search": explorer.search_text}

    # ---------- Favorites & history ----------
    @app.get("/api/favorites")
    async def list_favorites(explorer: ExplorerSession = Depends(get_explorer)):
        return explorer.store.favorites

    @app.post("/api/favorites/{city}/toggle")
    async def toggle_favorite(city: str, explorer: ExplorerSession = Depends(get_explorer)):
        favorite = await explorer.store.toggle_favorite(city)
        return {"city": city, "favorite": favorite}

    @app.put("/api/favorites/{city}")
    async def add_favorite(city: str, explorer: ExplorerSession = Depends(get_explorer)):
        await explorer.store.add_favorite(city)
        return {"city": city, "favorite": True}

    @app.delete("/api/favorites/{city}")
    async def remove_favorite(city: str, explorer: ExplorerSession = Depends(get_explorer)):
        await explorer.store.remove_favorite(city)
        return {"city": city, "favorite": False}

    @app.get("/api/history")
    async def list_history(explorer: ExplorerSession = Depends(get_explorer)):
        return explorer.store.snapshot()["history"]

    @app.get("/api/last-viewed")
    async def list_last_viewed(explorer: ExplorerSession = Depends(get_explorer)):
        return explorer.last_viewed.cities

    # ---------- Weather detail ----------
    # Declared before /api/weather/{city} so "coords" is not taken as a city
    @app.get("/api/weather/coords", response_model=WeatherView)
    async def weather_by_coords(
        lat: Optional[float] = Query(None, ge=-90, le=90),
        lon: Optional[float] = Query(None, ge=-180, le=180),
        unit: Optional[str] = None,
        explorer: ExplorerSession = Depends(get_explorer),
    ):
        if lat is None or lon is None:
            raise HTTPException(400, "Failed to get location")
        units = normalize_units(unit)
        try:
            current, forecast = await explorer.weather.fetch_coords_weather(lat, lon, units)
            place = await reverse_geocode(explorer.http, lat, lon, settings)
            return build_weather_view(place, units, current, forecast)
        except UpstreamError as e:
            raise HTTPException(status_code=502, detail=f"Error: {e}")

    @app.get("/api/weather/{city}", response_model=WeatherView)
    async def weather_by_city(
        city: str,
        unit: Optional[str] = None,
        session=Depends(get_session),
        explorer: ExplorerSession = Depends(get_explorer),
    ):
        if not city.strip():
            raise HTTPException(400, "Invalid city name.")
        units = normalize_units(unit)

        cached = await get_cached(session, city, units)
        if cached:
            await explorer.record_view(city, cached["raw"])
            return cached["view"]

        try:
            current, forecast = await explorer.weather.fetch_city_weather(city, units)
            view = build_weather_view(current.get("name") or city, units, current, forecast)
        except UpstreamError as e:
            raise HTTPException(status_code=502, detail=f"Error: {e}")

        payload = {"view": view.model_dump(mode="json"), "raw": current}
        await put_cached(session, city, units, payload, settings.WEATHER_CACHE_TTL)
        await explorer.record_view(city, current)
        logger.info("weather_view", city=city, units=units)
        return view

    return app


app = create_app()
