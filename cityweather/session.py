"""
The explorer session: one user's search table, suggestions and stores.

Constructed explicitly and passed to whoever needs it. ``hydrate`` must run
before use and ``close`` at shutdown.
"""
import asyncio
import datetime
from typing import Any, Dict, List, Optional

import httpx

from .cities import CitySearchClient
from .config import Settings, settings as default_settings
from .log import get_logger
from .schemas import (
    ExplorerRow,
    ExplorerView,
    HistoryEntry,
    ScrollPosition,
    SortColumn,
    ViewFilterState,
)
from .scroll import InfiniteScrollTrigger
from .search import CitySearchDriver, SearchState
from .store import FavoritesHistoryStore, LastViewedStore, SnapshotStorage
from .suggest import SuggestionEngine, accept_completion, ghost_completion
from .view import derive, toggle_sort
from .weather import WeatherClient

logger = get_logger(__name__)


class ExplorerSession:
    def __init__(
        self,
        http: httpx.AsyncClient,
        storage: SnapshotStorage,
        settings: Settings = default_settings,
    ) -> None:
        self.http = http
        self.settings = settings
        self.storage = storage
        self.cities = CitySearchClient(http, settings)
        self.weather = WeatherClient(http, settings)
        self.driver = CitySearchDriver(self.cities, self.weather, settings)
        self.suggestions = SuggestionEngine(self.cities, settings)
        self.scroll_trigger = InfiniteScrollTrigger(self.driver, settings.SCROLL_THRESHOLD_PX)
        self.store = FavoritesHistoryStore(settings.HISTORY_LIMIT)
        self.last_viewed = LastViewedStore(settings.HISTORY_LIMIT)
        self.filters = ViewFilterState()
        self.search_text = ""
        self._unsubscribe: List[Any] = []

    async def hydrate(self) -> None:
        for store in (self.store, self.last_viewed):
            await store.hydrate(self.storage)
            self._unsubscribe.append(store.persist_to(self.storage))
        logger.info("session_hydrated", favorites=len(self.store.favorites), history=len(self.store.history))

    async def close(self) -> None:
        await self.suggestions.close()
        await self.driver.close()
        for unsubscribe in self._unsubscribe:
            unsubscribe()
        self._unsubscribe.clear()
        for store in (self.store, self.last_viewed):
            await store.flush(self.storage)

    # ---------- search box ----------
    def type_query(self, text: str) -> SearchState:
        """A keystroke: reset the table and schedule both debounced lookups."""
        self.search_text = text
        self.suggestions.schedule(text)
        return self.driver.change_query(text)

    async def submit_query(self, text: str) -> SearchState:
        self.search_text = text
        state = await self.driver.run_query(text)
        await self.suggestions.refresh(text)
        return state

    def accept_completion(self, key: str) -> bool:
        """Enter/Tab on a ghost completion. Returns whether the key was consumed."""
        text, handled = accept_completion(self.search_text, self.suggestions.suggestions, key)
        if handled:
            self.type_query(text)
        return handled

    # ---------- table ----------
    def scroll(self, position: ScrollPosition) -> Optional[asyncio.Task]:
        return self.scroll_trigger.on_scroll(position)

    def set_filters(self, city: str = "", country: str = "", timezone: str = "") -> ViewFilterState:
        self.filters = self.filters.model_copy(
            update={"city_filter": city, "country_filter": country, "timezone_filter": timezone}
        )
        return self.filters

    def sort_by(self, column: SortColumn) -> ViewFilterState:
        self.filters = toggle_sort(self.filters, column)
        return self.filters

    def view(self) -> ExplorerView:
        state = self.driver.state
        rows = derive(state.cities, self.search_text, self.filters)
        return ExplorerView(
            query=state.query,
            page=state.page,
            has_more=state.has_more,
            loading=state.loading,
            error=state.error,
            suggestions=self.suggestions.suggestions,
            ghost=ghost_completion(self.search_text, self.suggestions.suggestions),
            filters=self.filters,
            rows=[ExplorerRow(city=c, favorite=self.store.is_favorite(c.name)) for c in rows],
            favorites=self.store.favorites,
        )

    # ---------- detail pages ----------
    async def record_view(self, city: str, weather: Dict[str, Any]) -> None:
        """Remember an opened city detail page in history and last-viewed."""
        await self.store.add_history(HistoryEntry(
            city=city,
            timestamp=datetime.datetime.now(datetime.timezone.utc),
            weather=weather,
        ))
        await self.last_viewed.add(city)
