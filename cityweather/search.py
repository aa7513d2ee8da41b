"""
Incremental city search.

The driver fetches one page of cities at a time, enriches every row with the
current high/low temperature, and appends only rows it has not seen yet for
the active query. Each query gets its own SearchState; responses issued for
a state that has since been replaced are dropped.
"""
import asyncio
import itertools
from dataclasses import dataclass, field
from typing import FrozenSet, Iterable, List, Optional, Set

from .cities import CitySearchClient, parse_record, records_of
from .config import Settings, settings as default_settings
from .debounce import Debouncer
from .errors import UpstreamError
from .log import get_logger
from .schemas import City, SearchPage
from .weather import WeatherClient

logger = get_logger(__name__)

_generations = itertools.count(1)


@dataclass(frozen=True)
class Accumulation:
    new_cities: List[City]
    updated_keys: FrozenSet[str]


def accumulate(existing_keys: Iterable[str], incoming: Iterable[City]) -> Accumulation:
    """
    Keep the incoming cities whose identity key is not known yet.

    Order of the retained cities follows ``incoming``. Duplicates inside the
    batch itself are collapsed to their first occurrence.
    """
    keys: Set[str] = set(existing_keys)
    new_cities: List[City] = []
    for city in incoming:
        if city.key in keys:
            continue
        keys.add(city.key)
        new_cities.append(city)
    return Accumulation(new_cities=new_cities, updated_keys=frozenset(keys))


def page_size_for(query: str, settings: Settings = default_settings) -> int:
    return settings.SEARCH_PAGE_SIZE if query.strip() else settings.BROWSE_PAGE_SIZE


def has_more_results(nhits: int, start: int, rows: int) -> bool:
    return nhits > start + rows


@dataclass
class SearchState:
    """Per-query search session. Replaced wholesale when the query changes."""
    query: str = ""
    page: int = 1  # most recently requested page
    has_more: bool = True
    loading: bool = False
    loaded: bool = False  # the current page has been committed
    error: Optional[str] = None
    cities: List[City] = field(default_factory=list)
    seen_keys: FrozenSet[str] = frozenset()
    generation: int = field(default_factory=lambda: next(_generations))


class CitySearchDriver:
    def __init__(
        self,
        cities: CitySearchClient,
        weather: WeatherClient,
        settings: Settings = default_settings,
    ) -> None:
        self._cities = cities
        self._weather = weather
        self._settings = settings
        self.state = SearchState()
        self._debounced = Debouncer(settings.SEARCH_DEBOUNCE_SECONDS, self._load_first_page)
        self._tasks: Set[asyncio.Task] = set()

    async def search(self, query: str, page: int) -> SearchPage:
        """
        Fetch and enrich one page of cities.

        Args:
            query: Search text; blank browses by population
            page: 1-based page number

        Raises:
            UpstreamError: if the city search itself fails. Enrichment
                failures only leave the affected row without temperatures.
        """
        if page < 1:
            raise ValueError("page must be >= 1")
        rows = page_size_for(query, self._settings)
        start = (page - 1) * rows
        sort = None if query.strip() else "population"
        payload = await self._cities.fetch_records(query, rows, start, sort=sort)
        try:
            nhits = int(payload.get("nhits") or 0)
        except (TypeError, ValueError, OverflowError) as e:
            raise UpstreamError("City search returned an invalid hit count") from e

        bare = [parse_record(rec) for rec in records_of(payload)]
        enrichments = await asyncio.gather(*(self._weather.enrich(c.name) for c in bare))
        cities = [
            c.model_copy(update={"high_temp": w.high, "low_temp": w.low}) if w else c
            for c, w in zip(bare, enrichments)
        ]
        return SearchPage(cities=cities, has_more=has_more_results(nhits, start, rows), total=nhits)

    def change_query(self, query: str) -> SearchState:
        """Start a fresh search session and schedule its first page (debounced)."""
        self.state = SearchState(query=query)
        self._debounced(self.state)
        logger.debug("query_changed", query=query, generation=self.state.generation)
        return self.state

    async def run_query(self, query: str) -> SearchState:
        """Start a fresh search session and load its first page right away."""
        self._debounced.cancel()
        state = self.state = SearchState(query=query)
        await self._start_page(state, 1)
        return state

    def request_next_page(self) -> Optional[asyncio.Task]:
        """
        Begin loading the next page if the current one has been committed,
        nothing is loading and more results exist. Returns the fetch task,
        or None when the gate is closed.
        """
        state = self.state
        if state.loading or not state.loaded or not state.has_more:
            return None
        return self._start_page(state, state.page + 1)

    async def _load_first_page(self, state: SearchState) -> None:
        if state is not self.state:
            return
        await self._start_page(state, 1)

    def _start_page(self, state: SearchState, page: int) -> asyncio.Task:
        # loading is set before the task is scheduled so that a second
        # request in the same tick sees the gate closed
        state.loading = True
        state.loaded = False
        state.page = page
        task = asyncio.get_running_loop().create_task(self._fetch_page(state, page))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _fetch_page(self, state: SearchState, page: int) -> None:
        log = logger.bind(query=state.query, page=page, generation=state.generation)
        try:
            result = await self.search(state.query, page)
            if state is not self.state:
                log.info("stale_page_discarded", current_generation=self.state.generation)
                return
            base_keys = frozenset() if page == 1 else state.seen_keys
            acc = accumulate(base_keys, result.cities)
            if page == 1:
                state.cities = acc.new_cities
            else:
                state.cities = state.cities + acc.new_cities
            state.seen_keys = acc.updated_keys
            state.has_more = result.has_more
            state.error = None
            state.loaded = True
            log.debug("page_committed", added=len(acc.new_cities), total=len(state.cities), has_more=result.has_more)
        except UpstreamError as e:
            log.warning("page_fetch_failed", error=e.message)
            state.error = f"Error: {e}"
            if page > 1:
                # the previous page is still the last committed one; scrolling may retry
                state.page = page - 1
                state.loaded = True
        finally:
            state.loading = False

    async def close(self) -> None:
        """Cancel the pending debounced search and wait for in-flight pages."""
        self._debounced.cancel()
        await self._debounced.drain()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
