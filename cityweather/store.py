"""
Persisted, observable session state: favorites, lookup history and the
last-viewed cities.

Stores are plain state containers. Each mutation serializes the whole state
and awaits every subscriber; ``persist_to`` subscribes the writer that keeps
the JSON blob in the database current.
"""
import inspect
import json
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from pydantic import ValidationError
from sqlalchemy import insert, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .log import get_logger
from .models import StoredSnapshot
from .schemas import HistoryEntry, StoreSnapshot

logger = get_logger(__name__)

Listener = Callable[[Any], Union[Awaitable[None], None]]

DEFAULT_LIMIT = 20


class SnapshotStorage:
    """Keyed text blobs in the ``stored_snapshots`` table."""

    def __init__(self, sessionmaker: async_sessionmaker[AsyncSession]) -> None:
        self._sessionmaker = sessionmaker

    async def get(self, key: str) -> Optional[str]:
        async with self._sessionmaker() as session:
            row = (
                await session.execute(select(StoredSnapshot).where(StoredSnapshot.key == key))
            ).scalars().first()
            return row.payload if row else None

    async def set(self, key: str, payload: str) -> None:
        async with self._sessionmaker() as session:
            try:
                await session.execute(insert(StoredSnapshot).values(key=key, payload=payload))
                await session.commit()
            except IntegrityError:
                await session.rollback()
                await session.execute(
                    update(StoredSnapshot).where(StoredSnapshot.key == key).values(payload=payload)
                )
                await session.commit()


class ObservableStore:
    storage_key: str = ""

    def __init__(self) -> None:
        self._listeners: List[Listener] = []

    def snapshot(self) -> Any:
        raise NotImplementedError

    def load(self, snapshot: Any) -> None:
        raise NotImplementedError

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call ``listener(snapshot)`` after every mutation. Returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def _notify(self) -> None:
        snap = self.snapshot()
        for listener in list(self._listeners):
            result = listener(snap)
            if inspect.isawaitable(result):
                await result

    async def hydrate(self, storage: SnapshotStorage) -> None:
        """Load the persisted blob; missing or unreadable blobs give the empty state."""
        raw = await storage.get(self.storage_key)
        data = None
        if raw:
            try:
                data = json.loads(raw)
            except ValueError:
                logger.warning("snapshot_corrupt", key=self.storage_key)
        self.load(data)

    def persist_to(self, storage: SnapshotStorage) -> Callable[[], None]:
        async def write(snap: Any) -> None:
            await storage.set(self.storage_key, json.dumps(snap, ensure_ascii=False))

        return self.subscribe(write)

    async def flush(self, storage: SnapshotStorage) -> None:
        await storage.set(self.storage_key, json.dumps(self.snapshot(), ensure_ascii=False))


class FavoritesHistoryStore(ObservableStore):
    """Favorite city names (insertion order) and the most recent lookups."""
    storage_key = "weatherAppStore"

    def __init__(self, history_limit: int = DEFAULT_LIMIT) -> None:
        super().__init__()
        self.history_limit = history_limit
        self._favorites: List[str] = []
        self._history: List[HistoryEntry] = []

    @property
    def favorites(self) -> List[str]:
        return list(self._favorites)

    @property
    def history(self) -> List[HistoryEntry]:
        return list(self._history)

    def is_favorite(self, city: str) -> bool:
        return city in self._favorites

    async def toggle_favorite(self, city: str) -> bool:
        """Add or remove ``city``. Returns whether it is a favorite afterwards."""
        if city in self._favorites:
            self._favorites.remove(city)
        else:
            self._favorites.append(city)
        await self._notify()
        return city in self._favorites

    async def add_favorite(self, city: str) -> None:
        if city not in self._favorites:
            self._favorites.append(city)
            await self._notify()

    async def remove_favorite(self, city: str) -> None:
        if city in self._favorites:
            self._favorites.remove(city)
            await self._notify()

    async def add_history(self, entry: HistoryEntry) -> None:
        self._history.insert(0, entry)
        del self._history[self.history_limit:]
        await self._notify()

    def snapshot(self) -> Dict[str, Any]:
        return StoreSnapshot(favorites=self._favorites, history=self._history).model_dump(mode="json")

    def load(self, snapshot: Any) -> None:
        """Replace the whole state. Anything that does not validate resets to empty."""
        try:
            parsed = StoreSnapshot.model_validate(snapshot or {})
        except ValidationError as e:
            logger.warning("snapshot_invalid", key=self.storage_key, errors=e.error_count())
            parsed = StoreSnapshot()
        self._favorites = list(dict.fromkeys(parsed.favorites))
        self._history = parsed.history[:self.history_limit]


class LastViewedStore(ObservableStore):
    """Distinct city names whose detail page was opened, most recent first."""
    storage_key = "lastViewed"

    def __init__(self, limit: int = DEFAULT_LIMIT) -> None:
        super().__init__()
        self.limit = limit
        self._cities: List[str] = []

    @property
    def cities(self) -> List[str]:
        return list(self._cities)

    async def add(self, city: str) -> None:
        if city in self._cities:
            self._cities.remove(city)
        self._cities.insert(0, city)
        del self._cities[self.limit:]
        await self._notify()

    def snapshot(self) -> List[str]:
        return list(self._cities)

    def load(self, snapshot: Any) -> None:
        if not isinstance(snapshot, list) or not all(isinstance(c, str) for c in snapshot):
            if snapshot is not None:
                logger.warning("snapshot_invalid", key=self.storage_key)
            snapshot = []
        self._cities = list(dict.fromkeys(snapshot))[:self.limit]
