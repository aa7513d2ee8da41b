"""
Autocomplete suggestions and the inline ghost completion.
"""
from typing import Iterable, List, Sequence, Tuple

from .cities import CitySearchClient
from .config import Settings, settings as default_settings
from .debounce import Debouncer
from .errors import UpstreamError
from .log import get_logger

logger = get_logger(__name__)

ACCEPT_KEYS = ("Enter", "Tab")


def unique_names(names: Iterable[str], limit: int) -> List[str]:
    """Exact-match dedup keeping first occurrences, then truncate."""
    seen = set()
    out: List[str] = []
    for name in names:
        if name in seen:
            continue
        seen.add(name)
        out.append(name)
    return out[:limit]


def ghost_completion(search: str, suggestions: Sequence[str]) -> str:
    """
    Inline completion for the search box.

    The typed text is kept as typed and followed by the rest of the first
    suggestion, e.g. "par" + "Paris" -> "paris". Empty when there is no
    search text or the first suggestion does not start with it.
    """
    if not search or not suggestions:
        return ""
    first = suggestions[0]
    if first.lower().startswith(search.lower()):
        return search + first[len(search):]
    return ""


def accept_completion(search: str, suggestions: Sequence[str], key: str) -> Tuple[str, bool]:
    """
    Handle a key press in the search box.

    Returns:
        (new search text, handled). ``handled`` means the key's default
        action must be suppressed.
    """
    ghost = ghost_completion(search, suggestions)
    if key in ACCEPT_KEYS and ghost:
        return ghost, True
    return search, False


class SuggestionEngine:
    def __init__(self, cities: CitySearchClient, settings: Settings = default_settings) -> None:
        self._cities = cities
        self._limit = settings.SUGGESTION_LIMIT
        self.suggestions: List[str] = []
        self._term = ""  # term of the latest refresh; older responses are dropped
        self._debounced = Debouncer(settings.SUGGEST_DEBOUNCE_SECONDS, self.refresh)

    async def suggest(self, term: str) -> List[str]:
        """Top distinct names for ``term``; blank terms never hit the network."""
        if not term.strip():
            return []
        names = await self._cities.fetch_names(term, self._limit)
        return unique_names(names, self._limit)

    async def refresh(self, term: str) -> List[str]:
        """Replace the current suggestions; failures clear them."""
        self._term = term
        try:
            names = await self.suggest(term)
        except UpstreamError as e:
            logger.debug("suggestions_failed", term=term, error=e.message)
            names = []
        if term == self._term:
            self.suggestions = names
        return names

    def schedule(self, term: str) -> None:
        if not term.strip():
            # nothing to wait for
            self._debounced.cancel()
            self._term = term
            self.suggestions = []
            return
        self._debounced(term)

    async def close(self) -> None:
        self._debounced.cancel()
        await self._debounced.drain()
