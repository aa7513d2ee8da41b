"""
Filtering and sorting of the accumulated city table.
"""
import unicodedata
from typing import List, Optional, Sequence

from .schemas import City, SortColumn, ViewFilterState

NUMERIC_COLUMNS = ("high_temp", "low_temp")


def collation_key(value: str):
    """
    Accent- and case-insensitive sort key, ties broken by the raw value.

    Approximates locale-aware ordering: "Zürich" sorts with "Zurich",
    "aachen" before "Berlin".
    """
    decomposed = unicodedata.normalize("NFKD", value)
    base = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return (base.casefold(), value)


def matches(city: City, search: str, filters: ViewFilterState) -> bool:
    name = city.name.lower()
    return (
        search.strip().lower() in name
        and filters.city_filter.strip().lower() in name
        and filters.country_filter.strip().lower() in city.country.lower()
        and filters.timezone_filter.strip().lower() in city.timezone.lower()
    )


def sort_cities(cities: Sequence[City], column: Optional[SortColumn], order: str = "asc") -> List[City]:
    """
    Stable single-column sort.

    Numeric columns: cities without a value go last in both directions and
    keep their input order.
    """
    if column is None:
        return list(cities)
    reverse = order == "desc"
    if column in NUMERIC_COLUMNS:
        present = [c for c in cities if getattr(c, column) is not None]
        missing = [c for c in cities if getattr(c, column) is None]
        return sorted(present, key=lambda c: getattr(c, column), reverse=reverse) + missing
    return sorted(cities, key=lambda c: collation_key(getattr(c, column)), reverse=reverse)


def derive(cities: Sequence[City], search: str, filters: ViewFilterState) -> List[City]:
    """Rows to display: filtered by every substring filter, then sorted."""
    filtered = [c for c in cities if matches(c, search, filters)]
    return sort_cities(filtered, filters.sort_column, filters.sort_order)


def toggle_sort(filters: ViewFilterState, column: SortColumn) -> ViewFilterState:
    """Header click: same column flips the order, another column sorts ascending."""
    if filters.sort_column == column:
        order = "desc" if filters.sort_order == "asc" else "asc"
        return filters.model_copy(update={"sort_order": order})
    return filters.model_copy(update={"sort_column": column, "sort_order": "asc"})
