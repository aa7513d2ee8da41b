"""
Pydantic models shared by the clients, the explorer session and the API.
"""
import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

Units = Literal["metric", "imperial"]
SortColumn = Literal["name", "country", "timezone", "high_temp", "low_temp"]
SortOrder = Literal["asc", "desc"]


class City(BaseModel):
    """A city row. Temperatures stay ``None`` when enrichment failed."""
    model_config = ConfigDict(frozen=True)

    name: str
    country: str
    timezone: str
    high_temp: Optional[float] = None
    low_temp: Optional[float] = None

    @property
    def key(self) -> str:
        """Identity key used for deduplication across pages."""
        return f"{self.name.lower()}|{self.country.lower()}|{self.timezone}"


class SearchPage(BaseModel):
    cities: List[City]
    has_more: bool
    total: int = 0


class Enrichment(BaseModel):
    high: float
    low: float
    raw: Dict[str, Any]


class HistoryEntry(BaseModel):
    city: str
    timestamp: datetime.datetime
    weather: Dict[str, Any] = Field(default_factory=dict)


class StoreSnapshot(BaseModel):
    """Serialized form of the favorites/history store."""
    favorites: List[str] = Field(default_factory=list)
    history: List[HistoryEntry] = Field(default_factory=list)


class ViewFilterState(BaseModel):
    model_config = ConfigDict(frozen=True)

    city_filter: str = ""
    country_filter: str = ""
    timezone_filter: str = ""
    sort_column: Optional[SortColumn] = None
    sort_order: SortOrder = "asc"


class ScrollPosition(BaseModel):
    """Viewport metrics reported by the browser on scroll."""
    viewport_height: float = Field(ge=0)
    scroll_y: float = Field(ge=0)
    document_height: float = Field(ge=0)


class CurrentConditions(BaseModel):
    temp: float
    feels_like: float
    humidity: Optional[float] = None
    pressure: Optional[float] = None
    description: str = ""
    wind_speed: float = 0.0
    weather_id: int = 800
    lat: float
    lon: float


class ForecastDay(BaseModel):
    dt: int
    date: datetime.date
    high: float
    low: float
    description: str = ""


class WeatherView(BaseModel):
    """Everything a city (or coordinates) detail page shows."""
    name: str
    units: Units
    temp_unit: str
    wind_unit: str
    background: str
    map_url: str
    current: CurrentConditions
    forecast: List[ForecastDay]


class ExplorerRow(BaseModel):
    city: City
    favorite: bool


class ExplorerView(BaseModel):
    query: str
    page: int
    has_more: bool
    loading: bool
    error: Optional[str] = None
    suggestions: List[str]
    ghost: str
    filters: ViewFilterState
    rows: List[ExplorerRow]
    favorites: List[str]
