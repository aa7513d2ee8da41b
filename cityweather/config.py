from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")

    DATABASE_URL: str = "sqlite+aiosqlite:///./cityweather.db"

    DEBUG: bool = False

    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "console"  # console | json

    # Collaborators
    CITY_SEARCH_URL: str = "https://public.opendatasoft.com/api/records/1.0/search/"
    CITY_DATASET: str = "geonames-all-cities-with-a-population-1000"
    WEATHER_API_URL: str = "https://api.openweathermap.org/data/2.5/weather"
    FORECAST_API_URL: str = "https://api.openweathermap.org/data/2.5/forecast"
    WEATHER_API_KEY: str = ""
    GEOCODER_URL: str = "https://nominatim.openstreetmap.org/reverse"
    GEOCODER_USER_AGENT: str = "cityweather-explorer"

    WEATHER_API_TIMEOUT: float = 10.0
    MAX_CONCURRENT_WEATHER_REQUESTS: int = 10

    WEATHER_CACHE_TTL: int = 600

    # Explorer behaviour
    SEARCH_DEBOUNCE_SECONDS: float = 0.4
    SUGGEST_DEBOUNCE_SECONDS: float = 0.3
    SEARCH_PAGE_SIZE: int = 20
    BROWSE_PAGE_SIZE: int = 50
    SUGGESTION_LIMIT: int = 5
    HISTORY_LIMIT: int = 20
    SCROLL_THRESHOLD_PX: int = 100


settings = Settings()
