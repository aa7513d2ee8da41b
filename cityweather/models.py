"""
SQLAlchemy database models.

Defines tables for persisted explorer snapshots and the weather cache.
"""
from sqlalchemy import Column, Integer, String, Text, JSON, DateTime, UniqueConstraint
from sqlalchemy.sql import func
from .db import Base


class StoredSnapshot(Base):
    """
    Keyed JSON blob, one row per key.

    Currently single-user (no user_id). Holds the serialized favorites/history
    store and the last-viewed list as text, exactly as they were written.
    """
    __tablename__ = "stored_snapshots"

    id = Column(Integer, primary_key=True)
    key = Column(String, nullable=False, unique=True)
    payload = Column(Text, nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class WeatherCache(Base):
    """
    City detail view cache with TTL.

    Stores current conditions plus the daily forecast as a JSON blob.
    Unique constraint on (city_key, units) keeps one entry per unit system.
    """
    __tablename__ = "weather_cache"

    id = Column(Integer, primary_key=True)
    city_key = Column(String, nullable=False)  # lowercased city name
    units = Column(String, nullable=False)  # metric | imperial
    payload = Column(JSON, nullable=False)
    fetched_at = Column(DateTime(timezone=True), server_default=func.now())
    ttl_seconds = Column(Integer, default=600)

    __table_args__ = (
        UniqueConstraint("city_key", "units", name="uniq_city_units"),
    )
