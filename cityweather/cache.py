"""
Weather detail cache backed by the ``weather_cache`` table.
"""
import datetime
from typing import Any, Dict, Optional

from sqlalchemy import insert, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from .models import WeatherCache


def cache_fresh(row):
    try:
        if not row or row.fetched_at is None or row.ttl_seconds is None:
            return False
        fetched_at = row.fetched_at
        if fetched_at.tzinfo is None:
            # SQLite hands back naive datetimes
            fetched_at = fetched_at.replace(tzinfo=datetime.timezone.utc)
        age = (datetime.datetime.now(datetime.timezone.utc) - fetched_at).total_seconds()
        return age < row.ttl_seconds
    except (TypeError, AttributeError):
        return False


async def get_cached(session: AsyncSession, city: str, units: str) -> Optional[Dict[str, Any]]:
    row = (
        await session.execute(
            select(WeatherCache).where(
                WeatherCache.city_key == city.lower(),
                WeatherCache.units == units,
            )
        )
    ).scalars().first()
    if row and cache_fresh(row):
        return row.payload
    return None


async def put_cached(session: AsyncSession, city: str, units: str, payload: Dict[str, Any], ttl_seconds: int) -> None:
    now_utc = datetime.datetime.now(datetime.timezone.utc)
    try:
        await session.execute(
            insert(WeatherCache).values(
                city_key=city.lower(),
                units=units,
                payload=payload,
                ttl_seconds=ttl_seconds,
                fetched_at=now_utc,
            )
        )
        await session.commit()
    except IntegrityError:
        await session.rollback()
        await session.execute(
            update(WeatherCache)
            .where(
                WeatherCache.city_key == city.lower(),
                WeatherCache.units == units,
            )
            .values(payload=payload, ttl_seconds=ttl_seconds, fetched_at=now_utc)
        )
        await session.commit()
