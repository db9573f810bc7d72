from datetime import datetime
from typing import Optional
import pytz

from config import HOTEL_TIMEZONE

HOTEL_TZ = pytz.timezone(HOTEL_TIMEZONE)


def utcnow() -> datetime:
    """Hora actual en UTC (aware). Todo se persiste en UTC."""
    return datetime.now(pytz.utc)


def as_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Normaliza a UTC aware; las fechas naive que devuelve la base se asumen UTC"""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return pytz.utc.localize(dt)
    return dt.astimezone(pytz.utc)


def get_hotel_now() -> datetime:
    """Returns current time in Hotel Timezone"""
    return datetime.now(HOTEL_TZ)


def to_hotel_time(dt: datetime) -> datetime:
    """Converts a datetime to Hotel Timezone"""
    return as_utc(dt).astimezone(HOTEL_TZ)
