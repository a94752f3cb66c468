"""Helpers de fecha/hora"""
from datetime import datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from shared.config import get_settings


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """SQLite devuelve datetimes naive; se asume que están en UTC"""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def event_now(tz_name: Optional[str] = None) -> datetime:
    """Hora local del club (las reglas de lista usan la hora de pared)"""
    return datetime.now(ZoneInfo(tz_name or get_settings().EVENT_TIMEZONE))
