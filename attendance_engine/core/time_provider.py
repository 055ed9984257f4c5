from __future__ import annotations

from datetime import date, datetime, time
from zoneinfo import ZoneInfo

from attendance_engine.config import settings


APP_TIMEZONE = settings.app_timezone or 'Asia/Jakarta'
APP_ZONEINFO = ZoneInfo(APP_TIMEZONE)


class TimeProvider:
    def now(self) -> datetime:
        return datetime.now(APP_ZONEINFO)

    def today(self) -> date:
        return self.now().date()

    def now_ms(self) -> int:
        return to_epoch_ms(self.now())


def ensure_aware(dt: datetime) -> datetime:
    if dt.tzinfo is None or dt.tzinfo.utcoffset(dt) is None:
        raise ValueError('Naive datetime not allowed in business logic')
    return dt


def localize(dt: datetime) -> datetime:
    """Attach the school timezone to a stored wall-clock value."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=APP_ZONEINFO)
    return dt.astimezone(APP_ZONEINFO)


def to_wall_clock(dt: datetime) -> datetime:
    """Naive local value for persistence."""
    return localize(dt).replace(tzinfo=None)


def session_instant(session_date: date, time_of_day: time) -> datetime:
    return datetime.combine(session_date, time_of_day, tzinfo=APP_ZONEINFO)


def to_epoch_ms(dt: datetime) -> int:
    return int(localize(dt).timestamp() * 1000)


default_time_provider = TimeProvider()
