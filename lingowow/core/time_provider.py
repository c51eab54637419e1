from __future__ import annotations

from datetime import date, datetime
from zoneinfo import ZoneInfo

from lingowow.config import settings


APP_TIMEZONE = settings.app_timezone or "America/Lima"
APP_ZONEINFO = ZoneInfo(APP_TIMEZONE)


class TimeProvider:
    """Wall clock in the academy timezone; services take one so jobs and tests can pin it."""

    def now(self) -> datetime:
        return datetime.now(APP_ZONEINFO)

    def today(self) -> date:
        return self.now().date()


class FixedTimeProvider(TimeProvider):
    """Clock pinned to one instant; used by jobs replays and tests."""

    def __init__(self, frozen: datetime):
        self._frozen = ensure_aware(frozen)

    def now(self) -> datetime:
        return self._frozen


def ensure_aware(dt: datetime) -> datetime:
    if dt.tzinfo is None or dt.tzinfo.utcoffset(dt) is None:
        raise ValueError("Naive datetime not allowed in business logic")
    return dt


def local_naive(dt: datetime) -> datetime:
    """Convert an aware datetime to naive app-local time for DB columns."""
    return ensure_aware(dt).astimezone(APP_ZONEINFO).replace(tzinfo=None)


default_time_provider = TimeProvider()
