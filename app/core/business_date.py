"""
Business date: the calendar date in the school's business timezone.

Every payroll comparison (waiver dates, session-link days, attendance days) is done on
`datetime.date` values produced here. Instants are converted once, at ingest.
"""

from datetime import date, datetime, time, timedelta, timezone
from functools import lru_cache
from typing import Iterator, Optional, Tuple
from zoneinfo import ZoneInfo

from app.core.config import settings


@lru_cache(maxsize=8)
def _zone(name: str) -> ZoneInfo:
    return ZoneInfo(name)


def business_tz(tz_name: Optional[str] = None) -> ZoneInfo:
    return _zone(tz_name or settings.business_timezone)


def to_business_date(value: datetime, tz_name: Optional[str] = None) -> date:
    """Calendar date of an instant in the business timezone. Naive datetimes are UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(business_tz(tz_name)).date()


def to_business_datetime(value: datetime, tz_name: Optional[str] = None) -> datetime:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(business_tz(tz_name))


def business_today(now: Optional[datetime] = None, tz_name: Optional[str] = None) -> date:
    return to_business_date(now or datetime.now(timezone.utc), tz_name)


def utc_bounds(day: date, tz_name: Optional[str] = None) -> Tuple[datetime, datetime]:
    """[start, end) of a business date, as UTC instants."""
    tz = business_tz(tz_name)
    start = datetime.combine(day, time.min, tzinfo=tz)
    end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=tz)
    return start.astimezone(timezone.utc), end.astimezone(timezone.utc)


def utc_range(start: date, end: date, tz_name: Optional[str] = None) -> Tuple[datetime, datetime]:
    """[start of `start`, end of `end`) as UTC instants."""
    return utc_bounds(start, tz_name)[0], utc_bounds(end, tz_name)[1]


def parse_business_date(value: str) -> date:
    """Accept 'YYYY-MM-DD' or a full ISO timestamp; only the date part is used."""
    return date.fromisoformat(value.strip().split("T")[0])


def iter_dates(start: date, end: date) -> Iterator[date]:
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


def weekday_index(day: date) -> int:
    """0=Sunday .. 6=Saturday."""
    return (day.weekday() + 1) % 7
