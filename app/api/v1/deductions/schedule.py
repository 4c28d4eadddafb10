"""
Day-package scheduler: which weekdays a recurring pattern expects a session on.

Weekday indices are 0=Sunday .. 6=Saturday (see app.core.business_date.weekday_index).
"""

from typing import FrozenSet, Iterable, Optional

ALL_DAYS: FrozenSet[int] = frozenset(range(7))
WEEKDAYS: FrozenSet[int] = frozenset({1, 2, 3, 4, 5})

_FIXED_PATTERNS = {
    "ALL DAYS": ALL_DAYS,
    "ALLDAYS": ALL_DAYS,
    "MWF": frozenset({1, 3, 5}),
    "TTS": frozenset({2, 4, 6}),
    "TTH": frozenset({2, 4, 6}),
}

_DAY_NAMES = {
    "SUNDAY": 0,
    "SUN": 0,
    "MONDAY": 1,
    "MON": 1,
    "TUESDAY": 2,
    "TUE": 2,
    "TUES": 2,
    "WEDNESDAY": 3,
    "WED": 3,
    "WEDNES": 3,
    "THURSDAY": 4,
    "THU": 4,
    "THUR": 4,
    "THURS": 4,
    "FRIDAY": 5,
    "FRI": 5,
    "SATURDAY": 6,
    "SAT": 6,
}


def _parse_token(token: str) -> Optional[int]:
    token = token.strip().upper()
    if not token:
        return None
    if token in _DAY_NAMES:
        return _DAY_NAMES[token]
    if token.isdigit() and 0 <= int(token) <= 6:
        return int(token)
    return None


def parse_day_package(pattern: Optional[str]) -> FrozenSet[int]:
    """
    Weekdays on which the pattern expects a session.

    "All Days" -> every day, "MWF" -> {1, 3, 5}, "TTS"/"TTH" -> {2, 4, 6}, a day name or
    abbreviation -> that day, a comma list of names and/or 0-6 codes -> their union.
    Anything unrecognised yields an empty set; callers decide the fallback.
    """
    if not pattern or not pattern.strip():
        return frozenset()

    normalized = pattern.strip().upper()
    if normalized in _FIXED_PATTERNS:
        return _FIXED_PATTERNS[normalized]

    days = set()
    for token in normalized.split(","):
        day = _parse_token(token)
        if day is not None:
            days.add(day)
    return frozenset(days)


def scheduled_weekdays(patterns: Iterable[Optional[str]]) -> FrozenSet[int]:
    """Union of several day-packages (one per assignment window)."""
    days: FrozenSet[int] = frozenset()
    for pattern in patterns:
        days = days | parse_day_package(pattern)
    return days
