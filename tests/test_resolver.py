"""Unit tests for responsible-teacher resolution."""

from datetime import date, datetime, timezone

from app.api.v1.deductions.reader import AssignmentWindow, ChangeEvent
from app.api.v1.deductions.resolver import is_teacher_responsible, teacher_on_date


def _utc(y: int, m: int, d: int, h: int = 9) -> datetime:
    return datetime(y, m, d, h, tzinfo=timezone.utc)


EVENTS = [
    ChangeEvent(old_teacher_id="T1", new_teacher_id="T2", change_date=_utc(2025, 3, 10)),
    ChangeEvent(old_teacher_id="T2", new_teacher_id="T3", change_date=_utc(2025, 3, 20)),
]


def test_latest_event_on_or_before_date_decides() -> None:
    assert teacher_on_date(date(2025, 3, 10), EVENTS) == "T2"
    assert teacher_on_date(date(2025, 3, 19), EVENTS) == "T2"
    assert teacher_on_date(date(2025, 3, 25), EVENTS) == "T3"


def test_before_first_event_uses_old_teacher() -> None:
    assert teacher_on_date(date(2025, 3, 1), EVENTS) == "T1"


def test_events_supersede_windows() -> None:
    # Window for T1 was never closed, but the change log moved the student to T2
    windows = [AssignmentWindow(teacher_id="T1", occupied_at=_utc(2025, 1, 1), end_at=None)]
    assert not is_teacher_responsible("T1", date(2025, 3, 12), EVENTS, windows)
    assert is_teacher_responsible("T2", date(2025, 3, 12), EVENTS, [])


def test_falls_back_to_windows_without_events() -> None:
    windows = [
        AssignmentWindow(teacher_id="T1", occupied_at=_utc(2025, 3, 1), end_at=_utc(2025, 3, 15)),
    ]
    assert is_teacher_responsible("T1", date(2025, 3, 1), [], windows)
    assert is_teacher_responsible("T1", date(2025, 3, 15), [], windows)
    assert not is_teacher_responsible("T1", date(2025, 3, 16), [], windows)
    assert not is_teacher_responsible("T1", date(2025, 2, 28), [], windows)
    assert not is_teacher_responsible("T2", date(2025, 3, 5), [], windows)


def test_window_bounds_compared_as_business_dates() -> None:
    """An assignment starting 22:00 UTC on the 9th starts on the 10th in business time."""
    windows = [AssignmentWindow(teacher_id="T1", occupied_at=_utc(2025, 3, 9, 22), end_at=None)]
    assert not is_teacher_responsible("T1", date(2025, 3, 9), [], windows)
    assert is_teacher_responsible("T1", date(2025, 3, 10), [], windows)


def test_first_event_without_old_teacher_falls_back_to_windows() -> None:
    events = [ChangeEvent(old_teacher_id=None, new_teacher_id="T2", change_date=_utc(2025, 3, 10))]
    windows = [AssignmentWindow(teacher_id="T1", occupied_at=_utc(2025, 3, 1), end_at=_utc(2025, 3, 9))]
    assert is_teacher_responsible("T1", date(2025, 3, 5), events, windows)
    assert not is_teacher_responsible("T1", date(2025, 3, 12), events, windows)
