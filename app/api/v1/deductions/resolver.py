"""
Assignment resolver: was a given teacher responsible for a student on a business date.

Change events win over assignment windows when they exist, since windows are sometimes
closed late or never closed after a reassignment.
"""

from datetime import date
from typing import Optional, Sequence

from app.core.business_date import to_business_date

from .reader import AssignmentWindow, ChangeEvent


def teacher_on_date(day: date, events: Sequence[ChangeEvent]) -> Optional[str]:
    """
    Teacher named by the change log for `day`, or None when the log cannot tell.

    The latest event on or before the day decides. Before the first event, that event's
    old teacher decides when it is recorded.
    """
    if not events:
        return None
    ordered = sorted(events, key=lambda e: to_business_date(e.change_date))
    current: Optional[str] = None
    for index, event in enumerate(ordered):
        if day < to_business_date(event.change_date):
            if index == 0 and event.old_teacher_id:
                current = event.old_teacher_id
            break
        current = event.new_teacher_id
    return current


def is_teacher_responsible(
    teacher_id: str,
    day: date,
    events: Sequence[ChangeEvent],
    windows: Sequence[AssignmentWindow],
) -> bool:
    resolved = teacher_on_date(day, events)
    if resolved is not None:
        return resolved == teacher_id
    return any(w.teacher_id == teacher_id and w.covers(day) for w in windows)
