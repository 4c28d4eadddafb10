"""Lateness computer: minutes between the scheduled start and the first session link of the day."""

import re
from dataclasses import dataclass
from datetime import date, datetime, time
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, List, Optional, Sequence, Tuple

from app.core.app_logger import get_logger
from app.core.business_date import business_tz, to_business_date, to_business_datetime

from .reader import ACTIVE_STATUSES, DeductionConfig, StudentSchedule, TeacherActivity, format_amount

logger = get_logger(__name__)


_TIME_SLOT_RE = re.compile(r"^\s*(\d{1,2}):(\d{2})(?::\d{2})?\s*([AaPp][Mm])?\s*$")


@dataclass(frozen=True)
class LateStudent:
    student_id: int
    name: str
    time_slot: str
    minutes: int
    tier: int
    amount: Decimal


@dataclass(frozen=True)
class ComputedLateness:
    teacher_id: str
    day: date
    total_amount: Decimal
    students: Tuple[LateStudent, ...]

    @property
    def details(self) -> str:
        return "; ".join(
            f"{s.name}: {s.minutes} min late (tier {s.tier}): {format_amount(s.amount)}" for s in self.students
        )


def parse_time_slot(slot: Optional[str]) -> Optional[time]:
    """'4:00 PM', '04:00pm' or '16:00[:ss]' -> time. None when unparseable."""
    if not slot:
        return None
    match = _TIME_SLOT_RE.match(slot)
    if not match:
        return None
    hour, minute, meridiem = int(match.group(1)), int(match.group(2)), match.group(3)
    if minute > 59:
        return None
    if meridiem:
        if not 1 <= hour <= 12:
            return None
        hour = hour % 12
        if meridiem.upper() == "PM":
            hour += 12
    elif hour > 23:
        return None
    return time(hour, minute)


def round_half_up(value: Decimal) -> Decimal:
    return value.quantize(Decimal("1"), rounding=ROUND_HALF_UP)


def lateness_minutes(sent_time: datetime, day: date, scheduled: time) -> int:
    scheduled_at = datetime.combine(day, scheduled, tzinfo=business_tz())
    delta = to_business_datetime(sent_time) - scheduled_at
    return int(round_half_up(Decimal(str(delta.total_seconds())) / Decimal("60")))


def _first_links(student: StudentSchedule, start: date, end: date) -> Dict[date, datetime]:
    first: Dict[date, datetime] = {}
    for sent_time in student.link_times:
        day = to_business_date(sent_time)
        if day < start or day > end:
            continue
        current = first.get(day)
        if current is None or to_business_datetime(sent_time) < to_business_datetime(current):
            first[day] = sent_time
    return first


def compute_lateness(
    activity: TeacherActivity,
    start: date,
    end: date,
    config: DeductionConfig,
    *,
    time_slots: Optional[Sequence[str]] = None,
) -> List[ComputedLateness]:
    if not config.lateness_tiers:
        return []

    threshold = config.excused_threshold
    slot_filter = {s.strip() for s in time_slots} if time_slots else None
    per_day: Dict[date, List[LateStudent]] = {}

    for student in activity.students:
        if (student.status or "").strip().lower() not in ACTIVE_STATUSES:
            continue
        slot = student.time_slot
        if slot_filter is not None and (slot or "").strip() not in slot_filter:
            continue
        scheduled = parse_time_slot(slot)
        if scheduled is None:
            if student.link_times:
                logger.warning(
                    "Skipping lateness for student %s: unparseable time slot %r",
                    student.student_id,
                    slot,
                )
            continue

        base = config.lateness_base(student.package)
        for day, sent_time in _first_links(student, start, end).items():
            minutes = lateness_minutes(sent_time, day, scheduled)
            if minutes < 0 or minutes <= threshold:
                continue
            tier = config.match_tier(minutes)
            if tier is None:
                continue
            amount = round_half_up(base * tier.percent / Decimal("100"))
            if amount <= 0:
                continue
            per_day.setdefault(day, []).append(
                LateStudent(
                    student_id=student.student_id,
                    name=student.name,
                    time_slot=slot,
                    minutes=minutes,
                    tier=tier.tier,
                    amount=amount,
                )
            )

    return [
        ComputedLateness(
            teacher_id=activity.teacher_id,
            day=day,
            total_amount=sum((s.amount for s in late), Decimal("0")),
            students=tuple(late),
        )
        for day, late in sorted(per_day.items())
    ]
