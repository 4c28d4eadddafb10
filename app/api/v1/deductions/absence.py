"""
Absence computer: per teacher and business date, the scheduled sessions that never
happened and what they cost.

A day is an absence for a student when the teacher was responsible for the student, the
student's day-package expects a session that weekday, no session link was sent that day
and the student had no permission. The 31st of any month and (by default) Sundays never
produce absences.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import List, Optional, Sequence, Set, Tuple

from app.core.app_logger import get_logger
from app.core.business_date import business_today, iter_dates, to_business_date, weekday_index
from app.core.enums import AttendanceStatus

from .reader import DeductionConfig, StudentSchedule, TeacherActivity, format_amount
from .resolver import is_teacher_responsible
from .schedule import WEEKDAYS, scheduled_weekdays

logger = get_logger(__name__)

# TODO: confirm with payroll whether the 31st stays exempt; it is kept as a fixed rule for now.
EXEMPT_DAY_OF_MONTH = 31
SUNDAY = 0


@dataclass(frozen=True)
class AbsentStudent:
    student_id: int
    name: str
    package: Optional[str]
    rate: Decimal


@dataclass(frozen=True)
class ComputedAbsence:
    teacher_id: str
    day: date
    total_amount: Decimal
    students: Tuple[AbsentStudent, ...]

    @property
    def breakdown(self) -> str:
        return "; ".join(
            f"{s.name} ({s.package or 'Unknown'}): {format_amount(s.rate)}" for s in self.students
        )


def _matches_filter(student: StudentSchedule, filters: Sequence[str]) -> bool:
    for raw in filters:
        value = str(raw).strip()
        if value.startswith("id:"):
            if str(student.student_id) == value[3:].strip():
                return True
        elif value.startswith("name:"):
            if student.name == value[5:].strip():
                return True
        elif value == str(student.student_id) or value == student.name:
            return True
    return False


def filter_students(
    students: Sequence[StudentSchedule], student_filter: Optional[Sequence[str]]
) -> List[StudentSchedule]:
    """Keep students selected by `id:<n>`, `name:<text>` or a plain id/name. No filter keeps all."""
    if not student_filter:
        return list(students)
    return [s for s in students if _matches_filter(s, student_filter)]


def compute_absences(
    activity: TeacherActivity,
    start: date,
    end: date,
    config: DeductionConfig,
    *,
    student_filter: Optional[Sequence[str]] = None,
    today: Optional[date] = None,
) -> List[ComputedAbsence]:
    effective_end = min(end, today or business_today())
    students = filter_students(activity.students, student_filter)
    if not students or start > effective_end:
        return []

    link_days = {
        s.student_id: {to_business_date(t) for t in s.link_times} for s in students
    }
    warned: Set[int] = set()
    results: List[ComputedAbsence] = []

    for day in iter_dates(start, effective_end):
        if day.day == EXEMPT_DAY_OF_MONTH:
            continue
        weekday = weekday_index(day)
        if weekday == SUNDAY and not config.include_sundays:
            continue

        absent: List[AbsentStudent] = []
        for student in students:
            if not is_teacher_responsible(
                activity.teacher_id, day, student.change_events, student.windows
            ):
                continue

            windows = [w for w in student.windows if w.covers(day)]
            if not windows:
                # Windows may not line up with link dates (after-midnight slots)
                if not student.has_link_history or not student.windows:
                    continue
                windows = list(student.windows)

            days = scheduled_weekdays(w.day_package for w in windows)
            if not days and student.has_link_history:
                days = WEEKDAYS
                if student.student_id not in warned:
                    warned.add(student.student_id)
                    logger.warning(
                        "Student %s has no usable day package with teacher %s; assuming Mon-Fri",
                        student.student_id,
                        activity.teacher_id,
                    )
            if weekday not in days:
                continue

            if day in link_days[student.student_id]:
                continue
            if student.attendance.get(day) == AttendanceStatus.PERMISSION.value:
                continue

            absent.append(
                AbsentStudent(
                    student_id=student.student_id,
                    name=student.name,
                    package=student.package,
                    rate=config.absence_rate(student.package),
                )
            )

        total = sum((a.rate for a in absent), Decimal("0"))
        if total > 0:
            results.append(
                ComputedAbsence(
                    teacher_id=activity.teacher_id,
                    day=day,
                    total_amount=total,
                    students=tuple(absent),
                )
            )

    logger.debug(
        "Teacher %s: %d absence day(s) between %s and %s",
        activity.teacher_id,
        len(results),
        start,
        effective_end,
    )
    return results
