"""
Attendance/assignment reader: loads everything the deduction computers need for one
teacher and date range, and the school's deduction configuration.

Rows are copied into plain frozen dataclasses so the computers stay free of ORM state
and can be exercised without a database.
"""

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Dict, List, Optional, Tuple
from uuid import UUID

from sqlalchemy import and_, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.business_date import to_business_date, utc_range
from app.core.config import settings
from app.core.models import (
    AbsenceRecord,
    AttendanceRecord,
    LatenessDeductionTier,
    PackageDeductionRate,
    SchoolSetting,
    SessionLink,
    Student,
    Teacher,
    TeacherAssignment,
    TeacherChangeEvent,
)

INCLUDE_SUNDAYS_KEY = "include_sundays_in_salary"
# Student statuses that still take classes
ACTIVE_STATUSES = ("active", "not yet")


def format_amount(value: Decimal) -> str:
    """Money as shown in waiver reasons and messages: "25.00" -> "25", "12.50" -> "12.5"."""
    return f"{value.normalize():f}"


@dataclass(frozen=True)
class PackageRate:
    lateness: Decimal
    absence: Decimal


@dataclass(frozen=True)
class LatenessTier:
    tier: int
    start_minute: int
    end_minute: int
    percent: Decimal
    excused_threshold: Optional[int] = None


@dataclass(frozen=True)
class DeductionConfig:
    """Per-school deduction settings, loaded once per request."""

    package_rates: Dict[str, PackageRate] = field(default_factory=dict)
    lateness_tiers: Tuple[LatenessTier, ...] = ()
    include_sundays: bool = False
    default_absence_amount: Decimal = Decimal("25")
    default_lateness_amount: Decimal = Decimal("30")

    def absence_rate(self, package: Optional[str]) -> Decimal:
        rate = self.package_rates.get(package) if package else None
        if rate is None or not rate.absence:
            return self.default_absence_amount
        return rate.absence

    def lateness_base(self, package: Optional[str]) -> Decimal:
        rate = self.package_rates.get(package) if package else None
        if rate is None or not rate.lateness:
            return self.default_lateness_amount
        return rate.lateness

    @property
    def excused_threshold(self) -> int:
        """Smallest excused threshold across tiers. A tier without one counts as 0."""
        if not self.lateness_tiers:
            return 0
        return min(t.excused_threshold or 0 for t in self.lateness_tiers)

    def match_tier(self, minutes: int) -> Optional[LatenessTier]:
        for tier in self.lateness_tiers:
            if tier.start_minute <= minutes <= tier.end_minute:
                return tier
        return None


@dataclass(frozen=True)
class AssignmentWindow:
    teacher_id: str
    occupied_at: Optional[datetime]
    end_at: Optional[datetime]
    time_slot: Optional[str] = None
    day_package: Optional[str] = None

    def covers(self, day: date) -> bool:
        """Inclusive on both ends, compared as business dates."""
        if self.occupied_at is not None and day < to_business_date(self.occupied_at):
            return False
        if self.end_at is not None and day > to_business_date(self.end_at):
            return False
        return True


@dataclass(frozen=True)
class ChangeEvent:
    old_teacher_id: Optional[str]
    new_teacher_id: str
    change_date: datetime


@dataclass(frozen=True)
class StudentSchedule:
    """One student as seen from one teacher: windows, links and attendance marks."""

    student_id: int
    name: str
    package: Optional[str]
    status: Optional[str]
    windows: Tuple[AssignmentWindow, ...] = ()
    # Every session link this teacher sent the student, any date
    link_times: Tuple[datetime, ...] = ()
    # Business date -> attendance status
    attendance: Dict[date, str] = field(default_factory=dict)
    change_events: Tuple[ChangeEvent, ...] = ()

    @property
    def has_link_history(self) -> bool:
        return len(self.link_times) > 0

    @property
    def time_slot(self) -> Optional[str]:
        """Slot of the latest window that has one. Windows are kept in occupied_at order."""
        for window in reversed(self.windows):
            if window.time_slot:
                return window.time_slot
        return None


@dataclass(frozen=True)
class TeacherActivity:
    teacher_id: str
    teacher_name: str
    students: Tuple[StudentSchedule, ...] = ()


async def load_deduction_config(db: AsyncSession, school_id: UUID) -> DeductionConfig:
    rates_result = await db.execute(
        select(PackageDeductionRate).where(PackageDeductionRate.school_id == school_id)
    )
    package_rates = {
        r.package_name: PackageRate(
            lateness=Decimal(str(r.lateness_base_amount)),
            absence=Decimal(str(r.absence_base_amount)),
        )
        for r in rates_result.scalars().all()
    }

    tiers_result = await db.execute(
        select(LatenessDeductionTier)
        .where(LatenessDeductionTier.school_id == school_id)
        .order_by(LatenessDeductionTier.tier, LatenessDeductionTier.start_minute)
    )
    tiers = tuple(
        LatenessTier(
            tier=t.tier,
            start_minute=t.start_minute,
            end_minute=t.end_minute,
            percent=Decimal(str(t.deduction_percent)),
            excused_threshold=t.excused_threshold,
        )
        for t in tiers_result.scalars().all()
    )

    setting_result = await db.execute(
        select(SchoolSetting.value).where(
            SchoolSetting.school_id == school_id,
            SchoolSetting.key == INCLUDE_SUNDAYS_KEY,
        )
    )
    include_sundays = (setting_result.scalar_one_or_none() or "").strip().lower() == "true"

    return DeductionConfig(
        package_rates=package_rates,
        lateness_tiers=tiers,
        include_sundays=include_sundays,
        default_absence_amount=settings.default_absence_amount,
        default_lateness_amount=settings.default_lateness_amount,
    )


async def load_teacher_activity(
    db: AsyncSession,
    school_id: UUID,
    teacher_id: str,
    start: date,
    end: date,
    *,
    include_current: bool = False,
) -> Optional[TeacherActivity]:
    """
    Students with a window for this teacher overlapping [start, end]. None for an unknown teacher.

    With include_current, active students whose current teacher is this teacher are added even
    without such a window (lateness only looks at who received the links).
    """
    teacher_result = await db.execute(
        select(Teacher).where(Teacher.id == teacher_id, Teacher.school_id == school_id)
    )
    teacher = teacher_result.scalar_one_or_none()
    if teacher is None:
        return None

    range_start, range_end = utc_range(start, end)

    windows_result = await db.execute(
        select(TeacherAssignment, Student)
        .join(Student, Student.id == TeacherAssignment.student_id)
        .where(
            TeacherAssignment.teacher_id == teacher_id,
            Student.school_id == school_id,
            or_(TeacherAssignment.occupied_at.is_(None), TeacherAssignment.occupied_at < range_end),
            or_(TeacherAssignment.end_at.is_(None), TeacherAssignment.end_at >= range_start),
        )
        .order_by(Student.id, TeacherAssignment.occupied_at)
    )

    students: Dict[int, Student] = {}
    windows: Dict[int, List[AssignmentWindow]] = defaultdict(list)
    for assignment, student in windows_result.all():
        students[student.id] = student
        windows[student.id].append(
            AssignmentWindow(
                teacher_id=assignment.teacher_id,
                occupied_at=assignment.occupied_at,
                end_at=assignment.end_at,
                time_slot=assignment.time_slot,
                day_package=assignment.day_package,
            )
        )

    if include_current:
        current_result = await db.execute(
            select(Student)
            .where(
                Student.school_id == school_id,
                Student.teacher_id == teacher_id,
                func.lower(Student.status).in_(ACTIVE_STATUSES),
            )
            .order_by(Student.id)
        )
        current = [s for s in current_result.scalars().all() if s.id not in students]
        if current:
            # Their time slot comes from whatever assignment rows they have
            slots_result = await db.execute(
                select(TeacherAssignment)
                .where(TeacherAssignment.student_id.in_([s.id for s in current]))
                .order_by(TeacherAssignment.student_id, TeacherAssignment.occupied_at)
            )
            for assignment in slots_result.scalars().all():
                windows[assignment.student_id].append(
                    AssignmentWindow(
                        teacher_id=assignment.teacher_id,
                        occupied_at=assignment.occupied_at,
                        end_at=assignment.end_at,
                        time_slot=assignment.time_slot,
                        day_package=assignment.day_package,
                    )
                )
            for s in current:
                students[s.id] = s

    if not students:
        return TeacherActivity(teacher_id=teacher.id, teacher_name=teacher.name)

    student_ids = list(students.keys())

    links_result = await db.execute(
        select(SessionLink.student_id, SessionLink.sent_time)
        .where(
            SessionLink.teacher_id == teacher_id,
            SessionLink.student_id.in_(student_ids),
            SessionLink.sent_time.is_not(None),
        )
        .order_by(SessionLink.sent_time)
    )
    links: Dict[int, List[datetime]] = defaultdict(list)
    for student_id, sent_time in links_result.all():
        links[student_id].append(sent_time)

    attendance_result = await db.execute(
        select(AttendanceRecord.student_id, AttendanceRecord.date, AttendanceRecord.status).where(
            AttendanceRecord.student_id.in_(student_ids),
            AttendanceRecord.date >= start,
            AttendanceRecord.date <= end,
        )
    )
    attendance: Dict[int, Dict[date, str]] = defaultdict(dict)
    for student_id, day, status in attendance_result.all():
        attendance[student_id][day] = status

    # All changes touching this teacher up to the end of the range
    events_result = await db.execute(
        select(TeacherChangeEvent)
        .where(
            TeacherChangeEvent.school_id == school_id,
            TeacherChangeEvent.student_id.in_(student_ids),
            or_(
                TeacherChangeEvent.old_teacher_id == teacher_id,
                TeacherChangeEvent.new_teacher_id == teacher_id,
            ),
            TeacherChangeEvent.change_date < range_end,
        )
        .order_by(TeacherChangeEvent.change_date)
    )
    events: Dict[int, List[ChangeEvent]] = defaultdict(list)
    for ev in events_result.scalars().all():
        events[ev.student_id].append(
            ChangeEvent(
                old_teacher_id=ev.old_teacher_id,
                new_teacher_id=ev.new_teacher_id,
                change_date=ev.change_date,
            )
        )

    schedules = tuple(
        StudentSchedule(
            student_id=s.id,
            name=s.name,
            package=s.package,
            status=s.status,
            windows=tuple(windows[s.id]),
            link_times=tuple(links.get(s.id, ())),
            attendance=dict(attendance.get(s.id, {})),
            change_events=tuple(events.get(s.id, ())),
        )
        for s in students.values()
    )
    return TeacherActivity(teacher_id=teacher.id, teacher_name=teacher.name, students=schedules)


async def load_absence_records(
    db: AsyncSession,
    school_id: UUID,
    teacher_id: str,
    start: date,
    end: date,
):
    """Persisted absence records for a teacher whose class date falls in [start, end]."""
    range_start, range_end = utc_range(start, end)
    result = await db.execute(
        select(AbsenceRecord)
        .where(
            and_(
                AbsenceRecord.school_id == school_id,
                AbsenceRecord.teacher_id == teacher_id,
                AbsenceRecord.class_date >= range_start,
                AbsenceRecord.class_date < range_end,
            )
        )
        .order_by(AbsenceRecord.class_date)
    )
    return result.scalars().all()
