"""
Deduction adjustments: reconcile computed absence/lateness deductions against waivers.

Every computed deduction in the requested range ends up covered by exactly one waiver per
(teacher, type, business date, school). The unique constraint on deduction_waivers is the
serialization point between concurrent requests: a losing insert is treated as already done.
"""

import re
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Dict, List, Optional, Set, Tuple
from uuid import UUID

from fastapi import status
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.deductions.absence import compute_absences
from app.api.v1.deductions.lateness import compute_lateness
from app.api.v1.deductions.reader import (
    DeductionConfig,
    TeacherActivity,
    format_amount,
    load_absence_records,
    load_deduction_config,
    load_teacher_activity,
)
from app.auth.schemas import CurrentUser
from app.core.app_logger import get_logger
from app.core.audit_service import log_audit
from app.core.business_date import parse_business_date, to_business_date
from app.core.enums import AdjustmentType, DeductionType
from app.core.exceptions import ServiceError
from app.core.models import DeductionWaiver, School

from .schemas import (
    AdjustmentRequest,
    AdjustmentResponse,
    FinancialImpact,
    PreviewRecord,
    PreviewResponse,
    PreviewSummary,
    TeacherBreakdown,
)

logger = get_logger(__name__)

AUDIT_ACTION = "deduction_adjustment"
REASON_MAX_LENGTH = 500
AUDIT_REASON_MAX_LENGTH = 100
TARGET_ID_MAX_LENGTH = 100

MISSING_FIELDS_MESSAGE = "Missing required fields: date range, teachers, and reason are required"
INVALID_RANGE_MESSAGE = "Invalid date range format"
REVERSED_RANGE_MESSAGE = "Start date must be before or equal to end date"
INVALID_TYPE_MESSAGE = "Invalid adjustment type"

_STUDENT_COUNT_PREFIX = re.compile(r"^\d+\s+student\(s\):\s*")


def _truncate(text: str, limit: int) -> str:
    return text if len(text) <= limit else text[:limit]


def _to_decimal(val) -> Decimal:
    if val is None:
        return Decimal("0")
    return val if isinstance(val, Decimal) else Decimal(str(val))


@dataclass
class _BatchOutcome:
    records_affected: int = 0
    total_amount: Decimal = Decimal("0")
    teachers: Set[str] = field(default_factory=set)

    def created(self, teacher_id: str, amount: Decimal) -> None:
        self.records_affected += 1
        self.total_amount += amount
        self.teachers.add(teacher_id)

    def updated(self, teacher_id: str, amount: Decimal) -> None:
        self.total_amount += amount
        self.teachers.add(teacher_id)


async def get_school_for_admin(db: AsyncSession, school_slug: str, current_user: CurrentUser) -> School:
    result = await db.execute(select(School).where(School.slug == school_slug))
    school = result.scalar_one_or_none()
    if not school:
        raise ServiceError("School not found", status.HTTP_404_NOT_FOUND)
    if school.id != current_user.school_id:
        raise ServiceError("Unauthorized access to school", status.HTTP_403_FORBIDDEN)
    return school


def _validate_request(
    payload: AdjustmentRequest, *, require_reason: bool = True
) -> Tuple[date, date, AdjustmentType]:
    """Reject bad input before anything is read or written."""
    date_range = payload.date_range
    if (
        date_range is None
        or not date_range.start_date
        or not date_range.end_date
        or not payload.teacher_ids
        or (require_reason and not (payload.reason or "").strip())
    ):
        raise ServiceError(MISSING_FIELDS_MESSAGE, status.HTTP_400_BAD_REQUEST)

    try:
        start = parse_business_date(date_range.start_date)
        end = parse_business_date(date_range.end_date)
    except ValueError:
        raise ServiceError(INVALID_RANGE_MESSAGE, status.HTTP_400_BAD_REQUEST)
    if start > end:
        raise ServiceError(REVERSED_RANGE_MESSAGE, status.HTTP_400_BAD_REQUEST)

    try:
        adjustment_type = AdjustmentType(payload.adjustment_type)
    except ValueError:
        raise ServiceError(INVALID_TYPE_MESSAGE, status.HTTP_400_BAD_REQUEST)

    return start, end, adjustment_type


async def _existing_waivers(
    db: AsyncSession,
    school_id: UUID,
    teacher_id: str,
    deduction_type: DeductionType,
    start: date,
    end: date,
) -> Dict[date, DeductionWaiver]:
    result = await db.execute(
        select(DeductionWaiver).where(
            DeductionWaiver.school_id == school_id,
            DeductionWaiver.teacher_id == teacher_id,
            DeductionWaiver.deduction_type == deduction_type.value,
            DeductionWaiver.deduction_date >= start,
            DeductionWaiver.deduction_date <= end,
        )
    )
    return {w.deduction_date: w for w in result.scalars().all()}


async def _insert_waiver(
    db: AsyncSession,
    *,
    school_id: UUID,
    teacher_id: str,
    deduction_type: DeductionType,
    day: date,
    amount: Decimal,
    reason: str,
    admin_id: Optional[UUID],
) -> bool:
    """Insert inside a savepoint. False when another writer already holds the natural key."""
    try:
        async with db.begin_nested():
            db.add(
                DeductionWaiver(
                    school_id=school_id,
                    teacher_id=teacher_id,
                    deduction_type=deduction_type.value,
                    deduction_date=day,
                    original_amount=amount,
                    reason=_truncate(reason, REASON_MAX_LENGTH),
                    admin_id=admin_id,
                )
            )
    except IntegrityError:
        logger.info(
            "Waiver already exists for teacher %s, %s on %s; skipping",
            teacher_id,
            deduction_type.value,
            day,
        )
        return False
    return True


async def _upsert_waiver(
    db: AsyncSession,
    *,
    school_id: UUID,
    teacher_id: str,
    deduction_type: DeductionType,
    day: date,
    amount: Decimal,
    reason: str,
    admin_id: Optional[UUID],
) -> str:
    """Returns "updated", "created" or "exists" (lost an insert race)."""
    result = await db.execute(
        select(DeductionWaiver).where(
            DeductionWaiver.school_id == school_id,
            DeductionWaiver.teacher_id == teacher_id,
            DeductionWaiver.deduction_type == deduction_type.value,
            DeductionWaiver.deduction_date == day,
        )
    )
    existing = result.scalar_one_or_none()
    if existing is not None:
        existing.original_amount = amount
        existing.reason = _truncate(reason, REASON_MAX_LENGTH)
        existing.admin_id = admin_id
        existing.updated_at = datetime.utcnow()
        await db.flush()
        return "updated"

    created = await _insert_waiver(
        db,
        school_id=school_id,
        teacher_id=teacher_id,
        deduction_type=deduction_type,
        day=day,
        amount=amount,
        reason=reason,
        admin_id=admin_id,
    )
    return "created" if created else "exists"


async def _waive_absence_records(
    db: AsyncSession,
    school_id: UUID,
    admin_id: UUID,
    teacher_id: str,
    start: date,
    end: date,
    reason: str,
    outcome: _BatchOutcome,
) -> Set[date]:
    """Waive persisted absence records. Returns the dates now covered by a waiver."""
    records = await load_absence_records(db, school_id, teacher_id, start, end)
    if not records:
        return set()

    amounts: Dict[date, Decimal] = defaultdict(Decimal)
    for record in records:
        amounts[to_business_date(record.class_date)] += _to_decimal(record.deduction_applied)

    existing = await _existing_waivers(db, school_id, teacher_id, DeductionType.ABSENCE, start, end)
    waived: Set[date] = set()
    for day, amount in sorted(amounts.items()):
        if day in existing:
            waived.add(day)
            continue
        if amount <= 0:
            continue
        created = await _insert_waiver(
            db,
            school_id=school_id,
            teacher_id=teacher_id,
            deduction_type=DeductionType.ABSENCE,
            day=day,
            amount=amount,
            reason=f"{reason} | Absence record",
            admin_id=admin_id,
        )
        if created:
            outcome.created(teacher_id, amount)
        waived.add(day)
    return waived


async def _waive_absences(
    db: AsyncSession,
    school_id: UUID,
    admin_id: UUID,
    activity: TeacherActivity,
    start: date,
    end: date,
    reason: str,
    config: DeductionConfig,
    student_filter: Optional[List[str]],
    today: Optional[date],
    outcome: _BatchOutcome,
) -> None:
    teacher_id = activity.teacher_id
    waived = await _waive_absence_records(db, school_id, admin_id, teacher_id, start, end, reason, outcome)

    computed = compute_absences(activity, start, end, config, student_filter=student_filter, today=today)
    for absence in computed:
        if absence.day in waived:
            continue
        waiver_reason = f"{reason} | {len(absence.students)} student(s): {absence.breakdown}"
        try:
            result = await _upsert_waiver(
                db,
                school_id=school_id,
                teacher_id=teacher_id,
                deduction_type=DeductionType.ABSENCE,
                day=absence.day,
                amount=absence.total_amount,
                reason=waiver_reason,
                admin_id=admin_id,
            )
        except Exception:
            logger.exception("Failed to waive absence for teacher %s on %s", teacher_id, absence.day)
            continue
        if result == "created":
            outcome.created(teacher_id, absence.total_amount)
        elif result == "updated":
            outcome.updated(teacher_id, absence.total_amount)
        waived.add(absence.day)


async def _waive_lateness(
    db: AsyncSession,
    school_id: UUID,
    admin_id: UUID,
    activity: TeacherActivity,
    start: date,
    end: date,
    reason: str,
    config: DeductionConfig,
    time_slots: Optional[List[str]],
    outcome: _BatchOutcome,
) -> None:
    teacher_id = activity.teacher_id
    existing = await _existing_waivers(db, school_id, teacher_id, DeductionType.LATENESS, start, end)

    for lateness in compute_lateness(activity, start, end, config, time_slots=time_slots):
        if lateness.day in existing:
            continue
        try:
            created = await _insert_waiver(
                db,
                school_id=school_id,
                teacher_id=teacher_id,
                deduction_type=DeductionType.LATENESS,
                day=lateness.day,
                amount=lateness.total_amount,
                reason=f"{reason} | {lateness.details}",
                admin_id=admin_id,
            )
        except Exception:
            logger.exception("Failed to waive lateness for teacher %s on %s", teacher_id, lateness.day)
            continue
        if created:
            outcome.created(teacher_id, lateness.total_amount)


def _result_message(adjustment_type: AdjustmentType, outcome: _BatchOutcome) -> str:
    label = "absence" if adjustment_type == AdjustmentType.WAIVE_ABSENCE else "lateness"
    if outcome.records_affected == 0 and outcome.total_amount == 0:
        return f"No {label} deductions found to waive in the selected range"
    return (
        f"Waived {label} deductions for {len(outcome.teachers)} teacher(s): "
        f"{outcome.records_affected} new waiver(s), {format_amount(outcome.total_amount)} total"
    )


async def apply_adjustment(
    db: AsyncSession,
    school: School,
    admin: CurrentUser,
    payload: AdjustmentRequest,
    *,
    today: Optional[date] = None,
) -> AdjustmentResponse:
    start, end, adjustment_type = _validate_request(payload)
    reason = payload.reason.strip()
    outcome = _BatchOutcome()

    try:
        config = await load_deduction_config(db, school.id)
        for teacher_id in payload.teacher_ids:
            activity = await load_teacher_activity(
                db, school.id, teacher_id, start, end,
                include_current=adjustment_type == AdjustmentType.WAIVE_LATENESS,
            )
            if activity is None:
                logger.info("Skipping unknown teacher %s for school %s", teacher_id, school.slug)
                continue
            if adjustment_type == AdjustmentType.WAIVE_ABSENCE:
                await _waive_absences(
                    db, school.id, admin.id, activity, start, end, reason, config,
                    payload.student_ids, today, outcome,
                )
            else:
                await _waive_lateness(
                    db, school.id, admin.id, activity, start, end, reason, config,
                    payload.time_slots, outcome,
                )

        await log_audit(
            db,
            school.id,
            AUDIT_ACTION,
            admin_id=admin.id,
            target_id=_truncate(",".join(payload.teacher_ids), TARGET_ID_MAX_LENGTH),
            details={
                "adjustmentType": adjustment_type.value,
                "dateRange": {"startDate": start.isoformat(), "endDate": end.isoformat()},
                "teacherCount": len(payload.teacher_ids),
                "recordsAffected": outcome.records_affected,
                "totalAmountWaived": float(outcome.total_amount),
                "reason": _truncate(reason, AUDIT_REASON_MAX_LENGTH),
            },
        )
        await db.commit()
    except ServiceError:
        await db.rollback()
        raise
    except Exception as e:
        await db.rollback()
        logger.exception("Deduction adjustment failed for school %s", school.slug)
        raise ServiceError("Failed to apply deduction adjustment", status.HTTP_500_INTERNAL_SERVER_ERROR) from e

    logger.info(
        "Deduction adjustment %s for school %s: %d created, %s waived",
        adjustment_type.value,
        school.slug,
        outcome.records_affected,
        outcome.total_amount,
    )
    return AdjustmentResponse(
        success=True,
        message=_result_message(adjustment_type, outcome),
        records_affected=outcome.records_affected,
        financial_impact=FinancialImpact(
            total_amount_waived=float(outcome.total_amount),
            affected_teachers=len(outcome.teachers),
        ),
    )


# --- Preview (read-only) ---
def _waived_student_names(reason: str) -> Set[str]:
    """Names listed in an absence waiver reason. Empty for waivers without a student list."""
    if " | " not in reason:
        return set()
    listing = _STUDENT_COUNT_PREFIX.sub("", reason.rsplit(" | ", 1)[1].strip())
    return {part.split("(")[0].strip() for part in listing.split(";") if part.strip()}


async def _preview_absences(
    db: AsyncSession,
    school_id: UUID,
    activity: TeacherActivity,
    start: date,
    end: date,
    config: DeductionConfig,
    student_filter: Optional[List[str]],
    today: Optional[date],
) -> List[PreviewRecord]:
    teacher_id = activity.teacher_id
    waivers = await _existing_waivers(db, school_id, teacher_id, DeductionType.ABSENCE, start, end)
    records: List[PreviewRecord] = []

    for record in await load_absence_records(db, school_id, teacher_id, start, end):
        day = to_business_date(record.class_date)
        if day in waivers:
            continue
        records.append(
            PreviewRecord(
                id=f"absence_db_{record.id}",
                teacher_id=teacher_id,
                teacher_name=activity.teacher_name,
                day=day,
                type="Absence",
                deduction=float(_to_decimal(record.deduction_applied)),
                source="database",
                permitted=record.permitted,
                details="Permitted absence (record)" if record.permitted else "Unpermitted absence (record)",
            )
        )

    computed = compute_absences(activity, start, end, config, student_filter=student_filter, today=today)
    for absence in computed:
        waiver = waivers.get(absence.day)
        names = _waived_student_names(waiver.reason) if waiver is not None else set()
        for student in absence.students:
            if waiver is not None and (not names or student.name in names):
                continue
            package = student.package or "Unknown"
            records.append(
                PreviewRecord(
                    id=f"absence_computed_{teacher_id}_{absence.day.isoformat()}_{student.student_id}",
                    teacher_id=teacher_id,
                    teacher_name=activity.teacher_name,
                    day=absence.day,
                    type="Absence",
                    deduction=float(student.rate),
                    source="computed",
                    student_id=student.student_id,
                    student_name=student.name,
                    student_package=package,
                    permitted=False,
                    details=f"{student.name} ({package}): no session link sent - {format_amount(student.rate)}",
                )
            )
    return records


async def _preview_lateness(
    db: AsyncSession,
    school_id: UUID,
    activity: TeacherActivity,
    start: date,
    end: date,
    config: DeductionConfig,
    time_slots: Optional[List[str]],
) -> List[PreviewRecord]:
    teacher_id = activity.teacher_id
    waivers = await _existing_waivers(db, school_id, teacher_id, DeductionType.LATENESS, start, end)
    records: List[PreviewRecord] = []
    for lateness in compute_lateness(activity, start, end, config, time_slots=time_slots):
        if lateness.day in waivers:
            continue
        for student in lateness.students:
            records.append(
                PreviewRecord(
                    id=f"lateness_{teacher_id}_{lateness.day.isoformat()}_{student.student_id}",
                    teacher_id=teacher_id,
                    teacher_name=activity.teacher_name,
                    day=lateness.day,
                    type="Lateness",
                    deduction=float(student.amount),
                    source="computed",
                    student_id=student.student_id,
                    student_name=student.name,
                    lateness_minutes=student.minutes,
                    time_slot=student.time_slot,
                    tier=student.tier,
                    details=f"{student.minutes} min late, {student.time_slot}",
                )
            )
    return records


def _summarize(teacher_ids: List[str], records: List[PreviewRecord]) -> PreviewSummary:
    breakdown: List[TeacherBreakdown] = []
    for teacher_id in teacher_ids:
        own = [r for r in records if r.teacher_id == teacher_id]
        if not own:
            continue
        breakdown.append(
            TeacherBreakdown(
                teacher_id=teacher_id,
                teacher_name=own[0].teacher_name,
                record_count=len(own),
                total_deduction=sum(r.deduction for r in own),
            )
        )
    return PreviewSummary(
        total_records=len(records),
        total_teachers=len(breakdown),
        total_amount=sum(r.deduction for r in records),
        total_lateness_amount=sum(r.deduction for r in records if r.type == "Lateness"),
        total_absence_amount=sum(r.deduction for r in records if r.type == "Absence"),
        teacher_breakdown=breakdown,
    )


async def preview_adjustment(
    db: AsyncSession,
    school: School,
    payload: AdjustmentRequest,
    *,
    today: Optional[date] = None,
) -> PreviewResponse:
    """Same computation as apply_adjustment, without writing anything. Reason is optional."""
    start, end, adjustment_type = _validate_request(payload, require_reason=False)
    config = await load_deduction_config(db, school.id)

    records: List[PreviewRecord] = []
    for teacher_id in payload.teacher_ids:
        activity = await load_teacher_activity(
            db, school.id, teacher_id, start, end,
            include_current=adjustment_type == AdjustmentType.WAIVE_LATENESS,
        )
        if activity is None:
            continue
        if adjustment_type == AdjustmentType.WAIVE_ABSENCE:
            records.extend(
                await _preview_absences(db, school.id, activity, start, end, config, payload.student_ids, today)
            )
        else:
            records.extend(
                await _preview_lateness(db, school.id, activity, start, end, config, payload.time_slots)
            )

    return PreviewResponse(records=records, summary=_summarize(payload.teacher_ids, records))
