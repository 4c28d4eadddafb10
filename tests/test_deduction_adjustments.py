"""Endpoint tests for deduction adjustments (waivers) and their preview."""

import json
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Dict

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.deduction_adjustments import service
from app.auth.models import User
from app.core.enums import DeductionType
from app.core.models import (
    AbsenceRecord,
    AuditLog,
    DeductionWaiver,
    LatenessDeductionTier,
    PackageDeductionRate,
    School,
    SessionLink,
    Student,
    Teacher,
    TeacherAssignment,
)

URL = "/api/v1/admin/alpha/deduction-adjustments"
MISSED_MONDAY = date(2025, 3, 10)


def _payload(**overrides) -> Dict:
    body = {
        "adjustmentType": "waive_absence",
        "dateRange": {"startDate": "2025-03-03", "endDate": "2025-03-14"},
        "teacherIds": ["T1"],
        "reason": "Platform outage",
    }
    body.update(overrides)
    return body


async def _seed_teacher_with_student(db: AsyncSession, school: School) -> Student:
    """Teacher T1, student "Sara" on Basic (absence 25) MWF at 10:00 AM; every session but 2025-03-10 linked."""
    db.add(Teacher(id="T1", school_id=school.id, name="Teacher One"))
    db.add(
        PackageDeductionRate(
            school_id=school.id,
            package_name="Basic",
            lateness_base_amount=Decimal("30"),
            absence_base_amount=Decimal("25"),
        )
    )
    student = Student(school_id=school.id, name="Sara", package="Basic", status="active", teacher_id="T1")
    db.add(student)
    await db.flush()
    db.add(
        TeacherAssignment(
            school_id=school.id,
            teacher_id="T1",
            student_id=student.id,
            time_slot="10:00 AM",
            day_package="MWF",
            occupied_at=datetime(2025, 2, 1, tzinfo=timezone.utc),
        )
    )
    for day in (3, 5, 7, 12, 14):
        db.add(
            SessionLink(
                teacher_id="T1",
                student_id=student.id,
                # 10:00 business time is 07:00 UTC
                sent_time=datetime(2025, 3, day, 7, 0, tzinfo=timezone.utc),
            )
        )
    await db.commit()
    return student


async def _waiver_count(db: AsyncSession) -> int:
    result = await db.execute(select(func.count()).select_from(DeductionWaiver))
    return result.scalar_one()


@pytest.mark.asyncio
async def test_waive_absence_creates_one_waiver(
    client: AsyncClient, db_session: AsyncSession, school: School, auth_headers: Dict[str, str]
) -> None:
    await _seed_teacher_with_student(db_session, school)

    response = await client.post(URL, json=_payload(), headers=auth_headers)
    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["recordsAffected"] == 1
    assert data["financialImpact"] == {"totalAmountWaived": 25.0, "affectedTeachers": 1}
    assert data["message"] == "Waived absence deductions for 1 teacher(s): 1 new waiver(s), 25 total"

    waivers = (await db_session.execute(select(DeductionWaiver))).scalars().all()
    assert len(waivers) == 1
    waiver = waivers[0]
    assert waiver.teacher_id == "T1"
    assert waiver.deduction_type == "absence"
    assert waiver.deduction_date == MISSED_MONDAY
    assert Decimal(str(waiver.original_amount)) == Decimal("25")
    assert waiver.reason == "Platform outage | 1 student(s): Sara (Basic): 25"


@pytest.mark.asyncio
async def test_repeated_request_is_idempotent(
    client: AsyncClient, db_session: AsyncSession, school: School, auth_headers: Dict[str, str]
) -> None:
    await _seed_teacher_with_student(db_session, school)

    first = await client.post(URL, json=_payload(), headers=auth_headers)
    second = await client.post(URL, json=_payload(reason="Second pass"), headers=auth_headers)

    assert first.json()["recordsAffected"] == 1
    assert second.status_code == 200
    assert second.json()["recordsAffected"] == 0
    # Updated waivers still count toward the amount
    assert second.json()["financialImpact"]["totalAmountWaived"] == 25.0
    assert await _waiver_count(db_session) == 1

    waiver = (await db_session.execute(select(DeductionWaiver))).scalar_one()
    await db_session.refresh(waiver)
    assert waiver.reason.startswith("Second pass | ")


@pytest.mark.asyncio
async def test_overlapping_ranges_never_duplicate(
    client: AsyncClient, db_session: AsyncSession, school: School, auth_headers: Dict[str, str]
) -> None:
    await _seed_teacher_with_student(db_session, school)

    ranges = [("2025-03-03", "2025-03-10"), ("2025-03-10", "2025-03-14"), ("2025-03-01", "2025-03-14")]
    for start, end in ranges:
        response = await client.post(
            URL, json=_payload(dateRange={"startDate": start, "endDate": end}), headers=auth_headers
        )
        assert response.status_code == 200

    assert await _waiver_count(db_session) == 1


@pytest.mark.asyncio
async def test_legacy_absence_records_are_waived(
    client: AsyncClient, db_session: AsyncSession, school: School, auth_headers: Dict[str, str]
) -> None:
    await _seed_teacher_with_student(db_session, school)
    db_session.add(
        AbsenceRecord(
            school_id=school.id,
            teacher_id="T1",
            class_date=datetime(2025, 3, 5, 8, 0, tzinfo=timezone.utc),
            deduction_applied=Decimal("50"),
        )
    )
    await db_session.commit()

    response = await client.post(URL, json=_payload(), headers=auth_headers)
    data = response.json()
    assert data["recordsAffected"] == 2
    assert data["financialImpact"]["totalAmountWaived"] == 75.0

    dates = set((await db_session.execute(select(DeductionWaiver.deduction_date))).scalars().all())
    assert dates == {date(2025, 3, 5), MISSED_MONDAY}


@pytest.mark.asyncio
async def test_existing_waiver_is_updated_not_duplicated(
    client: AsyncClient, db_session: AsyncSession, school: School, admin: User, auth_headers: Dict[str, str]
) -> None:
    await _seed_teacher_with_student(db_session, school)
    db_session.add(
        DeductionWaiver(
            school_id=school.id,
            teacher_id="T1",
            deduction_type="absence",
            deduction_date=MISSED_MONDAY,
            original_amount=Decimal("10"),
            reason="Earlier waiver",
            admin_id=admin.id,
        )
    )
    await db_session.commit()

    response = await client.post(URL, json=_payload(), headers=auth_headers)
    data = response.json()
    assert data["recordsAffected"] == 0
    assert data["financialImpact"]["totalAmountWaived"] == 25.0

    waiver = (await db_session.execute(select(DeductionWaiver))).scalar_one()
    await db_session.refresh(waiver)
    assert Decimal(str(waiver.original_amount)) == Decimal("25")


@pytest.mark.asyncio
async def test_insert_race_is_absorbed(db_session: AsyncSession, school: School, admin: User) -> None:
    """The second insert for the same natural key reports a no-op instead of failing the batch."""
    db_session.add(Teacher(id="T1", school_id=school.id, name="Teacher One"))
    await db_session.commit()

    kwargs = dict(
        school_id=school.id,
        teacher_id="T1",
        deduction_type=DeductionType.ABSENCE,
        day=MISSED_MONDAY,
        amount=Decimal("25"),
        reason="Outage",
        admin_id=admin.id,
    )
    assert await service._insert_waiver(db_session, **kwargs) is True
    assert await service._insert_waiver(db_session, **kwargs) is False
    await db_session.commit()

    assert await _waiver_count(db_session) == 1


@pytest.mark.asyncio
async def test_audit_entry_written(
    client: AsyncClient, db_session: AsyncSession, school: School, admin: User, auth_headers: Dict[str, str]
) -> None:
    await _seed_teacher_with_student(db_session, school)
    long_reason = "x" * 300

    await client.post(URL, json=_payload(reason=long_reason), headers=auth_headers)

    entries = (await db_session.execute(select(AuditLog))).scalars().all()
    assert len(entries) == 1
    entry = entries[0]
    assert entry.action_type == "deduction_adjustment"
    assert entry.admin_id == admin.id
    assert entry.school_id == school.id
    assert len(entry.details) <= 500
    details = json.loads(entry.details)
    assert details["recordsAffected"] == 1
    assert details["reason"] == "x" * 100


@pytest.mark.asyncio
async def test_student_filter_limits_waiver(
    client: AsyncClient, db_session: AsyncSession, school: School, auth_headers: Dict[str, str]
) -> None:
    await _seed_teacher_with_student(db_session, school)

    response = await client.post(URL, json=_payload(studentIds=["name:Someone Else"]), headers=auth_headers)
    assert response.json()["recordsAffected"] == 0

    response = await client.post(URL, json=_payload(studentIds="name:Sara"), headers=auth_headers)
    assert response.json()["recordsAffected"] == 1


@pytest.mark.asyncio
async def test_scalar_teacher_id_accepted(
    client: AsyncClient, db_session: AsyncSession, school: School, auth_headers: Dict[str, str]
) -> None:
    await _seed_teacher_with_student(db_session, school)
    response = await client.post(URL, json=_payload(teacherIds="T1"), headers=auth_headers)
    assert response.status_code == 200
    assert response.json()["recordsAffected"] == 1


@pytest.mark.asyncio
async def test_unknown_teacher_skipped(
    client: AsyncClient, db_session: AsyncSession, school: School, auth_headers: Dict[str, str]
) -> None:
    await _seed_teacher_with_student(db_session, school)
    response = await client.post(URL, json=_payload(teacherIds=["NOPE", "T1"]), headers=auth_headers)
    assert response.status_code == 200
    assert response.json()["recordsAffected"] == 1


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "overrides,detail",
    [
        ({"reason": ""}, service.MISSING_FIELDS_MESSAGE),
        ({"teacherIds": []}, service.MISSING_FIELDS_MESSAGE),
        ({"dateRange": None}, service.MISSING_FIELDS_MESSAGE),
        ({"dateRange": {"startDate": "03/03/2025", "endDate": "2025-03-14"}}, service.INVALID_RANGE_MESSAGE),
        ({"dateRange": {"startDate": "2025-03-14", "endDate": "2025-03-03"}}, service.REVERSED_RANGE_MESSAGE),
        ({"adjustmentType": "waive_everything"}, service.INVALID_TYPE_MESSAGE),
    ],
)
async def test_invalid_requests_rejected_before_any_write(
    client: AsyncClient,
    db_session: AsyncSession,
    school: School,
    auth_headers: Dict[str, str],
    overrides: Dict,
    detail: str,
) -> None:
    await _seed_teacher_with_student(db_session, school)

    response = await client.post(URL, json=_payload(**overrides), headers=auth_headers)
    assert response.status_code == 400
    assert response.json()["detail"] == detail
    assert await _waiver_count(db_session) == 0


@pytest.mark.asyncio
async def test_unknown_school_is_404(client: AsyncClient, auth_headers: Dict[str, str]) -> None:
    response = await client.post(
        "/api/v1/admin/nowhere/deduction-adjustments", json=_payload(), headers=auth_headers
    )
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_admin_of_other_school_is_403(
    client: AsyncClient, db_session: AsyncSession, school: School, other_auth_headers: Dict[str, str]
) -> None:
    await _seed_teacher_with_student(db_session, school)

    response = await client.post(URL, json=_payload(), headers=other_auth_headers)
    assert response.status_code == 403
    assert response.json()["detail"] == "Unauthorized access to school"

    preview = await client.post(f"{URL}/preview", json=_payload(), headers=other_auth_headers)
    assert preview.status_code == 403
    assert await _waiver_count(db_session) == 0


@pytest.mark.asyncio
async def test_waive_lateness(
    client: AsyncClient, db_session: AsyncSession, school: School, auth_headers: Dict[str, str]
) -> None:
    student = await _seed_teacher_with_student(db_session, school)
    db_session.add(
        LatenessDeductionTier(
            school_id=school.id,
            tier=1,
            start_minute=4,
            end_minute=30,
            deduction_percent=Decimal("20"),
            excused_threshold=3,
        )
    )
    # 10:12 business time on 2025-03-17 (a Monday outside the seeded links)
    db_session.add(
        SessionLink(
            teacher_id="T1",
            student_id=student.id,
            sent_time=datetime(2025, 3, 17, 7, 12, tzinfo=timezone.utc),
        )
    )
    await db_session.commit()

    body = _payload(
        adjustmentType="waive_lateness",
        dateRange={"startDate": "2025-03-17", "endDate": "2025-03-17"},
    )
    first = await client.post(URL, json=body, headers=auth_headers)
    assert first.status_code == 200
    assert first.json()["recordsAffected"] == 1
    assert first.json()["financialImpact"]["totalAmountWaived"] == 6.0  # 30 * 20%

    second = await client.post(URL, json=body, headers=auth_headers)
    assert second.json()["recordsAffected"] == 0

    waiver = (
        await db_session.execute(select(DeductionWaiver).where(DeductionWaiver.deduction_type == "lateness"))
    ).scalar_one()
    assert waiver.deduction_date == date(2025, 3, 17)


@pytest.mark.asyncio
async def test_preview_lists_pending_deductions_only(
    client: AsyncClient, db_session: AsyncSession, school: School, auth_headers: Dict[str, str]
) -> None:
    await _seed_teacher_with_student(db_session, school)
    body = _payload()
    del body["reason"]

    before = await client.post(f"{URL}/preview", json=body, headers=auth_headers)
    assert before.status_code == 200
    data = before.json()
    assert data["summary"]["totalRecords"] == 1
    assert data["summary"]["totalAbsenceAmount"] == 25.0
    assert data["summary"]["teacherBreakdown"][0]["teacherId"] == "T1"
    record = data["records"][0]
    assert record["date"] == "2025-03-10"
    assert record["studentName"] == "Sara"
    assert record["source"] == "computed"
    assert await _waiver_count(db_session) == 0

    await client.post(URL, json=_payload(), headers=auth_headers)

    after = await client.post(f"{URL}/preview", json=body, headers=auth_headers)
    assert after.json()["summary"]["totalRecords"] == 0


@pytest.mark.asyncio
async def test_repeated_teacher_id_counted_once(
    client: AsyncClient, db_session: AsyncSession, school: School, auth_headers: Dict[str, str]
) -> None:
    await _seed_teacher_with_student(db_session, school)

    response = await client.post(URL, json=_payload(teacherIds=["T1", " T1", "T1"]), headers=auth_headers)
    data = response.json()
    assert data["recordsAffected"] == 1
    assert data["financialImpact"] == {"totalAmountWaived": 25.0, "affectedTeachers": 1}
    assert await _waiver_count(db_session) == 1

    body = _payload(teacherIds=["T1", "T1"], dateRange={"startDate": "2025-03-03", "endDate": "2025-03-14"})
    preview = await client.post(f"{URL}/preview", json=body, headers=auth_headers)
    assert preview.json()["summary"]["totalRecords"] == 0


@pytest.mark.asyncio
async def test_preview_counts_repeated_teacher_once(
    client: AsyncClient, db_session: AsyncSession, school: School, auth_headers: Dict[str, str]
) -> None:
    await _seed_teacher_with_student(db_session, school)

    preview = await client.post(f"{URL}/preview", json=_payload(teacherIds=["T1", "T1"]), headers=auth_headers)
    summary = preview.json()["summary"]
    assert summary["totalRecords"] == 1
    assert summary["totalAmount"] == 25.0
    assert len(summary["teacherBreakdown"]) == 1


@pytest.mark.asyncio
async def test_lateness_covers_current_student_without_open_window(
    client: AsyncClient, db_session: AsyncSession, school: School, auth_headers: Dict[str, str]
) -> None:
    """A student currently with T1 is checked for lateness even if the assignment row was closed."""
    db_session.add(Teacher(id="T1", school_id=school.id, name="Teacher One"))
    db_session.add(
        LatenessDeductionTier(
            school_id=school.id,
            tier=1,
            start_minute=4,
            end_minute=30,
            deduction_percent=Decimal("20"),
            excused_threshold=3,
        )
    )
    student = Student(school_id=school.id, name="Hana", package=None, status="Active", teacher_id="T1")
    db_session.add(student)
    await db_session.flush()
    db_session.add(
        TeacherAssignment(
            school_id=school.id,
            teacher_id="T1",
            student_id=student.id,
            time_slot="10:00 AM",
            day_package="MWF",
            occupied_at=datetime(2025, 1, 1, tzinfo=timezone.utc),
            end_at=datetime(2025, 2, 28, tzinfo=timezone.utc),
        )
    )
    # 10:12 business time on Monday 2025-03-17
    db_session.add(
        SessionLink(
            teacher_id="T1",
            student_id=student.id,
            sent_time=datetime(2025, 3, 17, 7, 12, tzinfo=timezone.utc),
        )
    )
    await db_session.commit()

    body = _payload(
        adjustmentType="waive_lateness",
        dateRange={"startDate": "2025-03-17", "endDate": "2025-03-17"},
    )
    response = await client.post(URL, json=body, headers=auth_headers)
    assert response.status_code == 200
    assert response.json()["recordsAffected"] == 1
    assert response.json()["financialImpact"]["totalAmountWaived"] == 6.0  # default base 30 * 20%

    waiver = (await db_session.execute(select(DeductionWaiver))).scalar_one()
    assert waiver.reason == "Platform outage | Hana: 12 min late (tier 1): 6"
