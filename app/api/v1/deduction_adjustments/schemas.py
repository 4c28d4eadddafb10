from datetime import date
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """JSON bodies use camelCase; Python attributes stay snake_case."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _as_string_list(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, (str, int)):
        value = [value]
    if isinstance(value, (list, tuple)):
        # First occurrence wins; a repeated id must not be processed twice
        cleaned = [str(v).strip() for v in value if v is not None and str(v).strip()]
        return list(dict.fromkeys(cleaned))
    return value


class DateRange(CamelModel):
    # Kept as text: unparseable values are reported as a 400 by the service
    start_date: Optional[str] = None
    end_date: Optional[str] = None


class AdjustmentRequest(CamelModel):
    adjustment_type: Optional[str] = None
    date_range: Optional[DateRange] = None
    teacher_ids: List[str] = Field(default_factory=list)
    time_slots: Optional[List[str]] = None
    student_ids: Optional[List[str]] = None
    reason: Optional[str] = None

    @field_validator("teacher_ids", mode="before")
    @classmethod
    def coerce_teacher_ids(cls, v: Any) -> Any:
        return _as_string_list(v) or []

    @field_validator("time_slots", "student_ids", mode="before")
    @classmethod
    def coerce_lists(cls, v: Any) -> Any:
        return _as_string_list(v)


class FinancialImpact(CamelModel):
    total_amount_waived: float
    affected_teachers: int


class AdjustmentResponse(CamelModel):
    success: bool
    message: str
    records_affected: int
    financial_impact: FinancialImpact


class PreviewRecord(CamelModel):
    id: str
    teacher_id: str
    teacher_name: str
    day: date = Field(alias="date")
    type: str  # Absence | Lateness
    deduction: float
    source: str  # computed | database
    student_id: Optional[int] = None
    student_name: Optional[str] = None
    student_package: Optional[str] = None
    lateness_minutes: Optional[int] = None
    time_slot: Optional[str] = None
    tier: Optional[int] = None
    permitted: Optional[bool] = None
    details: str


class TeacherBreakdown(CamelModel):
    teacher_id: str
    teacher_name: str
    record_count: int
    total_deduction: float


class PreviewSummary(CamelModel):
    total_records: int
    total_teachers: int
    total_amount: float
    total_lateness_amount: float
    total_absence_amount: float
    teacher_breakdown: List[TeacherBreakdown]


class PreviewResponse(CamelModel):
    records: List[PreviewRecord]
    summary: PreviewSummary
