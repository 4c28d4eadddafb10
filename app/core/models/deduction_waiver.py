"""
Deduction waiver: an admin override cancelling one day's computed deduction for a teacher.
At most one row per (teacher, type, business date, school); the unique constraint is the
serialization point between concurrent adjustment requests.
"""

import uuid
from datetime import datetime

from sqlalchemy import Column, Date, DateTime, ForeignKey, Numeric, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID

from app.db.session import Base


class DeductionWaiver(Base):
    __tablename__ = "deduction_waivers"
    __table_args__ = (
        UniqueConstraint(
            "teacher_id", "deduction_type", "deduction_date", "school_id",
            name="uq_deduction_waiver_teacher_type_date_school",
        ),
        {"schema": "payroll"},
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    school_id = Column(UUID(as_uuid=True), ForeignKey("core.schools.id", ondelete="CASCADE"), nullable=False, index=True)
    teacher_id = Column(String(64), ForeignKey("school.teachers.id", ondelete="CASCADE"), nullable=False, index=True)
    deduction_type = Column(String(20), nullable=False)  # absence, lateness
    deduction_date = Column(Date, nullable=False)  # business date
    original_amount = Column(Numeric(12, 2), nullable=False)
    reason = Column(String(500), nullable=False)
    admin_id = Column(UUID(as_uuid=True), ForeignKey("auth.users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
