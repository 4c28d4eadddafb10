"""Persisted absence penalties entered before computed absences existed."""

from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, Numeric, String
from sqlalchemy.dialects.postgresql import UUID

from app.db.session import Base


class AbsenceRecord(Base):
    __tablename__ = "absence_records"
    __table_args__ = {"schema": "payroll"}

    id = Column(Integer, primary_key=True, autoincrement=True)
    school_id = Column(UUID(as_uuid=True), ForeignKey("core.schools.id", ondelete="CASCADE"), nullable=False, index=True)
    teacher_id = Column(String(64), ForeignKey("school.teachers.id", ondelete="CASCADE"), nullable=False, index=True)
    class_date = Column(DateTime(timezone=True), nullable=False)
    deduction_applied = Column(Numeric(12, 2), nullable=False, default=0)
    permitted = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
