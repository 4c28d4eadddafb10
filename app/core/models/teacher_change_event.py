from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.dialects.postgresql import UUID

from app.db.session import Base


class TeacherChangeEvent(Base):
    """Append-only log of teacher changes for a student."""

    __tablename__ = "teacher_change_events"
    __table_args__ = {"schema": "school"}

    id = Column(Integer, primary_key=True, autoincrement=True)
    school_id = Column(UUID(as_uuid=True), ForeignKey("core.schools.id", ondelete="CASCADE"), nullable=False, index=True)
    student_id = Column(Integer, ForeignKey("school.students.id", ondelete="CASCADE"), nullable=False, index=True)
    old_teacher_id = Column(String(64), nullable=True)
    new_teacher_id = Column(String(64), nullable=False)
    change_date = Column(DateTime(timezone=True), nullable=False)
    change_reason = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
