"""
Occupied time slot: a period during which a teacher is responsible for a student's slot.
Closed (end_at set) on reassignment; closed rows are kept for backdated payroll.
"""

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.db.session import Base


class TeacherAssignment(Base):
    __tablename__ = "teacher_assignments"
    __table_args__ = {"schema": "school"}

    id = Column(Integer, primary_key=True, autoincrement=True)
    school_id = Column(UUID(as_uuid=True), ForeignKey("core.schools.id", ondelete="CASCADE"), nullable=False, index=True)
    teacher_id = Column(String(64), ForeignKey("school.teachers.id", ondelete="CASCADE"), nullable=False, index=True)
    student_id = Column(Integer, ForeignKey("school.students.id", ondelete="CASCADE"), nullable=False, index=True)
    time_slot = Column(String(50), nullable=True)  # "4:00 PM" or "16:00"
    day_package = Column(String(100), nullable=True)  # "MWF", "All Days", "Monday, Thursday"
    occupied_at = Column(DateTime(timezone=True), nullable=True)
    end_at = Column(DateTime(timezone=True), nullable=True)

    student = relationship("Student", back_populates="assignments")
