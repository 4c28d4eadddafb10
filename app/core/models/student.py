from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.db.session import Base


class Student(Base):
    __tablename__ = "students"
    __table_args__ = {"schema": "school"}

    id = Column(Integer, primary_key=True, autoincrement=True)
    school_id = Column(UUID(as_uuid=True), ForeignKey("core.schools.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    # Package name; keys the per-package deduction rates
    package = Column(String(100), nullable=True)
    status = Column(String(30), nullable=False, default="active")  # active, not yet, leave, ...
    # Current teacher; history lives in teacher_assignments / teacher_change_events
    teacher_id = Column(String(64), ForeignKey("school.teachers.id", ondelete="SET NULL"), nullable=True)
    stripe_customer_id = Column(String(100), nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    assignments = relationship("TeacherAssignment", back_populates="student", cascade="all, delete-orphan")
