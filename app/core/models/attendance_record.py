from sqlalchemy import Column, Date, ForeignKey, Integer, String, UniqueConstraint

from app.db.session import Base


class AttendanceRecord(Base):
    """Explicit per-day attendance mark. "Permission" excuses the day."""

    __tablename__ = "attendance_records"
    __table_args__ = (
        UniqueConstraint("student_id", "date", name="uq_attendance_student_date"),
        {"schema": "school"},
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    student_id = Column(Integer, ForeignKey("school.students.id", ondelete="CASCADE"), nullable=False, index=True)
    date = Column(Date, nullable=False)  # business date
    status = Column(String(20), nullable=False)  # Present, Absent, Permission
