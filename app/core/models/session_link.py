from sqlalchemy import Column, DateTime, ForeignKey, Integer, String

from app.db.session import Base


class SessionLink(Base):
    """Meeting link sent by a teacher to a student. Its presence on a day means the class happened."""

    __tablename__ = "session_links"
    __table_args__ = {"schema": "school"}

    id = Column(Integer, primary_key=True, autoincrement=True)
    teacher_id = Column(String(64), ForeignKey("school.teachers.id", ondelete="CASCADE"), nullable=False, index=True)
    student_id = Column(Integer, ForeignKey("school.students.id", ondelete="CASCADE"), nullable=False, index=True)
    sent_time = Column(DateTime(timezone=True), nullable=True, index=True)
    link = Column(String(500), nullable=True)
