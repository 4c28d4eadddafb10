from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, String
from sqlalchemy.dialects.postgresql import UUID

from app.db.session import Base


class Teacher(Base):
    """Teacher. Primary key is the school's own teacher code (e.g. "U123")."""

    __tablename__ = "teachers"
    __table_args__ = {"schema": "school"}

    id = Column(String(64), primary_key=True)
    school_id = Column(UUID(as_uuid=True), ForeignKey("core.schools.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    status = Column(String(20), nullable=False, default="active")
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
