import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.db.session import Base


class School(Base):
    """
    School (tenant) in the multi-tenant platform.

    - id: Internal primary key (UUID). Used for all FKs and internal logic.
    - slug: External identifier used in admin URLs (e.g. /admin/{slug}/...). Never used as FK.
    """

    __tablename__ = "schools"
    __table_args__ = {"schema": "core"}

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    slug = Column(String(100), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    status = Column(String(20), nullable=False, default="ACTIVE")
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    users = relationship("User", back_populates="school", cascade="all, delete-orphan")
