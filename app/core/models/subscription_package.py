from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, Numeric, String
from sqlalchemy.dialects.postgresql import UUID

from app.db.session import Base


class SubscriptionPackage(Base):
    """Tuition subscription package a student pays for through the payment provider."""

    __tablename__ = "subscription_packages"
    __table_args__ = {"schema": "billing"}

    id = Column(Integer, primary_key=True, autoincrement=True)
    school_id = Column(UUID(as_uuid=True), ForeignKey("core.schools.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    price = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(10), nullable=False, default="USD")
    duration = Column(Integer, nullable=False, default=1)  # months
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
