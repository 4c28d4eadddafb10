"""Per-school deduction configuration: package base amounts, lateness tiers, key/value settings."""

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Integer, Numeric, String, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID

from app.db.session import Base


class PackageDeductionRate(Base):
    __tablename__ = "package_deduction_rates"
    __table_args__ = (
        UniqueConstraint("school_id", "package_name", name="uq_package_deduction_school_package"),
        {"schema": "payroll"},
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    school_id = Column(UUID(as_uuid=True), ForeignKey("core.schools.id", ondelete="CASCADE"), nullable=False, index=True)
    package_name = Column(String(100), nullable=False)
    lateness_base_amount = Column(Numeric(12, 2), nullable=False)
    absence_base_amount = Column(Numeric(12, 2), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class LatenessDeductionTier(Base):
    """Minutes-late band [start_minute, end_minute] -> percent of the package lateness base."""

    __tablename__ = "lateness_deduction_tiers"
    __table_args__ = {"schema": "payroll"}

    id = Column(Integer, primary_key=True, autoincrement=True)
    school_id = Column(UUID(as_uuid=True), ForeignKey("core.schools.id", ondelete="CASCADE"), nullable=False, index=True)
    tier = Column(Integer, nullable=False, default=1)
    start_minute = Column(Integer, nullable=False)
    end_minute = Column(Integer, nullable=False)
    deduction_percent = Column(Numeric(5, 2), nullable=False)
    # Minutes of lateness that are never penalised; the minimum across tiers applies
    excused_threshold = Column(Integer, nullable=True)


class SchoolSetting(Base):
    __tablename__ = "school_settings"
    __table_args__ = (
        UniqueConstraint("school_id", "key", name="uq_school_setting_key"),
        {"schema": "core"},
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    school_id = Column(UUID(as_uuid=True), ForeignKey("core.schools.id", ondelete="CASCADE"), nullable=False, index=True)
    key = Column(String(100), nullable=False)
    value = Column(String(500), nullable=True)
