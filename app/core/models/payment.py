"""Payment: money received for a student (subscription charges from the provider, manual deposits)."""

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Integer, Numeric, String
from sqlalchemy.orm import relationship

from app.db.session import Base


class Payment(Base):
    __tablename__ = "payments"
    __table_args__ = {"schema": "billing"}

    id = Column(Integer, primary_key=True, autoincrement=True)
    student_id = Column(Integer, ForeignKey("school.students.id", ondelete="CASCADE"), nullable=False, index=True)
    subscription_id = Column(
        Integer,
        ForeignKey("billing.student_subscriptions.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    paid_amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(10), nullable=True)
    # Idempotency key for provider-driven payments; never reused
    transaction_id = Column(String(255), unique=True, nullable=True)
    reason = Column(String(255), nullable=True)
    source = Column(String(20), nullable=False)  # stripe, manual
    intent = Column(String(20), nullable=False)  # subscription, tuition
    status = Column(String(20), nullable=False, default="approved")
    payment_date = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    subscription = relationship("StudentSubscription")
