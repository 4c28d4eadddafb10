"""
Finalize a paid provider subscription locally: upsert the student subscription and record
one payment. Idempotent on the payment transaction id.
"""

import calendar
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.app_logger import get_logger
from app.core.enums import PaymentIntent, PaymentSource
from app.core.exceptions import NotFoundError, PaymentProviderError, ValidationError
from app.core.models import Payment, Student, StudentSubscription, SubscriptionPackage

from .provider import StripeClient

logger = get_logger(__name__)


@dataclass
class FinalizeResult:
    subscription: StudentSubscription
    payment: Optional[Payment]
    already_processed: bool = False


def _parse_int(value: Any) -> Optional[int]:
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return None


def _from_unix(value: Any) -> Optional[datetime]:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    return None


def add_months(value: datetime, months: int) -> datetime:
    """Calendar month arithmetic; the day is clamped to the target month's length."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


async def get_local_subscription(db: AsyncSession, stripe_subscription_id: str) -> Optional[StudentSubscription]:
    result = await db.execute(
        select(StudentSubscription).where(StudentSubscription.stripe_subscription_id == stripe_subscription_id)
    )
    return result.scalar_one_or_none()


def subscription_ids_from_metadata(metadata: Optional[Dict[str, Any]]):
    metadata = metadata or {}
    return _parse_int(metadata.get("studentId")), _parse_int(metadata.get("packageId"))


async def finalize_subscription_payment(
    db: AsyncSession,
    provider: StripeClient,
    stripe_subscription_id: str,
    *,
    session_id: Optional[str] = None,
    invoice_amount: Optional[Decimal] = None,
    idempotency_key: Optional[str] = None,
) -> FinalizeResult:
    """
    Attach the provider subscription to the student named in its metadata and record the payment.

    Raises ValidationError for missing/foreign metadata, NotFoundError for unknown student or
    package, PaymentProviderError when the provider cannot be read.
    """
    key = idempotency_key or f"finalize_{stripe_subscription_id}_{session_id or int(time.time())}"

    existing_payment = (
        await db.execute(select(Payment).where(Payment.transaction_id == key))
    ).scalar_one_or_none()
    if existing_payment is not None:
        local = await get_local_subscription(db, stripe_subscription_id)
        if local is not None:
            logger.info("Finalization %s already processed (payment %s)", key, existing_payment.id)
            return FinalizeResult(subscription=local, payment=existing_payment, already_processed=True)

    subscription = await provider.retrieve_subscription(stripe_subscription_id)
    student_id, package_id = subscription_ids_from_metadata(subscription.get("metadata"))
    if not student_id or not package_id:
        raise ValidationError(
            f"Missing studentId or packageId in subscription metadata for {stripe_subscription_id}"
        )

    package = await db.get(SubscriptionPackage, package_id)
    if package is None:
        raise NotFoundError(f"Package {package_id} not found")
    student = await db.get(Student, student_id)
    if student is None:
        raise NotFoundError(f"Student {student_id} not found")
    if package.school_id != student.school_id:
        raise ValidationError(f"Package {package_id} does not belong to the student's school")

    local = await get_local_subscription(db, stripe_subscription_id)
    if local is not None and local.student_id != student_id:
        raise ValidationError(
            f"Subscription {stripe_subscription_id} already exists for student {local.student_id}. "
            f"Cannot assign to student {student_id}."
        )

    now = datetime.now(timezone.utc)
    period_start = _from_unix(subscription.get("current_period_start")) or now
    period_end = _from_unix(subscription.get("current_period_end"))
    end_date = period_end or add_months(period_start, package.duration or 1)
    provider_status = subscription.get("status") or "active"

    if invoice_amount is None or invoice_amount <= 0:
        try:
            invoice_amount = await provider.latest_invoice_amount(stripe_subscription_id)
        except PaymentProviderError as e:
            logger.warning(
                "Could not read invoice for %s, using package price: %s", stripe_subscription_id, e.message
            )
            invoice_amount = None
    amount = invoice_amount if invoice_amount and invoice_amount > 0 else Decimal(str(package.price))

    try:
        if local is None:
            local = StudentSubscription(
                student_id=student_id,
                package_id=package_id,
                stripe_subscription_id=stripe_subscription_id,
                stripe_customer_id=subscription.get("customer"),
                status=provider_status,
                start_date=period_start,
                end_date=end_date,
                next_billing_date=period_end,
            )
            db.add(local)
        else:
            # Never change the student of an existing link
            local.status = provider_status
            local.end_date = end_date
            local.next_billing_date = period_end
            local.updated_at = datetime.utcnow()
        await db.flush()

        payment = Payment(
            student_id=student_id,
            subscription_id=local.id,
            paid_amount=amount,
            currency=package.currency,
            transaction_id=key,
            reason=f"Subscription payment: {package.name}",
            source=PaymentSource.STRIPE.value,
            intent=PaymentIntent.SUBSCRIPTION.value,
            status="approved",
            payment_date=now,
        )
        db.add(payment)
        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        # Concurrent finalization holds the subscription or the transaction id
        local = await get_local_subscription(db, stripe_subscription_id)
        if local is not None and local.student_id == student_id:
            logger.info("Concurrent finalization won for %s", stripe_subscription_id)
            return FinalizeResult(subscription=local, payment=None, already_processed=True)
        raise ValidationError(f"Subscription {stripe_subscription_id} could not be linked") from e

    await db.refresh(local)
    logger.info(
        "Finalized subscription %s for student %s (package %s, amount %s)",
        stripe_subscription_id,
        student_id,
        package_id,
        amount,
    )
    return FinalizeResult(subscription=local, payment=payment)
