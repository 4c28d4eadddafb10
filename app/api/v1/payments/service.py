"""
Subscription finalization guard: link a provider subscription to exactly one local student.

Any ambiguity (metadata naming another student, a local link to another student) is refused
before anything is written.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.app_logger import get_logger
from app.core.exceptions import NotFoundError, PaymentProviderError, ValidationError
from app.core.models import Student, StudentSubscription

from .finalize import finalize_subscription_payment, get_local_subscription, subscription_ids_from_metadata
from .provider import StripeClient
from .schemas import SubscriptionInfo, VerifySessionRequest, VerifySessionResponse

logger = get_logger(__name__)

SEARCH_WINDOW_MINUTES = 30
SEARCH_WINDOW_NO_CUSTOMER_MINUTES = 15
LOCAL_FALLBACK_WINDOW = timedelta(hours=24)


def _subscription_info(local: StudentSubscription) -> SubscriptionInfo:
    return SubscriptionInfo(
        id=local.id,
        status=local.status,
        stripe_subscription_id=local.stripe_subscription_id,
        package_id=local.package_id,
        start_date=local.start_date,
        end_date=local.end_date,
        next_billing_date=local.next_billing_date,
    )


async def _find_by_metadata(
    db: AsyncSession,
    provider: StripeClient,
    student: Student,
    package_id: int,
    now: datetime,
) -> Optional[Dict[str, Any]]:
    window = SEARCH_WINDOW_MINUTES if student.stripe_customer_id else SEARCH_WINDOW_NO_CUSTOMER_MINUTES
    created_gte = int((now - timedelta(minutes=window)).timestamp())
    candidates: List[Dict[str, Any]] = await provider.list_subscriptions(created_gte=created_gte)
    logger.debug("Checking %d recent subscription(s) for student %s", len(candidates), student.id)

    # 1. Metadata names this student and this package
    for sub in candidates:
        md_student, md_package = subscription_ids_from_metadata(sub.get("metadata"))
        if md_student == student.id and md_package == package_id:
            return sub

    # 2. Metadata names this package and no student, and nobody else holds it locally
    for sub in candidates:
        md_student, md_package = subscription_ids_from_metadata(sub.get("metadata"))
        if md_package != package_id:
            continue
        if md_student is not None:
            logger.debug("Skipping %s: metadata names student %s", sub.get("id"), md_student)
            continue
        local = await get_local_subscription(db, sub["id"])
        if local is not None and local.student_id != student.id:
            logger.debug("Skipping %s: linked to student %s", sub.get("id"), local.student_id)
            continue
        return sub

    # 3. A local link for this student and package created recently
    result = await db.execute(
        select(StudentSubscription)
        .where(
            StudentSubscription.student_id == student.id,
            StudentSubscription.package_id == package_id,
            StudentSubscription.created_at >= now - LOCAL_FALLBACK_WINDOW,
            StudentSubscription.stripe_subscription_id.is_not(None),
        )
        .order_by(StudentSubscription.created_at.desc())
        .limit(1)
    )
    local = result.scalar_one_or_none()
    if local is not None:
        return await provider.retrieve_subscription(local.stripe_subscription_id)
    return None


async def _guard_and_finalize(
    db: AsyncSession,
    provider: StripeClient,
    subscription: Dict[str, Any],
    student_id: Optional[int],
    package_id: Optional[int],
    *,
    session_id: Optional[str] = None,
    invoice_amount: Optional[Decimal] = None,
    idempotency_key: Optional[str] = None,
) -> VerifySessionResponse:
    subscription_id = subscription["id"]
    md_student, md_package = subscription_ids_from_metadata(subscription.get("metadata"))

    if student_id and md_student and md_student != student_id:
        logger.warning(
            "Refusing subscription %s for student %s: metadata names student %s",
            subscription_id,
            student_id,
            md_student,
        )
        raise ValidationError(
            f"Subscription {subscription_id} belongs to student {md_student}. Cannot assign to student {student_id}."
        )

    final_student = student_id or md_student
    final_package = package_id or md_package

    local = await get_local_subscription(db, subscription_id)
    if local is not None:
        if final_student and local.student_id != final_student:
            logger.warning(
                "Refusing subscription %s for student %s: linked to student %s",
                subscription_id,
                final_student,
                local.student_id,
            )
            raise ValidationError(
                f"Subscription {subscription_id} already exists for student {local.student_id}. "
                f"Cannot assign to student {final_student}."
            )
        return VerifySessionResponse(
            verified=True,
            finalized=True,
            message="Subscription already finalized",
            subscription=_subscription_info(local),
        )

    if not final_student or not final_package:
        missing = [name for name, value in (("studentId", final_student), ("packageId", final_package)) if not value]
        logger.warning("Cannot finalize %s - missing: %s", subscription_id, " and ".join(missing))
        return VerifySessionResponse(
            verified=True,
            finalized=False,
            requires_metadata=True,
            message=f"Cannot finalize - missing: {' and '.join(missing)}",
        )

    if md_student is None or md_package is None:
        try:
            await provider.update_subscription_metadata(
                subscription_id,
                {"studentId": str(final_student), "packageId": str(final_package)},
            )
        except PaymentProviderError as e:
            logger.warning("Could not update metadata on %s: %s", subscription_id, e.message)

    try:
        result = await finalize_subscription_payment(
            db,
            provider,
            subscription_id,
            session_id=session_id,
            invoice_amount=invoice_amount,
            idempotency_key=idempotency_key,
        )
    except PaymentProviderError as e:
        logger.error("Provider error finalizing %s: %s", subscription_id, e.message)
        return VerifySessionResponse(
            verified=True,
            finalized=False,
            error="Failed to finalize subscription",
            message=e.message,
        )

    return VerifySessionResponse(
        verified=True,
        finalized=True,
        message="Subscription already finalized" if result.already_processed else "Subscription finalized successfully",
        subscription=_subscription_info(result.subscription),
    )


async def _verify_payment_link(
    db: AsyncSession,
    provider: StripeClient,
    student_id: int,
    package_id: int,
    now: datetime,
) -> VerifySessionResponse:
    student = await db.get(Student, student_id)
    if student is None:
        raise ValidationError(f"Student {student_id} not found")

    subscription = await _find_by_metadata(db, provider, student, package_id, now)
    if subscription is None:
        raise NotFoundError("No matching subscription found for this student and package")

    customer = subscription.get("customer")
    if student.stripe_customer_id and customer and customer != student.stripe_customer_id:
        logger.warning(
            "Subscription %s customer %s differs from student %s customer %s",
            subscription.get("id"),
            customer,
            student.id,
            student.stripe_customer_id,
        )

    return await _guard_and_finalize(
        db,
        provider,
        subscription,
        student_id,
        package_id,
        idempotency_key=f"verify_link_{subscription['id']}",
    )


async def _verify_checkout_session(
    db: AsyncSession,
    provider: StripeClient,
    payload: VerifySessionRequest,
) -> VerifySessionResponse:
    session = await provider.retrieve_checkout_session(payload.session_id)
    if session.get("mode") != "subscription":
        return VerifySessionResponse(verified=True, finalized=False, message="Not a subscription checkout")
    if session.get("payment_status") != "paid":
        return VerifySessionResponse(verified=False, finalized=False, message="Payment not completed")

    subscription_ref = session.get("subscription")
    if isinstance(subscription_ref, dict):
        subscription_ref = subscription_ref.get("id")
    if not subscription_ref:
        raise ValidationError("No subscription found in session")

    subscription = await provider.retrieve_subscription(subscription_ref)
    amount_total = session.get("amount_total")
    invoice_amount = Decimal(amount_total) / Decimal("100") if amount_total else None

    return await _guard_and_finalize(
        db,
        provider,
        subscription,
        payload.student_id,
        payload.package_id,
        session_id=session.get("id") or payload.session_id,
        invoice_amount=invoice_amount,
        idempotency_key=f"verify_session_{payload.session_id}",
    )


async def verify_subscription(
    db: AsyncSession,
    provider: StripeClient,
    payload: VerifySessionRequest,
    *,
    now: Optional[datetime] = None,
) -> VerifySessionResponse:
    """Verify a checkout session (or a payment-link purchase) and finalize it for one student."""
    now = now or datetime.now(timezone.utc)
    if not payload.session_id:
        if payload.student_id and payload.package_id:
            return await _verify_payment_link(db, provider, payload.student_id, payload.package_id, now)
        raise ValidationError("Session ID or studentId+packageId is required")
    return await _verify_checkout_session(db, provider, payload)
