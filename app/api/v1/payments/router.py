"""Payments API router (provider checkout verification)."""

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import PaymentProviderError, ServiceError
from app.db.session import get_db

from . import service
from .provider import StripeClient, get_payment_provider
from .schemas import VerifySessionRequest, VerifySessionResponse

router = APIRouter(prefix="/api/v1/payments", tags=["payments"])


@router.post(
    "/stripe/verify-session",
    response_model=VerifySessionResponse,
    response_model_exclude_none=True,
)
async def verify_session(
    payload: VerifySessionRequest,
    db: AsyncSession = Depends(get_db),
    provider: StripeClient = Depends(get_payment_provider),
):
    """Verify a Stripe checkout (or payment-link purchase) and link its subscription to the student."""
    try:
        result = await service.verify_subscription(db, provider, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except PaymentProviderError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=e.message)

    if result.error:
        return JSONResponse(
            status_code=status.HTTP_502_BAD_GATEWAY,
            content=result.model_dump(mode="json", by_alias=True, exclude_none=True),
        )
    return result
