"""Deduction adjustments API router (admin payroll waivers)."""

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.rbac import require_admin
from app.auth.schemas import CurrentUser
from app.core.exceptions import ServiceError
from app.db.session import get_db

from . import service
from .schemas import AdjustmentRequest, AdjustmentResponse, PreviewResponse

router = APIRouter(prefix="/api/v1/admin/{school_slug}/deduction-adjustments", tags=["deduction-adjustments"])


@router.post("", response_model=AdjustmentResponse, status_code=status.HTTP_200_OK)
async def apply_deduction_adjustment(
    school_slug: str,
    payload: AdjustmentRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_admin),
):
    """Waive absence or lateness deductions for teachers over a date range. Safe to repeat."""
    try:
        school = await service.get_school_for_admin(db, school_slug, current_user)
        return await service.apply_adjustment(db, school, current_user, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/preview", response_model=PreviewResponse)
async def preview_deduction_adjustment(
    school_slug: str,
    payload: AdjustmentRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_admin),
):
    try:
        school = await service.get_school_for_admin(db, school_slug, current_user)
        return await service.preview_adjustment(db, school, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
