"""
Donation record routes.

Endpoints:
    GET /donations/{id}         — Donation detail (donor, recipient or admin)
    PUT /donations/{id}/status  — Move a donation along its lifecycle
"""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from bloodfinder.db.postgres import get_db
from bloodfinder.models.user import User
from bloodfinder.models.donation import DonationStatus
from bloodfinder.api.middleware.auth import get_current_user
from bloodfinder.api.middleware.audit import log_audit
from bloodfinder.services import donation_service
from bloodfinder.services.errors import NotFoundError

router = APIRouter()


class DonationStatusUpdate(BaseModel):
    status: DonationStatus
    notes: Optional[str] = Field(default=None, max_length=500)


@router.get("/donations/{donation_id}")
async def get_donation(
    donation_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    donation = await donation_service.get_donation(db, donation_id)
    if not donation_service.can_view(donation, current_user):
        raise NotFoundError("Donation not found")
    return donation_service.donation_to_dict(donation)


@router.put("/donations/{donation_id}/status")
async def update_donation_status(
    donation_id: UUID,
    payload: DonationStatusUpdate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Recipients and admins drive donations; donors may only cancel."""
    result = await donation_service.update_status(
        db,
        donation_id=donation_id,
        actor=current_user,
        new_status=payload.status,
        notes=payload.notes,
    )
    await log_audit(
        action="status_change",
        resource="donation",
        resource_id=donation_id,
        user=current_user,
        details={"status": payload.status.value},
        request=request,
        db=db,
    )
    return result
