"""
Donor API routes.

Endpoints:
    GET  /donor/dashboard                        — Eligibility, stats and matching requests
    PUT  /donor/availability                     — Toggle availability
    GET  /donor/emergency-requests               — Open requests matching the donor
    POST /donor/emergency-requests/{id}/respond  — Respond to a request
    GET  /donor/donations                        — Donation history
    GET  /donor/responses                        — Responses the donor has made
    PUT  /donor/medical-info                     — Update weight, conditions, last donation
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request, status
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.ext.asyncio import AsyncSession

from bloodfinder.db.postgres import get_db
from bloodfinder.models.user import User, UserRole
from bloodfinder.models.emergency_request import ResponseType
from bloodfinder.models.donation import DonationType
from bloodfinder.api.middleware.auth import require_role, require_approved_donor
from bloodfinder.api.middleware.audit import log_audit
from bloodfinder.api.middleware.rate_limit import rate_limit
from bloodfinder.services import analytics_service, donation_service, emergency_service, user_service

router = APIRouter()


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------

class AvailabilityRequest(BaseModel):
    is_available: bool
    available_from: Optional[datetime] = None


class DonorResponseRequest(BaseModel):
    response_type: ResponseType = ResponseType.INTERESTED
    scheduled_time: Optional[datetime] = None
    notes: Optional[str] = Field(default=None, max_length=500)

    @field_validator("response_type")
    @classmethod
    def donor_settable(cls, v: ResponseType) -> ResponseType:
        if v not in emergency_service.DONOR_RESPONSE_TYPES:
            raise ValueError("response_type must be interested or confirmed")
        return v


class MedicalInfoRequest(BaseModel):
    weight_kg: Optional[float] = Field(default=None, gt=0, le=300)
    last_donation_date: Optional[datetime] = None
    last_donation_type: Optional[DonationType] = None
    medical_conditions: Optional[list[str]] = None
    medications: Optional[list[str]] = None


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.get("/donor/dashboard")
async def dashboard(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_role(UserRole.DONOR)),
):
    return await analytics_service.get_donor_dashboard(db, current_user)


@router.put("/donor/availability")
async def update_availability(
    payload: AvailabilityRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_role(UserRole.DONOR)),
):
    result = await user_service.set_availability(
        db, current_user, payload.is_available, emergency_service.as_utc_naive(payload.available_from),
    )
    await log_audit(
        action="update",
        resource="availability",
        resource_id=current_user.id,
        user=current_user,
        details={"is_available": payload.is_available},
        request=request,
        db=db,
    )
    return result


@router.get("/donor/emergency-requests")
async def matching_requests(
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_approved_donor),
):
    return await emergency_service.list_requests_for_donor(db, current_user, limit=limit, offset=offset)


@router.post(
    "/donor/emergency-requests/{request_id}/respond",
    status_code=status.HTTP_201_CREATED,
    dependencies=[rate_limit(max_requests=30, window_seconds=3600, key_prefix="respond")],
)
async def respond(
    request_id: UUID,
    payload: DonorResponseRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_approved_donor),
):
    result = await emergency_service.add_donor_response(
        db,
        request_id=request_id,
        donor=current_user,
        response_type=payload.response_type,
        scheduled_time=payload.scheduled_time,
        notes=payload.notes,
    )
    await log_audit(
        action="respond",
        resource="emergency_request",
        resource_id=request_id,
        user=current_user,
        details={"response_type": payload.response_type.value},
        request=request,
        db=db,
    )
    return result


@router.get("/donor/donations")
async def donations(
    status_filter: Optional[str] = Query(default=None, alias="status"),
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_role(UserRole.DONOR)),
):
    return await donation_service.list_donor_donations(
        db, current_user.id, status=status_filter, limit=limit, offset=offset,
    )


@router.get("/donor/responses")
async def responses(
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_role(UserRole.DONOR)),
):
    return await emergency_service.list_donor_responses(db, current_user.id, limit=limit, offset=offset)


@router.put("/donor/medical-info")
async def update_medical_info(
    payload: MedicalInfoRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_role(UserRole.DONOR)),
):
    changes = payload.model_dump(exclude_unset=True)
    if "last_donation_date" in changes:
        changes["last_donation_date"] = emergency_service.as_utc_naive(changes["last_donation_date"])
    result = await user_service.update_medical_info(db, current_user, changes)
    await log_audit(
        action="update",
        resource="medical_info",
        resource_id=current_user.id,
        user=current_user,
        details={"fields": sorted(changes)},
        request=request,
        db=db,
    )
    return result
