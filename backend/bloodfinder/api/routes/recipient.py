"""
Recipient API routes.

Endpoints:
    GET    /recipient/dashboard                              — Request and donation summary
    GET    /recipient/donors/search                          — Find eligible donors
    POST   /recipient/emergency-requests                     — Raise an emergency request
    GET    /recipient/emergency-requests                     — Own requests
    GET    /recipient/emergency-requests/{id}                — Request detail with responses
    PUT    /recipient/emergency-requests/{id}                — Edit a request
    DELETE /recipient/emergency-requests/{id}                — Delete a request
    PUT    /recipient/emergency-requests/{id}/status         — Cancel or complete a request
    POST   /recipient/emergency-requests/{id}/select-donor   — Select a responding donor
    GET    /recipient/donations-received                     — Donations received
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from bloodfinder.db.postgres import get_db
from bloodfinder.models.user import User, UserRole, BloodGroup
from bloodfinder.models.emergency_request import (
    UrgencyLevel, RequestStatus, BloodComponent, Gender,
)
from bloodfinder.api.middleware.auth import require_role
from bloodfinder.api.middleware.audit import log_audit
from bloodfinder.api.middleware.rate_limit import rate_limit
from bloodfinder.services import analytics_service, donation_service, emergency_service, user_service

router = APIRouter()

PHONE_PATTERN = r"^\d{10}$"
PINCODE_PATTERN = r"^\d{6}$"


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------

class EmergencyRequestCreate(BaseModel):
    patient_name: str = Field(..., min_length=1, max_length=100)
    patient_age: int = Field(..., ge=0, le=120)
    patient_gender: Gender
    blood_group: BloodGroup
    contact_number: str = Field(..., pattern=PHONE_PATTERN)
    alternate_contact: Optional[str] = Field(default=None, pattern=PHONE_PATTERN)

    condition: str = Field(..., min_length=1, max_length=500)
    urgency_level: UrgencyLevel
    units_required: int = Field(..., ge=1, le=10)
    component: BloodComponent = BloodComponent.WHOLE_BLOOD
    required_by: datetime
    additional_notes: Optional[str] = Field(default=None, max_length=1000)

    hospital_name: str = Field(..., min_length=1, max_length=200)
    hospital_street: Optional[str] = Field(default=None, max_length=200)
    hospital_city: str = Field(..., min_length=1, max_length=100)
    hospital_pincode: Optional[str] = Field(default=None, pattern=PINCODE_PATTERN)
    hospital_latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    hospital_longitude: Optional[float] = Field(default=None, ge=-180, le=180)
    hospital_contact: str = Field(..., pattern=PHONE_PATTERN)
    doctor_name: str = Field(..., min_length=1, max_length=100)


class EmergencyRequestUpdate(BaseModel):
    patient_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    patient_age: Optional[int] = Field(default=None, ge=0, le=120)
    contact_number: Optional[str] = Field(default=None, pattern=PHONE_PATTERN)
    alternate_contact: Optional[str] = Field(default=None, pattern=PHONE_PATTERN)
    condition: Optional[str] = Field(default=None, min_length=1, max_length=500)
    urgency_level: Optional[UrgencyLevel] = None
    units_required: Optional[int] = Field(default=None, ge=1, le=10)
    required_by: Optional[datetime] = None
    additional_notes: Optional[str] = Field(default=None, max_length=1000)
    hospital_contact: Optional[str] = Field(default=None, pattern=PHONE_PATTERN)
    doctor_name: Optional[str] = Field(default=None, min_length=1, max_length=100)


class RequestStatusUpdate(BaseModel):
    status: RequestStatus
    notes: Optional[str] = Field(default=None, max_length=500)


class SelectDonorRequest(BaseModel):
    donor_id: UUID
    scheduled_date: datetime
    units: Optional[int] = Field(default=None, ge=1, le=10)
    notes: Optional[str] = Field(default=None, max_length=500)


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.get("/recipient/dashboard")
async def dashboard(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_role(UserRole.RECIPIENT)),
):
    return await analytics_service.get_recipient_dashboard(db, current_user)


@router.get("/recipient/donors/search")
async def search_donors(
    blood_group: BloodGroup,
    city: Optional[str] = None,
    eligible_only: bool = True,
    limit: int = Query(default=20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_role(UserRole.RECIPIENT)),
):
    return await user_service.search_donors(
        db, blood_group=blood_group.value, city=city, eligible_only=eligible_only, limit=limit,
    )


@router.post(
    "/recipient/emergency-requests",
    status_code=status.HTTP_201_CREATED,
    dependencies=[rate_limit(max_requests=10, window_seconds=3600, key_prefix="emergency_create")],
)
async def create_emergency_request(
    payload: EmergencyRequestCreate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_role(UserRole.RECIPIENT)),
):
    result = await emergency_service.create_request(db, requester=current_user, data=payload.model_dump())
    await log_audit(
        action="create",
        resource="emergency_request",
        resource_id=result["id"],
        user=current_user,
        details={
            "blood_group": payload.blood_group.value,
            "urgency_level": payload.urgency_level.value,
            "units_required": payload.units_required,
        },
        request=request,
        db=db,
    )
    return result


@router.get("/recipient/emergency-requests")
async def list_emergency_requests(
    status_filter: Optional[RequestStatus] = Query(default=None, alias="status"),
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_role(UserRole.RECIPIENT)),
):
    return await emergency_service.list_requests(
        db,
        requester_id=current_user.id,
        status=status_filter.value if status_filter else None,
        limit=limit,
        offset=offset,
    )


@router.get("/recipient/emergency-requests/{request_id}")
async def get_emergency_request(
    request_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_role(UserRole.RECIPIENT)),
):
    return await emergency_service.get_request_detail(db, request_id=request_id, actor=current_user)


@router.put("/recipient/emergency-requests/{request_id}")
async def update_emergency_request(
    request_id: UUID,
    payload: EmergencyRequestUpdate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_role(UserRole.RECIPIENT)),
):
    changes = payload.model_dump(exclude_unset=True)
    result = await emergency_service.update_request(
        db, request_id=request_id, actor=current_user, changes=changes,
    )
    await log_audit(
        action="update",
        resource="emergency_request",
        resource_id=request_id,
        user=current_user,
        details={"fields": sorted(changes)},
        request=request,
        db=db,
    )
    return result


@router.delete("/recipient/emergency-requests/{request_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_emergency_request(
    request_id: UUID,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_role(UserRole.RECIPIENT)),
):
    await emergency_service.delete_request(db, request_id=request_id, actor=current_user)
    await log_audit(
        action="delete",
        resource="emergency_request",
        resource_id=request_id,
        user=current_user,
        request=request,
        db=db,
    )


@router.put("/recipient/emergency-requests/{request_id}/status")
async def update_status(
    request_id: UUID,
    payload: RequestStatusUpdate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_role(UserRole.RECIPIENT)),
):
    result = await emergency_service.update_request_status(
        db, request_id=request_id, actor=current_user, new_status=payload.status, notes=payload.notes,
    )
    await log_audit(
        action="status_change",
        resource="emergency_request",
        resource_id=request_id,
        user=current_user,
        details={"status": payload.status.value},
        request=request,
        db=db,
    )
    return result


@router.post("/recipient/emergency-requests/{request_id}/select-donor", status_code=status.HTTP_201_CREATED)
async def select_donor(
    request_id: UUID,
    payload: SelectDonorRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_role(UserRole.RECIPIENT)),
):
    result = await emergency_service.select_donor(
        db,
        request_id=request_id,
        recipient=current_user,
        donor_id=payload.donor_id,
        scheduled_date=payload.scheduled_date,
        units=payload.units,
        notes=payload.notes,
    )
    await log_audit(
        action="select_donor",
        resource="emergency_request",
        resource_id=request_id,
        user=current_user,
        details={"donor_id": str(payload.donor_id), "donation_id": result["id"]},
        request=request,
        db=db,
    )
    return result


@router.get("/recipient/donations-received")
async def donations_received(
    status_filter: Optional[str] = Query(default=None, alias="status"),
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_role(UserRole.RECIPIENT)),
):
    return await donation_service.list_recipient_donations(
        db, current_user.id, status=status_filter, limit=limit, offset=offset,
    )
