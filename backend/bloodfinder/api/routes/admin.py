"""
Admin API routes.

Endpoints:
    GET /admin/dashboard                             — System-wide counts
    GET /admin/users                                 — List users (filterable, searchable)
    GET /admin/users/{id}                            — User detail with donation stats
    PUT /admin/users/{id}/approval                   — Approve, reject or suspend a user
    GET /admin/emergency-requests                    — All requests, priority ordered
    PUT /admin/emergency-requests/{id}/priority      — Override the priority score
    PUT /admin/emergency-requests/{id}/urgency       — Change urgency (recomputes priority)
    GET /admin/analytics/donations                   — Donation breakdowns
    GET /admin/analytics/system                      — Request and donor-pool analytics
    GET /admin/leaderboard                           — Top donors
"""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from bloodfinder.db.postgres import get_db
from bloodfinder.models.user import User, UserRole, ApprovalStatus, BloodGroup
from bloodfinder.models.emergency_request import RequestStatus, UrgencyLevel
from bloodfinder.api.middleware.auth import require_role
from bloodfinder.api.middleware.audit import log_audit
from bloodfinder.services import analytics_service, donation_service, emergency_service, user_service

router = APIRouter()


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------

class ApprovalRequest(BaseModel):
    status: ApprovalStatus
    reason: Optional[str] = Field(default=None, max_length=500)
    notes: Optional[str] = Field(default=None, max_length=1000)


class PriorityOverrideRequest(BaseModel):
    priority_score: int = Field(..., ge=0, le=100)
    notes: Optional[str] = Field(default=None, max_length=1000)


class UrgencyUpdateRequest(BaseModel):
    urgency_level: UrgencyLevel
    notes: Optional[str] = Field(default=None, max_length=1000)


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.get("/admin/dashboard")
async def dashboard(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_role(UserRole.ADMIN)),
):
    return await analytics_service.get_admin_dashboard(db)


@router.get("/admin/users")
async def list_users(
    role: Optional[UserRole] = None,
    status_filter: Optional[ApprovalStatus] = Query(default=None, alias="status"),
    blood_group: Optional[BloodGroup] = None,
    city: Optional[str] = None,
    search: Optional[str] = None,
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_role(UserRole.ADMIN)),
):
    return await user_service.list_users(
        db,
        role=role.value if role else None,
        status=status_filter.value if status_filter else None,
        blood_group=blood_group.value if blood_group else None,
        city=city,
        search=search,
        limit=limit,
        offset=offset,
    )


@router.get("/admin/users/{user_id}")
async def get_user(
    user_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_role(UserRole.ADMIN)),
):
    user = await user_service.get_user(db, user_id)
    data = user_service.user_to_dict(user, include_private=True)
    if user.role == UserRole.DONOR:
        data["donation_statistics"] = await donation_service.donor_statistics(db, user.id)
    return data


@router.put("/admin/users/{user_id}/approval")
async def set_approval(
    user_id: UUID,
    payload: ApprovalRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_role(UserRole.ADMIN)),
):
    result = await user_service.set_approval(
        db,
        user_id=user_id,
        admin=current_user,
        status=payload.status,
        reason=payload.reason,
        notes=payload.notes,
    )
    await log_audit(
        action="approval",
        resource="user",
        resource_id=user_id,
        user=current_user,
        details={"status": payload.status.value, "reason": payload.reason},
        request=request,
        db=db,
    )
    return result


@router.get("/admin/emergency-requests")
async def list_emergency_requests(
    status_filter: Optional[RequestStatus] = Query(default=None, alias="status"),
    urgency_level: Optional[UrgencyLevel] = None,
    blood_group: Optional[BloodGroup] = None,
    city: Optional[str] = None,
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_role(UserRole.ADMIN)),
):
    return await emergency_service.list_requests(
        db,
        status=status_filter.value if status_filter else None,
        urgency_level=urgency_level.value if urgency_level else None,
        blood_group=blood_group.value if blood_group else None,
        city=city,
        limit=limit,
        offset=offset,
    )


@router.put("/admin/emergency-requests/{request_id}/priority")
async def override_priority(
    request_id: UUID,
    payload: PriorityOverrideRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_role(UserRole.ADMIN)),
):
    result = await emergency_service.override_priority(
        db,
        request_id=request_id,
        admin=current_user,
        priority_score=payload.priority_score,
        notes=payload.notes,
    )
    await log_audit(
        action="priority_override",
        resource="emergency_request",
        resource_id=request_id,
        user=current_user,
        details={"priority_score": payload.priority_score},
        request=request,
        db=db,
    )
    return result


@router.put("/admin/emergency-requests/{request_id}/urgency")
async def update_urgency(
    request_id: UUID,
    payload: UrgencyUpdateRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_role(UserRole.ADMIN)),
):
    result = await emergency_service.update_urgency_level(
        db,
        request_id=request_id,
        admin=current_user,
        urgency_level=payload.urgency_level,
        notes=payload.notes,
    )
    await log_audit(
        action="urgency_change",
        resource="emergency_request",
        resource_id=request_id,
        user=current_user,
        details={"urgency_level": payload.urgency_level.value, "priority_score": result["priority_score"]},
        request=request,
        db=db,
    )
    return result


@router.get("/admin/analytics/donations")
async def donation_analytics(
    days: int = Query(default=30, ge=1, le=365),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_role(UserRole.ADMIN)),
):
    return await analytics_service.get_donation_analytics(db, days=days)


@router.get("/admin/analytics/system")
async def system_analytics(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_role(UserRole.ADMIN)),
):
    return await analytics_service.get_system_analytics(db)


@router.get("/admin/leaderboard")
async def leaderboard(
    city: Optional[str] = None,
    limit: int = Query(default=10, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_role(UserRole.ADMIN)),
):
    return await donation_service.leaderboard(db, limit=limit, city=city)
