"""
Emergency feed and broadcast routes.

Endpoints:
    GET  /emergency/active     — Open requests ranked by priority (authenticated)
    POST /emergency/broadcast  — Queue a re-broadcast of a request to matching donors (admin)
"""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from bloodfinder.db.postgres import get_db
from bloodfinder.models.user import User, UserRole, BloodGroup
from bloodfinder.api.middleware.auth import get_current_user, require_role
from bloodfinder.api.middleware.audit import log_audit
from bloodfinder.api.middleware.rate_limit import rate_limit
from bloodfinder.services import emergency_service
from bloodfinder.services.errors import IneligibleError

router = APIRouter()


class BroadcastRequest(BaseModel):
    request_id: UUID
    message: Optional[str] = Field(default=None, max_length=500)


@router.get("/emergency/active")
async def active_requests(
    blood_group: Optional[BloodGroup] = None,
    city: Optional[str] = None,
    limit: int = Query(default=20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return await emergency_service.active_requests(
        db,
        blood_group=blood_group.value if blood_group else None,
        city=city,
        limit=limit,
    )


@router.post(
    "/emergency/broadcast",
    status_code=status.HTTP_202_ACCEPTED,
    dependencies=[rate_limit(max_requests=20, window_seconds=3600, key_prefix="broadcast")],
)
async def broadcast(
    payload: BroadcastRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_role(UserRole.ADMIN)),
):
    from tasks.notification_tasks import broadcast_emergency

    req = await emergency_service.get_request(db, payload.request_id)
    if not emergency_service.is_open(req):
        raise IneligibleError("Only open requests can be broadcast")

    task = broadcast_emergency.delay(str(req.id), payload.message)
    await log_audit(
        action="broadcast",
        resource="emergency_request",
        resource_id=req.id,
        user=current_user,
        details={"task_id": task.id},
        request=request,
        db=db,
    )
    return {"queued": True, "task_id": task.id, "request_id": str(req.id)}
