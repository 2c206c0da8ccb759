import json

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from bloodfinder.models.audit_log import AuditLog
from bloodfinder.models.user import User


async def log_audit(
    action: str,
    resource: str,
    resource_id=None,
    user: User = None,
    details=None,
    request: Request = None,
    db: AsyncSession = None,
):
    """Append an AuditLog row inside the caller's unit of work.

    ``details`` may be a plain string or a dict, which is stored as JSON.
    """
    ip = None
    user_agent = None
    if request is not None:
        forwarded = request.headers.get("x-forwarded-for")
        ip = forwarded.split(",")[0].strip() if forwarded else (request.client.host if request.client else None)
        user_agent = request.headers.get("user-agent")
    if isinstance(details, dict):
        details = json.dumps(details, default=str, sort_keys=True)

    db.add(AuditLog(
        user_id=user.id if user is not None else None,
        action=action,
        resource=resource,
        resource_id=str(resource_id) if resource_id else None,
        details=details,
        ip_address=ip,
        user_agent=user_agent,
    ))
    await db.flush()
