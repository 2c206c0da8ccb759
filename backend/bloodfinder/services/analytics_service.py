"""
Analytics service: dashboard counts and grouped statistics over users,
emergency requests and donations.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from bloodfinder.models.user import User, UserRole, ApprovalStatus
from bloodfinder.models.emergency_request import EmergencyRequest, DonorResponse, RequestStatus
from bloodfinder.models.donation import DonationHistory, DonationStatus
from bloodfinder.services import donation_service, emergency_service
from bloodfinder.services.eligibility import can_donate, next_eligible_date

logger = logging.getLogger(__name__)


async def _grouped(db: AsyncSession, column, *where) -> dict[str, int]:
    query = select(column, func.count()).group_by(column)
    if where:
        query = query.where(*where)
    result = await db.execute(query)
    return {
        (key.value if hasattr(key, "value") else str(key)) if key is not None else "unknown": count
        for key, count in result.all()
    }


# ---------------------------------------------------------------------------
# Dashboards
# ---------------------------------------------------------------------------

async def get_admin_dashboard(db: AsyncSession) -> dict[str, Any]:
    """High-level counts for the admin landing page."""
    await emergency_service.expire_overdue(db)
    now = datetime.utcnow()

    users_by_role = await _grouped(db, User.role)
    pending_approvals = (await db.execute(
        select(func.count(User.id)).where(User.status == ApprovalStatus.PENDING)
    )).scalar_one()
    available_donors = (await db.execute(
        select(func.count(User.id)).where(
            User.role == UserRole.DONOR,
            User.status == ApprovalStatus.APPROVED,
            User.is_available.is_(True),
        )
    )).scalar_one()
    requests_by_status = await _grouped(db, EmergencyRequest.status)
    donations_by_status = await _grouped(db, DonationHistory.status)
    requests_24h = (await db.execute(
        select(func.count(EmergencyRequest.id)).where(EmergencyRequest.created_at >= now - timedelta(hours=24))
    )).scalar_one()

    recent = await emergency_service.list_requests(db, limit=5)
    return {
        "users_by_role": users_by_role,
        "pending_approvals": pending_approvals,
        "available_donors": available_donors,
        "requests_by_status": requests_by_status,
        "active_requests": requests_by_status.get(RequestStatus.ACTIVE.value, 0)
        + requests_by_status.get(RequestStatus.PARTIALLY_FULFILLED.value, 0),
        "requests_last_24h": requests_24h,
        "donations_by_status": donations_by_status,
        "recent_requests": recent["items"],
    }


async def get_donor_dashboard(db: AsyncSession, donor: User) -> dict[str, Any]:
    next_date = next_eligible_date(donor)
    nearby = await emergency_service.list_requests_for_donor(db, donor, limit=5)
    responses = await emergency_service.list_donor_responses(db, donor.id, limit=5)
    return {
        "can_donate": can_donate(donor),
        "next_eligible_date": next_date.isoformat() if next_date else None,
        "is_available": donor.is_available,
        "approval_status": donor.status.value if donor.status else None,
        "statistics": await donation_service.donor_statistics(db, donor.id),
        "matching_requests": nearby["items"],
        "recent_responses": responses,
    }


async def get_recipient_dashboard(db: AsyncSession, recipient: User) -> dict[str, Any]:
    await emergency_service.expire_overdue(db)
    by_status = await _grouped(db, EmergencyRequest.status, EmergencyRequest.requester_id == recipient.id)
    recent = await emergency_service.list_requests(db, requester_id=recipient.id, limit=5)
    received = (await db.execute(
        select(func.coalesce(func.sum(DonationHistory.units_collected), 0)).where(
            DonationHistory.recipient_id == recipient.id,
            DonationHistory.status == DonationStatus.COMPLETED,
        )
    )).scalar_one()
    return {
        "requests_by_status": by_status,
        "total_requests": sum(by_status.values()),
        "units_received": int(received),
        "recent_requests": recent["items"],
    }


# ---------------------------------------------------------------------------
# Admin analytics
# ---------------------------------------------------------------------------

async def get_donation_analytics(db: AsyncSession, *, days: int = 30) -> dict[str, Any]:
    """Donation breakdowns over the last *days* days."""
    cutoff = datetime.utcnow() - timedelta(days=days)
    recent = DonationHistory.created_at >= cutoff

    day = func.date(DonationHistory.completion_time).label("day")
    timeline_q = (
        select(day, func.count(DonationHistory.id), func.sum(DonationHistory.units_collected))
        .where(DonationHistory.status == DonationStatus.COMPLETED, DonationHistory.completion_time >= cutoff)
        .group_by(day)
        .order_by(day)
    )
    timeline = [
        {"date": str(d), "donations": count, "units": int(units or 0)}
        for d, count, units in (await db.execute(timeline_q)).all()
    ]

    return {
        "period_days": days,
        "by_status": await _grouped(db, DonationHistory.status, recent),
        "by_blood_group": await _grouped(db, DonationHistory.blood_group, recent),
        "by_type": await _grouped(db, DonationHistory.donation_type, recent),
        "by_source": await _grouped(db, DonationHistory.source, recent),
        "by_city": await _grouped(db, func.lower(DonationHistory.hospital_city), recent),
        "completed_timeline": timeline,
    }


async def get_system_analytics(db: AsyncSession) -> dict[str, Any]:
    """Request and donor-pool health across the whole system."""
    await emergency_service.expire_overdue(db)

    total_requests = (await db.execute(select(func.count(EmergencyRequest.id)))).scalar_one()
    fulfilled = (await db.execute(
        select(func.count(EmergencyRequest.id)).where(EmergencyRequest.status == RequestStatus.FULFILLED)
    )).scalar_one()
    avg_priority = (await db.execute(
        select(func.coalesce(func.avg(EmergencyRequest.priority_score), 0))
    )).scalar_one()
    total_responses = (await db.execute(select(func.count(DonorResponse.id)))).scalar_one()

    donors_by_group = await _grouped(
        db, User.blood_group,
        User.role == UserRole.DONOR, User.status == ApprovalStatus.APPROVED,
    )

    return {
        "total_requests": total_requests,
        "fulfilment_rate": round(fulfilled / total_requests * 100, 1) if total_requests else 0.0,
        "average_priority": round(float(avg_priority), 1),
        "responses_per_request": round(total_responses / total_requests, 2) if total_requests else 0.0,
        "requests_by_urgency": await _grouped(db, EmergencyRequest.urgency_level),
        "requests_by_blood_group": await _grouped(db, EmergencyRequest.blood_group),
        "requests_by_status": await _grouped(db, EmergencyRequest.status),
        "approved_donors_by_blood_group": donors_by_group,
        "users_by_status": await _grouped(db, User.status),
    }
