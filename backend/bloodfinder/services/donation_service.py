"""
Donation record lifecycle: scheduling, status transitions, reward points
and donor statistics.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession

from bloodfinder.config import get_settings
from bloodfinder.models.user import User, UserRole
from bloodfinder.models.emergency_request import EmergencyRequest, BloodComponent
from bloodfinder.models.donation import (
    DonationHistory, DonationType, DonationStatus, DonationSource,
)
from bloodfinder.services import notification_service
from bloodfinder.services.errors import NotFoundError, IneligibleError, ConcurrencyError, ValidationError

logger = logging.getLogger(__name__)

DONATION_TRANSITIONS = {
    DonationStatus.SCHEDULED: {
        DonationStatus.IN_PROGRESS,
        DonationStatus.COMPLETED,
        DonationStatus.CANCELLED,
        DonationStatus.REJECTED,
    },
    DonationStatus.IN_PROGRESS: {DonationStatus.COMPLETED, DonationStatus.CANCELLED},
}

COMPONENT_TO_DONATION_TYPE = {
    BloodComponent.WHOLE_BLOOD: DonationType.BLOOD,
    BloodComponent.PLASMA: DonationType.PLASMA,
    BloodComponent.PLATELETS: DonationType.PLATELETS,
    BloodComponent.RED_CELLS: DonationType.RED_CELLS,
}


def can_transition(current: DonationStatus, new: DonationStatus) -> bool:
    return new in DONATION_TRANSITIONS.get(current, set())


def donation_to_dict(donation: DonationHistory) -> dict[str, Any]:
    return {
        "id": str(donation.id),
        "donor_id": str(donation.donor_id),
        "recipient_id": str(donation.recipient_id),
        "emergency_request_id": str(donation.emergency_request_id) if donation.emergency_request_id else None,
        "donation_type": donation.donation_type.value if donation.donation_type else None,
        "units_collected": donation.units_collected,
        "volume_ml": donation.volume_ml,
        "blood_group": donation.blood_group.value if donation.blood_group else None,
        "hospital_name": donation.hospital_name,
        "hospital_city": donation.hospital_city,
        "source": donation.source.value if donation.source else None,
        "status": donation.status.value if donation.status else None,
        "scheduled_date": donation.scheduled_date.isoformat() if donation.scheduled_date else None,
        "actual_donation_date": donation.actual_donation_date.isoformat() if donation.actual_donation_date else None,
        "completion_time": donation.completion_time.isoformat() if donation.completion_time else None,
        "verification_code": donation.verification_code,
        "reward_points": donation.reward_points,
        "notes": donation.notes,
        "created_at": donation.created_at.isoformat() if donation.created_at else None,
        "updated_at": donation.updated_at.isoformat() if donation.updated_at else None,
    }


async def create_scheduled_donation(
    db: AsyncSession,
    *,
    request: EmergencyRequest,
    donor: User,
    scheduled_date: datetime,
    units: int = 1,
    notes: str | None = None,
) -> DonationHistory:
    """Scheduled donation for a donor selected on an emergency request."""
    donation = DonationHistory(
        id=uuid.uuid4(),
        donor_id=donor.id,
        recipient_id=request.requester_id,
        emergency_request_id=request.id,
        donation_type=COMPONENT_TO_DONATION_TYPE.get(request.component, DonationType.BLOOD),
        units_collected=units,
        volume_ml=units * get_settings().DEFAULT_UNIT_VOLUME_ML,
        blood_group=request.blood_group,
        hospital_name=request.hospital_name,
        hospital_city=request.hospital_city,
        source=DonationSource.EMERGENCY_REQUEST,
        status=DonationStatus.SCHEDULED,
        scheduled_date=scheduled_date,
        notes=notes,
    )
    donation.reward_points = donation.calculate_reward_points()
    db.add(donation)
    await db.flush()
    await db.refresh(donation)
    return donation


async def get_donation(db: AsyncSession, donation_id: uuid.UUID) -> DonationHistory:
    donation = await db.get(DonationHistory, donation_id)
    if donation is None:
        raise NotFoundError("Donation not found")
    return donation


def can_view(donation: DonationHistory, user: User) -> bool:
    return user.role == UserRole.ADMIN or user.id in (donation.donor_id, donation.recipient_id)


async def update_status(
    db: AsyncSession,
    *,
    donation_id: uuid.UUID,
    actor: User,
    new_status: DonationStatus | str,
    notes: str | None = None,
) -> dict[str, Any]:
    """Move a donation along its lifecycle.

    Completion stamps the actual date, recomputes reward points, credits the
    donor and counts the units against the originating request. Cancelling
    or rejecting frees the request for another donor.
    """
    from bloodfinder.services import emergency_service

    new_status = DonationStatus(new_status)
    donation = await get_donation(db, donation_id)
    if not can_view(donation, actor):
        raise NotFoundError("Donation not found")
    if actor.role == UserRole.DONOR and new_status != DonationStatus.CANCELLED:
        raise IneligibleError("Donors may only cancel their scheduled donations")

    current = donation.status
    if not can_transition(current, new_status):
        raise IneligibleError(f"Cannot change donation from {current.value} to {new_status.value}")

    now = datetime.utcnow()
    values: dict[str, Any] = {"status": new_status, "updated_by": actor.id, "updated_at": now}
    if notes is not None:
        values["notes"] = notes

    if new_status == DonationStatus.COMPLETED:
        values["actual_donation_date"] = donation.actual_donation_date or now
        values["completion_time"] = donation.completion_time or now
        values["reward_points"] = donation.calculate_reward_points()

    result = await db.execute(
        update(DonationHistory)
        .where(DonationHistory.id == donation.id, DonationHistory.status == current)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        await db.refresh(donation)
        raise ConcurrencyError("Donation was updated concurrently")
    await db.refresh(donation)

    if new_status == DonationStatus.COMPLETED:
        await _credit_donor(db, donation)
        if donation.emergency_request_id is not None:
            await emergency_service.record_fulfilment(
                db,
                request_id=donation.emergency_request_id,
                donor_id=donation.donor_id,
                units=donation.units_collected,
            )
    elif new_status in (DonationStatus.CANCELLED, DonationStatus.REJECTED):
        if donation.emergency_request_id is not None:
            await emergency_service.release_donor_selection(
                db,
                request_id=donation.emergency_request_id,
                donor_id=donation.donor_id,
            )

    await notification_service.dispatch_donation_status(donation)
    logger.info("Donation %s moved %s -> %s by %s", donation.id, current.value, new_status.value, actor.id)
    return donation_to_dict(donation)


async def _credit_donor(db: AsyncSession, donation: DonationHistory) -> None:
    await db.execute(
        update(User)
        .where(User.id == donation.donor_id)
        .values(
            total_donations=func.coalesce(User.total_donations, 0) + 1,
            reward_points=func.coalesce(User.reward_points, 0) + donation.reward_points,
            last_donation_date=donation.actual_donation_date,
            last_donation_type=donation.donation_type.value,
        )
        .execution_options(synchronize_session=False)
    )
    donor = await db.get(User, donation.donor_id)
    if donor is not None:
        await db.refresh(donor)


async def _list(db: AsyncSession, where, status, limit: int, offset: int) -> dict[str, Any]:
    query = select(DonationHistory).where(where)
    if status:
        query = query.where(DonationHistory.status == DonationStatus(status))
    total = (await db.execute(select(func.count()).select_from(query.subquery()))).scalar() or 0
    result = await db.execute(
        query.order_by(DonationHistory.created_at.desc()).limit(limit).offset(offset)
    )
    return {
        "items": [donation_to_dict(d) for d in result.scalars().all()],
        "total": total,
        "limit": limit,
        "offset": offset,
    }


async def list_donor_donations(
    db: AsyncSession, donor_id: uuid.UUID, *, status: str | None = None, limit: int = 20, offset: int = 0,
) -> dict[str, Any]:
    return await _list(db, DonationHistory.donor_id == donor_id, status, limit, offset)


async def list_recipient_donations(
    db: AsyncSession, recipient_id: uuid.UUID, *, status: str | None = None, limit: int = 20, offset: int = 0,
) -> dict[str, Any]:
    return await _list(db, DonationHistory.recipient_id == recipient_id, status, limit, offset)


async def donor_statistics(db: AsyncSession, donor_id: uuid.UUID) -> dict[str, Any]:
    rows = await db.execute(
        select(
            DonationHistory.status,
            func.count(DonationHistory.id),
            func.coalesce(func.sum(DonationHistory.units_collected), 0),
            func.coalesce(func.sum(DonationHistory.reward_points), 0),
        )
        .where(DonationHistory.donor_id == donor_id)
        .group_by(DonationHistory.status)
    )
    by_status = {}
    units_donated = 0
    points_earned = 0
    for status, count, units, points in rows.all():
        by_status[status.value] = count
        if status == DonationStatus.COMPLETED:
            units_donated = int(units)
            points_earned = int(points)
    return {
        "by_status": by_status,
        "total_donations": by_status.get(DonationStatus.COMPLETED.value, 0),
        "units_donated": units_donated,
        "volume_ml": units_donated * get_settings().DEFAULT_UNIT_VOLUME_ML,
        "reward_points": points_earned,
    }


async def leaderboard(db: AsyncSession, *, limit: int = 10, city: str | None = None) -> list[dict[str, Any]]:
    """Donors ranked by reward points, then completed donations."""
    query = (
        select(User)
        .where(User.role == UserRole.DONOR, func.coalesce(User.total_donations, 0) > 0)
        .order_by(User.reward_points.desc(), User.total_donations.desc(), User.name)
        .limit(limit)
    )
    if city:
        query = query.where(func.lower(User.city) == city.strip().lower())
    result = await db.execute(query)
    return [
        {
            "rank": rank,
            "donor_id": str(donor.id),
            "name": donor.name,
            "city": donor.city,
            "blood_group": donor.blood_group.value if donor.blood_group else None,
            "total_donations": donor.total_donations or 0,
            "reward_points": donor.reward_points or 0,
        }
        for rank, donor in enumerate(result.scalars().all(), start=1)
    ]


def validate_units(units: int, remaining: int) -> None:
    if units < 1:
        raise ValidationError("At least one unit must be scheduled")
    if units > remaining:
        raise ValidationError(f"Only {remaining} unit(s) still required")
