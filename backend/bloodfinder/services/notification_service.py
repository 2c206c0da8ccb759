"""
Notification dispatcher: donor matching, topic naming and best-effort
fan-out over Socket.IO rooms.

Every ``dispatch_*`` function builds a list of ``Notification`` objects and
hands them to ``publish``. Delivery failures are logged and swallowed; the
state change that triggered a notification is never undone because of one.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Iterable, Optional

from pydantic import BaseModel, Field
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from bloodfinder.config import get_settings
from bloodfinder.models.user import User, UserRole, ApprovalStatus, BloodGroup
from bloodfinder.models.emergency_request import EmergencyRequest, DonorResponse, UrgencyLevel
from bloodfinder.models.donation import DonationHistory
from bloodfinder.services.priority import is_rare

logger = logging.getLogger(__name__)

Emitter = Callable[[str, str, dict], Awaitable[Any]]

ADMIN_ROOM = "admin-room"


# ---------------------------------------------------------------------------
# Topics
# ---------------------------------------------------------------------------

def donor_topic(user_id) -> str:
    return f"donor-{user_id}"


def recipient_topic(user_id) -> str:
    return f"recipient-{user_id}"


def blood_group_topic(blood_group) -> str:
    return f"donors-{BloodGroup(blood_group).value}"


def city_topic(city: str) -> str:
    return f"donors-{city.strip().lower()}"


def topics_for_user(user: User) -> list[str]:
    """Rooms a connected user is subscribed to."""
    if user.role == UserRole.ADMIN:
        return [ADMIN_ROOM]
    if user.role == UserRole.RECIPIENT:
        return [recipient_topic(user.id)]
    topics = [donor_topic(user.id)]
    if user.status == ApprovalStatus.APPROVED:
        if user.blood_group is not None:
            topics.append(blood_group_topic(user.blood_group))
        if user.city:
            topics.append(city_topic(user.city))
    return topics


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------

class Notification(BaseModel):
    topic: str
    event: str
    payload: dict[str, Any] = Field(default_factory=dict)


def _iso(value):
    return value.isoformat() if value else None


def request_summary(request: EmergencyRequest) -> dict[str, Any]:
    return {
        "request_id": str(request.id),
        "patient_name": request.patient_name,
        "blood_group": request.blood_group.value if request.blood_group else None,
        "units_required": request.units_required,
        "units_fulfilled": request.units_fulfilled,
        "urgency_level": request.urgency_level.value if request.urgency_level else None,
        "priority_score": request.priority_score,
        "status": request.status.value if request.status else None,
        "hospital_name": request.hospital_name,
        "hospital_city": request.hospital_city,
        "required_by": _iso(request.required_by),
    }


def donation_summary(donation: DonationHistory) -> dict[str, Any]:
    return {
        "donation_id": str(donation.id),
        "donor_id": str(donation.donor_id),
        "recipient_id": str(donation.recipient_id),
        "emergency_request_id": str(donation.emergency_request_id) if donation.emergency_request_id else None,
        "status": donation.status.value if donation.status else None,
        "units_collected": donation.units_collected,
        "scheduled_date": _iso(donation.scheduled_date),
        "hospital_name": donation.hospital_name,
        "reward_points": donation.reward_points,
    }


# ---------------------------------------------------------------------------
# Matching
# ---------------------------------------------------------------------------

def donor_matches(donor: User, request: EmergencyRequest) -> bool:
    """Should *donor* hear about *request*?"""
    return (
        donor.role == UserRole.DONOR
        and donor.status == ApprovalStatus.APPROVED
        and bool(donor.is_available)
        and donor.blood_group == request.blood_group
        and (donor.city or "").strip().lower() == (request.hospital_city or "").strip().lower()
    )


def wants_rare_broadcast(request: EmergencyRequest) -> bool:
    return (
        get_settings().RARE_CRITICAL_BROADCAST
        and request.urgency_level == UrgencyLevel.CRITICAL
        and is_rare(request.blood_group)
    )


async def find_matching_donors(db: AsyncSession, request: EmergencyRequest) -> list[User]:
    result = await db.execute(
        select(User).where(
            User.role == UserRole.DONOR,
            User.status == ApprovalStatus.APPROVED,
            User.is_available.is_(True),
            User.blood_group == request.blood_group,
            func.lower(User.city) == (request.hospital_city or "").strip().lower(),
        )
    )
    return [donor for donor in result.scalars().all() if donor_matches(donor, request)]


def build_new_request_notifications(
    request: EmergencyRequest,
    donors: Iterable[User],
    rare_broadcast: bool = False,
) -> list[Notification]:
    payload = request_summary(request)
    notifications = [
        Notification(topic=donor_topic(donor.id), event="emergency_request", payload=payload)
        for donor in donors
    ]
    if rare_broadcast:
        notifications.append(
            Notification(topic=blood_group_topic(request.blood_group), event="emergency_request", payload=payload)
        )
    notifications.append(
        Notification(topic=recipient_topic(request.requester_id), event="request_created", payload=payload)
    )
    notifications.append(Notification(topic=ADMIN_ROOM, event="new_emergency_request", payload=payload))
    return notifications


# ---------------------------------------------------------------------------
# Delivery
# ---------------------------------------------------------------------------

def _default_emitter() -> Emitter:
    from bloodfinder.api.websocket.handler import emit_to_topic

    return emit_to_topic


async def publish(notifications: Iterable[Notification], emit: Optional[Emitter] = None) -> list[str]:
    """Emit every notification; returns the topics that were attempted."""
    emit = emit or _default_emitter()
    targets = []
    for notification in notifications:
        targets.append(notification.topic)
        try:
            await emit(notification.topic, notification.event, notification.payload)
        except Exception:
            logger.exception("Failed to deliver %s to %s", notification.event, notification.topic)
    return targets


async def dispatch_new_request(
    db: AsyncSession,
    request: EmergencyRequest,
    emit: Optional[Emitter] = None,
) -> list[str]:
    donors = await find_matching_donors(db, request)
    notifications = build_new_request_notifications(request, donors, wants_rare_broadcast(request))
    targets = await publish(notifications, emit)
    logger.info("Dispatched request %s to %d matched donors", request.id, len(donors))
    return targets


async def dispatch_response(
    request: EmergencyRequest,
    response: DonorResponse,
    donor: User,
    emit: Optional[Emitter] = None,
) -> list[str]:
    payload = request_summary(request)
    payload.update({
        "donor_id": str(donor.id),
        "donor_name": donor.name,
        "donor_phone": donor.phone,
        "response_type": response.response_type.value if response.response_type else None,
        "scheduled_time": _iso(response.scheduled_time),
    })
    return await publish([
        Notification(topic=recipient_topic(request.requester_id), event="donor_response", payload=payload),
        Notification(topic=ADMIN_ROOM, event="donor_response", payload=payload),
    ], emit)


async def dispatch_status_change(
    request: EmergencyRequest,
    donor_ids: Iterable = (),
    emit: Optional[Emitter] = None,
) -> list[str]:
    payload = request_summary(request)
    notifications = [
        Notification(topic=recipient_topic(request.requester_id), event="request_status", payload=payload),
        Notification(topic=ADMIN_ROOM, event="request_status", payload=payload),
    ]
    notifications.extend(
        Notification(topic=donor_topic(donor_id), event="request_status", payload=payload)
        for donor_id in donor_ids
    )
    return await publish(notifications, emit)


async def dispatch_donation_scheduled(donation: DonationHistory, emit: Optional[Emitter] = None) -> list[str]:
    payload = donation_summary(donation)
    return await publish([
        Notification(topic=donor_topic(donation.donor_id), event="donor_selected", payload=payload),
        Notification(topic=recipient_topic(donation.recipient_id), event="donation_scheduled", payload=payload),
        Notification(topic=ADMIN_ROOM, event="donation_scheduled", payload=payload),
    ], emit)


async def dispatch_donation_status(donation: DonationHistory, emit: Optional[Emitter] = None) -> list[str]:
    payload = donation_summary(donation)
    return await publish([
        Notification(topic=donor_topic(donation.donor_id), event="donation_status", payload=payload),
        Notification(topic=recipient_topic(donation.recipient_id), event="donation_status", payload=payload),
        Notification(topic=ADMIN_ROOM, event="donation_status", payload=payload),
    ], emit)


async def dispatch_approval(user: User, emit: Optional[Emitter] = None) -> list[str]:
    topic = donor_topic(user.id) if user.role == UserRole.DONOR else recipient_topic(user.id)
    payload = {
        "user_id": str(user.id),
        "status": user.status.value if user.status else None,
        "rejection_reason": user.rejection_reason,
    }
    return await publish([
        Notification(topic=topic, event="approval_status", payload=payload),
        Notification(topic=ADMIN_ROOM, event="approval_status", payload=payload),
    ], emit)


async def dispatch_broadcast(
    db: AsyncSession,
    request: EmergencyRequest,
    message: str | None = None,
    emit: Optional[Emitter] = None,
) -> list[str]:
    """Admin-initiated re-broadcast: matched donors plus the city room."""
    donors = await find_matching_donors(db, request)
    payload = request_summary(request)
    payload["message"] = message
    notifications = [
        Notification(topic=donor_topic(donor.id), event="emergency_broadcast", payload=payload)
        for donor in donors
    ]
    notifications.append(
        Notification(topic=city_topic(request.hospital_city), event="emergency_broadcast", payload=payload)
    )
    if wants_rare_broadcast(request):
        notifications.append(
            Notification(topic=blood_group_topic(request.blood_group), event="emergency_broadcast", payload=payload)
        )
    notifications.append(Notification(topic=ADMIN_ROOM, event="emergency_broadcast", payload=payload))
    return await publish(notifications, emit)
