"""
Emergency request service: creation, donor responses, donor selection and
the request status lifecycle.

Status moves along:

    active -> partially_fulfilled | fulfilled | expired | cancelled
    partially_fulfilled -> fulfilled | expired | cancelled

Expiry and fulfilment are derived from the request's dates and counters and
written back lazily by ``reconcile_status`` whenever a request is read or
about to be mutated. Writes that race with other writers (status changes,
donor selection) are conditional UPDATEs; a lost race raises
``ConcurrencyError``.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import select, update, func, or_
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from bloodfinder.config import get_settings
from bloodfinder.models.user import User, UserRole, BloodGroup
from bloodfinder.models.emergency_request import (
    EmergencyRequest, DonorResponse, RequestStatus, ResponseType, UrgencyLevel, new_response_code,
)
from bloodfinder.models.donation import DonationHistory
from bloodfinder.services import donation_service, notification_service
from bloodfinder.services.eligibility import can_donate
from bloodfinder.services.errors import (
    ValidationError, NotFoundError, IneligibleError, ConcurrencyError,
)
from bloodfinder.services.priority import score_priority, MAX_PRIORITY

logger = logging.getLogger(__name__)

OPEN_STATUSES = (RequestStatus.ACTIVE, RequestStatus.PARTIALLY_FULFILLED)

REQUEST_TRANSITIONS = {
    RequestStatus.ACTIVE: {
        RequestStatus.PARTIALLY_FULFILLED,
        RequestStatus.FULFILLED,
        RequestStatus.EXPIRED,
        RequestStatus.CANCELLED,
    },
    RequestStatus.PARTIALLY_FULFILLED: {
        RequestStatus.FULFILLED,
        RequestStatus.EXPIRED,
        RequestStatus.CANCELLED,
    },
}

# What a recipient may set by hand; admins may use any legal transition
RECIPIENT_TARGETS = {RequestStatus.CANCELLED, RequestStatus.FULFILLED}

# Completed and cancelled are set by the donation lifecycle
DONOR_RESPONSE_TYPES = {ResponseType.INTERESTED, ResponseType.CONFIRMED}

EDITABLE_FIELDS = {
    "patient_name", "patient_age", "patient_gender", "contact_number", "alternate_contact",
    "condition", "urgency_level", "units_required", "component", "required_by", "additional_notes",
    "hospital_name", "hospital_street", "hospital_city", "hospital_pincode",
    "hospital_latitude", "hospital_longitude", "hospital_contact", "doctor_name",
}


def as_utc_naive(value: datetime | None) -> datetime | None:
    """Timestamps are stored as naive UTC."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


# ---------------------------------------------------------------------------
# Derived state
# ---------------------------------------------------------------------------

def can_transition(current: RequestStatus, new: RequestStatus) -> bool:
    return new in REQUEST_TRANSITIONS.get(current, set())


def is_expired(request: EmergencyRequest, now: datetime | None = None) -> bool:
    now = now or datetime.utcnow()
    if request.required_by is not None and now > request.required_by:
        return True
    return request.expires_at is not None and now > request.expires_at


def is_fulfilled(request: EmergencyRequest) -> bool:
    return (request.units_fulfilled or 0) >= request.units_required


def is_open(request: EmergencyRequest, now: datetime | None = None) -> bool:
    """Still accepting donor responses and selections."""
    return request.status in OPEN_STATUSES and not is_expired(request, now)


def derived_status(request: EmergencyRequest, now: datetime | None = None) -> RequestStatus:
    """The status the request should have given its counters and dates."""
    if request.status not in OPEN_STATUSES:
        return request.status
    if is_fulfilled(request):
        return RequestStatus.FULFILLED
    if is_expired(request, now):
        return RequestStatus.EXPIRED
    if (request.units_fulfilled or 0) > 0:
        return RequestStatus.PARTIALLY_FULFILLED
    return request.status


# ---------------------------------------------------------------------------
# Serialisation
# ---------------------------------------------------------------------------

def response_to_dict(resp: DonorResponse) -> dict[str, Any]:
    return {
        "id": str(resp.id),
        "request_id": str(resp.request_id),
        "donor_id": str(resp.donor_id),
        "response_type": resp.response_type.value if resp.response_type else None,
        "responded_at": resp.responded_at.isoformat() if resp.responded_at else None,
        "scheduled_time": resp.scheduled_time.isoformat() if resp.scheduled_time else None,
        "notes": resp.notes,
        "verification_code": resp.verification_code,
    }


def request_to_dict(req: EmergencyRequest, include_responses: bool = False) -> dict[str, Any]:
    data = {
        "id": str(req.id),
        "requester_id": str(req.requester_id),
        "patient_name": req.patient_name,
        "patient_age": req.patient_age,
        "patient_gender": req.patient_gender.value if req.patient_gender else None,
        "blood_group": req.blood_group.value if req.blood_group else None,
        "contact_number": req.contact_number,
        "alternate_contact": req.alternate_contact,
        "condition": req.condition,
        "urgency_level": req.urgency_level.value if req.urgency_level else None,
        "units_required": req.units_required,
        "units_fulfilled": req.units_fulfilled or 0,
        "component": req.component.value if req.component else None,
        "required_by": req.required_by.isoformat() if req.required_by else None,
        "additional_notes": req.additional_notes,
        "hospital": {
            "name": req.hospital_name,
            "street": req.hospital_street,
            "city": req.hospital_city,
            "pincode": req.hospital_pincode,
            "latitude": req.hospital_latitude,
            "longitude": req.hospital_longitude,
            "contact_number": req.hospital_contact,
            "doctor_name": req.doctor_name,
        },
        "status": req.status.value if req.status else None,
        "is_expired": is_expired(req),
        "is_fulfilled": is_fulfilled(req),
        "fulfilled_at": req.fulfilled_at.isoformat() if req.fulfilled_at else None,
        "selected_donor_id": str(req.selected_donor_id) if req.selected_donor_id else None,
        "selected_at": req.selected_at.isoformat() if req.selected_at else None,
        "priority_score": req.priority_score,
        "admin_notes": req.admin_notes,
        "created_at": req.created_at.isoformat() if req.created_at else None,
        "updated_at": req.updated_at.isoformat() if req.updated_at else None,
        "expires_at": req.expires_at.isoformat() if req.expires_at else None,
        "response_count": len(req.responses) if req.responses else 0,
    }
    if include_responses:
        data["responses"] = [response_to_dict(r) for r in req.responses or []]
    return data


# ---------------------------------------------------------------------------
# Loading and reconciliation
# ---------------------------------------------------------------------------

async def _load(db: AsyncSession, request_id: uuid.UUID) -> EmergencyRequest | None:
    result = await db.execute(
        select(EmergencyRequest)
        .where(EmergencyRequest.id == request_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def reconcile_status(
    db: AsyncSession,
    request: EmergencyRequest,
    now: datetime | None = None,
) -> RequestStatus:
    """Persist the derived status if it differs from the stored one."""
    now = now or datetime.utcnow()
    target = derived_status(request, now)
    if target == request.status:
        return target

    values: dict[str, Any] = {"status": target, "updated_at": now}
    if target == RequestStatus.FULFILLED and request.fulfilled_at is None:
        values["fulfilled_at"] = now
    result = await db.execute(
        update(EmergencyRequest)
        .where(EmergencyRequest.id == request.id, EmergencyRequest.status == request.status)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount:
        logger.info("Request %s reconciled %s -> %s", request.id, request.status.value, target.value)
    await db.refresh(request)
    return request.status


async def expire_overdue(db: AsyncSession, now: datetime | None = None) -> int:
    """Bulk form of ``reconcile_status`` for the expiry case."""
    now = now or datetime.utcnow()
    result = await db.execute(
        update(EmergencyRequest)
        .where(
            EmergencyRequest.status.in_(OPEN_STATUSES),
            EmergencyRequest.units_fulfilled < EmergencyRequest.units_required,
            or_(EmergencyRequest.required_by < now, EmergencyRequest.expires_at < now),
        )
        .values(status=RequestStatus.EXPIRED, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount:
        logger.info("Expired %d overdue emergency requests", result.rowcount)
    return result.rowcount or 0


async def get_request(db: AsyncSession, request_id: uuid.UUID, reconcile: bool = True) -> EmergencyRequest:
    request = await _load(db, request_id)
    if request is None:
        raise NotFoundError("Emergency request not found")
    if reconcile:
        await reconcile_status(db, request)
    return request


def ensure_owner(request: EmergencyRequest, actor: User) -> None:
    if actor.role != UserRole.ADMIN and request.requester_id != actor.id:
        raise NotFoundError("Emergency request not found")


async def get_request_detail(db: AsyncSession, *, request_id: uuid.UUID, actor: User) -> dict[str, Any]:
    """Request with its responses and the responding donors' contact details."""
    request = await get_request(db, request_id)
    ensure_owner(request, actor)
    data = request_to_dict(request, include_responses=True)

    donor_ids = [r.donor_id for r in request.responses or []]
    donors = {}
    if donor_ids:
        result = await db.execute(select(User).where(User.id.in_(donor_ids)))
        donors = {str(d.id): d for d in result.scalars().all()}
    for response in data["responses"]:
        donor = donors.get(response["donor_id"])
        response["donor"] = {
            "name": donor.name,
            "phone": donor.phone,
            "city": donor.city,
            "blood_group": donor.blood_group.value if donor.blood_group else None,
            "can_donate": can_donate(donor),
        } if donor else None
    return data


# ---------------------------------------------------------------------------
# Creation and edits
# ---------------------------------------------------------------------------

async def create_request(db: AsyncSession, *, requester: User, data: dict[str, Any]) -> dict[str, Any]:
    now = datetime.utcnow()
    required_by = as_utc_naive(data["required_by"])
    if required_by <= now:
        raise ValidationError("Required by date must be in the future")

    urgency = UrgencyLevel(data["urgency_level"])
    blood_group = BloodGroup(data["blood_group"])
    fields = {k: v for k, v in data.items() if k in EDITABLE_FIELDS}
    fields.update(required_by=required_by, urgency_level=urgency)

    req = EmergencyRequest(
        id=uuid.uuid4(),
        requester_id=requester.id,
        blood_group=blood_group,
        status=RequestStatus.ACTIVE,
        units_fulfilled=0,
        priority_score=score_priority(urgency, required_by, data["units_required"], blood_group, now=now),
        created_at=now,
        expires_at=now + timedelta(days=get_settings().REQUEST_EXPIRY_DAYS),
        **fields,
    )
    db.add(req)
    await db.execute(
        update(User)
        .where(User.id == requester.id)
        .values(total_requests=func.coalesce(User.total_requests, 0) + 1)
        .execution_options(synchronize_session=False)
    )
    await db.flush()
    await db.refresh(req)

    try:
        await notification_service.dispatch_new_request(db, req)
    except Exception:
        logger.exception("Failed to broadcast emergency request %s", req.id)

    logger.info(
        "Created emergency request %s (%s, %s) priority %d",
        req.id, blood_group.value, urgency.value, req.priority_score,
    )
    return request_to_dict(req)


async def update_request(
    db: AsyncSession,
    *,
    request_id: uuid.UUID,
    actor: User,
    changes: dict[str, Any],
) -> dict[str, Any]:
    """Recipient edit. Priority is recomputed only when urgency changes."""
    request = await get_request(db, request_id)
    ensure_owner(request, actor)
    if request.status not in OPEN_STATUSES:
        raise IneligibleError(f"Cannot edit a {request.status.value} request")

    unknown = set(changes) - EDITABLE_FIELDS
    if unknown:
        raise ValidationError(f"Fields cannot be edited: {', '.join(sorted(unknown))}")

    missing = sorted(
        key for key, value in changes.items()
        if value is None and not EmergencyRequest.__table__.c[key].nullable
    )
    if missing:
        raise ValidationError(f"Fields cannot be cleared: {', '.join(missing)}")

    if "required_by" in changes:
        changes["required_by"] = as_utc_naive(changes["required_by"])
        if changes["required_by"] <= datetime.utcnow():
            raise ValidationError("Required by date must be in the future")
    if "units_required" in changes and changes["units_required"] < (request.units_fulfilled or 0):
        raise ValidationError("Units required cannot be below units already fulfilled")

    urgency_changed = (
        "urgency_level" in changes
        and UrgencyLevel(changes["urgency_level"]) != request.urgency_level
    )
    for key, value in changes.items():
        setattr(request, key, value)
    if urgency_changed:
        request.urgency_level = UrgencyLevel(changes["urgency_level"])
        request.priority_score = score_priority(
            request.urgency_level, request.required_by, request.units_required, request.blood_group,
        )
    await db.flush()
    await db.refresh(request)
    await reconcile_status(db, request)

    logger.info("Updated emergency request %s fields=%s", request.id, sorted(changes))
    return request_to_dict(request, include_responses=True)


async def delete_request(db: AsyncSession, *, request_id: uuid.UUID, actor: User) -> None:
    request = await get_request(db, request_id, reconcile=False)
    ensure_owner(request, actor)
    donations = await db.execute(
        select(func.count(DonationHistory.id)).where(DonationHistory.emergency_request_id == request.id)
    )
    if donations.scalar():
        raise IneligibleError("Requests with scheduled or completed donations cannot be deleted")
    await db.delete(request)
    await db.flush()
    logger.info("Deleted emergency request %s", request_id)


# ---------------------------------------------------------------------------
# Donor responses
# ---------------------------------------------------------------------------

def _insert_for(db: AsyncSession):
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return pg_insert
    if dialect == "sqlite":
        return sqlite_insert
    raise RuntimeError(f"Unsupported database dialect for upserts: {dialect}")


async def add_donor_response(
    db: AsyncSession,
    *,
    request_id: uuid.UUID,
    donor: User,
    response_type: ResponseType | str = ResponseType.INTERESTED,
    scheduled_time: datetime | None = None,
    notes: str | None = None,
) -> dict[str, Any]:
    """Record a donor's response; a repeat response from the same donor updates it.

    The write is a single INSERT .. ON CONFLICT (request_id, donor_id) DO
    UPDATE, so concurrent responders never duplicate or clobber each other.
    The verification code of an existing response is kept.
    """
    response_type = ResponseType(response_type)
    if response_type not in DONOR_RESPONSE_TYPES:
        raise ValidationError("Donors may only respond as interested or confirmed")
    request = await get_request(db, request_id)

    if not is_open(request):
        raise IneligibleError("This request is no longer accepting responses")
    if not donor.is_approved or not can_donate(donor):
        raise IneligibleError("You are not currently eligible to donate")
    if donor.blood_group != request.blood_group:
        raise IneligibleError("Your blood group does not match this request")
    if request.selected_donor_id == donor.id:
        raise IneligibleError("You are already selected for this request")

    now = datetime.utcnow()
    insert = _insert_for(db)
    stmt = insert(DonorResponse).values(
        id=uuid.uuid4(),
        request_id=request.id,
        donor_id=donor.id,
        response_type=response_type,
        responded_at=now,
        scheduled_time=as_utc_naive(scheduled_time),
        notes=notes,
        verification_code=new_response_code(),
        created_at=now,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["request_id", "donor_id"],
        set_={
            "response_type": stmt.excluded.response_type,
            "responded_at": stmt.excluded.responded_at,
            "scheduled_time": func.coalesce(stmt.excluded.scheduled_time, DonorResponse.scheduled_time),
            "notes": func.coalesce(stmt.excluded.notes, DonorResponse.notes),
        },
    )
    await db.execute(stmt)

    result = await db.execute(
        select(DonorResponse)
        .where(DonorResponse.request_id == request.id, DonorResponse.donor_id == donor.id)
        .execution_options(populate_existing=True)
    )
    response = result.scalar_one()

    await notification_service.dispatch_response(request, response, donor)
    logger.info("Donor %s responded %s to request %s", donor.id, response_type.value, request.id)
    return response_to_dict(response)


async def _get_response(db: AsyncSession, request_id: uuid.UUID, donor_id: uuid.UUID) -> DonorResponse | None:
    result = await db.execute(
        select(DonorResponse).where(
            DonorResponse.request_id == request_id,
            DonorResponse.donor_id == donor_id,
        )
    )
    return result.scalar_one_or_none()


async def _set_response_type(db: AsyncSession, request_id, donor_id, response_type: ResponseType, **extra) -> None:
    await db.execute(
        update(DonorResponse)
        .where(DonorResponse.request_id == request_id, DonorResponse.donor_id == donor_id)
        .values(response_type=response_type, **extra)
        .execution_options(synchronize_session=False)
    )


# ---------------------------------------------------------------------------
# Donor selection
# ---------------------------------------------------------------------------

async def select_donor(
    db: AsyncSession,
    *,
    request_id: uuid.UUID,
    recipient: User,
    donor_id: uuid.UUID,
    scheduled_date: datetime,
    units: int | None = None,
    notes: str | None = None,
) -> dict[str, Any]:
    """Pick a responding donor and schedule their donation.

    Only one donor can be selected at a time: the selection is a
    compare-and-set on ``selected_donor_id IS NULL``. The slot is freed again
    when that donation completes, is cancelled or is rejected.
    """
    request = await get_request(db, request_id)
    ensure_owner(request, recipient)
    if not is_open(request):
        raise IneligibleError("This request is no longer open")

    response = await _get_response(db, request.id, donor_id)
    if response is None or response.response_type == ResponseType.CANCELLED:
        raise IneligibleError("Donor has not responded to this request")

    donor = await db.get(User, donor_id)
    if donor is None:
        raise NotFoundError("Donor not found")
    if not donor.is_approved or not can_donate(donor):
        raise IneligibleError("Donor is not currently eligible to donate")

    remaining = request.units_required - (request.units_fulfilled or 0)
    units = units or 1
    donation_service.validate_units(units, remaining)

    now = datetime.utcnow()
    result = await db.execute(
        update(EmergencyRequest)
        .where(
            EmergencyRequest.id == request.id,
            EmergencyRequest.selected_donor_id.is_(None),
            EmergencyRequest.status.in_(OPEN_STATUSES),
        )
        .values(selected_donor_id=donor.id, selected_at=now, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise ConcurrencyError("Another donor has already been selected for this request")
    await db.refresh(request)

    scheduled_date = as_utc_naive(scheduled_date)
    await _set_response_type(db, request.id, donor.id, ResponseType.CONFIRMED, scheduled_time=scheduled_date)
    donation = await donation_service.create_scheduled_donation(
        db, request=request, donor=donor, scheduled_date=scheduled_date, units=units, notes=notes,
    )

    await notification_service.dispatch_donation_scheduled(donation)
    logger.info("Selected donor %s for request %s (donation %s)", donor.id, request.id, donation.id)
    return donation_service.donation_to_dict(donation)


async def record_fulfilment(
    db: AsyncSession,
    *,
    request_id: uuid.UUID,
    donor_id: uuid.UUID,
    units: int,
) -> EmergencyRequest:
    """Count completed units against the request and free the donor slot."""
    now = datetime.utcnow()
    await db.execute(
        update(EmergencyRequest)
        .where(EmergencyRequest.id == request_id)
        .values(units_fulfilled=func.coalesce(EmergencyRequest.units_fulfilled, 0) + units, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    await _release(db, request_id, donor_id)
    await _set_response_type(db, request_id, donor_id, ResponseType.COMPLETED)

    request = await get_request(db, request_id)
    await notification_service.dispatch_status_change(request, [donor_id])
    logger.info("Request %s fulfilled %d/%d units", request.id, request.units_fulfilled, request.units_required)
    return request


async def _release(db: AsyncSession, request_id, donor_id) -> int:
    result = await db.execute(
        update(EmergencyRequest)
        .where(EmergencyRequest.id == request_id, EmergencyRequest.selected_donor_id == donor_id)
        .values(selected_donor_id=None, selected_at=None)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount or 0


async def release_donor_selection(db: AsyncSession, *, request_id: uuid.UUID, donor_id: uuid.UUID) -> None:
    """The donor's donation fell through; let the recipient pick someone else."""
    released = await _release(db, request_id, donor_id)
    await _set_response_type(db, request_id, donor_id, ResponseType.CANCELLED)
    if released:
        logger.info("Released donor %s from request %s", donor_id, request_id)


# ---------------------------------------------------------------------------
# Status transitions and admin overrides
# ---------------------------------------------------------------------------

async def update_request_status(
    db: AsyncSession,
    *,
    request_id: uuid.UUID,
    actor: User,
    new_status: RequestStatus | str,
    notes: str | None = None,
) -> dict[str, Any]:
    new_status = RequestStatus(new_status)
    request = await get_request(db, request_id)
    ensure_owner(request, actor)

    if actor.role != UserRole.ADMIN and new_status not in RECIPIENT_TARGETS:
        raise IneligibleError(f"Recipients cannot set status to {new_status.value}")
    current = request.status
    if not can_transition(current, new_status):
        raise IneligibleError(f"Cannot change request from {current.value} to {new_status.value}")

    now = datetime.utcnow()
    values: dict[str, Any] = {"status": new_status, "updated_at": now}
    if new_status == RequestStatus.FULFILLED:
        values["fulfilled_at"] = now
    if notes is not None:
        values["completion_notes"] = notes
    result = await db.execute(
        update(EmergencyRequest)
        .where(EmergencyRequest.id == request.id, EmergencyRequest.status == current)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise ConcurrencyError("Request status was changed concurrently")
    await db.refresh(request)

    donor_ids = [r.donor_id for r in request.responses or [] if r.response_type != ResponseType.CANCELLED]
    await notification_service.dispatch_status_change(request, donor_ids)
    logger.info("Request %s moved %s -> %s by %s", request.id, current.value, new_status.value, actor.id)
    return request_to_dict(request)


async def update_urgency_level(
    db: AsyncSession,
    *,
    request_id: uuid.UUID,
    admin: User,
    urgency_level: UrgencyLevel | str,
    notes: str | None = None,
) -> dict[str, Any]:
    urgency_level = UrgencyLevel(urgency_level)
    request = await get_request(db, request_id)
    if not is_open(request):
        raise IneligibleError(f"Cannot change urgency of a {request.status.value} request")
    request.urgency_level = urgency_level
    request.priority_score = score_priority(
        urgency_level, request.required_by, request.units_required, request.blood_group,
    )
    request.reviewed_by = admin.id
    request.reviewed_at = datetime.utcnow()
    if notes is not None:
        request.admin_notes = notes
    await db.flush()
    await db.refresh(request)
    logger.info("Admin %s set urgency of %s to %s (priority %d)", admin.id, request.id, urgency_level.value, request.priority_score)
    return request_to_dict(request)


async def override_priority(
    db: AsyncSession,
    *,
    request_id: uuid.UUID,
    admin: User,
    priority_score: int,
    notes: str | None = None,
) -> dict[str, Any]:
    if not 0 <= priority_score <= MAX_PRIORITY:
        raise ValidationError(f"Priority score must be between 0 and {MAX_PRIORITY}")
    request = await get_request(db, request_id)
    request.priority_score = priority_score
    request.reviewed_by = admin.id
    request.reviewed_at = datetime.utcnow()
    if notes is not None:
        request.admin_notes = notes
    await db.flush()
    await db.refresh(request)
    logger.info("Admin %s overrode priority of %s to %d", admin.id, request.id, priority_score)
    return request_to_dict(request)


# ---------------------------------------------------------------------------
# Listings
# ---------------------------------------------------------------------------

async def list_requests(
    db: AsyncSession,
    *,
    status: str | None = None,
    urgency_level: str | None = None,
    blood_group: str | None = None,
    city: str | None = None,
    requester_id: uuid.UUID | None = None,
    limit: int = 20,
    offset: int = 0,
) -> dict[str, Any]:
    """Requests sorted by priority (highest first), then newest."""
    await expire_overdue(db)

    query = select(EmergencyRequest)
    if status:
        query = query.where(EmergencyRequest.status == RequestStatus(status))
    if urgency_level:
        query = query.where(EmergencyRequest.urgency_level == UrgencyLevel(urgency_level))
    if blood_group:
        query = query.where(EmergencyRequest.blood_group == BloodGroup(blood_group))
    if city:
        query = query.where(func.lower(EmergencyRequest.hospital_city) == city.strip().lower())
    if requester_id:
        query = query.where(EmergencyRequest.requester_id == requester_id)

    total = (await db.execute(select(func.count()).select_from(query.subquery()))).scalar() or 0
    result = await db.execute(
        query.order_by(EmergencyRequest.priority_score.desc(), EmergencyRequest.created_at.desc())
        .limit(limit)
        .offset(offset)
        .execution_options(populate_existing=True)
    )
    return {
        "items": [request_to_dict(r) for r in result.scalars().all()],
        "total": total,
        "limit": limit,
        "offset": offset,
    }


async def active_requests(
    db: AsyncSession,
    *,
    blood_group: str | None = None,
    city: str | None = None,
    limit: int = 20,
) -> list[dict[str, Any]]:
    await expire_overdue(db)
    query = select(EmergencyRequest).where(EmergencyRequest.status.in_(OPEN_STATUSES))
    if blood_group:
        query = query.where(EmergencyRequest.blood_group == BloodGroup(blood_group))
    if city:
        query = query.where(func.lower(EmergencyRequest.hospital_city) == city.strip().lower())
    result = await db.execute(
        query.order_by(EmergencyRequest.priority_score.desc(), EmergencyRequest.created_at.desc())
        .limit(limit)
        .execution_options(populate_existing=True)
    )
    return [notification_service.request_summary(r) for r in result.scalars().all()]


async def list_requests_for_donor(
    db: AsyncSession,
    donor: User,
    *,
    limit: int = 20,
    offset: int = 0,
) -> dict[str, Any]:
    """Open requests in the donor's city for the donor's blood group."""
    if donor.blood_group is None or not donor.city:
        return {"items": [], "total": 0, "limit": limit, "offset": offset, "can_donate": False}

    await expire_overdue(db)
    query = select(EmergencyRequest).where(
        EmergencyRequest.status.in_(OPEN_STATUSES),
        EmergencyRequest.blood_group == donor.blood_group,
        func.lower(EmergencyRequest.hospital_city) == donor.city.strip().lower(),
    )
    total = (await db.execute(select(func.count()).select_from(query.subquery()))).scalar() or 0
    result = await db.execute(
        query.order_by(EmergencyRequest.priority_score.desc(), EmergencyRequest.created_at.desc())
        .limit(limit)
        .offset(offset)
        .execution_options(populate_existing=True)
    )
    items = []
    for req in result.scalars().all():
        data = request_to_dict(req)
        mine = req.response_for(donor.id)
        data["has_responded"] = mine is not None
        data["my_response"] = response_to_dict(mine) if mine else None
        items.append(data)
    return {
        "items": items,
        "total": total,
        "limit": limit,
        "offset": offset,
        "can_donate": can_donate(donor),
    }


async def list_donor_responses(
    db: AsyncSession,
    donor_id: uuid.UUID,
    *,
    limit: int = 20,
    offset: int = 0,
) -> list[dict[str, Any]]:
    result = await db.execute(
        select(DonorResponse, EmergencyRequest)
        .join(EmergencyRequest, DonorResponse.request_id == EmergencyRequest.id)
        .where(DonorResponse.donor_id == donor_id)
        .order_by(DonorResponse.responded_at.desc())
        .limit(limit)
        .offset(offset)
    )
    items = []
    for response, request in result.all():
        data = response_to_dict(response)
        data["request"] = notification_service.request_summary(request)
        items.append(data)
    return items
