"""
User service: registration, profile edits, donor availability and medical
info, and the admin approval workflow.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import select, func, or_
from sqlalchemy.ext.asyncio import AsyncSession

from bloodfinder.models.user import User, UserRole, ApprovalStatus, BloodGroup
from bloodfinder.services import notification_service
from bloodfinder.services.eligibility import (
    can_donate, check_donor_profile, next_eligible_date, MIN_DONOR_WEIGHT_KG,
)
from bloodfinder.services.errors import ConflictError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

PROFILE_FIELDS = {
    "name", "phone", "city", "area", "pincode", "latitude", "longitude",
    "blood_group", "date_of_birth", "preferred_donation_time",
}

# Fixed once a donor has been approved
LOCKED_DONOR_FIELDS = {"blood_group", "date_of_birth"}


def user_to_dict(user: User, include_private: bool = False) -> dict[str, Any]:
    data = {
        "id": str(user.id),
        "name": user.name,
        "role": user.role.value if user.role else None,
        "status": user.status.value if user.status else None,
        "city": user.city,
        "area": user.area,
        "blood_group": user.blood_group.value if user.blood_group else None,
        "is_available": user.is_available,
        "total_donations": user.total_donations or 0,
        "reward_points": user.reward_points or 0,
    }
    if user.role == UserRole.DONOR:
        next_date = next_eligible_date(user)
        data["can_donate"] = can_donate(user)
        data["next_eligible_date"] = next_date.isoformat() if next_date else None
    if include_private:
        data.update({
            "email": user.email,
            "phone": user.phone,
            "pincode": user.pincode,
            "latitude": user.latitude,
            "longitude": user.longitude,
            "date_of_birth": user.date_of_birth.isoformat() if user.date_of_birth else None,
            "age": user.age,
            "weight_kg": user.weight_kg,
            "last_donation_date": user.last_donation_date.isoformat() if user.last_donation_date else None,
            "last_donation_type": user.last_donation_type,
            "medical_conditions": user.medical_conditions or [],
            "medications": user.medications or [],
            "available_from": user.available_from.isoformat() if user.available_from else None,
            "preferred_donation_time": user.preferred_donation_time.value if user.preferred_donation_time else None,
            "approved_at": user.approved_at.isoformat() if user.approved_at else None,
            "rejection_reason": user.rejection_reason,
            "admin_notes": user.admin_notes,
            "total_requests": user.total_requests or 0,
            "last_active": user.last_active.isoformat() if user.last_active else None,
            "created_at": user.created_at.isoformat() if user.created_at else None,
        })
    return data


async def get_user(db: AsyncSession, user_id: uuid.UUID) -> User:
    user = await db.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found")
    return user


async def get_by_email(db: AsyncSession, email: str) -> User | None:
    result = await db.execute(select(User).where(func.lower(User.email) == email.strip().lower()))
    return result.scalar_one_or_none()


async def register_user(
    db: AsyncSession,
    *,
    data: dict[str, Any],
    hashed_password: str,
) -> User:
    """Create a donor or recipient account.

    Donors start pending until an admin approves them; recipients are
    approved straight away.
    """
    role = UserRole(data.get("role", UserRole.DONOR))
    if role == UserRole.ADMIN:
        raise ValidationError("Admin accounts cannot be self-registered")
    if await get_by_email(db, data["email"]) is not None:
        raise ConflictError("An account with this email already exists")

    if role == UserRole.DONOR:
        check_donor_profile(data.get("blood_group"), data.get("date_of_birth"), data.get("weight_kg"))

    user = User(
        id=uuid.uuid4(),
        name=data["name"],
        email=data["email"].strip().lower(),
        phone=data["phone"],
        hashed_password=hashed_password,
        role=role,
        status=ApprovalStatus.PENDING if role == UserRole.DONOR else ApprovalStatus.APPROVED,
        city=data["city"],
        area=data["area"],
        pincode=data.get("pincode"),
        latitude=data.get("latitude"),
        longitude=data.get("longitude"),
        blood_group=BloodGroup(data["blood_group"]) if data.get("blood_group") else None,
        date_of_birth=data.get("date_of_birth"),
        weight_kg=data.get("weight_kg"),
        medical_conditions=list(data.get("medical_conditions") or []),
        medications=list(data.get("medications") or []),
    )
    if user.status == ApprovalStatus.APPROVED:
        user.approved_at = datetime.utcnow()
    db.add(user)
    await db.flush()
    await db.refresh(user)
    logger.info("Registered %s %s (%s)", role.value, user.id, user.status.value)
    return user


async def update_profile(db: AsyncSession, user: User, changes: dict[str, Any]) -> dict[str, Any]:
    unknown = set(changes) - PROFILE_FIELDS
    if unknown:
        raise ValidationError(f"Fields cannot be edited: {', '.join(sorted(unknown))}")

    if user.role == UserRole.DONOR and user.status == ApprovalStatus.APPROVED:
        locked = [
            key for key in LOCKED_DONOR_FIELDS
            if key in changes and changes[key] != getattr(user, key)
        ]
        if locked:
            raise ValidationError(f"Cannot change {', '.join(sorted(locked))} after approval")

    if user.role == UserRole.DONOR and ("blood_group" in changes or "date_of_birth" in changes):
        check_donor_profile(
            changes.get("blood_group", user.blood_group),
            changes.get("date_of_birth", user.date_of_birth),
            user.weight_kg,
        )

    for key, value in changes.items():
        setattr(user, key, value)
    user.last_active = datetime.utcnow()
    await db.flush()
    await db.refresh(user)
    logger.info("Updated profile of %s fields=%s", user.id, sorted(changes))
    return user_to_dict(user, include_private=True)


async def change_password(db: AsyncSession, user: User, hashed_password: str) -> None:
    user.hashed_password = hashed_password
    await db.flush()
    logger.info("Password changed for %s", user.id)


async def set_availability(
    db: AsyncSession,
    user: User,
    is_available: bool,
    available_from: datetime | None = None,
) -> dict[str, Any]:
    if user.role != UserRole.DONOR:
        raise ValidationError("Only donors have an availability status")
    user.is_available = is_available
    if available_from is not None:
        user.available_from = available_from
    user.last_active = datetime.utcnow()
    await db.flush()
    logger.info("Donor %s availability -> %s", user.id, is_available)
    return {"is_available": user.is_available, "can_donate": can_donate(user)}


async def update_medical_info(db: AsyncSession, user: User, changes: dict[str, Any]) -> dict[str, Any]:
    if user.role != UserRole.DONOR:
        raise ValidationError("Only donors have medical information")
    weight = changes.get("weight_kg")
    if weight is not None and weight < MIN_DONOR_WEIGHT_KG:
        raise ValidationError(f"Minimum weight for donation is {MIN_DONOR_WEIGHT_KG} kg")
    last_date = changes.get("last_donation_date")
    if last_date is not None and last_date > datetime.utcnow():
        raise ValidationError("Last donation date cannot be in the future")

    for key in ("weight_kg", "last_donation_date", "last_donation_type", "medical_conditions", "medications"):
        if key in changes:
            value = changes[key]
            setattr(user, key, value.value if hasattr(value, "value") else value)
    await db.flush()
    await db.refresh(user)
    return user_to_dict(user, include_private=True)


async def touch_last_active(db: AsyncSession, user: User) -> None:
    user.last_active = datetime.utcnow()
    await db.flush()


# ---------------------------------------------------------------------------
# Approval workflow
# ---------------------------------------------------------------------------

async def set_approval(
    db: AsyncSession,
    *,
    user_id: uuid.UUID,
    admin: User,
    status: ApprovalStatus | str,
    reason: str | None = None,
    notes: str | None = None,
) -> dict[str, Any]:
    status = ApprovalStatus(status)
    user = await get_user(db, user_id)
    if user.role == UserRole.ADMIN:
        raise ValidationError("Admin accounts are not subject to approval")
    if status == ApprovalStatus.REJECTED and not reason:
        raise ValidationError("A rejection reason is required")

    now = datetime.utcnow()
    user.status = status
    if status == ApprovalStatus.APPROVED:
        user.approved_at = now
        user.approved_by = admin.id
        user.rejection_reason = None
    elif status == ApprovalStatus.REJECTED:
        user.rejected_at = now
        user.rejection_reason = reason
    if notes is not None:
        user.admin_notes = notes
    await db.flush()
    await db.refresh(user)

    await notification_service.dispatch_approval(user)
    logger.info("Admin %s set %s status to %s", admin.id, user.id, status.value)
    return user_to_dict(user, include_private=True)


# ---------------------------------------------------------------------------
# Listings
# ---------------------------------------------------------------------------

async def list_users(
    db: AsyncSession,
    *,
    role: str | None = None,
    status: str | None = None,
    blood_group: str | None = None,
    city: str | None = None,
    search: str | None = None,
    limit: int = 20,
    offset: int = 0,
) -> dict[str, Any]:
    query = select(User)
    if role:
        query = query.where(User.role == UserRole(role))
    if status:
        query = query.where(User.status == ApprovalStatus(status))
    if blood_group:
        query = query.where(User.blood_group == BloodGroup(blood_group))
    if city:
        query = query.where(func.lower(User.city) == city.strip().lower())
    if search:
        pattern = f"%{search.strip().lower()}%"
        query = query.where(or_(func.lower(User.name).like(pattern), func.lower(User.email).like(pattern)))

    total = (await db.execute(select(func.count()).select_from(query.subquery()))).scalar() or 0
    result = await db.execute(query.order_by(User.created_at.desc()).limit(limit).offset(offset))
    return {
        "items": [user_to_dict(u, include_private=True) for u in result.scalars().all()],
        "total": total,
        "limit": limit,
        "offset": offset,
    }


async def search_donors(
    db: AsyncSession,
    *,
    blood_group: str,
    city: str | None = None,
    eligible_only: bool = True,
    limit: int = 20,
) -> list[dict[str, Any]]:
    """Approved, available donors of a blood group, optionally in one city."""
    query = select(User).where(
        User.role == UserRole.DONOR,
        User.status == ApprovalStatus.APPROVED,
        User.is_available.is_(True),
        User.blood_group == BloodGroup(blood_group),
    )
    if city:
        query = query.where(func.lower(User.city) == city.strip().lower())
    result = await db.execute(query.order_by(User.total_donations.desc(), User.name))

    donors = []
    for donor in result.scalars().all():
        if eligible_only and not can_donate(donor):
            continue
        donors.append(user_to_dict(donor))
        if len(donors) >= limit:
            break
    return donors
