"""
Donor eligibility rules.

Everything here is pure: no database access and no exceptions from
``can_donate``.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta

from bloodfinder.models.user import User, UserRole
from bloodfinder.services.errors import ValidationError

WHOLE_BLOOD_GAP_DAYS = 56
PLASMA_GAP_DAYS = 14

MIN_DONOR_AGE = 18
MAX_DONOR_AGE = 65
MIN_DONOR_WEIGHT_KG = 50


def required_gap_days(last_donation_type: str | None) -> int:
    """Days a donor must wait after a donation of the given type."""
    if last_donation_type == "plasma":
        return PLASMA_GAP_DAYS
    return WHOLE_BLOOD_GAP_DAYS


def _as_datetime(value) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.combine(value, datetime.min.time())


def can_donate(user: User, now: datetime | None = None) -> bool:
    if user is None or user.role != UserRole.DONOR or not user.is_available:
        return False
    if user.last_donation_date is None:
        return True
    now = now or datetime.utcnow()
    elapsed = (now - _as_datetime(user.last_donation_date)).days
    return elapsed >= required_gap_days(user.last_donation_type)


def next_eligible_date(user: User) -> datetime | None:
    """When the donation gap ends, or None if the donor has never donated."""
    if user.last_donation_date is None:
        return None
    gap = required_gap_days(user.last_donation_type)
    return _as_datetime(user.last_donation_date) + timedelta(days=gap)


def donor_age(date_of_birth: date, today: date | None = None) -> int:
    today = today or date.today()
    return int((today - date_of_birth).days // 365.25)


def check_donor_profile(blood_group, date_of_birth: date | None, weight_kg: float | None) -> None:
    """Registration-time checks for a donor profile."""
    if blood_group is None:
        raise ValidationError("Blood group is required for donors")
    if date_of_birth is None:
        raise ValidationError("Date of birth is required for donors")
    age = donor_age(date_of_birth)
    if age < MIN_DONOR_AGE or age > MAX_DONOR_AGE:
        raise ValidationError(f"Donor age must be between {MIN_DONOR_AGE} and {MAX_DONOR_AGE} years")
    if weight_kg is None:
        raise ValidationError("Weight is required for donors")
    if weight_kg < MIN_DONOR_WEIGHT_KG:
        raise ValidationError(f"Minimum weight for donation is {MIN_DONOR_WEIGHT_KG} kg")
