"""
Priority scoring for emergency requests.

Score = urgency base + time-to-deadline bonus + volume bonus + rarity bonus,
clamped to [0, 100].
"""

from __future__ import annotations

from datetime import datetime

from bloodfinder.models.emergency_request import UrgencyLevel
from bloodfinder.models.user import BloodGroup

MAX_PRIORITY = 100

URGENCY_BASE = {
    UrgencyLevel.CRITICAL: 40,
    UrgencyLevel.HIGH: 30,
    UrgencyLevel.MEDIUM: 20,
    UrgencyLevel.LOW: 10,
}

# Rare for matching purposes (includes AB+)
RARE_BLOOD_GROUPS = {
    BloodGroup.AB_NEG,
    BloodGroup.AB_POS,
    BloodGroup.B_NEG,
    BloodGroup.A_NEG,
    BloodGroup.O_NEG,
}


def is_rare(blood_group) -> bool:
    return BloodGroup(blood_group) in RARE_BLOOD_GROUPS


def _time_bonus(hours_left: float) -> int:
    if hours_left <= 6:
        return 30
    if hours_left <= 24:
        return 20
    if hours_left <= 72:
        return 10
    return 0


def _volume_bonus(units: int) -> int:
    if units >= 5:
        return 20
    if units >= 3:
        return 10
    return 0


def score_priority(
    urgency_level,
    required_by: datetime,
    units_required: int,
    blood_group,
    now: datetime | None = None,
) -> int:
    now = now or datetime.utcnow()
    hours_left = (required_by - now).total_seconds() / 3600

    score = URGENCY_BASE[UrgencyLevel(urgency_level)]
    score += _time_bonus(hours_left)
    score += _volume_bonus(units_required)
    if is_rare(blood_group):
        score += 10
    return max(0, min(MAX_PRIORITY, score))
