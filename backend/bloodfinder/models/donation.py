import enum
import secrets
import string
import uuid
from datetime import datetime

from sqlalchemy import Column, String, Enum, DateTime, Integer, ForeignKey, Text, Uuid, Index

from bloodfinder.db.postgres import Base
from bloodfinder.models.user import BloodGroup


class DonationType(str, enum.Enum):
    BLOOD = "blood"
    PLASMA = "plasma"
    PLATELETS = "platelets"
    RED_CELLS = "red_cells"
    WHITE_CELLS = "white_cells"


class DonationStatus(str, enum.Enum):
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REJECTED = "rejected"


class DonationSource(str, enum.Enum):
    EMERGENCY_REQUEST = "emergency_request"
    WALK_IN = "walk_in"
    SCHEDULED = "scheduled"
    CAMP = "camp"


# Reward bonus groups (AB+ is rare for matching but earns no bonus)
REWARD_RARE_GROUPS = {BloodGroup.AB_NEG, BloodGroup.B_NEG, BloodGroup.A_NEG, BloodGroup.O_NEG}

_CODE_ALPHABET = string.ascii_uppercase + string.digits


def generate_verification_code() -> str:
    """``DON`` followed by 8 random upper-case alphanumerics."""
    return "DON" + "".join(secrets.choice(_CODE_ALPHABET) for _ in range(8))


class DonationHistory(Base):
    __tablename__ = "donation_history"
    __table_args__ = (
        Index("ix_donation_donor_created", "donor_id", "created_at"),
        Index("ix_donation_recipient_created", "recipient_id", "created_at"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    donor_id = Column(Uuid, ForeignKey("users.id"), nullable=False)
    recipient_id = Column(Uuid, ForeignKey("users.id"), nullable=False)
    emergency_request_id = Column(Uuid, ForeignKey("emergency_requests.id"), nullable=True, index=True)

    donation_type = Column(Enum(DonationType), nullable=False, default=DonationType.BLOOD)
    units_collected = Column(Integer, nullable=False, default=1)
    volume_ml = Column(Integer, nullable=False)
    blood_group = Column(Enum(BloodGroup), nullable=False)

    hospital_name = Column(String(200), nullable=False)
    hospital_city = Column(String(100), nullable=False)

    source = Column(Enum(DonationSource), nullable=False, default=DonationSource.EMERGENCY_REQUEST)
    status = Column(Enum(DonationStatus), nullable=False, default=DonationStatus.SCHEDULED, index=True)
    scheduled_date = Column(DateTime, nullable=False)
    actual_donation_date = Column(DateTime, nullable=True)
    completion_time = Column(DateTime, nullable=True)

    verification_code = Column(String(16), unique=True, nullable=False, default=generate_verification_code)
    reward_points = Column(Integer, nullable=False, default=0)
    notes = Column(Text, nullable=True)
    updated_by = Column(Uuid, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def calculate_reward_points(self) -> int:
        points = (self.units_collected or 0) * 10
        if self.source == DonationSource.EMERGENCY_REQUEST:
            points += 20
        if self.blood_group in REWARD_RARE_GROUPS:
            points += 15
        if self.donation_type == DonationType.PLASMA:
            points += 5
        return points
