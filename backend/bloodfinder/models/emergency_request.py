"""
Emergency blood request models.

A recipient raises an EmergencyRequest; donors answer with DonorResponse rows
(one per donor, upserted). The request owns its responses.
"""

import enum
import uuid
from datetime import datetime, timedelta

from sqlalchemy import (
    Column, String, Enum, DateTime, Integer, Float, ForeignKey, Text, UniqueConstraint, Uuid, Index,
)
from sqlalchemy.orm import relationship

from bloodfinder.db.postgres import Base
from bloodfinder.models.user import BloodGroup


DEFAULT_EXPIRY_DAYS = 30


class UrgencyLevel(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class RequestStatus(str, enum.Enum):
    ACTIVE = "active"
    PARTIALLY_FULFILLED = "partially_fulfilled"
    FULFILLED = "fulfilled"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class ResponseType(str, enum.Enum):
    INTERESTED = "interested"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class BloodComponent(str, enum.Enum):
    WHOLE_BLOOD = "whole_blood"
    PLATELETS = "platelets"
    PLASMA = "plasma"
    RED_CELLS = "red_cells"


class Gender(str, enum.Enum):
    MALE = "male"
    FEMALE = "female"
    OTHER = "other"


def _default_expiry():
    return datetime.utcnow() + timedelta(days=DEFAULT_EXPIRY_DAYS)


def new_response_code() -> str:
    return uuid.uuid4().hex[:8].upper()


class EmergencyRequest(Base):
    __tablename__ = "emergency_requests"
    __table_args__ = (
        Index("ix_emergency_match", "blood_group", "hospital_city", "status"),
        Index("ix_emergency_status_required_by", "status", "required_by"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    requester_id = Column(Uuid, ForeignKey("users.id"), nullable=False, index=True)

    # --- Patient ---
    patient_name = Column(String(100), nullable=False)
    patient_age = Column(Integer, nullable=False)
    patient_gender = Column(Enum(Gender), nullable=False)
    blood_group = Column(Enum(BloodGroup), nullable=False)
    contact_number = Column(String(10), nullable=False)
    alternate_contact = Column(String(10), nullable=True)

    # --- Medical ---
    condition = Column(Text, nullable=False)
    urgency_level = Column(Enum(UrgencyLevel), nullable=False)
    units_required = Column(Integer, nullable=False)
    component = Column(Enum(BloodComponent), default=BloodComponent.WHOLE_BLOOD)
    required_by = Column(DateTime, nullable=False)
    additional_notes = Column(Text, nullable=True)

    # --- Hospital ---
    hospital_name = Column(String(200), nullable=False)
    hospital_street = Column(String(200), nullable=True)
    hospital_city = Column(String(100), nullable=False)
    hospital_pincode = Column(String(6), nullable=True)
    hospital_latitude = Column(Float, nullable=True)
    hospital_longitude = Column(Float, nullable=True)
    hospital_contact = Column(String(10), nullable=False)
    doctor_name = Column(String(100), nullable=False)

    # --- Lifecycle ---
    status = Column(Enum(RequestStatus), nullable=False, default=RequestStatus.ACTIVE)
    units_fulfilled = Column(Integer, nullable=False, default=0)
    fulfilled_at = Column(DateTime, nullable=True)
    selected_donor_id = Column(Uuid, ForeignKey("users.id"), nullable=True)
    selected_at = Column(DateTime, nullable=True)
    completion_notes = Column(Text, nullable=True)

    # --- Admin ---
    priority_score = Column(Integer, nullable=False, default=0)
    reviewed_by = Column(Uuid, nullable=True)
    reviewed_at = Column(DateTime, nullable=True)
    admin_notes = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    expires_at = Column(DateTime, default=_default_expiry)

    responses = relationship(
        "DonorResponse",
        back_populates="emergency_request",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="DonorResponse.created_at",
    )

    def response_for(self, donor_id):
        """The response row for *donor_id*, or None."""
        for response in self.responses or []:
            if str(response.donor_id) == str(donor_id):
                return response
        return None


class DonorResponse(Base):
    __tablename__ = "request_responses"
    __table_args__ = (
        UniqueConstraint("request_id", "donor_id", name="uq_response_request_donor"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    request_id = Column(Uuid, ForeignKey("emergency_requests.id", ondelete="CASCADE"), nullable=False, index=True)
    donor_id = Column(Uuid, ForeignKey("users.id"), nullable=False, index=True)
    response_type = Column(Enum(ResponseType), nullable=False, default=ResponseType.INTERESTED)
    responded_at = Column(DateTime, default=datetime.utcnow)
    scheduled_time = Column(DateTime, nullable=True)
    notes = Column(String(500), nullable=True)
    verification_code = Column(String(16), unique=True, nullable=False, default=new_response_code)
    created_at = Column(DateTime, default=datetime.utcnow)

    emergency_request = relationship("EmergencyRequest", back_populates="responses")
