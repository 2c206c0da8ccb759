import enum
import uuid
from datetime import date, datetime

from sqlalchemy import Column, String, Enum, DateTime, Boolean, Date, Float, Integer, JSON, Uuid

from bloodfinder.db.postgres import Base


class UserRole(str, enum.Enum):
    DONOR = "donor"
    RECIPIENT = "recipient"
    ADMIN = "admin"


class ApprovalStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    SUSPENDED = "suspended"


class BloodGroup(str, enum.Enum):
    A_POS = "A+"
    A_NEG = "A-"
    B_POS = "B+"
    B_NEG = "B-"
    AB_POS = "AB+"
    AB_NEG = "AB-"
    O_POS = "O+"
    O_NEG = "O-"


class DonationTimePreference(str, enum.Enum):
    MORNING = "morning"
    AFTERNOON = "afternoon"
    EVENING = "evening"
    ANY = "any"


class User(Base):
    __tablename__ = "users"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(50), nullable=False)
    email = Column(String, unique=True, nullable=False, index=True)
    phone = Column(String(10), nullable=False)
    hashed_password = Column(String, nullable=False)
    role = Column(Enum(UserRole), nullable=False, default=UserRole.DONOR)
    status = Column(Enum(ApprovalStatus), nullable=False, default=ApprovalStatus.PENDING)

    # --- Address ---
    city = Column(String, nullable=False, index=True)
    area = Column(String, nullable=False)
    pincode = Column(String(6), nullable=True)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)

    # --- Medical (donors) ---
    blood_group = Column(Enum(BloodGroup), nullable=True, index=True)
    date_of_birth = Column(Date, nullable=True)
    weight_kg = Column(Float, nullable=True)
    last_donation_date = Column(DateTime, nullable=True)
    last_donation_type = Column(String, nullable=True)  # DonationType value
    medical_conditions = Column(JSON, default=list)
    medications = Column(JSON, default=list)

    # --- Availability (donors) ---
    is_available = Column(Boolean, default=True)
    available_from = Column(DateTime, default=datetime.utcnow)
    preferred_donation_time = Column(Enum(DonationTimePreference), default=DonationTimePreference.ANY)

    # --- Approval bookkeeping ---
    approved_at = Column(DateTime, nullable=True)
    approved_by = Column(Uuid, nullable=True)
    rejected_at = Column(DateTime, nullable=True)
    rejection_reason = Column(String, nullable=True)
    admin_notes = Column(String, nullable=True)

    # --- Stats ---
    total_donations = Column(Integer, default=0)
    total_requests = Column(Integer, default=0)
    reward_points = Column(Integer, default=0)
    last_active = Column(DateTime, default=datetime.utcnow)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def is_approved(self) -> bool:
        return self.status == ApprovalStatus.APPROVED

    @property
    def is_donor(self) -> bool:
        return self.role == UserRole.DONOR

    @property
    def age(self):
        """Whole years since date of birth, or None when unknown."""
        if self.date_of_birth is None:
            return None
        return int((date.today() - self.date_of_birth).days // 365.25)

    @property
    def full_address(self) -> str:
        suffix = f" - {self.pincode}" if self.pincode else ""
        return f"{self.area}, {self.city}{suffix}"
