"""
Seed script: creates an admin, a pool of donors across several cities and
blood groups, a few recipients and a handful of open emergency requests.

Run from the backend directory:
    python seed.py
"""
import asyncio
import random
import uuid
from datetime import datetime, date, timedelta

from bloodfinder.db.postgres import engine, async_session, init_models
from bloodfinder.models.user import User, UserRole, ApprovalStatus, BloodGroup
from bloodfinder.models.emergency_request import (
    EmergencyRequest, UrgencyLevel, RequestStatus, BloodComponent, Gender,
)
from bloodfinder.api.middleware.auth import hash_password
from bloodfinder.services.priority import score_priority

random.seed(7)

# ─────────────────────────────────────────────────────────────────────
#  Reference data
# ─────────────────────────────────────────────────────────────────────

CITIES = {
    "Mumbai": ["Andheri", "Bandra", "Dadar", "Powai"],
    "Pune": ["Kothrud", "Hadapsar", "Aundh"],
    "Delhi": ["Dwarka", "Saket", "Rohini"],
    "Bengaluru": ["Indiranagar", "Whitefield", "Jayanagar"],
}
HOSPITALS = {
    "Mumbai": "KEM Hospital",
    "Pune": "Sassoon General Hospital",
    "Delhi": "AIIMS",
    "Bengaluru": "Victoria Hospital",
}
FIRST_NAMES = [
    "Aarav", "Vivaan", "Aditya", "Ishaan", "Kabir", "Rohan", "Arjun", "Sai",
    "Ananya", "Diya", "Meera", "Priya", "Sneha", "Kavya", "Riya", "Nisha",
]
LAST_NAMES = ["Sharma", "Patel", "Iyer", "Reddy", "Nair", "Gupta", "Singh", "Desai"]

# Indian population blood group distribution (approximate)
BLOOD_GROUPS = list(BloodGroup)
BLOOD_WEIGHTS = [22, 1, 32, 2, 8, 1, 32, 2]

DONORS_PER_CITY = 15


def _name() -> str:
    return f"{random.choice(FIRST_NAMES)} {random.choice(LAST_NAMES)}"


def _phone(n: int) -> str:
    return f"98{n:08d}"


async def seed():
    await init_models(engine)

    async with async_session() as db:
        admin = User(
            id=uuid.uuid4(),
            name="System Admin",
            email="admin@bloodfinder.local",
            phone=_phone(0),
            hashed_password=hash_password("admin123456"),
            role=UserRole.ADMIN,
            status=ApprovalStatus.APPROVED,
            city="Mumbai",
            area="Dadar",
            approved_at=datetime.utcnow(),
        )
        db.add(admin)

        donor_password = hash_password("donor123456")
        n = 1
        for city, areas in CITIES.items():
            for _ in range(DONORS_PER_CITY):
                last_days = random.choice([None, 20, 45, 70, 120, 200])
                approved = random.random() < 0.85
                db.add(User(
                    id=uuid.uuid4(),
                    name=_name(),
                    email=f"donor{n}@bloodfinder.local",
                    phone=_phone(n),
                    hashed_password=donor_password,
                    role=UserRole.DONOR,
                    status=ApprovalStatus.APPROVED if approved else ApprovalStatus.PENDING,
                    city=city,
                    area=random.choice(areas),
                    blood_group=random.choices(BLOOD_GROUPS, weights=BLOOD_WEIGHTS)[0],
                    date_of_birth=date.today() - timedelta(days=365 * random.randint(19, 60)),
                    weight_kg=round(random.uniform(52, 95), 1),
                    last_donation_date=(
                        datetime.utcnow() - timedelta(days=last_days) if last_days else None
                    ),
                    last_donation_type="blood" if last_days else None,
                    is_available=random.random() < 0.8,
                    approved_at=datetime.utcnow() if approved else None,
                    approved_by=admin.id if approved else None,
                ))
                n += 1

        recipient_password = hash_password("recipient123456")
        recipients = []
        for i, city in enumerate(CITIES):
            recipient = User(
                id=uuid.uuid4(),
                name=_name(),
                email=f"recipient{i + 1}@bloodfinder.local",
                phone=_phone(500 + i),
                hashed_password=recipient_password,
                role=UserRole.RECIPIENT,
                status=ApprovalStatus.APPROVED,
                city=city,
                area=CITIES[city][0],
                approved_at=datetime.utcnow(),
            )
            db.add(recipient)
            recipients.append(recipient)

        now = datetime.utcnow()
        request_count = 0
        for recipient in recipients:
            for urgency in random.sample(list(UrgencyLevel), 2):
                blood_group = random.choices(BLOOD_GROUPS, weights=BLOOD_WEIGHTS)[0]
                required_by = now + timedelta(hours=random.choice([4, 12, 36, 96]))
                units = random.randint(1, 6)
                db.add(EmergencyRequest(
                    id=uuid.uuid4(),
                    requester_id=recipient.id,
                    patient_name=_name(),
                    patient_age=random.randint(1, 85),
                    patient_gender=random.choice(list(Gender)),
                    blood_group=blood_group,
                    contact_number=recipient.phone,
                    condition=random.choice(["Road accident", "Surgery", "Thalassemia", "Dengue", "Childbirth"]),
                    urgency_level=urgency,
                    units_required=units,
                    component=BloodComponent.WHOLE_BLOOD,
                    required_by=required_by,
                    hospital_name=HOSPITALS[recipient.city],
                    hospital_city=recipient.city,
                    hospital_contact=_phone(900 + request_count),
                    doctor_name=f"Dr. {_name()}",
                    status=RequestStatus.ACTIVE,
                    priority_score=score_priority(urgency, required_by, units, blood_group, now=now),
                    created_at=now,
                    expires_at=now + timedelta(days=30),
                ))
                recipient.total_requests = (recipient.total_requests or 0) + 1
                request_count += 1

        await db.commit()

    print("=" * 60)
    print("  SEED DATA CREATED SUCCESSFULLY")
    print("=" * 60)
    print(f"  Donors:      {n - 1} across {len(CITIES)} cities")
    print(f"  Recipients:  {len(recipients)}")
    print(f"  Requests:    {request_count}")
    print()
    print("  Admin:      admin@bloodfinder.local / admin123456")
    print("  Donors:     donor<N>@bloodfinder.local / donor123456")
    print("  Recipients: recipient<N>@bloodfinder.local / recipient123456")
    print("=" * 60)


if __name__ == "__main__":
    asyncio.run(seed())
