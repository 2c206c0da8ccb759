"""
Shared fixtures.

Database tests run against a throwaway SQLite file through aiosqlite. Each
test hands an async scenario to ``run_db``; the scenario receives a session
factory and runs inside a single event loop with a fresh schema.
"""
import asyncio
import uuid
from datetime import date, datetime, timedelta
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from bloodfinder.db.postgres import init_models
from bloodfinder.models.user import User, UserRole, ApprovalStatus, BloodGroup
from bloodfinder.models.emergency_request import (
    EmergencyRequest, UrgencyLevel, RequestStatus, BloodComponent, Gender,
)
from bloodfinder.services import notification_service


@pytest.fixture(autouse=True)
def emitter(monkeypatch):
    """Replace the Socket.IO emitter so no test talks to Redis."""
    mock = AsyncMock()
    monkeypatch.setattr(notification_service, "_default_emitter", lambda: mock)
    return mock


@pytest.fixture
def run_db(tmp_path):
    url = f"sqlite+aiosqlite:///{tmp_path / 'bloodfinder_test.db'}"

    def _run(scenario):
        async def _main():
            engine = create_async_engine(url)
            try:
                await init_models(engine)
                factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
                return await scenario(factory)
            finally:
                await engine.dispose()

        return asyncio.run(_main())

    return _run


def build_donor(**overrides) -> User:
    n = uuid.uuid4().hex[:8]
    fields = dict(
        id=uuid.uuid4(),
        name=f"Donor {n}",
        email=f"donor-{n}@example.com",
        phone="9800000001",
        hashed_password="not-a-real-hash",
        role=UserRole.DONOR,
        status=ApprovalStatus.APPROVED,
        city="Pune",
        area="Kothrud",
        blood_group=BloodGroup.O_NEG,
        date_of_birth=date(1990, 1, 1),
        weight_kg=70.0,
        is_available=True,
        total_donations=0,
        reward_points=0,
    )
    fields.update(overrides)
    return User(**fields)


def build_recipient(**overrides) -> User:
    n = uuid.uuid4().hex[:8]
    fields = dict(
        id=uuid.uuid4(),
        name=f"Recipient {n}",
        email=f"recipient-{n}@example.com",
        phone="9800000002",
        hashed_password="not-a-real-hash",
        role=UserRole.RECIPIENT,
        status=ApprovalStatus.APPROVED,
        city="Pune",
        area="Aundh",
        total_requests=0,
    )
    fields.update(overrides)
    return User(**fields)


def build_request(requester: User, **overrides) -> EmergencyRequest:
    now = datetime.utcnow()
    fields = dict(
        id=uuid.uuid4(),
        requester_id=requester.id,
        patient_name="Patient",
        patient_age=40,
        patient_gender=Gender.FEMALE,
        blood_group=BloodGroup.O_NEG,
        contact_number="9800000003",
        condition="Surgery",
        urgency_level=UrgencyLevel.HIGH,
        units_required=1,
        component=BloodComponent.WHOLE_BLOOD,
        required_by=now + timedelta(days=2),
        hospital_name="Sassoon General Hospital",
        hospital_city="Pune",
        hospital_contact="9800000004",
        doctor_name="Dr. Rao",
        status=RequestStatus.ACTIVE,
        units_fulfilled=0,
        priority_score=50,
        created_at=now,
        expires_at=now + timedelta(days=30),
    )
    fields.update(overrides)
    return EmergencyRequest(**fields)


def request_payload(**overrides) -> dict:
    data = dict(
        patient_name="Patient",
        patient_age=40,
        patient_gender=Gender.MALE,
        blood_group=BloodGroup.O_NEG,
        contact_number="9800000003",
        condition="Road accident",
        urgency_level=UrgencyLevel.CRITICAL,
        units_required=6,
        component=BloodComponent.WHOLE_BLOOD,
        required_by=datetime.utcnow() + timedelta(hours=4),
        hospital_name="Sassoon General Hospital",
        hospital_city="Pune",
        hospital_contact="9800000004",
        doctor_name="Dr. Rao",
    )
    data.update(overrides)
    return data


@pytest.fixture
def factories():
    class _Factories:
        donor = staticmethod(build_donor)
        recipient = staticmethod(build_recipient)
        request = staticmethod(build_request)
        payload = staticmethod(request_payload)

    return _Factories
