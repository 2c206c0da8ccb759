"""
Donor matching, topic naming and best-effort delivery.
"""

import asyncio
from unittest.mock import AsyncMock

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from bloodfinder.models.user import User, UserRole, ApprovalStatus, BloodGroup
from bloodfinder.db import postgres
from bloodfinder.models.emergency_request import EmergencyRequest, RequestStatus, UrgencyLevel
from bloodfinder.services.notification_service import (
    Notification, publish, donor_matches, topics_for_user, build_new_request_notifications,
    wants_rare_broadcast, city_topic, blood_group_topic, dispatch_broadcast, ADMIN_ROOM,
)
from bloodfinder.api.websocket.handler import SubscriptionRegistry
from conftest import build_donor, build_recipient, build_request
from tasks.notification_tasks import broadcast_emergency


class TestPublish:
    def test_failures_are_swallowed(self):
        """Should keep delivering after one topic fails and report every attempt"""
        emit = AsyncMock(side_effect=[ConnectionError("gone"), None, None])
        notifications = [
            Notification(topic=f"donor-{i}", event="emergency_request", payload={"n": i})
            for i in range(3)
        ]

        targets = asyncio.run(publish(notifications, emit))

        assert targets == ["donor-0", "donor-1", "donor-2"]
        assert emit.await_count == 3
        emit.assert_any_await("donor-2", "emergency_request", {"n": 2})

    def test_uses_default_emitter(self, emitter):
        asyncio.run(publish([Notification(topic=ADMIN_ROOM, event="ping")]))
        emitter.assert_awaited_once_with(ADMIN_ROOM, "ping", {})


class TestMatching:
    def test_city_match_is_case_insensitive(self):
        recipient = build_recipient()
        request = build_request(recipient, hospital_city="  PUNE ")
        assert donor_matches(build_donor(city="pune"), request)

    def test_rejects_other_city_group_or_state(self):
        request = build_request(build_recipient())
        assert not donor_matches(build_donor(city="Mumbai"), request)
        assert not donor_matches(build_donor(blood_group=BloodGroup.O_POS), request)
        assert not donor_matches(build_donor(is_available=False), request)
        assert not donor_matches(build_donor(status=ApprovalStatus.PENDING), request)

    def test_rare_broadcast_only_for_critical_rare(self):
        recipient = build_recipient()
        assert wants_rare_broadcast(build_request(recipient, urgency_level=UrgencyLevel.CRITICAL))
        assert not wants_rare_broadcast(build_request(recipient, urgency_level=UrgencyLevel.HIGH))
        assert not wants_rare_broadcast(
            build_request(recipient, urgency_level=UrgencyLevel.CRITICAL, blood_group=BloodGroup.O_POS)
        )


class TestNewRequestNotifications:
    def test_targets(self):
        """Should address each matched donor, the requester and the admin room"""
        recipient = build_recipient()
        request = build_request(recipient)
        donors = [build_donor(), build_donor()]

        notifications = build_new_request_notifications(request, donors)
        topics = [n.topic for n in notifications]

        assert topics == [
            f"donor-{donors[0].id}",
            f"donor-{donors[1].id}",
            f"recipient-{recipient.id}",
            ADMIN_ROOM,
        ]
        assert notifications[0].payload["request_id"] == str(request.id)
        assert notifications[0].payload["blood_group"] == "O-"

    def test_rare_broadcast_adds_blood_group_topic(self):
        request = build_request(build_recipient())
        topics = [n.topic for n in build_new_request_notifications(request, [], rare_broadcast=True)]
        assert "donors-O-" in topics


class TestTopics:
    def test_topic_names(self):
        assert city_topic(" Pune ") == "donors-pune"
        assert blood_group_topic("AB+") == "donors-AB+"

    def test_approved_donor_topics(self):
        donor = build_donor(city="Pune")
        assert topics_for_user(donor) == [f"donor-{donor.id}", "donors-O-", "donors-pune"]

    def test_pending_donor_only_gets_personal_topic(self):
        donor = build_donor(status=ApprovalStatus.PENDING)
        assert topics_for_user(donor) == [f"donor-{donor.id}"]

    def test_recipient_and_admin(self):
        recipient = build_recipient()
        admin = User(role=UserRole.ADMIN)
        assert topics_for_user(recipient) == [f"recipient-{recipient.id}"]
        assert topics_for_user(admin) == [ADMIN_ROOM]


class TestSubscriptionRegistry:
    def test_disconnect_prunes_empty_topics(self):
        """Should forget a topic once its last session leaves"""
        registry = SubscriptionRegistry()
        registry.subscribe("sid-1", ["donors-O-", "donor-1"], user_id="1")
        registry.subscribe("sid-2", ["donors-O-"], user_id="2")

        assert registry.subscribers("donors-O-") == {"sid-1", "sid-2"}
        assert registry.remove("sid-1") == {"donors-O-", "donor-1"}
        assert registry.topics() == ["donors-O-"]
        assert registry.user_for("sid-1") is None

        registry.remove("sid-2")
        assert registry.topics() == []

    def test_remove_unknown_sid(self):
        assert SubscriptionRegistry().remove("missing") == set()


class TestBroadcast:
    def test_broadcast_targets(self, run_db, factories):
        """Should reach matched donors, the city room, the rare blood group room and admins"""
        recipient = factories.recipient()
        near = factories.donor(city="Pune")
        elsewhere = factories.donor(city="Delhi")
        request = factories.request(recipient, urgency_level=UrgencyLevel.CRITICAL)
        emit = AsyncMock()

        async def scenario(factory):
            async with factory() as session:
                session.add_all([recipient, near, elsewhere, request])
                await session.commit()
            async with factory() as session:
                stored = await session.get(EmergencyRequest, request.id)
                return await dispatch_broadcast(session, stored, "Two units short", emit=emit)

        targets = run_db(scenario)

        assert targets == [f"donor-{near.id}", "donors-pune", "donors-O-", ADMIN_ROOM]
        assert all(call.args[1] == "emergency_broadcast" for call in emit.await_args_list)
        assert emit.await_args_list[0].args[2]["message"] == "Two units short"

    def test_non_critical_broadcast_skips_blood_group_room(self, run_db, factories):
        recipient = factories.recipient()
        request = factories.request(recipient, urgency_level=UrgencyLevel.MEDIUM)

        async def scenario(factory):
            async with factory() as session:
                session.add_all([recipient, request])
                await session.commit()
            async with factory() as session:
                stored = await session.get(EmergencyRequest, request.id)
                return await dispatch_broadcast(session, stored, emit=AsyncMock())

        assert run_db(scenario) == ["donors-pune", ADMIN_ROOM]


class TestBroadcastTask:
    def _use_database(self, tmp_path, monkeypatch):
        engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'bloodfinder_test.db'}", poolclass=NullPool)
        monkeypatch.setattr(
            postgres, "async_session", async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False),
        )

    def _seed(self, run_db, *objects):
        async def scenario(factory):
            async with factory() as session:
                session.add_all(objects)
                await session.commit()

        run_db(scenario)

    def test_open_request_is_broadcast(self, run_db, factories, tmp_path, monkeypatch, emitter):
        """Should fan an open request out from the worker"""
        recipient = factories.recipient()
        donor = factories.donor()
        request = factories.request(recipient)
        self._seed(run_db, recipient, donor, request)
        self._use_database(tmp_path, monkeypatch)

        targets = broadcast_emergency(str(request.id), "Urgent")

        assert targets == [f"donor-{donor.id}", "donors-pune", ADMIN_ROOM]
        assert emitter.await_count == 3

    def test_closed_request_is_skipped(self, run_db, factories, tmp_path, monkeypatch, emitter):
        """Should not broadcast a request that is no longer open"""
        recipient = factories.recipient()
        donor = factories.donor()
        request = factories.request(recipient, status=RequestStatus.FULFILLED, units_fulfilled=1)
        self._seed(run_db, recipient, donor, request)
        self._use_database(tmp_path, monkeypatch)

        assert broadcast_emergency(str(request.id)) == []
        emitter.assert_not_awaited()
