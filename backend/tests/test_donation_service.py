"""
Donation lifecycle, reward points and their effect on requests and donors.
"""

import re
import uuid
from datetime import datetime, timedelta

import pytest

from bloodfinder.models.user import User, BloodGroup
from bloodfinder.models.emergency_request import EmergencyRequest, RequestStatus, ResponseType
from bloodfinder.models.donation import (
    DonationHistory, DonationType, DonationStatus, DonationSource, generate_verification_code,
)
from bloodfinder.services import donation_service, emergency_service
from bloodfinder.services.errors import IneligibleError, NotFoundError


async def _seed(factory, *objects):
    async with factory() as session:
        session.add_all(objects)
        await session.commit()


async def _respond_and_select(factory, request, recipient, donor, units=1):
    async with factory() as session:
        await emergency_service.add_donor_response(session, request_id=request.id, donor=donor)
        donation = await emergency_service.select_donor(
            session,
            request_id=request.id,
            recipient=recipient,
            donor_id=donor.id,
            scheduled_date=datetime.utcnow() + timedelta(hours=2),
            units=units,
        )
        await session.commit()
    return donation


async def _set_status(factory, donation, actor, new_status):
    async with factory() as session:
        result = await donation_service.update_status(
            session, donation_id=uuid.UUID(donation["id"]), actor=actor, new_status=new_status,
        )
        await session.commit()
    return result


class TestCompletion:
    def test_completion_credits_donor_and_fulfils_request(self, run_db, factories):
        """Should award points, update donor stats, fulfil the request and free the slot"""
        recipient = factories.recipient()
        donor = factories.donor()
        request = factories.request(recipient, units_required=1)

        async def scenario(factory):
            await _seed(factory, recipient, donor, request)
            donation = await _respond_and_select(factory, request, recipient, donor)
            completed = await _set_status(factory, donation, recipient, DonationStatus.COMPLETED)
            async with factory() as session:
                stored_donor = await session.get(User, donor.id)
                stored_request = await session.get(EmergencyRequest, request.id)
                response = stored_request.response_for(donor.id)
                stats = await donation_service.donor_statistics(session, donor.id)
                board = await donation_service.leaderboard(session)
                return completed, stored_donor, stored_request, response, stats, board

        completed, stored_donor, stored_request, response, stats, board = run_db(scenario)

        # 1 unit * 10 + emergency 20 + rare O- 15
        assert completed["reward_points"] == 45
        assert completed["status"] == "completed"
        assert completed["actual_donation_date"] is not None

        assert stored_donor.total_donations == 1
        assert stored_donor.reward_points == 45
        assert stored_donor.last_donation_type == DonationType.BLOOD.value
        assert stored_donor.last_donation_date is not None

        assert stored_request.status == RequestStatus.FULFILLED
        assert stored_request.units_fulfilled == 1
        assert stored_request.fulfilled_at is not None
        assert stored_request.selected_donor_id is None
        assert response.response_type == ResponseType.COMPLETED

        assert stats["total_donations"] == 1
        assert stats["units_donated"] == 1
        assert stats["reward_points"] == 45
        assert board[0]["donor_id"] == str(donor.id)

    def test_partial_completion_allows_next_donor(self, run_db, factories):
        """Should mark the request partially fulfilled and accept a successive selection"""
        recipient = factories.recipient()
        first = factories.donor()
        second = factories.donor()
        request = factories.request(recipient, units_required=2)

        async def scenario(factory):
            await _seed(factory, recipient, first, second, request)
            donation = await _respond_and_select(factory, request, recipient, first)
            await _set_status(factory, donation, recipient, DonationStatus.COMPLETED)
            async with factory() as session:
                midway = (await session.get(EmergencyRequest, request.id)).status
            follow_up = await _respond_and_select(factory, request, recipient, second)
            async with factory() as session:
                stored = await session.get(EmergencyRequest, request.id)
                return midway, follow_up, stored.selected_donor_id

        midway, follow_up, selected = run_db(scenario)
        assert midway == RequestStatus.PARTIALLY_FULFILLED
        assert follow_up["donor_id"] == str(second.id)
        assert selected == second.id

    def test_completed_units_count_by_units_collected(self, run_db, factories):
        recipient = factories.recipient()
        donor = factories.donor(blood_group=BloodGroup.A_POS)
        request = factories.request(recipient, blood_group=BloodGroup.A_POS, units_required=2)

        async def scenario(factory):
            await _seed(factory, recipient, donor, request)
            donation = await _respond_and_select(factory, request, recipient, donor, units=2)
            completed = await _set_status(factory, donation, recipient, DonationStatus.COMPLETED)
            async with factory() as session:
                return completed, await session.get(EmergencyRequest, request.id)

        completed, stored = run_db(scenario)
        # 2 units * 10 + emergency 20
        assert completed["reward_points"] == 40
        assert stored.units_fulfilled == 2
        assert stored.status == RequestStatus.FULFILLED


class TestCancellation:
    def test_donor_cancel_releases_selection(self, run_db, factories):
        """Should free the request for another donor when the selected donor cancels"""
        recipient = factories.recipient()
        first = factories.donor()
        second = factories.donor()
        request = factories.request(recipient)

        async def scenario(factory):
            await _seed(factory, recipient, first, second, request)
            donation = await _respond_and_select(factory, request, recipient, first)
            cancelled = await _set_status(factory, donation, first, DonationStatus.CANCELLED)
            async with factory() as session:
                stored = await session.get(EmergencyRequest, request.id)
                released = stored.selected_donor_id, stored.response_for(first.id).response_type
            follow_up = await _respond_and_select(factory, request, recipient, second)
            return cancelled, released, follow_up

        cancelled, (selected, response_type), follow_up = run_db(scenario)
        assert cancelled["status"] == "cancelled"
        assert selected is None
        assert response_type == ResponseType.CANCELLED
        assert follow_up["status"] == "scheduled"

    def test_rejection_does_not_credit_donor(self, run_db, factories):
        recipient = factories.recipient()
        donor = factories.donor()
        request = factories.request(recipient)

        async def scenario(factory):
            await _seed(factory, recipient, donor, request)
            donation = await _respond_and_select(factory, request, recipient, donor)
            await _set_status(factory, donation, recipient, DonationStatus.REJECTED)
            async with factory() as session:
                return await session.get(User, donor.id), await session.get(EmergencyRequest, request.id)

        stored_donor, stored_request = run_db(scenario)
        assert stored_donor.total_donations == 0
        assert stored_donor.last_donation_date is None
        assert stored_request.units_fulfilled == 0
        assert stored_request.selected_donor_id is None


class TestPermissions:
    def test_donor_cannot_complete(self, run_db, factories):
        """Should only let donors cancel their own donations"""
        recipient = factories.recipient()
        donor = factories.donor()
        request = factories.request(recipient)

        async def scenario(factory):
            await _seed(factory, recipient, donor, request)
            donation = await _respond_and_select(factory, request, recipient, donor)
            with pytest.raises(IneligibleError):
                await _set_status(factory, donation, donor, DonationStatus.COMPLETED)

        run_db(scenario)

    def test_completed_is_terminal(self, run_db, factories):
        recipient = factories.recipient()
        donor = factories.donor()
        request = factories.request(recipient)

        async def scenario(factory):
            await _seed(factory, recipient, donor, request)
            donation = await _respond_and_select(factory, request, recipient, donor)
            await _set_status(factory, donation, recipient, DonationStatus.COMPLETED)
            with pytest.raises(IneligibleError):
                await _set_status(factory, donation, recipient, DonationStatus.CANCELLED)

        run_db(scenario)

    def test_strangers_cannot_see_donation(self, run_db, factories):
        recipient = factories.recipient()
        donor = factories.donor()
        stranger = factories.donor()
        request = factories.request(recipient)

        async def scenario(factory):
            await _seed(factory, recipient, donor, stranger, request)
            donation = await _respond_and_select(factory, request, recipient, donor)
            with pytest.raises(NotFoundError):
                await _set_status(factory, donation, stranger, DonationStatus.CANCELLED)

        run_db(scenario)


class TestRewardPoints:
    def test_walk_in_plasma(self):
        donation = DonationHistory(
            units_collected=2,
            source=DonationSource.WALK_IN,
            blood_group=BloodGroup.A_POS,
            donation_type=DonationType.PLASMA,
        )
        # 2 units * 10 + plasma 5
        assert donation.calculate_reward_points() == 25

    def test_ab_positive_is_not_rare_for_rewards(self):
        donation = DonationHistory(
            units_collected=1,
            source=DonationSource.EMERGENCY_REQUEST,
            blood_group=BloodGroup.AB_POS,
            donation_type=DonationType.BLOOD,
        )
        assert donation.calculate_reward_points() == 30

    def test_verification_code_format(self):
        codes = {generate_verification_code() for _ in range(50)}
        assert len(codes) == 50
        assert all(re.fullmatch(r"DON[A-Z0-9]{8}", code) for code in codes)


class TestTransitions:
    def test_table(self):
        assert donation_service.can_transition(DonationStatus.SCHEDULED, DonationStatus.IN_PROGRESS)
        assert donation_service.can_transition(DonationStatus.IN_PROGRESS, DonationStatus.COMPLETED)
        assert not donation_service.can_transition(DonationStatus.IN_PROGRESS, DonationStatus.REJECTED)
        for terminal in (DonationStatus.COMPLETED, DonationStatus.CANCELLED, DonationStatus.REJECTED):
            assert not any(donation_service.can_transition(terminal, s) for s in DonationStatus)
