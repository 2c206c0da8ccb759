"""
Request status table and derived predicates.
"""

import uuid
from datetime import datetime, timedelta

import pytest

from bloodfinder.models.emergency_request import EmergencyRequest, RequestStatus
from bloodfinder.services.emergency_service import (
    can_transition, is_expired, is_fulfilled, is_open, derived_status, as_utc_naive,
)

NOW = datetime(2026, 3, 1, 12, 0)


def _request(**overrides):
    fields = dict(
        id=uuid.uuid4(),
        status=RequestStatus.ACTIVE,
        units_required=3,
        units_fulfilled=0,
        required_by=NOW + timedelta(days=1),
        expires_at=NOW + timedelta(days=30),
    )
    fields.update(overrides)
    return EmergencyRequest(**fields)


class TestTransitions:
    @pytest.mark.parametrize("target", [
        RequestStatus.PARTIALLY_FULFILLED, RequestStatus.FULFILLED,
        RequestStatus.EXPIRED, RequestStatus.CANCELLED,
    ])
    def test_active_can_move_anywhere(self, target):
        assert can_transition(RequestStatus.ACTIVE, target)

    def test_partially_fulfilled_cannot_go_back(self):
        assert not can_transition(RequestStatus.PARTIALLY_FULFILLED, RequestStatus.ACTIVE)
        assert can_transition(RequestStatus.PARTIALLY_FULFILLED, RequestStatus.FULFILLED)

    @pytest.mark.parametrize("terminal", [RequestStatus.FULFILLED, RequestStatus.EXPIRED, RequestStatus.CANCELLED])
    def test_terminal_states(self, terminal):
        assert not any(can_transition(terminal, target) for target in RequestStatus)


class TestDerivedPredicates:
    def test_expired_after_required_by(self):
        assert is_expired(_request(required_by=NOW - timedelta(minutes=1)), now=NOW)

    def test_expired_after_absolute_expiry(self):
        req = _request(required_by=NOW + timedelta(days=60), expires_at=NOW - timedelta(seconds=1))
        assert is_expired(req, now=NOW)

    def test_not_expired(self):
        assert not is_expired(_request(), now=NOW)

    def test_fulfilled(self):
        assert not is_fulfilled(_request(units_fulfilled=2))
        assert is_fulfilled(_request(units_fulfilled=3))

    def test_open(self):
        assert is_open(_request(), now=NOW)
        assert is_open(_request(status=RequestStatus.PARTIALLY_FULFILLED), now=NOW)
        assert not is_open(_request(status=RequestStatus.CANCELLED), now=NOW)
        assert not is_open(_request(required_by=NOW - timedelta(hours=1)), now=NOW)

    def test_derived_status(self):
        assert derived_status(_request(), now=NOW) == RequestStatus.ACTIVE
        assert derived_status(_request(units_fulfilled=1), now=NOW) == RequestStatus.PARTIALLY_FULFILLED
        assert derived_status(_request(units_fulfilled=3), now=NOW) == RequestStatus.FULFILLED
        assert derived_status(_request(required_by=NOW - timedelta(hours=1)), now=NOW) == RequestStatus.EXPIRED

    def test_fulfilment_wins_over_expiry(self):
        req = _request(units_fulfilled=3, required_by=NOW - timedelta(hours=1))
        assert derived_status(req, now=NOW) == RequestStatus.FULFILLED

    def test_terminal_status_is_kept(self):
        req = _request(status=RequestStatus.CANCELLED, required_by=NOW - timedelta(hours=1))
        assert derived_status(req, now=NOW) == RequestStatus.CANCELLED


def test_aware_timestamps_are_normalised_to_naive_utc():
    from datetime import timezone

    aware = datetime(2026, 3, 1, 17, 30, tzinfo=timezone(timedelta(hours=5, minutes=30)))
    assert as_utc_naive(aware) == datetime(2026, 3, 1, 12, 0)
    assert as_utc_naive(NOW) is NOW
