"""
Priority scoring.
"""

from datetime import datetime, timedelta

import pytest

from bloodfinder.models.emergency_request import UrgencyLevel
from bloodfinder.models.user import BloodGroup
from bloodfinder.services.priority import score_priority, is_rare, MAX_PRIORITY

NOW = datetime(2026, 3, 1, 12, 0)
URGENCY_ORDER = [UrgencyLevel.LOW, UrgencyLevel.MEDIUM, UrgencyLevel.HIGH, UrgencyLevel.CRITICAL]


def _score(urgency, hours, units, group):
    return score_priority(urgency, NOW + timedelta(hours=hours), units, group, now=NOW)


class TestScorePriority:
    def test_critical_rare_soon_large_is_capped_at_100(self):
        assert _score(UrgencyLevel.CRITICAL, 4, 6, BloodGroup.O_NEG) == 100

    def test_low_urgency_far_away(self):
        assert _score(UrgencyLevel.LOW, 200, 1, BloodGroup.O_POS) == 10

    def test_components_add_up(self):
        # high 30 + within 24h 20 + 3 units 10
        assert _score(UrgencyLevel.HIGH, 12, 3, BloodGroup.A_POS) == 60
        # medium 20 + within 72h 10 + rare 10
        assert _score(UrgencyLevel.MEDIUM, 48, 1, BloodGroup.AB_POS) == 40

    def test_time_bonus_boundaries(self):
        base = _score(UrgencyLevel.LOW, 1000, 1, BloodGroup.O_POS)
        assert _score(UrgencyLevel.LOW, 6, 1, BloodGroup.O_POS) == base + 30
        assert _score(UrgencyLevel.LOW, 24, 1, BloodGroup.O_POS) == base + 20
        assert _score(UrgencyLevel.LOW, 72, 1, BloodGroup.O_POS) == base + 10
        assert _score(UrgencyLevel.LOW, 73, 1, BloodGroup.O_POS) == base

    def test_accepts_plain_strings(self):
        assert score_priority("critical", NOW + timedelta(hours=4), 6, "O-", now=NOW) == 100

    @pytest.mark.parametrize("hours", [1, 5, 12, 30, 80, 500])
    @pytest.mark.parametrize("units", [1, 3, 5, 10])
    @pytest.mark.parametrize("group", [BloodGroup.O_POS, BloodGroup.AB_NEG])
    def test_monotonic_in_urgency_and_bounded(self, hours, units, group):
        scores = [_score(u, hours, units, group) for u in URGENCY_ORDER]
        assert scores == sorted(scores)
        assert all(0 <= s <= MAX_PRIORITY for s in scores)


class TestRarity:
    def test_rare_groups(self):
        assert {g for g in BloodGroup if is_rare(g)} == {
            BloodGroup.AB_NEG, BloodGroup.AB_POS, BloodGroup.B_NEG, BloodGroup.A_NEG, BloodGroup.O_NEG,
        }
