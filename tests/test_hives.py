"""
Tests for the hive coordinator.
"""

import pytest
from datetime import timedelta
from decimal import Decimal

from conftest import NOW, make_user

from neowealth.config import HiveSettings
from neowealth.errors import (
    AlreadyMemberError,
    HiveFullError,
    InvalidAmountError,
    InvalidInputError,
)
from neowealth.models.entities import (
    GoalCategory,
    Hive,
    HiveMember,
    HiveStatus,
    MemberRole,
    MembershipStatus,
    RiskLevel,
)
from neowealth.models.requests import HiveCreate
from neowealth.models.results import HiveCandidate
from neowealth.services.hives import HiveCoordinator


@pytest.fixture
def coordinator() -> HiveCoordinator:
    return HiveCoordinator(HiveSettings())


def make_hive(**overrides) -> Hive:
    data = {
        "name": "Goa Trip",
        "goal_type": GoalCategory.VACATION,
        "target_amount": Decimal("120000"),
        "monthly_contribution": Decimal("5000"),
        "end_date": NOW + timedelta(days=90),
        "max_members": 3,
        "current_members": 1,
        "created_at": NOW - timedelta(days=5),
    }
    data.update(overrides)
    return Hive(**data)


def member_of(hive: Hive, user, **overrides) -> HiveMember:
    data = {
        "user_id": user.id,
        "hive_id": hive.id,
        "monthly_contribution": Decimal("5000"),
    }
    data.update(overrides)
    return HiveMember(**data)


class TestCreate:
    """Tests for hive creation."""

    def test_creator_is_admin_and_only_member(self, coordinator, user):
        """Test the new hive starts with its creator."""
        spec = HiveCreate(
            name="Goa Trip",
            goal_type=GoalCategory.VACATION,
            target_amount=Decimal("120000"),
            monthly_contribution=Decimal("5000"),
            end_date=NOW + timedelta(days=180),
        )
        change = coordinator.create(user, spec, now=NOW)

        assert change.hive.current_members == 1
        assert change.hive.max_members == 15
        assert change.membership.role == MemberRole.ADMIN
        assert change.membership.hive_id == change.hive.id
        assert change.membership.user_id == user.id

    def test_creator_already_in_a_hive(self, coordinator, user):
        """Test a member of another hive cannot create one."""
        spec = HiveCreate(
            name="Goa Trip",
            goal_type=GoalCategory.VACATION,
            target_amount=Decimal("120000"),
            monthly_contribution=Decimal("5000"),
            end_date=NOW + timedelta(days=180),
        )
        with pytest.raises(AlreadyMemberError):
            coordinator.create(user, spec, member_of(make_hive(), user), now=NOW)

    def test_end_date_in_past(self, coordinator, user):
        """Test a hive must end in the future."""
        spec = HiveCreate(
            name="Goa Trip",
            goal_type=GoalCategory.VACATION,
            target_amount=Decimal("120000"),
            monthly_contribution=Decimal("5000"),
            end_date=NOW - timedelta(days=1),
        )
        with pytest.raises(InvalidInputError):
            coordinator.create(user, spec, now=NOW)


class TestMembership:
    """Tests for join, leave and deactivate."""

    def test_join_increments_members(self, coordinator, user):
        """Test joining adds one member and uses the hive's contribution."""
        hive = make_hive()
        change = coordinator.join(user, hive, None, now=NOW)

        assert change.hive.current_members == 2
        assert change.membership.status == MembershipStatus.ACTIVE
        assert change.membership.monthly_contribution == Decimal("5000.00")
        assert hive.current_members == 1

    def test_join_custom_contribution(self, coordinator, user):
        """Test a member may pledge their own amount."""
        change = coordinator.join(user, make_hive(), None, monthly_contribution="2500", now=NOW)
        assert change.membership.monthly_contribution == Decimal("2500.00")

    def test_join_negative_contribution(self, coordinator, user):
        """Test negative pledges are rejected."""
        with pytest.raises(InvalidAmountError):
            coordinator.join(user, make_hive(), None, monthly_contribution="-1", now=NOW)

    @pytest.mark.parametrize("pledge", ["abc", "Infinity", [5000]])
    def test_join_non_numeric_contribution(self, coordinator, user, pledge):
        """Test pledges that are not numbers are rejected."""
        with pytest.raises(InvalidAmountError):
            coordinator.join(user, make_hive(), None, monthly_contribution=pledge, now=NOW)

    def test_join_zero_contribution(self, coordinator, user):
        """Test a member may pledge nothing."""
        change = coordinator.join(user, make_hive(), None, monthly_contribution="0", now=NOW)
        assert change.membership.monthly_contribution == Decimal("0.00")

    def test_join_full_hive(self, coordinator, user):
        """Test a full hive refuses members."""
        with pytest.raises(HiveFullError):
            coordinator.join(user, make_hive(current_members=3), None, now=NOW)

    def test_already_member_checked_before_capacity(self, coordinator, user):
        """Test a double join is reported as already a member."""
        hive = make_hive(current_members=3)
        with pytest.raises(AlreadyMemberError):
            coordinator.join(user, hive, member_of(hive, user), now=NOW)

    def test_ended_membership_does_not_block(self, coordinator, user):
        """Test a user who left may join again."""
        hive = make_hive()
        old = member_of(hive, user, status=MembershipStatus.LEFT)
        assert coordinator.join(user, hive, old, now=NOW).hive.current_members == 2

    def test_join_inactive_hive(self, coordinator, user):
        """Test completed hives accept nobody."""
        with pytest.raises(InvalidInputError, match="completed"):
            coordinator.join(user, make_hive(status=HiveStatus.COMPLETED), None, now=NOW)

    def test_leave(self, coordinator, user):
        """Test leaving ends the membership and frees a seat."""
        hive = make_hive(current_members=2)
        change = coordinator.leave(member_of(hive, user), hive, now=NOW)

        assert change.hive.current_members == 1
        assert change.membership.status == MembershipStatus.LEFT
        assert change.membership.left_at == NOW

    def test_deactivate(self, coordinator, user):
        """Test deactivation marks the membership inactive."""
        hive = make_hive(current_members=2)
        change = coordinator.deactivate(member_of(hive, user), hive, now=NOW)
        assert change.membership.status == MembershipStatus.INACTIVE

    def test_member_count_never_negative(self, coordinator, user):
        """Test the member count is clamped at zero."""
        hive = make_hive(current_members=0)
        assert coordinator.leave(member_of(hive, user), hive, now=NOW).hive.current_members == 0

    def test_leave_twice(self, coordinator, user):
        """Test a membership can only end once."""
        hive = make_hive()
        with pytest.raises(InvalidInputError, match="already left"):
            coordinator.leave(member_of(hive, user, status=MembershipStatus.LEFT), hive)

    def test_leave_wrong_hive(self, coordinator, user):
        """Test the membership must belong to the hive."""
        with pytest.raises(InvalidInputError):
            coordinator.leave(member_of(make_hive(), user), make_hive())


class TestContributions:
    """Tests for pool contributions."""

    def test_contribution_updates_both(self, coordinator, user):
        """Test the pool and the member's total grow together."""
        hive = make_hive()
        change = coordinator.record_contribution(member_of(hive, user), hive, "5000", now=NOW)

        assert change.hive.current_amount == Decimal("5000.00")
        assert change.membership.total_contributed == Decimal("5000.00")
        assert change.hive.status == HiveStatus.ACTIVE

    def test_reaching_target_completes_hive(self, coordinator, user):
        """Test the hive completes at its target."""
        hive = make_hive(current_amount=Decimal("118000"))
        change = coordinator.record_contribution(member_of(hive, user), hive, "2000", now=NOW)
        assert change.hive.status == HiveStatus.COMPLETED

    def test_inactive_member_cannot_contribute(self, coordinator, user):
        """Test only active members pay in."""
        hive = make_hive()
        with pytest.raises(InvalidInputError):
            coordinator.record_contribution(
                member_of(hive, user, status=MembershipStatus.LEFT), hive, "100"
            )


class TestProgressAndMatching:
    """Tests for aggregate progress and hive matching."""

    def test_progress(self, coordinator, user):
        """Test percent, months left and projection."""
        hive = make_hive(current_amount=Decimal("30000"))
        members = [member_of(hive, user), member_of(hive, make_user("ravi@example.com"))]
        progress = coordinator.progress(hive, members, now=NOW)

        assert progress.progress_percent == 25.0
        assert progress.months_remaining == 3
        assert progress.total_monthly_contribution == Decimal("10000.00")
        assert progress.projected_months_to_completion == Decimal("9.00")
        assert progress.active_members == 2

    def test_progress_without_contributors(self, coordinator, user):
        """Test there is no projection when nobody pays in."""
        hive = make_hive()
        progress = coordinator.progress(hive, [member_of(hive, user, status=MembershipStatus.LEFT)], now=NOW)

        assert progress.projected_months_to_completion is None
        assert progress.active_members == 0

    def test_match_within_income_tolerance(self, coordinator, user):
        """Test the first hive with similar incomes is chosen."""
        far = make_hive(name="Far")
        near = make_hive(name="Near")
        candidates = [
            HiveCandidate(hive=far, member_incomes=[Decimal("20000")]),
            HiveCandidate(hive=near, member_incomes=[Decimal("35000"), Decimal("45000")]),
        ]
        assert coordinator.find_match(user, candidates) is near

    def test_match_is_first_fit(self, coordinator, user):
        """Test candidate order wins over closeness."""
        first = make_hive(name="First")
        closer = make_hive(name="Closer")
        candidates = [
            HiveCandidate(hive=first, member_incomes=[Decimal("40000")]),
            HiveCandidate(hive=closer, member_incomes=[Decimal("50000")]),
        ]
        assert coordinator.find_match(user, candidates) is first

    def test_match_skips_other_risk_and_full_hives(self, coordinator, user):
        """Test risk level and capacity both disqualify."""
        candidates = [
            HiveCandidate(hive=make_hive(risk_level=RiskLevel.HIGH), member_incomes=[Decimal("50000")]),
            HiveCandidate(hive=make_hive(current_members=3), member_incomes=[Decimal("50000")]),
        ]
        assert coordinator.find_match(user, candidates) is None

    def test_match_skips_hives_without_incomes(self, coordinator, user):
        """Test hives with no income data never match."""
        assert coordinator.find_match(user, [HiveCandidate(hive=make_hive())]) is None
