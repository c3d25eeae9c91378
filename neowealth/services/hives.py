"""
Hive Coordinator

Membership lifecycle, capacity enforcement, aggregate progress and
matching for group savings pools.

Membership state machine:

    ACTIVE -> INACTIVE   (deactivate)
    ACTIVE -> LEFT       (leave)

Both targets are terminal. Re-joining creates a NEW membership.

CRITICAL: Every operation that changes a membership also returns the
hive with `current_members` adjusted. Flows must persist both in one
unit of work or `current_members` drifts from the active count.
"""

import math
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Optional, Sequence

import structlog

from neowealth.config import HiveSettings, get_settings
from neowealth.errors import (
    AlreadyMemberError,
    HiveFullError,
    InvalidAmountError,
    InvalidInputError,
)
from neowealth.models.entities import (
    Hive,
    HiveMember,
    HiveStatus,
    MemberRole,
    MembershipStatus,
    User,
    as_utc,
    money,
    utcnow,
)
from neowealth.models.requests import HiveCreate
from neowealth.models.results import HiveCandidate, HiveProgress, MembershipChange
from neowealth.services.ledger import to_amount

logger = structlog.get_logger(__name__)

SECONDS_PER_MONTH = 30 * 86400


def _contribution(value, fallback: Decimal) -> Decimal:
    if value is None:
        return fallback
    try:
        amount = money(value)
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidAmountError(f"Monthly contribution is not a number: {value!r}")
    if not amount.is_finite() or amount < 0:
        raise InvalidAmountError("Monthly contribution cannot be negative")
    return amount


class HiveCoordinator:
    """Pure hive operations over already-loaded hives and memberships."""

    def __init__(self, settings: Optional[HiveSettings] = None):
        self._settings = settings or get_settings().hives

    def create(
        self,
        creator: User,
        spec: HiveCreate,
        active_membership: Optional[HiveMember] = None,
        now: Optional[datetime] = None,
    ) -> MembershipChange:
        """
        New hive with the creator as its admin and only member.

        Raises:
            AlreadyMemberError: If the creator is already in an active hive
            InvalidInputError: If the end date is not in the future
        """
        now = as_utc(now or utcnow())
        if active_membership is not None and active_membership.status == MembershipStatus.ACTIVE:
            raise AlreadyMemberError(details={"hive_id": str(active_membership.hive_id)})
        if as_utc(spec.end_date) <= now:
            raise InvalidInputError("Hive end date must be in the future")

        hive = Hive(
            name=spec.name,
            description=spec.description,
            max_members=spec.max_members or self._settings.default_max_members,
            current_members=1,
            goal_type=spec.goal_type,
            target_amount=spec.target_amount,
            risk_level=spec.risk_level,
            monthly_contribution=spec.monthly_contribution,
            end_date=spec.end_date,
            created_at=now,
        )
        membership = HiveMember(
            user_id=creator.id,
            hive_id=hive.id,
            role=MemberRole.ADMIN,
            monthly_contribution=spec.monthly_contribution,
            joined_at=now,
        )
        return MembershipChange(hive=hive, membership=membership)

    def join(
        self,
        user: User,
        hive: Hive,
        active_membership: Optional[HiveMember],
        monthly_contribution=None,
        now: Optional[datetime] = None,
    ) -> MembershipChange:
        """
        Add a user to a hive.

        The already-a-member check runs first so a double submission is
        reported as AlreadyMember, never as a second join.

        Raises:
            AlreadyMemberError: User has an active membership anywhere
            HiveFullError: current_members >= max_members
            InvalidInputError: Hive is not accepting members
        """
        if active_membership is not None and active_membership.status == MembershipStatus.ACTIVE:
            raise AlreadyMemberError(details={"hive_id": str(active_membership.hive_id)})
        if not hive.has_capacity:
            raise HiveFullError(details={
                "hive_id": str(hive.id),
                "max_members": hive.max_members,
            })
        if hive.status != HiveStatus.ACTIVE:
            raise InvalidInputError(
                f"Hive is {hive.status.value} and not accepting members",
                details={"hive_id": str(hive.id)},
            )

        now = as_utc(now or utcnow())
        membership = HiveMember(
            user_id=user.id,
            hive_id=hive.id,
            monthly_contribution=_contribution(monthly_contribution, hive.monthly_contribution),
            joined_at=now,
        )
        return MembershipChange(
            hive=hive.model_copy(update={"current_members": hive.current_members + 1}),
            membership=membership,
        )

    def leave(
        self,
        membership: HiveMember,
        hive: Hive,
        now: Optional[datetime] = None,
    ) -> MembershipChange:
        """ACTIVE -> LEFT, one fewer member in the hive."""
        return self._end_membership(membership, hive, MembershipStatus.LEFT, now)

    def deactivate(
        self,
        membership: HiveMember,
        hive: Hive,
        now: Optional[datetime] = None,
    ) -> MembershipChange:
        """ACTIVE -> INACTIVE, one fewer member in the hive."""
        return self._end_membership(membership, hive, MembershipStatus.INACTIVE, now)

    def _end_membership(
        self,
        membership: HiveMember,
        hive: Hive,
        status: MembershipStatus,
        now: Optional[datetime],
    ) -> MembershipChange:
        if membership.hive_id != hive.id:
            raise InvalidInputError("Membership does not belong to this hive")
        if membership.status != MembershipStatus.ACTIVE:
            raise InvalidInputError(
                f"Membership is already {membership.status.value}",
                details={"membership_id": str(membership.id)},
            )

        now = as_utc(now or utcnow())
        return MembershipChange(
            hive=hive.model_copy(update={
                "current_members": max(hive.current_members - 1, 0),
            }),
            membership=membership.model_copy(update={
                "status": status,
                "left_at": now,
            }),
        )

    def record_contribution(
        self,
        membership: HiveMember,
        hive: Hive,
        amount,
        now: Optional[datetime] = None,
    ) -> MembershipChange:
        """
        Pay into the pool.

        The hive completes once its current amount reaches the target.

        Raises:
            InvalidAmountError: If amount is not positive
            InvalidInputError: Inactive membership or hive
        """
        amount = to_amount(amount)
        if membership.hive_id != hive.id:
            raise InvalidInputError("Membership does not belong to this hive")
        if membership.status != MembershipStatus.ACTIVE:
            raise InvalidInputError("Only active members can contribute")
        if hive.status != HiveStatus.ACTIVE:
            raise InvalidInputError(f"Hive is {hive.status.value}")

        current = money(hive.current_amount + amount)
        hive_updates = {"current_amount": current}
        if current >= hive.target_amount:
            hive_updates["status"] = HiveStatus.COMPLETED
            logger.info("hive_target_reached", hive_id=str(hive.id))

        return MembershipChange(
            hive=hive.model_copy(update=hive_updates),
            membership=membership.model_copy(update={
                "total_contributed": money(membership.total_contributed + amount),
            }),
        )

    # -------------------------------------------------------------------------
    # Read-side computations
    # -------------------------------------------------------------------------

    @staticmethod
    def progress(
        hive: Hive,
        active_members: Sequence[HiveMember],
        now: Optional[datetime] = None,
    ) -> HiveProgress:
        """
        Aggregate progress of a hive.

        `projected_months_to_completion` is None when nobody contributes.
        """
        now = as_utc(now or utcnow())
        members = [m for m in active_members if m.status == MembershipStatus.ACTIVE]

        percent = min(float(hive.current_amount / hive.target_amount * 100), 100.0)
        months = math.ceil((hive.end_date - now).total_seconds() / SECONDS_PER_MONTH)
        total = money(sum((m.monthly_contribution for m in members), Decimal("0")))

        projected = None
        if total > 0:
            remaining = max(hive.target_amount - hive.current_amount, Decimal("0"))
            projected = money(remaining / total)

        return HiveProgress(
            hive_id=hive.id,
            progress_percent=percent,
            months_remaining=months,
            total_monthly_contribution=total,
            projected_months_to_completion=projected,
            active_members=len(members),
        )

    def find_match(
        self,
        user: User,
        candidates: Sequence[HiveCandidate],
    ) -> Optional[Hive]:
        """
        First hive in `candidates` that suits the user.

        First-fit, not best-fit: the candidates' order is the priority.
        A hive qualifies when it is active, has room, shares the user's
        risk level and its members' average income is within the
        tolerance of the user's. Hives without income data are skipped.
        """
        tolerance = Decimal(str(self._settings.income_match_tolerance))
        for candidate in candidates:
            hive = candidate.hive
            if hive.status != HiveStatus.ACTIVE or not hive.has_capacity:
                continue
            if hive.risk_level != user.risk_tolerance:
                continue

            average = candidate.average_income
            if not average:
                continue
            if abs(average - user.monthly_income) / average < tolerance:
                return hive
        return None
