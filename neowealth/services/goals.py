"""
Goal Progress & Optimizer

Progress math, automatic target/deadline adjustment, goal suggestions
and milestone rewards for individual savings goals.

DESIGN DECISION: At most ONE adjustment is applied per analysis.
Rules are evaluated in a fixed priority order and the first that
fires wins:

    1. reduce_target    goal is out of reach at the current pace
    2. increase_target  goal is nearly done with plenty of time left
    3. extend_deadline  goal needs more time at the current pace

CRITICAL: ACTIVE -> COMPLETED is one-way. Nothing in this module moves
a completed goal back to any other status.
"""

import math
from datetime import datetime, timedelta
from decimal import ROUND_FLOOR, Decimal, InvalidOperation
from typing import Iterable, Optional

import structlog

from neowealth.config import GoalSettings, get_settings
from neowealth.errors import InvalidAmountError, InvalidInputError
from neowealth.models.entities import (
    REWARDS_CATEGORY,
    Goal,
    GoalCategory,
    GoalPriority,
    GoalRecommendation,
    GoalStatus,
    Transaction,
    TransactionType,
    User,
    as_utc,
    format_inr,
    money,
    utcnow,
)
from neowealth.models.requests import GoalCreate, GoalUpdate
from neowealth.models.results import (
    AdjustmentType,
    GoalOptimization,
    GoalSuggestion,
    GoalUpdateOutcome,
    Milestone,
)
from neowealth.services.ledger import to_amount

logger = structlog.get_logger(__name__)

# percentage -> reward multiplier, in ascending order
MILESTONE_MULTIPLIERS: tuple[tuple[int, Decimal], ...] = (
    (25, Decimal("1.2")),
    (50, Decimal("1.5")),
    (75, Decimal("2.0")),
    (90, Decimal("3.0")),
)

REDUCE_CONFIDENCE = 0.85
INCREASE_CONFIDENCE = 0.78
EXTEND_CONFIDENCE = 0.82
INCREASE_FACTOR = Decimal("1.3")

SUGGESTION_WINDOW_DAYS = 60
VACATION_SPENDING_THRESHOLD = Decimal("2000")
INVESTMENT_INCOME_THRESHOLD = Decimal("30000")

SECONDS_PER_DAY = 86400


def _floor(value: Decimal) -> Decimal:
    return value.to_integral_value(rounding=ROUND_FLOOR)


class GoalOptimizer:
    """Pure goal computations. `now` is injectable everywhere."""

    def __init__(self, settings: Optional[GoalSettings] = None):
        self._settings = settings or get_settings().goals

    # -------------------------------------------------------------------------
    # Progress
    # -------------------------------------------------------------------------

    @staticmethod
    def progress(goal: Goal) -> float:
        """Percent of target saved, clamped to 100."""
        percent = goal.current_amount / goal.target_amount * 100
        return min(float(percent), 100.0)

    @staticmethod
    def days_remaining(goal: Goal, now: Optional[datetime] = None) -> int:
        """Whole days until the target date, rounded up. Negative when overdue."""
        return GoalOptimizer.days_remaining_until(goal.target_date, now)

    @staticmethod
    def days_remaining_until(deadline: datetime, now: Optional[datetime] = None) -> int:
        now = as_utc(now or utcnow())
        return math.ceil((as_utc(deadline) - now).total_seconds() / SECONDS_PER_DAY)

    # -------------------------------------------------------------------------
    # Optimization
    # -------------------------------------------------------------------------

    def estimate_saving_capacity(
        self,
        transactions: Iterable[Transaction],
        now: Optional[datetime] = None,
    ) -> Decimal:
        """
        Monthly amount the user can plausibly save.

        A fixed share of the income recorded in the capacity window.
        NeoCoin reward records are not income.
        """
        now = as_utc(now or utcnow())
        since = now - timedelta(days=self._settings.capacity_window_days)

        income = sum(
            (
                abs(t.amount) for t in transactions
                if t.type == TransactionType.INCOME
                and t.category != REWARDS_CATEGORY
                and t.date >= since
            ),
            Decimal("0"),
        )
        return money(income * self._settings.saving_capacity_ratio)

    def analyze_goal_progress(
        self,
        goal: Goal,
        monthly_saving_capacity,
        now: Optional[datetime] = None,
    ) -> GoalOptimization:
        """
        Check one goal against the user's saving capacity.

        Rules that need a pace (reduce_target, extend_deadline) are
        skipped when the capacity is zero or less: there is no pace to
        plan against.

        Raises:
            InvalidAmountError: If the capacity is not a finite number
        """
        now = as_utc(now or utcnow())
        try:
            capacity = Decimal(str(monthly_saving_capacity))
        except (InvalidOperation, TypeError, ValueError):
            capacity = None
        if capacity is None or not capacity.is_finite():
            raise InvalidAmountError(f"Saving capacity is not a number: {monthly_saving_capacity!r}")
        days = self.days_remaining(goal, now)
        progress = self.progress(goal)
        remaining = goal.target_amount - goal.current_amount
        daily_required = remaining / max(days, 1)

        optimization = GoalOptimization(
            goal_id=goal.id,
            current_progress=progress,
            days_remaining=days,
            daily_required=money(daily_required),
            saving_capacity=money(capacity),
        )

        # 1. Goal is too ambitious
        if capacity > 0 and daily_required > capacity / 30 and progress < 50:
            new_target = _floor(goal.current_amount + capacity * Decimal(days) / 30)
            if new_target > goal.current_amount:
                return optimization.model_copy(update={
                    "should_adjust": True,
                    "adjustment_type": AdjustmentType.REDUCE_TARGET,
                    "new_target": money(new_target),
                    "confidence": REDUCE_CONFIDENCE,
                    "reasoning": "Goal target reduced based on current saving capacity and progress",
                })

        # 2. Goal is too easy
        if progress > 80 and days > 30:
            return optimization.model_copy(update={
                "should_adjust": True,
                "adjustment_type": AdjustmentType.INCREASE_TARGET,
                "new_target": money(_floor(goal.target_amount * INCREASE_FACTOR)),
                "confidence": INCREASE_CONFIDENCE,
                "reasoning": "Goal target increased due to excellent progress",
            })

        # 3. Goal needs more time
        if capacity > 0 and daily_required > capacity / 20 and progress > 30:
            additional_days = math.ceil(remaining / (capacity / 30))
            return optimization.model_copy(update={
                "should_adjust": True,
                "adjustment_type": AdjustmentType.EXTEND_DEADLINE,
                "new_date": now + timedelta(days=additional_days),
                "confidence": EXTEND_CONFIDENCE,
                "reasoning": "Deadline extended to match realistic saving pace",
            })

        return optimization

    def apply_optimization(
        self,
        goal: Goal,
        optimization: GoalOptimization,
        now: Optional[datetime] = None,
    ) -> Goal:
        """
        Goal with the optimization applied and recorded.

        Returns the goal unchanged when no adjustment is proposed.
        """
        if not optimization.should_adjust:
            return goal

        now = as_utc(now or utcnow())
        updates = {
            "ai_recommendation": GoalRecommendation(
                last_optimization=now,
                adjustment_type=optimization.adjustment_type.value,
                confidence=optimization.confidence,
                reasoning=optimization.reasoning,
                previous_target=goal.target_amount,
                previous_date=goal.target_date,
            ),
        }
        if optimization.new_target is not None:
            updates["target_amount"] = money(optimization.new_target)
        if optimization.new_date is not None:
            updates["target_date"] = as_utc(optimization.new_date)

        adjusted = goal.model_copy(update=updates)
        logger.info(
            "goal_optimized",
            goal_id=str(goal.id),
            adjustment=optimization.adjustment_type.value,
        )
        return self._settle(goal, adjusted, now)

    # -------------------------------------------------------------------------
    # Suggestions
    # -------------------------------------------------------------------------

    @staticmethod
    def spending_by_category(
        transactions: Iterable[Transaction],
        now: Optional[datetime] = None,
        days: int = SUGGESTION_WINDOW_DAYS,
    ) -> dict[str, Decimal]:
        """Expense totals per category over the last `days` days."""
        now = as_utc(now or utcnow())
        since = now - timedelta(days=days)
        totals: dict[str, Decimal] = {}
        for t in transactions:
            if t.type == TransactionType.EXPENSE and t.date >= since:
                totals[t.category] = totals.get(t.category, Decimal("0")) + abs(t.amount)
        return totals

    def suggest_new_goals(
        self,
        user: User,
        existing_categories: Iterable,
        category_spending: dict[str, Decimal],
    ) -> list[GoalSuggestion]:
        """
        New goals worth proposing, in a fixed order.

        Args:
            user: Owner of the goals
            existing_categories: Categories of the user's active and completed goals
            category_spending: Expense totals per category over the last 60 days
        """
        existing = {GoalCategory(c).value for c in existing_categories}
        suggestions = []

        if GoalCategory.EMERGENCY.value not in existing:
            monthly_expenses = sum(category_spending.values(), Decimal("0")) / 2
            target = _floor(monthly_expenses * 6)
            if target > 0:
                suggestions.append(GoalSuggestion(
                    category=GoalCategory.EMERGENCY,
                    title="Emergency Fund",
                    description="Build a 6-month emergency fund for financial security",
                    target_amount=target,
                    priority=GoalPriority.HIGH,
                    reasoning="Essential financial safety net based on your spending patterns",
                    confidence=0.95,
                ))

        entertainment = category_spending.get("entertainment", Decimal("0"))
        if (
            GoalCategory.VACATION.value not in existing
            and entertainment > VACATION_SPENDING_THRESHOLD
        ):
            suggestions.append(GoalSuggestion(
                category=GoalCategory.VACATION,
                title="Dream Vacation Fund",
                description="Save for your next amazing vacation",
                target_amount=_floor(entertainment * 6),
                priority=GoalPriority.MEDIUM,
                reasoning="Based on your entertainment spending, you might enjoy saving for travel",
                confidence=0.72,
            ))

        if (
            GoalCategory.INVESTMENT.value not in existing
            and user.monthly_income > INVESTMENT_INCOME_THRESHOLD
        ):
            suggestions.append(GoalSuggestion(
                category=GoalCategory.INVESTMENT,
                title="Investment Portfolio",
                description="Build a diversified investment portfolio",
                target_amount=_floor(user.monthly_income * 12 * Decimal("0.15")),
                priority=GoalPriority.HIGH,
                reasoning="Your income level suggests good investment potential",
                confidence=0.88,
            ))

        return suggestions

    # -------------------------------------------------------------------------
    # Milestones
    # -------------------------------------------------------------------------

    @staticmethod
    def milestone_reward(percentage: int, target_amount: Decimal) -> int:
        """1 NeoCoin per 1000 of target, scaled by the milestone multiplier."""
        base = _floor(target_amount / 1000)
        multiplier = dict(MILESTONE_MULTIPLIERS).get(percentage, Decimal("1"))
        return int(_floor(base * multiplier))

    def milestones(self, goal: Goal) -> list[Milestone]:
        progress = self.progress(goal)
        items = []
        for percentage, _ in MILESTONE_MULTIPLIERS:
            amount = _floor(goal.target_amount * percentage / 100)
            items.append(Milestone(
                goal_id=goal.id,
                percentage=percentage,
                target_amount=amount,
                reward=self.milestone_reward(percentage, goal.target_amount),
                title=f"{percentage}% Complete",
                description=f"Reach ₹{format_inr(amount)} towards your goal",
                achieved=progress >= percentage,
            ))
        return items

    def achieved_milestones(self, goal: Goal) -> list[Milestone]:
        return [m for m in self.milestones(goal) if m.achieved]

    def newly_achieved_milestones(self, before: Goal, after: Goal) -> list[Milestone]:
        """Milestones reached by `after` that `before` had not reached."""
        already = {m.percentage for m in self.achieved_milestones(before)}
        return [m for m in self.achieved_milestones(after) if m.percentage not in already]

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def new_goal(self, user_id, data: GoalCreate, now: Optional[datetime] = None) -> Goal:
        """
        Build a goal from validated input.

        Raises:
            InvalidInputError: If the target date is not in the future
        """
        now = as_utc(now or utcnow())
        if as_utc(data.target_date) <= now:
            raise InvalidInputError(
                "Target date must be in the future",
                details={"target_date": data.target_date.isoformat()},
            )

        goal = Goal(
            user_id=user_id,
            title=data.title,
            description=data.description,
            target_amount=data.target_amount,
            current_amount=data.current_amount,
            target_date=data.target_date,
            category=data.category,
            priority=data.priority,
            created_at=now,
        )
        if goal.current_amount >= goal.target_amount:
            goal = goal.model_copy(update={"status": GoalStatus.COMPLETED, "completed_at": now})
        return goal

    def apply_update(
        self,
        goal: Goal,
        changes: GoalUpdate,
        now: Optional[datetime] = None,
    ) -> GoalUpdateOutcome:
        """
        Apply an owner edit.

        A paused goal keeps its status while its savings change. If it
        has reached its target when it is resumed, it completes.

        Raises:
            InvalidInputError: On a past target date, a manual switch to
                completed, or any status change of a completed goal
        """
        now = as_utc(now or utcnow())
        updates = changes.model_dump(exclude_unset=True, exclude_none=True)

        status = updates.get("status")
        if status is not None:
            if goal.status == GoalStatus.COMPLETED and status != GoalStatus.COMPLETED:
                raise InvalidInputError("Completed goals cannot be reopened")
            if status == GoalStatus.COMPLETED and goal.status != GoalStatus.COMPLETED:
                raise InvalidInputError("Goals complete automatically when the target is reached")

        if "target_date" in updates:
            updates["target_date"] = as_utc(updates["target_date"])
            if updates["target_date"] <= now:
                raise InvalidInputError("Target date must be in the future")

        for field in ("target_amount", "current_amount"):
            if field in updates:
                updates[field] = money(updates[field])

        return self._outcome(goal, goal.model_copy(update=updates), now)

    def add_contribution(
        self,
        goal: Goal,
        amount,
        now: Optional[datetime] = None,
    ) -> GoalUpdateOutcome:
        """
        Add savings to a goal.

        Raises:
            InvalidAmountError: If amount is not positive
            InvalidInputError: If the goal was cancelled
        """
        amount = to_amount(amount)
        if goal.status == GoalStatus.CANCELLED:
            raise InvalidInputError("Cannot contribute to a cancelled goal")

        now = as_utc(now or utcnow())
        updated = goal.model_copy(update={
            "current_amount": money(goal.current_amount + amount),
        })
        return self._outcome(goal, updated, now)

    def _outcome(self, before: Goal, after: Goal, now: datetime) -> GoalUpdateOutcome:
        settled = self._settle(before, after, now)
        return GoalUpdateOutcome(
            goal=settled,
            progress=self.progress(settled),
            just_completed=(
                before.status != GoalStatus.COMPLETED
                and settled.status == GoalStatus.COMPLETED
            ),
            new_milestones=self.newly_achieved_milestones(before, settled),
        )

    @staticmethod
    def _settle(before: Goal, after: Goal, now: datetime) -> Goal:
        """
        Complete an active goal that has reached its target.

        This covers a paused goal that reached its target while paused
        and is now being resumed.
        """
        if (
            before.status != GoalStatus.COMPLETED
            and after.status == GoalStatus.ACTIVE
            and after.current_amount >= after.target_amount
        ):
            return after.model_copy(update={
                "status": GoalStatus.COMPLETED,
                "completed_at": now,
            })
        return after
