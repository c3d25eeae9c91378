"""
Behavior / Insight Analyzer

Turns a window of a user's transactions into spending patterns, risk
flags, positive habits, recommendations and short nudges. Also tracks
the habit challenges those recommendations offer.

Spending means expense and investment records. NeoCoin bookkeeping
records (rewards, spends, transfers) are never spending.

All calendar logic (weekend, evening, Friday) is evaluated in UTC.
"""

from datetime import datetime, timedelta
from decimal import Decimal
from typing import Iterable, Optional

import structlog

from neowealth.config import InsightSettings, get_settings
from neowealth.errors import InvalidInputError
from neowealth.models.entities import (
    NEOCOIN_SPEND_CATEGORY,
    REWARDS_CATEGORY,
    TRANSFER_IN_CATEGORY,
    TRANSFER_OUT_CATEGORY,
    Challenge,
    ChallengeStatus,
    RiskLevel,
    Transaction,
    TransactionType,
    as_utc,
    format_inr,
    money,
    utcnow,
)
from neowealth.models.results import (
    BehaviorProfile,
    CategoryAmount,
    ChallengeProgress,
    ChallengeSpec,
    Nudge,
    PeriodComparison,
    PositiveHabit,
    Recommendation,
    RiskFactor,
    SpendingInsight,
    SpendingInsights,
    SpendingPatterns,
)
from neowealth.services.ledger import to_amount

logger = structlog.get_logger(__name__)

LEDGER_CATEGORIES = frozenset({
    REWARDS_CATEGORY,
    NEOCOIN_SPEND_CATEGORY,
    TRANSFER_IN_CATEGORY,
    TRANSFER_OUT_CATEGORY,
})
SPENDING_TYPES = frozenset({TransactionType.EXPENSE, TransactionType.INVESTMENT})

# Risk thresholds
FOOD_SPENDING_LIMIT = Decimal("5000")
SHOPPING_SPENDING_LIMIT = Decimal("10000")
WEEKEND_SHARE_LIMIT = Decimal("0.4")
IMPULSE_CATEGORIES = ("shopping", "entertainment")
IMPULSE_AMOUNT = Decimal("1000")

# Habit thresholds
INVESTING_MIN_COUNT = 3
UTILITY_MIN_COUNT = 2

DAILY_AVERAGE_LIMIT = Decimal("1000")
TOP_CATEGORY_COUNT = 5


def is_spending(transaction: Transaction) -> bool:
    return (
        transaction.type in SPENDING_TYPES
        and transaction.category not in LEDGER_CATEGORIES
    )


def is_weekend(moment: datetime) -> bool:
    return as_utc(moment).weekday() >= 5


def _total(transactions: Iterable[Transaction]) -> Decimal:
    return sum((abs(t.amount) for t in transactions), Decimal("0"))


# Recommendation templates per risk type
RISK_RECOMMENDATIONS: dict[str, Recommendation] = {
    "high_food_spending": Recommendation(
        type="habit_change",
        priority=RiskLevel.MEDIUM,
        title="Reduce Food Delivery",
        message="Try cooking at home 3 days this week",
        reward=30,
        challenge=ChallengeSpec(
            type="cooking_challenge", duration_days=7, target=Decimal("3"), reward=Decimal("50"),
        ),
    ),
    "excessive_shopping": Recommendation(
        type="spending_control",
        priority=RiskLevel.HIGH,
        title="Shopping Pause",
        message="Wait 24 hours before any purchase over ₹1000",
        reward=40,
        challenge=ChallengeSpec(
            type="mindful_spending", duration_days=14, target=Decimal("5"), reward=Decimal("75"),
        ),
    ),
    "weekend_overspending": Recommendation(
        type="budget_control",
        priority=RiskLevel.MEDIUM,
        title="Weekend Budget",
        message="Set a ₹2000 weekend spending limit",
        reward=35,
        challenge=ChallengeSpec(
            type="weekend_budget", duration_days=14, target=Decimal("2000"), reward=Decimal("60"),
        ),
    ),
}


class BehaviorAnalyzer:
    """Rule-based behavior analysis over already-loaded transactions."""

    def __init__(self, settings: Optional[InsightSettings] = None):
        self._settings = settings or get_settings().insights

    def _window(self, transactions: Iterable[Transaction], now: datetime) -> list[Transaction]:
        since = now - timedelta(days=self._settings.analysis_window_days)
        return [t for t in transactions if t.date >= since]

    # -------------------------------------------------------------------------
    # Profile
    # -------------------------------------------------------------------------

    def analyze(
        self,
        transactions: Iterable[Transaction],
        now: Optional[datetime] = None,
    ) -> BehaviorProfile:
        """
        Build a behavior profile from the analysis window.

        With no transactions in the window, the profile holds a single
        onboarding recommendation.
        """
        now = as_utc(now or utcnow())
        window = self._window(transactions, now)

        if not window:
            return BehaviorProfile(
                message="No transaction data available for analysis",
                recommendations=[Recommendation(
                    type="onboarding",
                    priority=RiskLevel.HIGH,
                    title="Start Your Financial Journey",
                    message="Add your first transaction or connect your bank SMS to begin AI analysis",
                    reward=0,
                )],
            )

        spending = [t for t in window if is_spending(t)]
        patterns = self.spending_patterns(spending)
        risks = self.risk_factors(patterns)
        habits = self.positive_habits(window)

        return BehaviorProfile(
            transaction_count=len(window),
            spending_patterns=patterns,
            risk_factors=risks,
            positive_habits=habits,
            recommendations=self.recommendations(risks, habits),
        )

    @staticmethod
    def spending_patterns(spending: Iterable[Transaction]) -> SpendingPatterns:
        weekend = weekday = impulse = Decimal("0")
        distribution: dict[str, Decimal] = {}

        for t in spending:
            amount = abs(t.amount)
            if is_weekend(t.date):
                weekend += amount
            else:
                weekday += amount
            if t.category in IMPULSE_CATEGORIES and amount > IMPULSE_AMOUNT:
                impulse += amount
            distribution[t.category] = distribution.get(t.category, Decimal("0")) + amount

        return SpendingPatterns(
            weekend_spending=weekend,
            weekday_spending=weekday,
            impulse_purchases=impulse,
            category_distribution=distribution,
        )

    @staticmethod
    def risk_factors(patterns: SpendingPatterns) -> list[RiskFactor]:
        risks = []
        totals = patterns.category_distribution

        food = totals.get("food", Decimal("0"))
        if food > FOOD_SPENDING_LIMIT:
            risks.append(RiskFactor(
                type="high_food_spending",
                severity=RiskLevel.MEDIUM,
                message="High food delivery expenses detected",
                amount=food,
                suggestion="Consider cooking at home more often",
            ))

        shopping = totals.get("shopping", Decimal("0"))
        if shopping > SHOPPING_SPENDING_LIMIT:
            risks.append(RiskFactor(
                type="excessive_shopping",
                severity=RiskLevel.HIGH,
                message="Excessive shopping expenses",
                amount=shopping,
                suggestion="Implement a 24-hour waiting period before purchases",
            ))

        if patterns.weekend_spending > patterns.weekday_spending * WEEKEND_SHARE_LIMIT:
            risks.append(RiskFactor(
                type="weekend_overspending",
                severity=RiskLevel.MEDIUM,
                message="High weekend spending detected",
                amount=patterns.weekend_spending,
                suggestion="Set weekend spending limits",
            ))

        return risks

    @staticmethod
    def positive_habits(transactions: Iterable[Transaction]) -> list[PositiveHabit]:
        transactions = list(transactions)
        habits = []

        investing = sum(1 for t in transactions if t.category == "investment")
        if investing >= INVESTING_MIN_COUNT:
            habits.append(PositiveHabit(
                type="regular_investing",
                message="Consistent investment habit detected",
                frequency=investing,
                reward=50,
            ))

        utilities = sum(1 for t in transactions if t.category == "utilities")
        if utilities >= UTILITY_MIN_COUNT:
            habits.append(PositiveHabit(
                type="timely_bills",
                message="Regular utility bill payments",
                frequency=utilities,
                reward=25,
            ))

        return habits

    def recommendations(
        self,
        risks: list[RiskFactor],
        habits: list[PositiveHabit],
    ) -> list[Recommendation]:
        """Risk-driven recommendations first, then reinforcement, bounded."""
        items = [
            RISK_RECOMMENDATIONS[risk.type].model_copy(deep=True)
            for risk in risks
            if risk.type in RISK_RECOMMENDATIONS
        ]
        for habit in habits:
            items.append(Recommendation(
                type="positive_reinforcement",
                priority=RiskLevel.LOW,
                title="Keep It Up!",
                message=f"Great job on {habit.message.lower()}",
                reward=habit.reward,
            ))
        return items[:self._settings.max_recommendations]

    # -------------------------------------------------------------------------
    # Nudges & insights
    # -------------------------------------------------------------------------

    @staticmethod
    def nudges(profile: BehaviorProfile, now: Optional[datetime] = None) -> list[Nudge]:
        """Short contextual messages for the user, most important first."""
        now = as_utc(now or utcnow())
        nudges = []

        if profile.risk_factors:
            top = profile.risk_factors[0]
            nudges.append(Nudge(
                type="warning",
                title="⚠️ Spending Alert",
                message=f"{top.message}. {top.suggestion}.",
                priority=top.severity,
                actionable=True,
                timestamp=now,
            ))

        if profile.positive_habits:
            nudges.append(Nudge(
                type="encouragement",
                title="🎉 Great Job!",
                message=profile.positive_habits[0].message,
                priority=RiskLevel.LOW,
                actionable=False,
                timestamp=now,
            ))

        if 18 <= now.hour <= 20:
            nudges.append(Nudge(
                type="reminder",
                title="🍽️ Smart Dinner Choice",
                message="Cooking at home can save ₹300+ and earn you 25 NeoCoins!",
                priority=RiskLevel.MEDIUM,
                actionable=True,
                timestamp=now,
            ))

        # Friday evening
        if now.weekday() == 4 and now.hour >= 17:
            nudges.append(Nudge(
                type="weekend_planning",
                title="🎯 Weekend Budget Ready?",
                message="Set your weekend spending limit to stay on track with your goals",
                priority=RiskLevel.MEDIUM,
                actionable=True,
                timestamp=now,
            ))

        return nudges

    def spending_insights(
        self,
        transactions: Iterable[Transaction],
        now: Optional[datetime] = None,
    ) -> SpendingInsights:
        """Top category, daily average and weekend share of the window's spending."""
        now = as_utc(now or utcnow())
        spending = [t for t in self._window(transactions, now) if is_spending(t)]
        if not spending:
            return SpendingInsights(total_transactions=0, total_spending=Decimal("0"))

        totals: dict[str, Decimal] = {}
        for t in spending:
            totals[t.category] = totals.get(t.category, Decimal("0")) + abs(t.amount)
        total = sum(totals.values(), Decimal("0"))

        # max() keeps the first category on ties
        top = max(totals, key=totals.get)
        insights = [SpendingInsight(
            type="top_category",
            title=f"Highest Spending: {top.capitalize()}",
            message=f"You've spent ₹{format_inr(totals[top])} on {top} this month",
            confidence=0.95,
            suggestion=f"Consider setting a monthly budget limit for {top} expenses",
        )]

        window_days = self._settings.analysis_window_days
        daily_average = total / window_days
        insights.append(SpendingInsight(
            type="daily_average",
            title="Daily Spending Average",
            message=f"Your average daily spending is ₹{daily_average:.0f}",
            confidence=0.88,
            suggestion=(
                "Try to reduce daily expenses by ₹200 to improve savings"
                if daily_average > DAILY_AVERAGE_LIMIT
                else "Great job maintaining controlled daily spending!"
            ),
        ))

        weekend = _total(t for t in spending if is_weekend(t.date))
        weekday = total - weekend
        if weekend > weekday * WEEKEND_SHARE_LIMIT:
            share = weekend / total * 100
            insights.append(SpendingInsight(
                type="weekend_alert",
                title="High Weekend Spending",
                message=f"Weekend expenses are ₹{weekend:.0f} ({share:.1f}% of total)",
                confidence=0.82,
                suggestion="Set a weekend budget to control leisure spending",
            ))

        return SpendingInsights(
            total_transactions=len(spending),
            total_spending=money(total),
            insights=insights,
        )

    @staticmethod
    def period_comparison(
        current: Iterable[Transaction],
        previous: Iterable[Transaction],
    ) -> PeriodComparison:
        """Spending of one period against the period before it."""
        current = [t for t in current if is_spending(t)]
        current_total = _total(current)
        previous_total = _total(t for t in previous if is_spending(t))

        change = 0.0
        if previous_total > 0:
            change = round(float((current_total - previous_total) / previous_total * 100), 2)

        if change > 0:
            trend = "increasing"
        elif change < 0:
            trend = "decreasing"
        else:
            trend = "stable"

        breakdown: dict[str, Decimal] = {}
        for t in current:
            breakdown[t.category] = breakdown.get(t.category, Decimal("0")) + abs(t.amount)
        top = sorted(breakdown.items(), key=lambda item: item[1], reverse=True)

        return PeriodComparison(
            total_spending=money(current_total),
            previous_period_spending=money(previous_total),
            percentage_change=change,
            trend=trend,
            category_breakdown=[
                CategoryAmount(category=category, amount=money(amount))
                for category, amount in top[:TOP_CATEGORY_COUNT]
            ],
            transaction_count=len(current),
            average_transaction=money(current_total / len(current)) if current else Decimal("0.00"),
        )

    # -------------------------------------------------------------------------
    # Challenges
    # -------------------------------------------------------------------------

    @staticmethod
    def start_challenge(
        user_id,
        recommendation: Recommendation,
        now: Optional[datetime] = None,
    ) -> Challenge:
        """
        Turn a recommendation's challenge template into a running challenge.

        Raises:
            InvalidInputError: If the recommendation carries no challenge
        """
        if recommendation.challenge is None:
            raise InvalidInputError("Recommendation has no challenge to start")

        now = as_utc(now or utcnow())
        spec = recommendation.challenge
        return Challenge(
            user_id=user_id,
            type=spec.type,
            title=recommendation.title,
            description=recommendation.message,
            target=spec.target,
            duration_days=spec.duration_days,
            reward=spec.reward,
            start_date=now,
            end_date=now + timedelta(days=spec.duration_days),
        )

    @staticmethod
    def record_challenge_progress(
        challenge: Challenge,
        increment,
        now: Optional[datetime] = None,
    ) -> ChallengeProgress:
        """
        Add progress to an active challenge.

        A challenge past its end date expires instead of progressing.
        Reaching the target completes it and earns the reward exactly
        once: completed and expired challenges refuse further progress.

        Raises:
            InvalidInputError: If the challenge is no longer active
            InvalidAmountError: If increment is not positive
        """
        if challenge.status != ChallengeStatus.ACTIVE:
            raise InvalidInputError(
                f"Challenge is already {challenge.status.value}",
                details={"challenge_id": str(challenge.id)},
            )
        increment = to_amount(increment)
        now = as_utc(now or utcnow())

        if now > as_utc(challenge.end_date):
            logger.info("challenge_expired", challenge_id=str(challenge.id))
            return ChallengeProgress(
                challenge=challenge.model_copy(update={"status": ChallengeStatus.EXPIRED}),
            )

        progress = challenge.progress + increment
        if progress >= challenge.target:
            return ChallengeProgress(
                challenge=challenge.model_copy(update={
                    "progress": progress,
                    "status": ChallengeStatus.COMPLETED,
                    "completed_at": now,
                }),
                reward_earned=challenge.reward,
                just_completed=True,
            )

        return ChallengeProgress(
            challenge=challenge.model_copy(update={"progress": progress}),
        )
