"""
Analytics

Period totals, financial-health scoring and goal progress summaries.
Cash analytics only: NeoCoin bookkeeping records are excluded.
"""

from datetime import datetime, timedelta
from decimal import Decimal
from typing import Iterable, Optional

from neowealth.errors import InvalidInputError
from neowealth.models.entities import (
    Goal,
    GoalStatus,
    Transaction,
    TransactionType,
    as_utc,
    money,
    utcnow,
)
from neowealth.models.results import (
    FinancialHealth,
    GoalProgressItem,
    HealthRecommendation,
    PeriodAnalytics,
)
from neowealth.services.behavior import LEDGER_CATEGORIES
from neowealth.services.goals import GoalOptimizer

PERIOD_DAYS = {
    "week": 7,
    "month": 30,
    "year": 365,
}


def _sum(transactions: Iterable[Transaction], kind: TransactionType) -> Decimal:
    return sum((abs(t.amount) for t in transactions if t.type == kind), Decimal("0"))


def _cash_records(transactions: Iterable[Transaction], since: datetime) -> list[Transaction]:
    return [
        t for t in transactions
        if t.category not in LEDGER_CATEGORIES and t.date >= since
    ]


class AnalyticsEngine:
    """Pure aggregations over already-loaded records."""

    @staticmethod
    def period_start(period: str, now: datetime) -> datetime:
        if period not in PERIOD_DAYS:
            raise InvalidInputError(
                f"Unsupported period: {period}",
                details={"allowed": sorted(PERIOD_DAYS)},
            )
        return now - timedelta(days=PERIOD_DAYS[period])

    def period_analytics(
        self,
        transactions: Iterable[Transaction],
        period: str = "month",
        now: Optional[datetime] = None,
    ) -> PeriodAnalytics:
        """
        Income, expense and investment totals for the last week/month/year.

        Raises:
            InvalidInputError: If the period is not week, month or year
        """
        now = as_utc(now or utcnow())
        records = _cash_records(transactions, self.period_start(period, now))

        income = _sum(records, TransactionType.INCOME)
        expenses = _sum(records, TransactionType.EXPENSE)

        breakdown: dict[str, Decimal] = {}
        for t in records:
            breakdown[t.category] = money(breakdown.get(t.category, Decimal("0")) + abs(t.amount))

        return PeriodAnalytics(
            period=period,
            total_income=money(income),
            total_expenses=money(expenses),
            total_investments=money(_sum(records, TransactionType.INVESTMENT)),
            net_savings=money(income - expenses),
            category_breakdown=breakdown,
            transaction_count=len(records),
        )

    def financial_health(
        self,
        transactions: Iterable[Transaction],
        now: Optional[datetime] = None,
    ) -> FinancialHealth:
        """
        Score the current calendar month (UTC) out of 100.

        savings rate >= 20%: 40 (>= 10%: 20)
        investment rate >= 10%: 30 (>= 5%: 15)
        expenses below income: 30
        """
        now = as_utc(now or utcnow())
        month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
        records = _cash_records(transactions, month_start)

        income = _sum(records, TransactionType.INCOME)
        expenses = _sum(records, TransactionType.EXPENSE)
        investments = _sum(records, TransactionType.INVESTMENT)

        savings_rate = float((income - expenses) / income * 100) if income > 0 else 0.0
        investment_rate = float(investments / income * 100) if income > 0 else 0.0

        score = 0
        if savings_rate >= 20:
            score += 40
        elif savings_rate >= 10:
            score += 20
        if investment_rate >= 10:
            score += 30
        elif investment_rate >= 5:
            score += 15
        if expenses < income:
            score += 30

        return FinancialHealth(
            income=money(income),
            expenses=money(expenses),
            investments=money(investments),
            net_savings=money(income - expenses),
            savings_rate=round(savings_rate, 1),
            investment_rate=round(investment_rate, 1),
            health_score=min(score, 100),
            recommendations=self.health_recommendations(
                savings_rate, investment_rate, income, expenses
            ),
        )

    @staticmethod
    def health_recommendations(
        savings_rate: float,
        investment_rate: float,
        income: Decimal,
        expenses: Decimal,
    ) -> list[HealthRecommendation]:
        items = []
        if savings_rate < 10:
            items.append(HealthRecommendation(
                type="savings",
                message="Try to save at least 10% of your income each month",
                priority="high",
            ))
        if investment_rate < 5:
            items.append(HealthRecommendation(
                type="investment",
                message="Consider investing 5-10% of your income for long-term growth",
                priority="medium",
            ))
        if expenses > income:
            items.append(HealthRecommendation(
                type="budget",
                message="Your expenses exceed income. Review and cut unnecessary spending",
                priority="critical",
            ))
        return items

    @staticmethod
    def goal_progress_summary(
        goals: Iterable[Goal],
        now: Optional[datetime] = None,
    ) -> list[GoalProgressItem]:
        """
        Pace check for each active goal.

        A goal is on track when the monthly saving it still needs is no
        more than a twelfth of its target.
        """
        now = as_utc(now or utcnow())
        items = []
        for goal in goals:
            if goal.status != GoalStatus.ACTIVE:
                continue
            days = GoalOptimizer.days_remaining(goal, now)
            remaining = goal.target_amount - goal.current_amount
            monthly = remaining / (Decimal(days) / 30) if days > 0 else Decimal("0")
            items.append(GoalProgressItem(
                goal_id=goal.id,
                title=goal.title,
                progress=GoalOptimizer.progress(goal),
                days_remaining=days,
                monthly_required=money(monthly),
                on_track=monthly <= goal.target_amount / 12,
            ))
        return items
