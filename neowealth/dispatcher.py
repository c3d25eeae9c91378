"""
Event Dispatcher

Thin fan-out from a domain event to the engines:

    event -> context (engine analyses) -> decisions -> actions -> results

DESIGN DECISION: This is the ONE place where partial failure is
expected. Each decision's action runs on its own; a failing action is
recorded as an unsuccessful ActionResult and its siblings still run.

The dispatcher performs no I/O. The caller loads a UserSnapshot and
persists (or pushes) the produced ActionRecords.
"""

from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Optional

import structlog

from neowealth.models.entities import (
    RiskLevel,
    Transaction,
    TransactionType,
    as_utc,
    money,
    utcnow,
)
from neowealth.models.results import (
    ActionRecord,
    ActionResult,
    Decision,
    DispatchOutcome,
    EngagementAnalysis,
    EventContext,
    EventType,
    GoalFeasibility,
    SpendingAnalysis,
    TransactionAnalysis,
    UserProfile,
    UserSnapshot,
)
from neowealth.services.behavior import LEDGER_CATEGORIES
from neowealth.services.classifier import TransactionClassifier
from neowealth.services.goals import GoalOptimizer
from neowealth.services.ledger import LedgerEngine

logger = structlog.get_logger(__name__)

PROFILE_SAMPLE_SIZE = 20
PRIMARY_CATEGORY_COUNT = 3
CATEGORY_HISTORY_DAYS = 30
CAPACITY_WINDOW_DAYS = 30
ENGAGEMENT_WINDOW_DAYS = 7
DEFAULT_SPENDING_THRESHOLD = Decimal("5000")

ActionHandler = Callable[[Any, Decision, EventContext], ActionRecord]


def _decimal(value, default: Decimal = Decimal("0")) -> Decimal:
    if value is None:
        return default
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return default


def _datetime(value) -> Optional[datetime]:
    if isinstance(value, datetime):
        return as_utc(value)
    if isinstance(value, str):
        try:
            return as_utc(datetime.fromisoformat(value))
        except ValueError:
            return None
    return None


def _cash_records(transactions: list[Transaction]) -> list[Transaction]:
    return [t for t in transactions if t.category not in LEDGER_CATEGORIES]


class EventDispatcher:
    """
    Maps events to decisions and runs the decisions' actions.

    Actions are looked up by name, so new ones can be registered
    without touching the decision logic.
    """

    def __init__(
        self,
        classifier: Optional[TransactionClassifier] = None,
        optimizer: Optional[GoalOptimizer] = None,
        ledger: Optional[LedgerEngine] = None,
    ):
        self._classifier = classifier or TransactionClassifier()
        self._optimizer = optimizer or GoalOptimizer()
        self._ledger = ledger or LedgerEngine()
        self._actions: dict[str, ActionHandler] = {
            "send_spending_alert": self._send_spending_alert,
            "suggest_budget_review": self._suggest_budget_review,
            "suggest_goal_modification": self._suggest_goal_modification,
            "create_spending_intervention": self._create_spending_intervention,
            "suggest_activities": self._suggest_activities,
        }

    def register_action(self, action: str, handler: ActionHandler) -> None:
        """Add or replace the handler for a decision action."""
        self._actions[action] = handler

    def handle(
        self,
        user_id,
        event_type: str,
        event_data: Optional[dict[str, Any]] = None,
        snapshot: Optional[UserSnapshot] = None,
        now: Optional[datetime] = None,
    ) -> DispatchOutcome:
        """
        Process one event.

        Unknown event types give an empty decision list, not an error.
        """
        now = as_utc(now or utcnow())
        event_data = dict(event_data or {})
        snapshot = snapshot or UserSnapshot()

        try:
            kind = EventType(event_type)
        except ValueError:
            kind = None
            logger.info("unknown_event_type", event_type=event_type, user_id=str(user_id))

        context = self.build_context(user_id, kind, event_type, event_data, snapshot, now)
        decisions = self.decide(kind, context)
        results = self.execute(user_id, decisions, context)

        logger.info(
            "event_processed",
            event_type=event_type,
            user_id=str(user_id),
            decisions=len(decisions),
            failed=sum(1 for r in results if not r.success),
        )
        return DispatchOutcome(
            event_type=event_type,
            context=context,
            decisions=decisions,
            results=results,
            timestamp=now,
        )

    # -------------------------------------------------------------------------
    # Context
    # -------------------------------------------------------------------------

    def build_context(
        self,
        user_id,
        kind: Optional[EventType],
        event_type: str,
        event_data: dict[str, Any],
        snapshot: UserSnapshot,
        now: datetime,
    ) -> EventContext:
        context = EventContext(
            event_type=event_type,
            event_data=event_data,
            timestamp=now,
            user_profile=self.user_profile(user_id, snapshot.transactions),
        )

        if kind == EventType.TRANSACTION_ADDED:
            context.transaction_analysis = self.analyze_transaction(
                event_data, snapshot.transactions, now
            )
        elif kind == EventType.GOAL_CREATED:
            context.goal_analysis = self.analyze_goal_feasibility(event_data, snapshot, now)
        elif kind == EventType.SPENDING_THRESHOLD_REACHED:
            context.spending_analysis = self.analyze_spending(event_data)
        elif kind == EventType.USER_LOGIN:
            context.engagement_analysis = self.analyze_engagement(snapshot, now)

        return context

    @staticmethod
    def user_profile(user_id, transactions: list[Transaction]) -> UserProfile:
        """Stats over the most recent transactions."""
        recent = sorted(
            _cash_records(transactions), key=lambda t: t.created_at, reverse=True
        )[:PROFILE_SAMPLE_SIZE]
        if not recent:
            return UserProfile(user_id=user_id)

        amounts = [abs(t.amount) for t in recent]
        average = sum(amounts, Decimal("0")) / len(amounts)

        counts: dict[str, int] = {}
        for t in recent:
            counts[t.category] = counts.get(t.category, 0) + 1
        primary = sorted(counts, key=counts.get, reverse=True)[:PRIMARY_CATEGORY_COUNT]

        if max(amounts) > average * 3:
            risk_profile = "high_variance"
        elif average > 2000:
            risk_profile = "high_spender"
        elif average < 500:
            risk_profile = "conservative"
        else:
            risk_profile = "moderate"

        return UserProfile(
            user_id=user_id,
            total_transactions=len(recent),
            avg_transaction_amount=money(average),
            primary_categories=primary,
            risk_profile=risk_profile,
        )

    def analyze_transaction(
        self,
        event_data: dict[str, Any],
        transactions: list[Transaction],
        now: datetime,
    ) -> TransactionAnalysis:
        amount = abs(_decimal(event_data.get("amount")))
        category = event_data.get("category") or "other"

        since = now - timedelta(days=CATEGORY_HISTORY_DAYS)
        history = [t for t in transactions if t.category == category and t.date >= since]
        average = (
            sum((abs(t.amount) for t in history), Decimal("0")) / len(history)
            if history else amount
        )

        if amount > 5000:
            risk = RiskLevel.HIGH
        elif amount > 1000:
            risk = RiskLevel.MEDIUM
        else:
            risk = RiskLevel.LOW

        # Best effort: a classifier failure never fails the dispatch
        classification = None
        description = event_data.get("description")
        if description:
            try:
                classification = self._classifier.classify(description, amount, now=now)
            except Exception as e:
                logger.warning("event_classification_failed", error=str(e))

        return TransactionAnalysis(
            amount=money(amount),
            category=category,
            is_unusual_amount=amount > average * 2,
            category_frequency=len(history),
            risk_level=risk,
            classification=classification,
        )

    def analyze_goal_feasibility(
        self,
        event_data: dict[str, Any],
        snapshot: UserSnapshot,
        now: datetime,
    ) -> GoalFeasibility:
        """
        Can the user's recent surplus fund the new goal?

        Capacity is income minus expenses over the last 30 days. A goal
        whose deadline has already passed needs its full target at once.
        """
        target = _decimal(event_data.get("target_amount"))
        deadline = _datetime(event_data.get("target_date")) or now
        days = GoalOptimizer.days_remaining_until(deadline, now)

        since = now - timedelta(days=CAPACITY_WINDOW_DAYS)
        recent = [t for t in _cash_records(snapshot.transactions) if t.date >= since]
        income = sum(
            (abs(t.amount) for t in recent if t.type == TransactionType.INCOME), Decimal("0")
        )
        expenses = sum(
            (abs(t.amount) for t in recent if t.type == TransactionType.EXPENSE), Decimal("0")
        )
        capacity = max(Decimal("0"), income - expenses)

        required = target / (Decimal(days) / 30) if days > 0 else target
        score = 0.0
        if capacity > 0:
            score = 1.0 if required <= 0 else min(1.0, float(capacity / required))

        milestones = []
        goal_id = str(event_data.get("goal_id") or "")
        for goal in snapshot.goals:
            if str(goal.id) == goal_id:
                milestones = self._optimizer.milestones(goal)
                break

        return GoalFeasibility(
            target_amount=money(target),
            days_to_deadline=days,
            required_monthly_saving=money(required),
            monthly_saving_capacity=money(capacity),
            feasibility_score=score,
            is_feasible=required <= capacity,
            milestones=milestones,
        )

    @staticmethod
    def analyze_spending(event_data: dict[str, Any]) -> SpendingAnalysis:
        current = _decimal(event_data.get("current_spending"))
        threshold = _decimal(event_data.get("threshold"), DEFAULT_SPENDING_THRESHOLD)
        return SpendingAnalysis(
            current_spending=money(current),
            threshold=money(threshold),
            exceeds_threshold=current > threshold,
            severity=RiskLevel.HIGH if current > threshold * Decimal("1.5") else RiskLevel.MEDIUM,
        )

    def analyze_engagement(self, snapshot: UserSnapshot, now: datetime) -> EngagementAnalysis:
        since = now - timedelta(days=ENGAGEMENT_WINDOW_DAYS)
        recent = [t for t in _cash_records(snapshot.transactions) if t.created_at >= since]
        count = len(recent)

        if count > 5:
            level = RiskLevel.HIGH
        elif count > 2:
            level = RiskLevel.MEDIUM
        else:
            level = RiskLevel.LOW

        reward = Decimal("0")
        if snapshot.wallet is not None:
            reward = self._ledger.calculate_daily_reward(snapshot.wallet, count, now)

        return EngagementAnalysis(
            recent_transactions=count,
            engagement_level=level,
            last_activity_date=max((t.created_at for t in recent), default=None),
            daily_reward_available=reward,
        )

    # -------------------------------------------------------------------------
    # Decisions
    # -------------------------------------------------------------------------

    @staticmethod
    def decide(kind: Optional[EventType], context: EventContext) -> list[Decision]:
        decisions = []

        if kind == EventType.TRANSACTION_ADDED:
            analysis = context.transaction_analysis
            if analysis and analysis.is_unusual_amount:
                decisions.append(Decision(
                    type="unusual_spending_alert",
                    priority=RiskLevel.HIGH,
                    action="send_spending_alert",
                    reasoning="Transaction amount is unusually high for this category",
                ))
            if analysis and analysis.risk_level == RiskLevel.HIGH:
                decisions.append(Decision(
                    type="high_risk_transaction",
                    priority=RiskLevel.MEDIUM,
                    action="suggest_budget_review",
                    reasoning="High-value transaction detected",
                ))

        elif kind == EventType.GOAL_CREATED:
            if context.goal_analysis and not context.goal_analysis.is_feasible:
                decisions.append(Decision(
                    type="goal_adjustment_needed",
                    priority=RiskLevel.HIGH,
                    action="suggest_goal_modification",
                    reasoning="Goal may not be achievable with current saving capacity",
                ))

        elif kind == EventType.SPENDING_THRESHOLD_REACHED:
            decisions.append(Decision(
                type="spending_limit_alert",
                priority=RiskLevel.HIGH,
                action="create_spending_intervention",
                reasoning="User has reached spending threshold",
            ))

        elif kind == EventType.USER_LOGIN:
            analysis = context.engagement_analysis
            if analysis and analysis.engagement_level == RiskLevel.LOW:
                decisions.append(Decision(
                    type="engagement_boost",
                    priority=RiskLevel.LOW,
                    action="suggest_activities",
                    reasoning="User has low recent engagement",
                ))

        return decisions

    # -------------------------------------------------------------------------
    # Actions
    # -------------------------------------------------------------------------

    def execute(
        self,
        user_id,
        decisions: list[Decision],
        context: EventContext,
    ) -> list[ActionResult]:
        """Run every decision's action in isolation."""
        results = []
        for decision in decisions:
            handler = self._actions.get(decision.action)
            if handler is None:
                results.append(ActionResult(
                    decision=decision.type,
                    success=False,
                    error=f"No handler for action {decision.action}",
                ))
                continue
            try:
                record = handler(user_id, decision, context)
                results.append(ActionResult(decision=decision.type, success=True, record=record))
            except Exception as e:
                logger.error(
                    "decision_action_failed",
                    action=decision.action,
                    user_id=str(user_id),
                    error=str(e),
                )
                results.append(ActionResult(decision=decision.type, success=False, error=str(e)))
        return results

    @staticmethod
    def _send_spending_alert(user_id, decision: Decision, context: EventContext) -> ActionRecord:
        return ActionRecord(
            user_id=user_id,
            type="spending_alert",
            title="💰 Unusual Spending Detected",
            message=(
                "This transaction is higher than your usual spending in this category. "
                "Consider if this aligns with your financial goals."
            ),
            priority=decision.priority,
            timestamp=context.timestamp,
        )

    @staticmethod
    def _suggest_budget_review(user_id, decision: Decision, context: EventContext) -> ActionRecord:
        return ActionRecord(
            user_id=user_id,
            type="budget_review",
            title="📊 Budget Review Suggested",
            message=(
                "Based on your recent high-value transaction, consider reviewing your "
                "monthly budget to ensure you stay on track."
            ),
            priority=decision.priority,
            timestamp=context.timestamp,
        )

    @staticmethod
    def _suggest_goal_modification(user_id, decision: Decision, context: EventContext) -> ActionRecord:
        return ActionRecord(
            user_id=user_id,
            type="goal_modification",
            title="🎯 Goal Adjustment Recommended",
            message=(
                "Your new goal might be challenging to achieve. Consider adjusting the "
                "target amount or timeline for better success."
            ),
            priority=decision.priority,
            timestamp=context.timestamp,
        )

    @staticmethod
    def _create_spending_intervention(user_id, decision: Decision, context: EventContext) -> ActionRecord:
        return ActionRecord(
            user_id=user_id,
            type="spending_intervention",
            title="🚨 Spending Limit Reached",
            message=(
                "You've reached your spending threshold. Consider pausing non-essential "
                "purchases for the rest of the period."
            ),
            priority=RiskLevel.HIGH,
            timestamp=context.timestamp,
        )

    @staticmethod
    def _suggest_activities(user_id, decision: Decision, context: EventContext) -> ActionRecord:
        return ActionRecord(
            user_id=user_id,
            type="activity_suggestions",
            title="🎯 Boost Your Financial Journey",
            message="A few ways to keep your savings moving",
            priority=decision.priority,
            items=[
                "Add a recent transaction to keep your AI Twin updated",
                "Set a new financial goal to boost your savings",
                "Check out community Hives for group challenges",
            ],
            timestamp=context.timestamp,
        )
