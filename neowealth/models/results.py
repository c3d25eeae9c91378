"""
Engine Output Models

Everything an engine returns is one of these models. Engines never
write to storage; flows persist the entities carried inside them.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from neowealth.models.entities import (
    Challenge,
    Goal,
    GoalCategory,
    GoalPriority,
    Hive,
    HiveMember,
    RiskLevel,
    Transaction,
    User,
    Wallet,
    utcnow,
)


# =============================================================================
# LEDGER
# =============================================================================

class WalletMutation(BaseModel):
    """A wallet after one ledger operation plus the records it emitted."""

    wallet: Wallet
    amount: Decimal = Field(..., ge=0)
    transactions: list[Transaction] = Field(default_factory=list)


class TransferMutation(BaseModel):
    """Both sides of a NeoCoin transfer. Must be persisted as one unit."""

    sender: Wallet
    recipient: Wallet
    amount: Decimal = Field(..., gt=0)
    transactions: list[Transaction] = Field(default_factory=list)


# =============================================================================
# CLASSIFIER
# =============================================================================

class Classification(BaseModel):
    """Result of classifying a transaction description."""

    category: str
    subcategory: Optional[str] = None
    confidence: float = Field(..., ge=0.0, le=1.0)
    amount: Decimal
    description: str
    tags: list[str] = Field(default_factory=list)
    risk_level: RiskLevel
    suggestions: list[str] = Field(default_factory=list, max_length=3)
    sender: str = "unknown"
    timestamp: datetime = Field(default_factory=utcnow)


class FlowDirection(str, Enum):
    DEBIT = "debit"
    CREDIT = "credit"


class ExtractedTransaction(BaseModel):
    """
    Best-effort parse of a bank message.

    CRITICAL: This is PROPOSED data. Partial or ambiguous matches are
    expected; the user confirms before anything is stored.
    """

    amount: Decimal = Field(..., gt=0, description="Magnitude of the amount found")
    description: str = Field(..., max_length=100)
    type: FlowDirection
    date: datetime = Field(default_factory=utcnow)
    merchant: Optional[str] = None
    method: str = "unknown"
    card_last4: Optional[str] = None
    balance: Optional[Decimal] = None

    @property
    def signed_amount(self) -> Decimal:
        """Negative for debits, positive for credits."""
        return self.amount if self.type == FlowDirection.CREDIT else -self.amount


class ProcessedMessage(BaseModel):
    """Extraction plus classification of one bank message."""

    extracted: ExtractedTransaction
    classification: Classification
    source: str = "sms"
    sender: str = "unknown"


# =============================================================================
# GOALS
# =============================================================================

class AdjustmentType(str, Enum):
    """Goal adjustments in priority order."""
    REDUCE_TARGET = "reduce_target"
    INCREASE_TARGET = "increase_target"
    EXTEND_DEADLINE = "extend_deadline"


class GoalOptimization(BaseModel):
    """Outcome of analysing one goal against the user's saving capacity."""

    goal_id: UUID
    current_progress: float
    days_remaining: int
    daily_required: Decimal
    saving_capacity: Decimal
    should_adjust: bool = False
    adjustment_type: Optional[AdjustmentType] = None
    new_target: Optional[Decimal] = None
    new_date: Optional[datetime] = None
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    reasoning: str = ""


class GoalSuggestion(BaseModel):
    category: GoalCategory
    title: str
    description: str
    target_amount: Decimal
    priority: GoalPriority
    reasoning: str
    confidence: float = Field(..., ge=0.0, le=1.0)


class Milestone(BaseModel):
    goal_id: UUID
    percentage: int
    target_amount: Decimal
    reward: int = Field(..., ge=0)
    title: str
    description: str
    achieved: bool = False


class GoalUpdateOutcome(BaseModel):
    """A goal after a change, plus what the change unlocked."""

    goal: Goal
    progress: float
    just_completed: bool = False
    new_milestones: list[Milestone] = Field(default_factory=list)
    coins_awarded: Decimal = Decimal("0")


# =============================================================================
# HIVES
# =============================================================================

class HiveCandidate(BaseModel):
    """A hive offered to the matcher with its active members' incomes."""

    hive: Hive
    member_incomes: list[Decimal] = Field(default_factory=list)

    @property
    def average_income(self) -> Optional[Decimal]:
        if not self.member_incomes:
            return None
        return sum(self.member_incomes, Decimal("0")) / len(self.member_incomes)


class HiveProgress(BaseModel):
    hive_id: UUID
    progress_percent: float
    months_remaining: int
    total_monthly_contribution: Decimal
    projected_months_to_completion: Optional[Decimal] = None
    active_members: int


class MembershipChange(BaseModel):
    """A hive and membership changed together."""

    hive: Hive
    membership: HiveMember


# =============================================================================
# BEHAVIOR
# =============================================================================

class SpendingPatterns(BaseModel):
    weekend_spending: Decimal = Decimal("0")
    weekday_spending: Decimal = Decimal("0")
    impulse_purchases: Decimal = Decimal("0")
    category_distribution: dict[str, Decimal] = Field(default_factory=dict)


class RiskFactor(BaseModel):
    type: str
    severity: RiskLevel
    message: str
    amount: Decimal
    suggestion: str


class PositiveHabit(BaseModel):
    type: str
    message: str
    frequency: int
    reward: int


class ChallengeSpec(BaseModel):
    """Challenge template carried by a recommendation."""

    type: str
    duration_days: int = Field(..., gt=0)
    target: Decimal = Field(..., gt=0)
    reward: Decimal = Field(..., ge=0)


class Recommendation(BaseModel):
    type: str
    priority: RiskLevel
    title: str
    message: str
    reward: int = 0
    challenge: Optional[ChallengeSpec] = None


class BehaviorProfile(BaseModel):
    transaction_count: int = 0
    spending_patterns: Optional[SpendingPatterns] = None
    risk_factors: list[RiskFactor] = Field(default_factory=list)
    positive_habits: list[PositiveHabit] = Field(default_factory=list)
    recommendations: list[Recommendation] = Field(default_factory=list)
    message: Optional[str] = None


class Nudge(BaseModel):
    type: str
    title: str
    message: str
    priority: RiskLevel
    actionable: bool
    timestamp: datetime = Field(default_factory=utcnow)


class SpendingInsight(BaseModel):
    type: str
    title: str
    message: str
    confidence: float
    actionable: bool = True
    suggestion: str


class SpendingInsights(BaseModel):
    total_transactions: int
    total_spending: Decimal
    insights: list[SpendingInsight] = Field(default_factory=list)


class CategoryAmount(BaseModel):
    category: str
    amount: Decimal


class PeriodComparison(BaseModel):
    total_spending: Decimal
    previous_period_spending: Decimal
    percentage_change: float
    trend: str
    category_breakdown: list[CategoryAmount] = Field(default_factory=list)
    transaction_count: int
    average_transaction: Decimal


class ChallengeProgress(BaseModel):
    """A challenge after recording progress, plus any reward it unlocked."""

    challenge: Challenge
    reward_earned: Decimal = Decimal("0")
    just_completed: bool = False
    wallet: Optional[Wallet] = None


# =============================================================================
# EVENT DISPATCHER
# =============================================================================

class UserSnapshot(BaseModel):
    """
    What the dispatcher knows about a user when an event arrives.

    Loaded by the caller; `transactions` should cover at least the last
    30 days.
    """

    user: Optional[User] = None
    wallet: Optional[Wallet] = None
    transactions: list[Transaction] = Field(default_factory=list)
    goals: list[Goal] = Field(default_factory=list)


class EventType(str, Enum):
    TRANSACTION_ADDED = "transaction_added"
    GOAL_CREATED = "goal_created"
    SPENDING_THRESHOLD_REACHED = "spending_threshold_reached"
    USER_LOGIN = "user_login"


class UserProfile(BaseModel):
    user_id: UUID
    total_transactions: int = 0
    avg_transaction_amount: Decimal = Decimal("0")
    primary_categories: list[str] = Field(default_factory=list)
    risk_profile: str = "unknown"


class TransactionAnalysis(BaseModel):
    amount: Decimal
    category: str
    is_unusual_amount: bool
    category_frequency: int
    risk_level: RiskLevel
    classification: Optional[Classification] = None


class GoalFeasibility(BaseModel):
    target_amount: Decimal
    days_to_deadline: int
    required_monthly_saving: Decimal
    monthly_saving_capacity: Decimal
    feasibility_score: float = Field(..., ge=0.0, le=1.0)
    is_feasible: bool
    milestones: list[Milestone] = Field(default_factory=list)


class SpendingAnalysis(BaseModel):
    current_spending: Decimal
    threshold: Decimal
    exceeds_threshold: bool
    severity: RiskLevel


class EngagementAnalysis(BaseModel):
    recent_transactions: int
    engagement_level: RiskLevel
    last_activity_date: Optional[datetime] = None
    daily_reward_available: Decimal = Decimal("0")


class EventContext(BaseModel):
    event_type: str
    event_data: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utcnow)
    user_profile: Optional[UserProfile] = None
    transaction_analysis: Optional[TransactionAnalysis] = None
    goal_analysis: Optional[GoalFeasibility] = None
    spending_analysis: Optional[SpendingAnalysis] = None
    engagement_analysis: Optional[EngagementAnalysis] = None


class Decision(BaseModel):
    type: str
    priority: RiskLevel
    action: str
    reasoning: str


class ActionRecord(BaseModel):
    """Alert or suggestion produced by executing a decision."""

    user_id: UUID
    type: str
    title: str
    message: str
    priority: RiskLevel = RiskLevel.MEDIUM
    actionable: bool = True
    items: list[str] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=utcnow)


class ActionResult(BaseModel):
    decision: str
    success: bool
    record: Optional[ActionRecord] = None
    error: Optional[str] = None


class DispatchOutcome(BaseModel):
    event_type: str
    context: EventContext
    decisions: list[Decision] = Field(default_factory=list)
    results: list[ActionResult] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=utcnow)


# =============================================================================
# ANALYTICS
# =============================================================================

class PeriodAnalytics(BaseModel):
    period: str
    total_income: Decimal
    total_expenses: Decimal
    total_investments: Decimal
    net_savings: Decimal
    category_breakdown: dict[str, Decimal] = Field(default_factory=dict)
    transaction_count: int


class HealthRecommendation(BaseModel):
    type: str
    message: str
    priority: str


class FinancialHealth(BaseModel):
    income: Decimal
    expenses: Decimal
    investments: Decimal
    net_savings: Decimal
    savings_rate: float
    investment_rate: float
    health_score: int = Field(..., ge=0, le=100)
    recommendations: list[HealthRecommendation] = Field(default_factory=list)


class GoalProgressItem(BaseModel):
    goal_id: UUID
    title: str
    progress: float
    days_remaining: int
    monthly_required: Decimal
    on_track: bool


# =============================================================================
# JOBS
# =============================================================================

class SweepReport(BaseModel):
    """Summary of one pass over all active users."""

    job: str
    started_at: datetime
    finished_at: datetime
    users_processed: int = 0
    users_succeeded: int = 0
    users_failed: int = 0
    users_rewarded: int = 0
    total_rewards_distributed: Decimal = Decimal("0")
    failures: dict[str, str] = Field(default_factory=dict)


# =============================================================================
# FLOWS
# =============================================================================

class AccountSummary(BaseModel):
    user: User
    wallet: Wallet


class LoginOutcome(BaseModel):
    """A login, with the daily reward it triggered (0 if already claimed)."""

    user: User
    wallet: Wallet
    daily_reward: Decimal = Decimal("0")
    dispatch: Optional[DispatchOutcome] = None


class TransactionOutcome(BaseModel):
    """A recorded transaction and its effect on the wallet."""

    transaction: Transaction
    wallet: Wallet
    reward: Decimal = Decimal("0")
    classification: Optional[Classification] = None
    warnings: list[str] = Field(default_factory=list)
    dispatch: Optional[DispatchOutcome] = None


class GoalOptimizationReport(BaseModel):
    saving_capacity: Decimal
    optimizations: list[GoalOptimization] = Field(default_factory=list)
    adjusted_goals: list[Goal] = Field(default_factory=list)
