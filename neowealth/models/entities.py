"""
Core Data Models for NeoWealth

These models define the strict schemas for all entities flowing between
storage and the engines. They are designed to:
1. Enforce type safety at runtime
2. Provide clear validation error messages
3. Be serializable for storage and logging

DESIGN DECISION: Money is always Decimal quantized to 2 places.
Floats never touch a balance.

DESIGN DECISION: Stored transaction amounts are magnitudes.
The direction of money flow is carried by `type`, never by the sign.
"""

from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)


CENT = Decimal("0.01")

# Transaction categories written by the ledger engine
REWARDS_CATEGORY = "rewards"
NEOCOIN_SPEND_CATEGORY = "neocoin-spend"
TRANSFER_OUT_CATEGORY = "neocoin-transfer-out"
TRANSFER_IN_CATEGORY = "neocoin-transfer-in"


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC; convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def money(value) -> Decimal:
    """Coerce a number to a 2-place Decimal."""
    if isinstance(value, float):
        value = str(value)
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def format_inr(value) -> str:
    """
    Format an amount with Indian digit grouping.

    125000 -> "1,25,000", 450.5 -> "450.5"
    """
    amount = money(value)
    sign = "-" if amount < 0 else ""
    whole, _, fraction = f"{abs(amount):f}".partition(".")
    fraction = fraction.rstrip("0")

    if len(whole) > 3:
        head, tail = whole[:-3], whole[-3:]
        groups = []
        while len(head) > 2:
            groups.insert(0, head[-2:])
            head = head[:-2]
        if head:
            groups.insert(0, head)
        whole = ",".join(groups + [tail])

    return sign + whole + (f".{fraction}" if fraction else "")


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class TransactionType(str, Enum):
    INCOME = "income"
    EXPENSE = "expense"
    INVESTMENT = "investment"
    TRANSFER = "transfer"


class RecurringFrequency(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


class RiskLevel(str, Enum):
    """Used for user risk tolerance, hive risk and transaction risk."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class GoalCategory(str, Enum):
    EMERGENCY = "emergency"
    VACATION = "vacation"
    HOUSE = "house"
    CAR = "car"
    EDUCATION = "education"
    RETIREMENT = "retirement"
    INVESTMENT = "investment"
    OTHER = "other"


class GoalPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class GoalStatus(str, Enum):
    """
    Goal lifecycle.

    CRITICAL: ACTIVE -> COMPLETED happens automatically when the saved
    amount reaches the target. Nothing ever reopens a completed goal.
    """
    ACTIVE = "active"
    COMPLETED = "completed"
    PAUSED = "paused"
    CANCELLED = "cancelled"


class HiveStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    PAUSED = "paused"


class MemberRole(str, Enum):
    MEMBER = "member"
    ADMIN = "admin"


class MembershipStatus(str, Enum):
    """
    Hive membership lifecycle.

    ACTIVE -> INACTIVE or ACTIVE -> LEFT. Both are terminal: re-joining
    creates a new membership row.
    """
    ACTIVE = "active"
    INACTIVE = "inactive"
    LEFT = "left"


class ChallengeStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    EXPIRED = "expired"


# =============================================================================
# USER & WALLET
# =============================================================================

class User(BaseModel):
    """An app user. Never hard-deleted; disabled through `is_active`."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    email: str = Field(..., min_length=3, max_length=254)
    password_hash: str = Field(..., min_length=1, repr=False)
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: Optional[str] = Field(default=None, max_length=100)
    phone: Optional[str] = Field(default=None, max_length=20)
    monthly_income: Decimal = Field(default=Decimal("0"), ge=0)
    risk_tolerance: RiskLevel = RiskLevel.MEDIUM
    is_active: bool = True
    last_login: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        v = v.lower()
        local, _, domain = v.partition("@")
        if not local or "." not in domain:
            raise ValueError(f"Invalid email address: {v}")
        return v

    @property
    def display_name(self) -> str:
        return " ".join(part for part in (self.first_name, self.last_name) if part)


class Wallet(BaseModel):
    """
    A user's NeoCoin and cash ledger. Exactly one per user.

    CRITICAL: `neo_coins` is only ever changed by the ledger engine's
    earn / spend / transfer operations.

    `version` is owned by storage and used for compare-and-swap writes.
    """

    id: UUID = Field(default_factory=uuid4)
    user_id: UUID
    neo_coins: Decimal = Field(default=Decimal("100.00"))
    cash_balance: Decimal = Field(default=Decimal("0.00"))
    total_earned: Decimal = Field(default=Decimal("0.00"))
    total_spent: Decimal = Field(default=Decimal("0.00"))
    reward_multiplier: Decimal = Field(default=Decimal("1.00"), ge=0)
    last_reward_date: Optional[datetime] = None
    version: int = Field(default=0, ge=0)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("neo_coins", "cash_balance", "total_earned", "total_spent")
    @classmethod
    def quantize_money(cls, v: Decimal) -> Decimal:
        return money(v)

    @field_validator("last_reward_date")
    @classmethod
    def reward_date_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return as_utc(v) if v else v


# =============================================================================
# TRANSACTIONS
# =============================================================================

class TransactionClassification(BaseModel):
    """Classifier metadata attached to a stored transaction."""

    confidence: float = Field(..., ge=0.0, le=1.0)
    risk_level: RiskLevel
    subcategory: Optional[str] = None
    merchant: Optional[str] = None
    source: str = Field(default="classifier")


class Transaction(BaseModel):
    """
    A single financial record.

    Immutable history except for explicit update/delete by the owner.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    user_id: UUID
    type: TransactionType
    category: str = Field(..., min_length=1, max_length=50)
    amount: Decimal = Field(..., ge=0, description="Magnitude; direction is `type`")
    description: Optional[str] = Field(default=None, max_length=500)
    date: datetime = Field(default_factory=utcnow)
    tags: list[str] = Field(default_factory=list)
    is_recurring: bool = False
    recurring_frequency: Optional[RecurringFrequency] = None
    classification: Optional[TransactionClassification] = None
    created_at: datetime = Field(default_factory=utcnow)

    @field_validator("amount")
    @classmethod
    def quantize_amount(cls, v: Decimal) -> Decimal:
        return money(v)

    @field_validator("date", "created_at")
    @classmethod
    def dates_utc(cls, v: datetime) -> datetime:
        return as_utc(v)

    @field_validator("tags")
    @classmethod
    def unique_tags(cls, v: list[str]) -> list[str]:
        seen: list[str] = []
        for tag in v:
            tag = tag.strip().lower()
            if tag and tag not in seen:
                seen.append(tag)
        return seen

    @model_validator(mode="after")
    def validate_recurrence(self) -> "Transaction":
        if self.recurring_frequency and not self.is_recurring:
            raise ValueError("Recurring frequency set on a non-recurring transaction")
        return self


# =============================================================================
# GOALS
# =============================================================================

class GoalRecommendation(BaseModel):
    """Record of the last automatic optimization applied to a goal."""

    last_optimization: datetime
    adjustment_type: str
    confidence: float = Field(..., ge=0.0, le=1.0)
    reasoning: str
    previous_target: Decimal
    previous_date: datetime


class Goal(BaseModel):
    """A user's individual savings target."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    user_id: UUID
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=1000)
    target_amount: Decimal = Field(..., gt=0)
    current_amount: Decimal = Field(default=Decimal("0.00"), ge=0)
    target_date: datetime
    category: GoalCategory
    priority: GoalPriority = GoalPriority.MEDIUM
    status: GoalStatus = GoalStatus.ACTIVE
    ai_recommendation: Optional[GoalRecommendation] = None
    created_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None

    @field_validator("target_amount", "current_amount")
    @classmethod
    def quantize_amounts(cls, v: Decimal) -> Decimal:
        return money(v)

    @field_validator("target_date")
    @classmethod
    def target_date_utc(cls, v: datetime) -> datetime:
        return as_utc(v)


# =============================================================================
# HIVES (group savings)
# =============================================================================

class Hive(BaseModel):
    """
    A group savings pool.

    `current_members` must equal the number of ACTIVE memberships; the
    hive coordinator maintains it in the same unit of work as the
    membership change.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=1000)
    max_members: int = Field(default=15, gt=0)
    current_members: int = Field(default=0, ge=0)
    goal_type: GoalCategory
    target_amount: Decimal = Field(..., gt=0)
    current_amount: Decimal = Field(default=Decimal("0.00"), ge=0)
    risk_level: RiskLevel = RiskLevel.MEDIUM
    monthly_contribution: Decimal = Field(..., ge=0)
    status: HiveStatus = HiveStatus.ACTIVE
    end_date: datetime
    created_at: datetime = Field(default_factory=utcnow)
    version: int = Field(default=0, ge=0)

    @field_validator("target_amount", "current_amount", "monthly_contribution")
    @classmethod
    def quantize_amounts(cls, v: Decimal) -> Decimal:
        return money(v)

    @field_validator("end_date", "created_at")
    @classmethod
    def dates_utc(cls, v: datetime) -> datetime:
        return as_utc(v)

    @model_validator(mode="after")
    def validate_capacity(self) -> "Hive":
        if self.current_members > self.max_members:
            raise ValueError("Hive has more members than its capacity")
        return self

    @property
    def has_capacity(self) -> bool:
        return self.current_members < self.max_members


class HiveMember(BaseModel):
    """Membership of one user in one hive."""

    id: UUID = Field(default_factory=uuid4)
    user_id: UUID
    hive_id: UUID
    role: MemberRole = MemberRole.MEMBER
    monthly_contribution: Decimal = Field(..., ge=0)
    total_contributed: Decimal = Field(default=Decimal("0.00"), ge=0)
    status: MembershipStatus = MembershipStatus.ACTIVE
    consistency_score: float = Field(default=1.0, ge=0.0, le=1.0)
    joined_at: datetime = Field(default_factory=utcnow)
    left_at: Optional[datetime] = None

    @field_validator("monthly_contribution", "total_contributed")
    @classmethod
    def quantize_amounts(cls, v: Decimal) -> Decimal:
        return money(v)


# =============================================================================
# CHALLENGES
# =============================================================================

class Challenge(BaseModel):
    """
    A time-boxed habit challenge started from a recommendation.

    Progress is counted in the challenge's own unit (days cooked at home,
    mindful purchases, rupees under budget).
    """

    id: UUID = Field(default_factory=uuid4)
    user_id: UUID
    type: str
    title: str
    description: str
    target: Decimal = Field(..., gt=0)
    duration_days: int = Field(..., gt=0)
    reward: Decimal = Field(..., ge=0)
    progress: Decimal = Field(default=Decimal("0"), ge=0)
    status: ChallengeStatus = ChallengeStatus.ACTIVE
    start_date: datetime
    end_date: datetime
    completed_at: Optional[datetime] = None

    @model_validator(mode="after")
    def validate_window(self) -> "Challenge":
        if self.end_date <= self.start_date:
            raise ValueError("Challenge end date must be after start date")
        return self
