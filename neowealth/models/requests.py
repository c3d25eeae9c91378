"""
Input, Validation and Query Models

Inputs arrive from the (external) HTTP layer as loose payloads. They are
parsed into these models by the validator (stage 1) and checked for
business sense (stage 2) before any flow touches storage.

DESIGN DECISION: Validation NEVER silently fixes input. Problems are
reported as ValidationIssues and the flow refuses to proceed.
"""

from datetime import datetime
from decimal import Decimal
from typing import Generic, Optional, TypeVar
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, computed_field

from neowealth.models.entities import (
    GoalCategory,
    GoalPriority,
    GoalStatus,
    RecurringFrequency,
    RiskLevel,
    TransactionType,
    utcnow,
)


# =============================================================================
# INPUTS
# =============================================================================

class RegistrationRequest(BaseModel):
    """
    New user sign-up.

    Password hashing belongs to the auth collaborator; only the hash
    reaches the core.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(..., min_length=3, max_length=254)
    password_hash: str = Field(..., min_length=1, repr=False)
    first_name: str = Field(..., min_length=2, max_length=100)
    last_name: Optional[str] = Field(default=None, max_length=100)
    phone: Optional[str] = Field(default=None, max_length=20)
    monthly_income: Decimal = Field(default=Decimal("0"), ge=0)
    risk_tolerance: RiskLevel = RiskLevel.MEDIUM


class TransactionCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    type: TransactionType
    category: str = Field(..., min_length=2, max_length=50)
    amount: Decimal = Field(..., gt=0, description="Magnitude; the sign is ignored")
    description: Optional[str] = Field(default=None, max_length=500)
    date: Optional[datetime] = None
    tags: list[str] = Field(default_factory=list)
    is_recurring: bool = False
    recurring_frequency: Optional[RecurringFrequency] = None


class TransactionUpdate(BaseModel):
    """Owner edit of a stored transaction. Unset fields stay unchanged."""
    model_config = ConfigDict(str_strip_whitespace=True)

    type: Optional[TransactionType] = None
    category: Optional[str] = Field(default=None, min_length=2, max_length=50)
    amount: Optional[Decimal] = Field(default=None, gt=0)
    description: Optional[str] = Field(default=None, max_length=500)
    date: Optional[datetime] = None
    tags: Optional[list[str]] = None


class GoalCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    title: str = Field(..., min_length=3, max_length=200)
    description: Optional[str] = Field(default=None, max_length=1000)
    target_amount: Decimal = Field(..., gt=0)
    current_amount: Decimal = Field(default=Decimal("0"), ge=0)
    target_date: datetime
    category: GoalCategory
    priority: GoalPriority = GoalPriority.MEDIUM


class GoalUpdate(BaseModel):
    """Owner edit of a goal. Unset fields stay unchanged."""
    model_config = ConfigDict(str_strip_whitespace=True)

    title: Optional[str] = Field(default=None, min_length=3, max_length=200)
    description: Optional[str] = Field(default=None, max_length=1000)
    target_amount: Optional[Decimal] = Field(default=None, gt=0)
    current_amount: Optional[Decimal] = Field(default=None, ge=0)
    target_date: Optional[datetime] = None
    priority: Optional[GoalPriority] = None
    status: Optional[GoalStatus] = None


class HiveCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=3, max_length=100)
    description: Optional[str] = Field(default=None, max_length=1000)
    goal_type: GoalCategory
    target_amount: Decimal = Field(..., gt=0)
    monthly_contribution: Decimal = Field(..., ge=0)
    end_date: datetime
    max_members: Optional[int] = Field(default=None, gt=0, le=100)
    risk_level: RiskLevel = RiskLevel.MEDIUM


# =============================================================================
# VALIDATION
# =============================================================================

class ValidationIssue(BaseModel):
    """A single validation issue found."""

    field: str = Field(
        ...,
        description="Field with the issue"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'missing', 'invalid_value', 'past_date')"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )
    severity: str = Field(
        ...,
        pattern="^(error|warning|info)$",
        description="Issue severity"
    )
    suggested_fix: Optional[str] = Field(
        default=None,
        description="Suggested fix if available"
    )


InputT = TypeVar("InputT")


class ValidationResult(BaseModel, Generic[InputT]):
    """
    Result of the two-stage validation.

    Stage 1: Schema validation (types, required fields)
    Stage 2: Semantic validation (logic checks)

    `value` is the parsed input, present whenever stage 1 passed.
    """

    entity_type: str
    validated_at: datetime = Field(default_factory=utcnow)

    schema_valid: bool
    semantic_valid: bool
    is_valid: bool

    value: Optional[InputT] = None
    issues: list[ValidationIssue] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)

    @property
    def errors(self) -> list[ValidationIssue]:
        return [issue for issue in self.issues if issue.severity == "error"]


# =============================================================================
# QUERIES
# =============================================================================

class TransactionQuery(BaseModel):
    """
    A structured transaction listing request.

    Executed deterministically on stored data, newest first.
    """

    user_id: UUID
    transaction_type: Optional[TransactionType] = None
    category: Optional[str] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None

    page: int = Field(default=1, ge=1)
    limit: int = Field(default=20, ge=1, le=100)

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


ItemT = TypeVar("ItemT")


class Page(BaseModel, Generic[ItemT]):
    """One page of a listing plus pagination metadata."""

    items: list[ItemT] = Field(default_factory=list)
    total: int = Field(..., ge=0)
    page: int = Field(..., ge=1)
    limit: int = Field(..., ge=1)

    @computed_field
    @property
    def pages(self) -> int:
        return -(-self.total // self.limit)
