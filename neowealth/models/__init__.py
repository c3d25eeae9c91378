"""
Data Models Package

This package contains all Pydantic models used in NeoWealth.
All data flowing through the system must conform to these schemas.
"""

from neowealth.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)
from neowealth.models.entities import (
    REWARDS_CATEGORY,
    Challenge,
    ChallengeStatus,
    Goal,
    GoalCategory,
    GoalPriority,
    GoalRecommendation,
    GoalStatus,
    Hive,
    HiveMember,
    HiveStatus,
    MemberRole,
    MembershipStatus,
    RecurringFrequency,
    RiskLevel,
    Transaction,
    TransactionClassification,
    TransactionType,
    User,
    Wallet,
)
from neowealth.models.requests import (
    GoalCreate,
    GoalUpdate,
    HiveCreate,
    Page,
    RegistrationRequest,
    TransactionCreate,
    TransactionQuery,
    TransactionUpdate,
    ValidationIssue,
    ValidationResult,
)

__all__ = [
    # Entities
    "REWARDS_CATEGORY",
    "Challenge",
    "ChallengeStatus",
    "Goal",
    "GoalCategory",
    "GoalPriority",
    "GoalRecommendation",
    "GoalStatus",
    "Hive",
    "HiveMember",
    "HiveStatus",
    "MemberRole",
    "MembershipStatus",
    "RecurringFrequency",
    "RiskLevel",
    "Transaction",
    "TransactionClassification",
    "TransactionType",
    "User",
    "Wallet",
    # Requests & validation
    "GoalCreate",
    "GoalUpdate",
    "HiveCreate",
    "Page",
    "RegistrationRequest",
    "TransactionCreate",
    "TransactionQuery",
    "TransactionUpdate",
    "ValidationIssue",
    "ValidationResult",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
