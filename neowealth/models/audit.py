"""
Audit Models for NeoWealth

Every significant action in the system is logged for audit purposes.
This provides:
1. Complete traceability of balance changes
2. Debugging information when things go wrong
3. Ability to reconstruct a wallet's history

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from neowealth.models.entities import utcnow


class AuditEventType(str, Enum):
    """
    Types of events we audit.

    Every ledger movement and lifecycle change has its own event type.
    """
    # Users
    USER_REGISTERED = "user_registered"
    USER_LOGGED_IN = "user_logged_in"

    # Wallet ledger
    WALLET_CREDITED = "wallet_credited"
    WALLET_DEBITED = "wallet_debited"
    NEOCOIN_TRANSFERRED = "neocoin_transferred"
    DAILY_REWARD_AWARDED = "daily_reward_awarded"

    # Transactions
    TRANSACTION_CREATED = "transaction_created"
    TRANSACTION_UPDATED = "transaction_updated"
    TRANSACTION_DELETED = "transaction_deleted"
    CLASSIFICATION_FAILED = "classification_failed"

    # Validation
    SCHEMA_VALIDATION_FAILED = "schema_validation_failed"
    SEMANTIC_VALIDATION_FAILED = "semantic_validation_failed"

    # Goals
    GOAL_CREATED = "goal_created"
    GOAL_UPDATED = "goal_updated"
    GOAL_COMPLETED = "goal_completed"
    GOAL_OPTIMIZED = "goal_optimized"
    MILESTONE_ACHIEVED = "milestone_achieved"

    # Hives
    HIVE_CREATED = "hive_created"
    HIVE_JOINED = "hive_joined"
    HIVE_LEFT = "hive_left"

    # Challenges
    CHALLENGE_STARTED = "challenge_started"
    CHALLENGE_COMPLETED = "challenge_completed"

    # Insights and queries
    EVENT_DISPATCHED = "event_dispatched"
    QUERY_EXECUTED = "query_executed"

    # Background jobs
    SWEEP_COMPLETED = "sweep_completed"

    # System events
    CONCURRENCY_CONFLICT = "concurrency_conflict"
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    Every significant action creates one of these.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=utcnow,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'wallet', 'goal', 'hive')"
    )
    entity_id: Optional[UUID] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )
    user_id: Optional[UUID] = Field(
        default=None,
        description="User the action was performed for"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., all events of one request)"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    # Error information (if applicable)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user action?"
    )

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": str(self.entity_id) if self.entity_id else None,
            "user_id": str(self.user_id) if self.user_id else None,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.wallet_credited(wallet_id, user_id, amount, reason)
        event = AuditEventBuilder.hive_joined(hive_id, user_id, correlation_id)
    """

    @staticmethod
    def user_registered(
        user_id: UUID,
        email: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.USER_REGISTERED,
            entity_type="user",
            entity_id=user_id,
            user_id=user_id,
            correlation_id=correlation_id,
            description=f"User registered: {email}",
            details={"email": email},
            is_user_action=True,
        )

    @staticmethod
    def user_logged_in(
        user_id: UUID,
        reward: Optional[Decimal],
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.USER_LOGGED_IN,
            entity_type="user",
            entity_id=user_id,
            user_id=user_id,
            correlation_id=correlation_id,
            description="User logged in",
            details={"daily_reward": str(reward) if reward else None},
            is_user_action=True,
        )

    @staticmethod
    def wallet_credited(
        wallet_id: UUID,
        user_id: UUID,
        amount: Decimal,
        reason: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.WALLET_CREDITED,
            entity_type="wallet",
            entity_id=wallet_id,
            user_id=user_id,
            correlation_id=correlation_id,
            description=f"Wallet credited {amount} NeoCoins: {reason}"[:500],
            details={"amount": str(amount), "reason": reason},
        )

    @staticmethod
    def wallet_debited(
        wallet_id: UUID,
        user_id: UUID,
        amount: Decimal,
        description: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.WALLET_DEBITED,
            entity_type="wallet",
            entity_id=wallet_id,
            user_id=user_id,
            correlation_id=correlation_id,
            description=f"Wallet debited {amount} NeoCoins"[:500],
            details={"amount": str(amount), "description": description},
            is_user_action=True,
        )

    @staticmethod
    def neocoin_transferred(
        sender_wallet_id: UUID,
        recipient_wallet_id: UUID,
        user_id: UUID,
        amount: Decimal,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.NEOCOIN_TRANSFERRED,
            entity_type="wallet",
            entity_id=sender_wallet_id,
            user_id=user_id,
            correlation_id=correlation_id,
            description=f"Transferred {amount} NeoCoins",
            details={
                "amount": str(amount),
                "recipient_wallet_id": str(recipient_wallet_id),
            },
            is_user_action=True,
        )

    @staticmethod
    def daily_reward_awarded(
        wallet_id: UUID,
        user_id: UUID,
        amount: Decimal,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DAILY_REWARD_AWARDED,
            entity_type="wallet",
            entity_id=wallet_id,
            user_id=user_id,
            correlation_id=correlation_id,
            description=f"Daily reward of {amount} NeoCoins awarded",
            details={"amount": str(amount)},
        )

    @staticmethod
    def transaction_created(
        transaction_id: UUID,
        user_id: UUID,
        transaction_type: str,
        category: str,
        amount: Decimal,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_CREATED,
            entity_type="transaction",
            entity_id=transaction_id,
            user_id=user_id,
            correlation_id=correlation_id,
            description=f"Transaction created: {transaction_type} {category} - ₹{amount}",
            details={
                "type": transaction_type,
                "category": category,
                "amount": str(amount),
            },
            is_user_action=True,
        )

    @staticmethod
    def transaction_changed(
        transaction_id: UUID,
        user_id: UUID,
        deleted: bool = False,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=(
                AuditEventType.TRANSACTION_DELETED
                if deleted
                else AuditEventType.TRANSACTION_UPDATED
            ),
            entity_type="transaction",
            entity_id=transaction_id,
            user_id=user_id,
            correlation_id=correlation_id,
            description=f"Transaction {'deleted' if deleted else 'updated'}",
            is_user_action=True,
        )

    @staticmethod
    def classification_failed(
        user_id: UUID,
        error_message: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CLASSIFICATION_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="transaction",
            user_id=user_id,
            correlation_id=correlation_id,
            description="Transaction classification skipped",
            error_message=error_message,
        )

    @staticmethod
    def validation_failed(
        entity_type: str,
        stage: str,
        issues: list[dict],
        user_id: Optional[UUID] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        event_type = (
            AuditEventType.SCHEMA_VALIDATION_FAILED
            if stage == "schema"
            else AuditEventType.SEMANTIC_VALIDATION_FAILED
        )
        return AuditEvent(
            event_type=event_type,
            severity=AuditSeverity.WARNING,
            entity_type=entity_type,
            user_id=user_id,
            correlation_id=correlation_id,
            description=f"{stage.capitalize()} validation failed with {len(issues)} issues",
            details={
                "stage": stage,
                "issues": issues,
            },
        )

    @staticmethod
    def goal_event(
        event_type: AuditEventType,
        goal_id: UUID,
        user_id: UUID,
        title: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        """Goal created / updated / completed / optimized."""
        action = event_type.value.replace("goal_", "")
        return AuditEvent(
            event_type=event_type,
            entity_type="goal",
            entity_id=goal_id,
            user_id=user_id,
            correlation_id=correlation_id,
            description=f"Goal {action}: {title}"[:500],
            details=details or {},
            is_user_action=event_type in (
                AuditEventType.GOAL_CREATED,
                AuditEventType.GOAL_UPDATED,
            ),
        )

    @staticmethod
    def milestone_achieved(
        goal_id: UUID,
        user_id: UUID,
        percentage: int,
        reward: int,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MILESTONE_ACHIEVED,
            entity_type="goal",
            entity_id=goal_id,
            user_id=user_id,
            correlation_id=correlation_id,
            description=f"Milestone reached: {percentage}%",
            details={"percentage": percentage, "reward": reward},
        )

    @staticmethod
    def hive_event(
        event_type: AuditEventType,
        hive_id: UUID,
        user_id: UUID,
        current_members: int,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        """Hive created / joined / left."""
        action = event_type.value.replace("hive_", "")
        return AuditEvent(
            event_type=event_type,
            entity_type="hive",
            entity_id=hive_id,
            user_id=user_id,
            correlation_id=correlation_id,
            description=f"Hive {action}",
            details={"current_members": current_members},
            is_user_action=True,
        )

    @staticmethod
    def challenge_event(
        event_type: AuditEventType,
        challenge_id: UUID,
        user_id: UUID,
        challenge_type: str,
        reward: Optional[Decimal] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        """Challenge started / completed."""
        action = event_type.value.replace("challenge_", "")
        return AuditEvent(
            event_type=event_type,
            entity_type="challenge",
            entity_id=challenge_id,
            user_id=user_id,
            correlation_id=correlation_id,
            description=f"Challenge {action}: {challenge_type}",
            details={"reward": str(reward) if reward is not None else None},
        )

    @staticmethod
    def event_dispatched(
        user_id: UUID,
        event_type: str,
        decision_count: int,
        failed_actions: int,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EVENT_DISPATCHED,
            severity=AuditSeverity.WARNING if failed_actions else AuditSeverity.INFO,
            entity_type="event",
            user_id=user_id,
            correlation_id=correlation_id,
            description=f"Dispatched {event_type}: {decision_count} decisions",
            details={
                "event_type": event_type,
                "decision_count": decision_count,
                "failed_actions": failed_actions,
            },
        )

    @staticmethod
    def query_executed(
        query_id: UUID,
        user_id: UUID,
        query_type: str,
        result_count: int,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.QUERY_EXECUTED,
            entity_type="query",
            entity_id=query_id,
            user_id=user_id,
            correlation_id=correlation_id,
            description=f"Query executed: {query_type} returned {result_count} results",
            details={
                "query_type": query_type,
                "result_count": result_count,
            },
        )

    @staticmethod
    def sweep_completed(
        job: str,
        processed: int,
        failed: int,
        total_rewards: Decimal,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SWEEP_COMPLETED,
            severity=AuditSeverity.WARNING if failed else AuditSeverity.INFO,
            entity_type="job",
            correlation_id=correlation_id,
            description=f"{job} finished: {processed} users, {failed} failures",
            details={
                "job": job,
                "users_processed": processed,
                "users_failed": failed,
                "total_rewards": str(total_rewards),
            },
        )

    @staticmethod
    def concurrency_conflict(
        entity_type: str,
        entity_id: Optional[UUID],
        attempt: int,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CONCURRENCY_CONFLICT,
            severity=AuditSeverity.WARNING,
            entity_type=entity_type,
            entity_id=entity_id,
            correlation_id=correlation_id,
            description=f"Write conflict on {entity_type}, attempt {attempt}",
            details={"attempt": attempt},
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_code=error_type,
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
