"""
Audit Logger

DESIGN DECISION: Every significant action in the system is logged.
This provides:
1. Complete traceability of every NeoCoin movement
2. Debugging capability
3. User can see history of their rewards

The audit logger:
- Is async to not block main flow
- Gracefully handles failures (doesn't crash the app if logging fails)
- Supports correlation IDs to trace related events
"""

import logging
from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

import structlog

from neowealth.config import get_settings
from neowealth.models.audit import AuditEvent, AuditEventBuilder, AuditEventType
from neowealth.services.storage.interface import AuditStorageInterface


def configure_logging(log_level: str = "INFO") -> None:
    """Configure structlog for local JSON logging."""
    logging.basicConfig(format="%(message)s", level=getattr(logging, log_level))
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer()
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


configure_logging(get_settings().app.log_level)


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. Audit storage (for persistence and user visibility)
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger("neowealth.audit")

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity.value in ("error", "critical"):
            self._logger.error("audit_event", **log_dict)
        elif event.severity.value == "warning":
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_wallet_credited(
        self,
        wallet_id: UUID,
        user_id: UUID,
        amount: Decimal,
        reason: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a NeoCoin credit."""
        await self.log(AuditEventBuilder.wallet_credited(
            wallet_id=wallet_id,
            user_id=user_id,
            amount=amount,
            reason=reason,
            correlation_id=correlation_id,
        ))

    async def log_wallet_debited(
        self,
        wallet_id: UUID,
        user_id: UUID,
        amount: Decimal,
        description: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a NeoCoin spend."""
        await self.log(AuditEventBuilder.wallet_debited(
            wallet_id=wallet_id,
            user_id=user_id,
            amount=amount,
            description=description,
            correlation_id=correlation_id,
        ))

    async def log_transfer(
        self,
        sender_wallet_id: UUID,
        recipient_wallet_id: UUID,
        user_id: UUID,
        amount: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.neocoin_transferred(
            sender_wallet_id=sender_wallet_id,
            recipient_wallet_id=recipient_wallet_id,
            user_id=user_id,
            amount=amount,
            correlation_id=correlation_id,
        ))

    async def log_daily_reward(
        self,
        wallet_id: UUID,
        user_id: UUID,
        amount: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.daily_reward_awarded(
            wallet_id=wallet_id,
            user_id=user_id,
            amount=amount,
            correlation_id=correlation_id,
        ))

    async def log_transaction_created(
        self,
        transaction_id: UUID,
        user_id: UUID,
        transaction_type: str,
        category: str,
        amount: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a new financial transaction."""
        await self.log(AuditEventBuilder.transaction_created(
            transaction_id=transaction_id,
            user_id=user_id,
            transaction_type=transaction_type,
            category=category,
            amount=amount,
            correlation_id=correlation_id,
        ))

    async def log_validation_failed(
        self,
        entity_type: str,
        stage: str,
        issues: list[dict],
        user_id: Optional[UUID] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log validation failure."""
        await self.log(AuditEventBuilder.validation_failed(
            entity_type=entity_type,
            stage=stage,
            issues=issues,
            user_id=user_id,
            correlation_id=correlation_id,
        ))

    async def log_goal_event(
        self,
        event_type: AuditEventType,
        goal_id: UUID,
        user_id: UUID,
        title: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.goal_event(
            event_type=event_type,
            goal_id=goal_id,
            user_id=user_id,
            title=title,
            details=details,
            correlation_id=correlation_id,
        ))

    async def log_hive_event(
        self,
        event_type: AuditEventType,
        hive_id: UUID,
        user_id: UUID,
        current_members: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.hive_event(
            event_type=event_type,
            hive_id=hive_id,
            user_id=user_id,
            current_members=current_members,
            correlation_id=correlation_id,
        ))

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        await self.log(AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a new user action (e.g., creating a transaction).
    Pass it through all subsequent operations.
    """
    return uuid4()
