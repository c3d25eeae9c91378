"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Swap the in-memory store for a real database later
2. Use in-memory storage for testing
3. Keep the engines decoupled from storage implementation

The interface is intentionally simple - we're not building a full ORM.
Just the lookups the flows need plus a unit of work for writes.

CRITICAL: All writes go through a UnitOfWork. Staged changes commit
together or not at all. Wallets and hives carry a `version`; a commit
fails with ConcurrencyError if any of them changed since it was read.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional, Union
from uuid import UUID

from pydantic import BaseModel

from neowealth.models.audit import AuditEvent
from neowealth.models.entities import (
    Challenge,
    ChallengeStatus,
    Goal,
    GoalStatus,
    Hive,
    HiveMember,
    HiveStatus,
    MembershipStatus,
    Transaction,
    TransactionType,
    User,
    Wallet,
)

Entity = Union[User, Wallet, Transaction, Goal, Hive, HiveMember, Challenge]


class UnitOfWork(ABC):
    """
    A batch of writes applied atomically.

    Usage:
        async with storage.unit_of_work() as uow:
            uow.add(transaction)
            uow.update(wallet)

    Leaving the block normally commits; an exception discards
    everything staged.
    """

    def __init__(self):
        self._added: list[BaseModel] = []
        self._updated: list[BaseModel] = []
        self._deleted: list[BaseModel] = []
        self._saved: dict[UUID, BaseModel] = {}
        self._committed = False

    def add(self, entity: BaseModel) -> None:
        """Stage a new entity. Commit fails with DuplicateError if it exists."""
        self._added.append(entity)

    def update(self, entity: BaseModel) -> None:
        """
        Stage a change to an existing entity.

        For versioned entities the staged `version` must be the one that
        was read; storage bumps it on commit.
        """
        self._updated.append(entity)

    def delete(self, entity: BaseModel) -> None:
        self._deleted.append(entity)

    @property
    def pending(self) -> int:
        return len(self._added) + len(self._updated) + len(self._deleted)

    def saved(self, entity: BaseModel) -> BaseModel:
        """The stored copy of a staged entity after commit (with its new version)."""
        return self._saved.get(entity.id, entity)

    @abstractmethod
    async def commit(self) -> None:
        """
        Apply all staged changes.

        Raises:
            ConcurrencyError: A versioned entity changed since it was read
            DuplicateError: An added entity collides with an existing one
            NotFoundError: An updated or deleted entity doesn't exist
        """
        pass

    async def __aenter__(self) -> "UnitOfWork":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        if exc_type is None and not self._committed:
            await self.commit()
            self._committed = True
        return False


class FinanceStorageInterface(ABC):
    """
    Abstract interface for NeoWealth entity storage.

    Any storage implementation (in-memory, PostgreSQL, etc.)
    must implement these methods.
    """

    @abstractmethod
    def unit_of_work(self) -> UnitOfWork:
        """Start a new unit of work."""
        pass

    # -------------------------------------------------------------------------
    # Users & wallets
    # -------------------------------------------------------------------------

    @abstractmethod
    async def get_user(self, user_id: UUID) -> Optional[User]:
        pass

    @abstractmethod
    async def get_user_by_email(self, email: str) -> Optional[User]:
        """Look up a user by normalized (lower-case) email."""
        pass

    @abstractmethod
    async def list_active_users(self) -> list[User]:
        """All users with `is_active` set, oldest first."""
        pass

    @abstractmethod
    async def get_wallet_by_user(self, user_id: UUID) -> Optional[Wallet]:
        pass

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    @abstractmethod
    async def get_transaction(self, transaction_id: UUID) -> Optional[Transaction]:
        pass

    @abstractmethod
    async def list_transactions(
        self,
        user_id: UUID,
        transaction_type: Optional[TransactionType] = None,
        category: Optional[str] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        created_since: Optional[datetime] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[Transaction]:
        """
        List a user's transactions, newest `date` first.

        Args:
            user_id: Owner of the transactions
            transaction_type: Filter by type
            category: Filter by exact category
            date_from: Transactions dated on or after this instant
            date_to: Transactions dated on or before this instant
            created_since: Transactions recorded on or after this instant
            limit: Maximum number of results (None for all)
            offset: Number of results to skip

        Returns:
            List of matching transactions
        """
        pass

    @abstractmethod
    async def count_transactions(
        self,
        user_id: UUID,
        transaction_type: Optional[TransactionType] = None,
        category: Optional[str] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        created_since: Optional[datetime] = None,
    ) -> int:
        """Count transactions matching the same filters as list_transactions."""
        pass

    # -------------------------------------------------------------------------
    # Goals
    # -------------------------------------------------------------------------

    @abstractmethod
    async def get_goal(self, goal_id: UUID) -> Optional[Goal]:
        pass

    @abstractmethod
    async def list_goals(
        self,
        user_id: UUID,
        statuses: Optional[list[GoalStatus]] = None,
    ) -> list[Goal]:
        """A user's goals, oldest first, optionally filtered by status."""
        pass

    # -------------------------------------------------------------------------
    # Hives
    # -------------------------------------------------------------------------

    @abstractmethod
    async def get_hive(self, hive_id: UUID) -> Optional[Hive]:
        pass

    @abstractmethod
    async def list_hives(self, status: Optional[HiveStatus] = None) -> list[Hive]:
        """Hives newest first."""
        pass

    @abstractmethod
    async def get_active_membership(self, user_id: UUID) -> Optional[HiveMember]:
        """The user's single active membership, if any."""
        pass

    @abstractmethod
    async def list_memberships(
        self,
        hive_id: UUID,
        status: Optional[MembershipStatus] = None,
    ) -> list[HiveMember]:
        pass

    # -------------------------------------------------------------------------
    # Challenges
    # -------------------------------------------------------------------------

    @abstractmethod
    async def get_challenge(self, challenge_id: UUID) -> Optional[Challenge]:
        pass

    @abstractmethod
    async def list_challenges(
        self,
        user_id: UUID,
        status: Optional[ChallengeStatus] = None,
    ) -> list[Challenge]:
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Args:
            event: The audit event to log

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events for a correlation ID (e.g., one transaction creation).

        Returns:
            List of related events in chronological order
        """
        pass

    @abstractmethod
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events for a specific entity.

        Returns:
            List of events in chronological order
        """
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """
        Get the most recent audit events.

        Returns:
            List of recent events (newest first)
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class ConcurrencyError(StorageError):
    """A versioned entity changed between read and commit."""

    def __init__(self, entity_type: str, entity_id: UUID, expected: int, actual: int):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"{entity_type} {entity_id} is at version {actual}, expected {expected}"
        )


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
