"""
In-Memory Storage Implementation

The reference implementation of the storage interfaces. Used by the
test suite and by single-process deployments.

DESIGN DECISION: Commits are serialized by one asyncio lock and
validated before anything is applied, so a failed unit of work leaves
the store untouched. Reads yield to the event loop before returning,
which lets concurrent flows interleave the way they would against a
networked database.
"""

import asyncio
from collections import defaultdict
from datetime import datetime
from typing import Optional
from uuid import UUID

import structlog
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
from neowealth.services.storage.interface import (
    AuditStorageInterface,
    ConcurrencyError,
    DuplicateError,
    FinanceStorageInterface,
    NotFoundError,
    UnitOfWork,
)

logger = structlog.get_logger(__name__)

VERSIONED_TYPES = (Wallet, Hive)


class InMemoryUnitOfWork(UnitOfWork):
    """Unit of work against an InMemoryStorage."""

    def __init__(self, storage: "InMemoryStorage"):
        super().__init__()
        self._storage = storage

    async def commit(self) -> None:
        async with self._storage._lock:
            self._check()
            self._apply()
        logger.debug(
            "unit_of_work_committed",
            added=len(self._added),
            updated=len(self._updated),
            deleted=len(self._deleted),
        )

    def _check(self) -> None:
        """Validate every staged change. Raises before anything is written."""
        store = self._storage

        for entity in self._added:
            table = store._table(type(entity))
            if entity.id in table:
                raise DuplicateError(f"{type(entity).__name__} {entity.id} already exists")
            if isinstance(entity, User) and store._email_taken(entity.email, entity.id, self._added):
                raise DuplicateError(f"Email already registered: {entity.email}")
            if isinstance(entity, Wallet) and store._wallet_for(entity.user_id, self._added, entity.id):
                raise DuplicateError(f"User {entity.user_id} already has a wallet")

        for entity in self._updated + self._deleted:
            table = store._table(type(entity))
            current = table.get(entity.id)
            if current is None:
                raise NotFoundError(f"{type(entity).__name__} {entity.id} not found")
            if isinstance(entity, VERSIONED_TYPES) and current.version != entity.version:
                raise ConcurrencyError(
                    type(entity).__name__.lower(),
                    entity.id,
                    expected=entity.version,
                    actual=current.version,
                )

        self._check_memberships()

    def _check_memberships(self) -> None:
        """A user may hold at most one active membership after commit."""
        staged = [
            m for m in self._added + self._updated
            if isinstance(m, HiveMember)
        ]
        if not staged:
            return

        resulting = dict(self._storage._table(HiveMember))
        for membership in staged:
            resulting[membership.id] = membership
        for entity in self._deleted:
            if isinstance(entity, HiveMember):
                resulting.pop(entity.id, None)

        active_by_user: dict[UUID, int] = defaultdict(int)
        for membership in resulting.values():
            if membership.status == MembershipStatus.ACTIVE:
                active_by_user[membership.user_id] += 1

        for membership in staged:
            if active_by_user[membership.user_id] > 1:
                raise DuplicateError(
                    f"User {membership.user_id} already has an active membership"
                )

    def _apply(self) -> None:
        store = self._storage

        for entity in self._added:
            stored = entity.model_copy(deep=True)
            store._table(type(entity))[entity.id] = stored
            self._saved[entity.id] = stored.model_copy(deep=True)

        for entity in self._updated:
            table = store._table(type(entity))
            if isinstance(entity, VERSIONED_TYPES):
                stored = entity.model_copy(
                    update={"version": table[entity.id].version + 1}, deep=True
                )
            else:
                stored = entity.model_copy(deep=True)
            table[entity.id] = stored
            self._saved[entity.id] = stored.model_copy(deep=True)

        for entity in self._deleted:
            store._table(type(entity)).pop(entity.id, None)


class InMemoryStorage(FinanceStorageInterface):
    """
    Dict-backed storage for all NeoWealth entities.

    Returned entities are copies; changing them has no effect until a
    unit of work commits them.
    """

    def __init__(self):
        self._tables: dict[type, dict[UUID, BaseModel]] = defaultdict(dict)
        self._lock = asyncio.Lock()

    def _table(self, model: type) -> dict[UUID, BaseModel]:
        return self._tables[model]

    def _email_taken(self, email: str, user_id: UUID, staged: list[BaseModel]) -> bool:
        users = list(self._table(User).values()) + [
            e for e in staged if isinstance(e, User)
        ]
        return any(u.email == email and u.id != user_id for u in users)

    def _wallet_for(self, user_id: UUID, staged: list[BaseModel], wallet_id: UUID) -> bool:
        wallets = list(self._table(Wallet).values()) + [
            e for e in staged if isinstance(e, Wallet)
        ]
        return any(w.user_id == user_id and w.id != wallet_id for w in wallets)

    async def _read(self, model: type, entity_id: UUID):
        await asyncio.sleep(0)
        entity = self._table(model).get(entity_id)
        return entity.model_copy(deep=True) if entity else None

    async def _scan(self, model: type) -> list:
        await asyncio.sleep(0)
        return [e.model_copy(deep=True) for e in self._table(model).values()]

    def unit_of_work(self) -> InMemoryUnitOfWork:
        return InMemoryUnitOfWork(self)

    # Users & wallets

    async def get_user(self, user_id: UUID) -> Optional[User]:
        return await self._read(User, user_id)

    async def get_user_by_email(self, email: str) -> Optional[User]:
        email = email.strip().lower()
        for user in await self._scan(User):
            if user.email == email:
                return user
        return None

    async def list_active_users(self) -> list[User]:
        users = [u for u in await self._scan(User) if u.is_active]
        return sorted(users, key=lambda u: u.created_at)

    async def get_wallet_by_user(self, user_id: UUID) -> Optional[Wallet]:
        for wallet in await self._scan(Wallet):
            if wallet.user_id == user_id:
                return wallet
        return None

    # Transactions

    async def get_transaction(self, transaction_id: UUID) -> Optional[Transaction]:
        return await self._read(Transaction, transaction_id)

    def _filter_transactions(
        self,
        transactions: list[Transaction],
        user_id: UUID,
        transaction_type: Optional[TransactionType],
        category: Optional[str],
        date_from: Optional[datetime],
        date_to: Optional[datetime],
        created_since: Optional[datetime],
    ) -> list[Transaction]:
        result = []
        for t in transactions:
            if t.user_id != user_id:
                continue
            if transaction_type and t.type != transaction_type:
                continue
            if category and t.category != category:
                continue
            if date_from and t.date < date_from:
                continue
            if date_to and t.date > date_to:
                continue
            if created_since and t.created_at < created_since:
                continue
            result.append(t)
        return result

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
        matches = self._filter_transactions(
            await self._scan(Transaction),
            user_id, transaction_type, category, date_from, date_to, created_since,
        )
        matches.sort(key=lambda t: (t.date, t.created_at), reverse=True)
        end = None if limit is None else offset + limit
        return matches[offset:end]

    async def count_transactions(
        self,
        user_id: UUID,
        transaction_type: Optional[TransactionType] = None,
        category: Optional[str] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        created_since: Optional[datetime] = None,
    ) -> int:
        return len(self._filter_transactions(
            await self._scan(Transaction),
            user_id, transaction_type, category, date_from, date_to, created_since,
        ))

    # Goals

    async def get_goal(self, goal_id: UUID) -> Optional[Goal]:
        return await self._read(Goal, goal_id)

    async def list_goals(
        self,
        user_id: UUID,
        statuses: Optional[list[GoalStatus]] = None,
    ) -> list[Goal]:
        goals = [
            g for g in await self._scan(Goal)
            if g.user_id == user_id and (not statuses or g.status in statuses)
        ]
        return sorted(goals, key=lambda g: g.created_at)

    # Hives

    async def get_hive(self, hive_id: UUID) -> Optional[Hive]:
        return await self._read(Hive, hive_id)

    async def list_hives(self, status: Optional[HiveStatus] = None) -> list[Hive]:
        hives = [h for h in await self._scan(Hive) if not status or h.status == status]
        return sorted(hives, key=lambda h: h.created_at, reverse=True)

    async def get_active_membership(self, user_id: UUID) -> Optional[HiveMember]:
        for membership in await self._scan(HiveMember):
            if membership.user_id == user_id and membership.status == MembershipStatus.ACTIVE:
                return membership
        return None

    async def list_memberships(
        self,
        hive_id: UUID,
        status: Optional[MembershipStatus] = None,
    ) -> list[HiveMember]:
        memberships = [
            m for m in await self._scan(HiveMember)
            if m.hive_id == hive_id and (not status or m.status == status)
        ]
        return sorted(memberships, key=lambda m: m.joined_at)

    # Challenges

    async def get_challenge(self, challenge_id: UUID) -> Optional[Challenge]:
        return await self._read(Challenge, challenge_id)

    async def list_challenges(
        self,
        user_id: UUID,
        status: Optional[ChallengeStatus] = None,
    ) -> list[Challenge]:
        challenges = [
            c for c in await self._scan(Challenge)
            if c.user_id == user_id and (not status or c.status == status)
        ]
        return sorted(challenges, key=lambda c: c.start_date)


class InMemoryAuditStorage(AuditStorageInterface):
    """Append-only audit log kept in a list."""

    def __init__(self):
        self._events: list[AuditEvent] = []

    async def append_event(self, event: AuditEvent) -> bool:
        self._events.append(event)
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        return [e for e in self._events if e.correlation_id == correlation_id]

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        return [
            e for e in self._events
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        return list(reversed(self._events))[:limit]
