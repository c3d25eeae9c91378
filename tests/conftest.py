"""
Shared fixtures for the NeoWealth test suite.

Flows are async; tests drive them with `run()` so no event-loop plugin
is needed. Every test uses the fixed clock `NOW` (a Wednesday morning,
UTC) unless it is about calendar behavior.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from neowealth.audit import AuditLogger
from neowealth.config import AppSettings
from neowealth.models.entities import (
    Goal,
    GoalCategory,
    Transaction,
    TransactionType,
    User,
    Wallet,
)
from neowealth.orchestrator import create_app_components
from neowealth.services.storage import InMemoryAuditStorage, InMemoryStorage

NOW = datetime(2024, 3, 13, 10, 0, tzinfo=timezone.utc)


def run(coro):
    """Run a coroutine to completion on a fresh event loop."""
    return asyncio.run(coro)


def make_user(email: str = "asha@example.com", **overrides) -> User:
    data = {
        "email": email,
        "password_hash": "argon2$hash",
        "first_name": "Asha",
        "monthly_income": Decimal("50000"),
        "created_at": NOW - timedelta(days=90),
    }
    data.update(overrides)
    return User(**data)


def make_transaction(
    user_id,
    type: TransactionType = TransactionType.EXPENSE,
    category: str = "food",
    amount="500",
    date: datetime = NOW,
    **overrides,
) -> Transaction:
    return Transaction(
        user_id=user_id,
        type=type,
        category=category,
        amount=Decimal(str(amount)),
        date=date,
        created_at=overrides.pop("created_at", date),
        **overrides,
    )


def make_goal(user_id, target="10000", current="0", days: int = 180, **overrides) -> Goal:
    data = {
        "user_id": user_id,
        "title": "Emergency Fund",
        "target_amount": Decimal(target),
        "current_amount": Decimal(current),
        "target_date": NOW + timedelta(days=days),
        "category": GoalCategory.EMERGENCY,
        "created_at": NOW - timedelta(days=10),
    }
    data.update(overrides)
    return Goal(**data)


async def seed(storage: InMemoryStorage, *entities) -> None:
    async with storage.unit_of_work() as uow:
        for entity in entities:
            uow.add(entity)


def registration(email: str = "asha@example.com", **overrides) -> dict:
    payload = {
        "email": email,
        "password_hash": "argon2$hash",
        "first_name": "Asha",
        "last_name": "Rao",
        "monthly_income": "50000",
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def user() -> User:
    return make_user()


@pytest.fixture
def wallet(user) -> Wallet:
    return Wallet(user_id=user.id, updated_at=NOW)


@pytest.fixture
def storage() -> InMemoryStorage:
    return InMemoryStorage()


@pytest.fixture
def audit_storage() -> InMemoryAuditStorage:
    return InMemoryAuditStorage()


@pytest.fixture
def app_settings() -> AppSettings:
    # Concurrent tests need headroom for repeated version conflicts
    return AppSettings(concurrency_retry_attempts=20, concurrency_retry_max_wait=0.05)


@pytest.fixture
def app(storage, audit_storage, app_settings):
    return create_app_components(
        storage=storage,
        audit_logger=AuditLogger(audit_storage),
        settings=app_settings,
    )
