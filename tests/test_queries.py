"""
Tests for deterministic transaction queries.
"""

import pytest
from datetime import timedelta
from decimal import Decimal

from conftest import NOW, make_transaction, run, seed

from neowealth.audit import AuditLogger
from neowealth.models.audit import AuditEventType
from neowealth.models.entities import REWARDS_CATEGORY, TransactionType
from neowealth.models.requests import TransactionQuery
from neowealth.queries import QueryExecutor


@pytest.fixture
def executor(storage, audit_storage) -> QueryExecutor:
    return QueryExecutor(storage, AuditLogger(audit_storage))


class TestExecute:
    """Tests for paged listings."""

    def test_last_partial_page(self, executor, storage, user):
        """Test the third page of 25 records holds the oldest 5."""
        records = [make_transaction(user.id, date=NOW - timedelta(hours=i)) for i in range(25)]

        async def scenario():
            await seed(storage, *records)
            return await executor.execute(TransactionQuery(user_id=user.id, page=3, limit=10))

        page = run(scenario())
        assert len(page.items) == 5
        assert page.total == 25
        assert page.pages == 3
        assert [t.id for t in page.items] == [t.id for t in records[20:]]

    def test_page_past_the_end(self, executor, storage, user):
        """Test an out-of-range page is empty, not an error."""
        async def scenario():
            await seed(storage, make_transaction(user.id))
            return await executor.execute(TransactionQuery(user_id=user.id, page=5))

        page = run(scenario())
        assert page.items == []
        assert page.total == 1

    def test_filters_apply_to_total(self, executor, storage, user):
        """Test total counts filtered matches only."""
        async def scenario():
            await seed(
                storage,
                make_transaction(user.id, category="food"),
                make_transaction(user.id, category="shopping"),
            )
            return await executor.execute(TransactionQuery(user_id=user.id, category="food"))

        page = run(scenario())
        assert page.total == 1
        assert page.items[0].category == "food"

    def test_query_is_audited(self, executor, audit_storage, user):
        """Test every execution leaves an audit event."""
        async def scenario():
            await executor.execute(TransactionQuery(user_id=user.id, category="food"))
            return await audit_storage.get_recent_events()

        [event] = run(scenario())
        assert event.event_type == AuditEventType.QUERY_EXECUTED


class TestAggregates:
    """Tests for reward history and category totals."""

    def test_reward_history(self, executor, storage, user):
        """Test only NeoCoin credits are listed."""
        async def scenario():
            await seed(
                storage,
                make_transaction(user.id, TransactionType.INCOME, REWARDS_CATEGORY, "5"),
                make_transaction(user.id, TransactionType.INCOME, "salary", "50000"),
            )
            return await executor.reward_history(user.id)

        page = run(scenario())
        assert page.total == 1
        assert page.items[0].category == REWARDS_CATEGORY

    def test_category_totals_ranked(self, executor, storage, user):
        """Test totals are ordered largest first."""
        async def scenario():
            await seed(
                storage,
                make_transaction(user.id, category="food", amount="1000"),
                make_transaction(user.id, category="food", amount="500"),
                make_transaction(user.id, category="shopping", amount="2500"),
                make_transaction(user.id, TransactionType.INCOME, "salary", "50000"),
            )
            return await executor.category_totals(user.id, TransactionType.EXPENSE)

        totals = run(scenario())
        assert list(totals) == ["shopping", "food"]
        assert totals["food"] == Decimal("1500.00")

    def test_describe(self, user):
        """Test the audit label of a query."""
        query = TransactionQuery(
            user_id=user.id,
            transaction_type=TransactionType.EXPENSE,
            category="food",
            date_from=NOW - timedelta(days=7),
        )
        assert QueryExecutor._describe(query) == "list | type:expense | category:food | 2024-03-06..now"
