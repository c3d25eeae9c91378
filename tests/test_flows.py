"""
End-to-end tests for the orchestrated flows.

Every flow returns a Result; failures are asserted through their error
kind rather than by catching exceptions.
"""

import asyncio
from datetime import timedelta
from decimal import Decimal
from uuid import uuid4

from conftest import NOW, registration, run

from neowealth.audit import AuditLogger
from neowealth.config import AppSettings
from neowealth.errors import ErrorKind
from neowealth.models.audit import AuditEventType
from neowealth.models.entities import ChallengeStatus, GoalStatus, MembershipStatus, TransactionType
from neowealth.orchestrator import TransactionFlow, create_app_components
from neowealth.services.storage import (
    ConcurrencyError,
    InMemoryAuditStorage,
    InMemoryStorage,
    InMemoryUnitOfWork,
)

DEBIT_SMS = "Rs.450 debited from A/c XX1234 at ZOMATO on 12-03-2024. Avl Bal Rs 12,000.50"


async def register(app, email: str = "asha@example.com", **overrides):
    result = await app.users.register(registration(email, **overrides), now=NOW)
    assert result.success, result.message
    return result.data.user.id


def expense(category: str = "shopping", amount: str = "2000", description: str = "Amazon order") -> dict:
    return {
        "type": "expense",
        "category": category,
        "amount": amount,
        "description": description,
        "date": NOW,
    }


def hive_payload(max_members=None) -> dict:
    return {
        "name": "Goa Trip",
        "goal_type": "vacation",
        "target_amount": "120000",
        "monthly_contribution": "5000",
        "end_date": NOW + timedelta(days=180),
        "max_members": max_members,
    }


def goal_payload(days: int = 180) -> dict:
    return {
        "title": "Emergency Fund",
        "target_amount": "10000",
        "target_date": NOW + timedelta(days=days),
        "category": "emergency",
    }


class StaleUnitOfWork(InMemoryUnitOfWork):
    """A unit of work that always loses the version race."""

    async def commit(self) -> None:
        raise ConcurrencyError("wallet", uuid4(), expected=0, actual=1)


class StaleStorage(InMemoryStorage):
    """Storage that conflicts on every write once `stale` is set."""

    stale = False

    def unit_of_work(self):
        return StaleUnitOfWork(self) if self.stale else super().unit_of_work()


class BrokenStorage(InMemoryStorage):
    """Storage whose user lookups fail unexpectedly."""

    async def get_user(self, user_id):
        raise RuntimeError("disk on fire")


class TestAccounts:
    """Tests for registration, login and deactivation."""

    def test_register_seeds_wallet(self, app):
        """Test a new account starts with the welcome NeoCoins."""
        result = run(app.users.register(registration(), now=NOW))

        assert result.success is True
        assert result.message == "Registration successful"
        assert result.data.user.email == "asha@example.com"
        assert result.data.wallet.neo_coins == Decimal("100.00")
        assert result.data.wallet.user_id == result.data.user.id

    def test_duplicate_email(self, app):
        """Test a second registration with the same email."""
        async def scenario():
            await register(app)
            return await app.users.register(registration("ASHA@example.com"), now=NOW)

        result = run(scenario())
        assert result.success is False
        assert result.error.kind == ErrorKind.ALREADY_EXISTS
        assert result.http_status == 409

    def test_invalid_registration(self, app, audit_storage):
        """Test a bad email is rejected and the failure audited."""
        async def scenario():
            result = await app.users.register(registration("asha@localhost"), now=NOW)
            return result, await audit_storage.get_recent_events()

        result, events = run(scenario())
        assert result.error.kind == ErrorKind.INVALID_INPUT
        assert result.message == "Valid email is required"
        assert events[0].event_type == AuditEventType.SEMANTIC_VALIDATION_FAILED

    def test_daily_reward_on_login(self, app):
        """Test the login reward is paid once per calendar day."""
        async def scenario():
            user_id = await register(app)
            first = await app.users.login(user_id, now=NOW)
            again = await app.users.login(user_id, now=NOW + timedelta(hours=3))
            tomorrow = await app.users.login(user_id, now=NOW + timedelta(days=1))
            return first, again, tomorrow

        first, again, tomorrow = run(scenario())
        assert first.message == "Login successful"
        assert first.data.daily_reward == Decimal("5")
        assert first.data.wallet.neo_coins == Decimal("105.00")
        assert first.data.user.last_login == NOW
        assert again.data.daily_reward == Decimal("0")
        assert tomorrow.data.daily_reward == Decimal("5")
        assert tomorrow.data.wallet.neo_coins == Decimal("110.00")

    def test_unknown_user_login(self, app):
        """Test logging in as nobody."""
        result = run(app.users.login(uuid4(), now=NOW))
        assert result.error.kind == ErrorKind.NOT_FOUND
        assert result.http_status == 404

    def test_deactivate(self, app, storage):
        """Test deactivation ends the membership and blocks login."""
        async def scenario():
            user_id = await register(app)
            created = await app.hives.create(user_id, hive_payload(), now=NOW)
            deactivated = await app.users.deactivate(user_id, now=NOW)
            login = await app.users.login(user_id, now=NOW)
            membership = await storage.get_active_membership(user_id)
            hive = await storage.get_hive(created.data.hive.id)
            members = await storage.list_memberships(hive.id)
            return deactivated, login, membership, hive, members

        deactivated, login, membership, hive, members = run(scenario())
        assert deactivated.message == "Account deactivated"
        assert deactivated.data.is_active is False
        assert login.error.kind == ErrorKind.INVALID_INPUT
        assert login.message == "Account is deactivated"
        assert membership is None
        assert hive.current_members == 0
        assert members[0].status == MembershipStatus.INACTIVE


class TestWallet:
    """Tests for NeoCoin earning, spending and transfers."""

    def test_earn_and_spend(self, app):
        """Test direct credits and debits."""
        async def scenario():
            user_id = await register(app)
            earned = await app.wallets.earn(user_id, "25", "Referral bonus", now=NOW)
            spent = await app.wallets.spend(user_id, "40", "Voucher", now=NOW)
            too_much = await app.wallets.spend(user_id, "1000", "Voucher", now=NOW)
            return earned, spent, too_much

        earned, spent, too_much = run(scenario())
        assert earned.message == "NeoCoins earned successfully"
        assert earned.data.neo_coins == Decimal("125.00")
        assert spent.data.neo_coins == Decimal("85.00")
        assert too_much.error.kind == ErrorKind.INSUFFICIENT_BALANCE
        assert too_much.error.details == {"available": "85.00", "requested": "1000.00"}

    def test_transfer_conserves_coins(self, app):
        """Test a transfer moves coins without creating or losing any."""
        async def scenario():
            asha = await register(app)
            ravi = await register(app, "ravi@example.com", first_name="Ravi")
            result = await app.wallets.transfer(asha, ravi, "30", "Dinner", now=NOW)
            return result, await app.wallets.balance(asha), await app.wallets.balance(ravi)

        result, asha, ravi = run(scenario())
        assert result.message == "NeoCoins transferred successfully"
        assert len(result.data.transactions) == 2
        assert asha.data.neo_coins == Decimal("70.00")
        assert ravi.data.neo_coins == Decimal("130.00")

    def test_transfer_failures(self, app):
        """Test the ways a transfer can be refused."""
        async def scenario():
            asha = await register(app)
            ravi = await register(app, "ravi@example.com", first_name="Ravi")
            return (
                await app.wallets.transfer(asha, ravi, "500", now=NOW),
                await app.wallets.transfer(asha, uuid4(), "5", now=NOW),
                await app.wallets.transfer(asha, asha, "5", now=NOW),
                await app.wallets.transfer(asha, ravi, "-5", now=NOW),
                await app.wallets.balance(asha),
            )

        broke, nobody, self_transfer, negative, balance = run(scenario())
        assert broke.error.kind == ErrorKind.INSUFFICIENT_BALANCE
        assert nobody.error.kind == ErrorKind.NOT_FOUND
        assert self_transfer.error.kind == ErrorKind.INVALID_INPUT
        assert negative.error.kind == ErrorKind.INVALID_INPUT
        assert balance.data.neo_coins == Decimal("100.00")

    def test_concurrent_earns(self, app):
        """Test parallel credits are all kept."""
        async def scenario():
            user_id = await register(app)
            results = await asyncio.gather(*[
                app.wallets.earn(user_id, "10", "Quiz reward", now=NOW) for _ in range(5)
            ])
            return results, await app.wallets.balance(user_id)

        results, balance = run(scenario())
        assert all(r.success for r in results)
        assert balance.data.neo_coins == Decimal("150.00")

    def test_concurrent_opposite_transfers(self, app):
        """Test crossing transfers keep the total constant."""
        async def scenario():
            asha = await register(app)
            ravi = await register(app, "ravi@example.com", first_name="Ravi")
            results = await asyncio.gather(
                *[app.wallets.transfer(asha, ravi, "10", now=NOW) for _ in range(3)],
                *[app.wallets.transfer(ravi, asha, "5", now=NOW) for _ in range(3)],
            )
            return results, await app.wallets.balance(asha), await app.wallets.balance(ravi)

        results, asha, ravi = run(scenario())
        assert all(r.success for r in results)
        assert asha.data.neo_coins == Decimal("85.00")
        assert ravi.data.neo_coins == Decimal("115.00")

    def test_exhausted_retries_become_conflict(self, audit_storage):
        """Test a write that never wins its version check."""
        storage = StaleStorage()
        app = create_app_components(
            storage=storage,
            audit_logger=AuditLogger(audit_storage),
            settings=AppSettings(concurrency_retry_attempts=2, concurrency_retry_max_wait=0.01),
        )

        async def scenario():
            user_id = await register(app)
            storage.stale = True
            result = await app.wallets.earn(user_id, "10", "Quiz reward", now=NOW)
            return result, await audit_storage.get_recent_events()

        result, events = run(scenario())
        assert result.error.kind == ErrorKind.CONFLICT
        assert result.http_status == 409
        assert events[0].event_type == AuditEventType.CONCURRENCY_CONFLICT


class TestTransactions:
    """Tests for recording and editing transactions."""

    def test_expense_end_to_end(self, app):
        """Test an expense moves cash and pays cashback in one step."""
        async def scenario():
            user_id = await register(app)
            return await app.transactions.create(user_id, expense(), now=NOW)

        result = run(scenario())
        assert result.message == "Transaction added successfully"
        outcome = result.data
        assert outcome.wallet.cash_balance == Decimal("-2000.00")
        assert outcome.wallet.total_spent == Decimal("2000.00")
        assert outcome.wallet.neo_coins == Decimal("120.00")
        assert outcome.reward == Decimal("20.00")
        assert outcome.classification.category == "shopping"
        assert outcome.transaction.classification is not None

    def test_cashback_does_not_block_daily_reward(self, app):
        """Test a same-day cashback leaves the login reward available."""
        async def scenario():
            user_id = await register(app)
            await app.transactions.create(user_id, expense(), now=NOW)
            return await app.users.login(user_id, now=NOW)

        assert run(scenario()).data.daily_reward == Decimal("5")

    def test_reserved_category_rejected(self, app):
        """Test users cannot book NeoCoin records by hand."""
        async def scenario():
            user_id = await register(app)
            return await app.transactions.create(user_id, expense(category="rewards"), now=NOW)

        assert run(scenario()).error.kind == ErrorKind.INVALID_INPUT

    def test_update_and_delete_leave_wallet(self, app):
        """Test edits change the record only."""
        async def scenario():
            user_id = await register(app)
            created = await app.transactions.create(user_id, expense(), now=NOW)
            transaction_id = created.data.transaction.id
            updated = await app.transactions.update(user_id, transaction_id, {"amount": "3000"}, now=NOW)
            after_update = await app.wallets.balance(user_id)
            deleted = await app.transactions.delete(user_id, transaction_id)
            after_delete = await app.wallets.balance(user_id)
            missing = await app.transactions.get(user_id, transaction_id)
            return created, updated, after_update, deleted, after_delete, missing

        created, updated, after_update, deleted, after_delete, missing = run(scenario())
        assert updated.message == "Transaction updated successfully"
        assert updated.data.amount == Decimal("3000.00")
        assert after_update.data == created.data.wallet
        assert deleted.message == "Transaction deleted successfully"
        assert after_delete.data == created.data.wallet
        assert missing.error.kind == ErrorKind.NOT_FOUND

    def test_other_users_transaction(self, app):
        """Test a user cannot read someone else's record."""
        async def scenario():
            asha = await register(app)
            ravi = await register(app, "ravi@example.com", first_name="Ravi")
            created = await app.transactions.create(asha, expense(), now=NOW)
            return await app.transactions.get(ravi, created.data.transaction.id)

        assert run(scenario()).error.kind == ErrorKind.NOT_FOUND

    def test_message_to_transaction(self, app):
        """Test a parsed bank message becomes a confirmed expense."""
        async def scenario():
            user_id = await register(app)
            processed = await app.transactions.process_message(DEBIT_SMS, sender="HDFCBK", now=NOW)
            proposal = TransactionFlow.proposal_from_message(processed.data)
            created = await app.transactions.create(user_id, proposal, now=NOW)
            return proposal, created

        proposal, created = run(scenario())
        assert proposal["type"] == TransactionType.EXPENSE
        assert proposal["category"] == "food"
        assert proposal["amount"] == Decimal("450")
        assert created.success is True
        assert created.data.reward == Decimal("4.50")

    def test_message_without_transaction(self, app):
        """Test chatter is rejected."""
        result = run(app.transactions.process_message("Hello there", now=NOW))
        assert result.error.kind == ErrorKind.INVALID_INPUT
        assert result.message == "No transaction found in message"

    def test_reward_history(self, app):
        """Test the welcome wallet's later credits are listed."""
        async def scenario():
            user_id = await register(app)
            await app.transactions.create(user_id, expense(), now=NOW)
            await app.users.login(user_id, now=NOW)
            return await app.transactions.reward_history(user_id)

        page = run(scenario()).data
        assert page.total == 2


class TestGoals:
    """Tests for goals and their milestone rewards."""

    def test_milestones_pay_coins(self, app):
        """Test each crossed milestone pays once, in the same step."""
        async def scenario():
            user_id = await register(app)
            goal = (await app.goals.create(user_id, goal_payload(), now=NOW)).data
            steps = []
            for amount in ("2500", "2500", "5000"):
                result = await app.goals.contribute(user_id, goal.id, amount, now=NOW)
                balance = await app.wallets.balance(user_id)
                steps.append((result, balance.data.neo_coins))
            return steps

        steps = run(scenario())
        assert [result.data.coins_awarded for result, _ in steps] == [
            Decimal("12"), Decimal("15"), Decimal("50"),
        ]
        assert [coins for _, coins in steps] == [
            Decimal("112.00"), Decimal("127.00"), Decimal("177.00"),
        ]
        last = steps[-1][0]
        assert last.message == "Contribution recorded"
        assert last.data.just_completed is True
        assert last.data.goal.status == GoalStatus.COMPLETED

    def test_target_date_in_the_past(self, app):
        """Test goals must end in the future."""
        async def scenario():
            user_id = await register(app)
            return await app.goals.create(user_id, goal_payload(days=-1), now=NOW)

        result = run(scenario())
        assert result.error.kind == ErrorKind.INVALID_INPUT
        assert result.message == "Target date must be in the future"

    def test_other_users_goal(self, app):
        """Test contributions to someone else's goal."""
        async def scenario():
            asha = await register(app)
            ravi = await register(app, "ravi@example.com", first_name="Ravi")
            goal = (await app.goals.create(asha, goal_payload(), now=NOW)).data
            return await app.goals.contribute(ravi, goal.id, "100", now=NOW)

        assert run(scenario()).error.kind == ErrorKind.NOT_FOUND


class TestHives:
    """Tests for group savings membership."""

    def test_membership_lifecycle(self, app):
        """Test capacity, double joins and leaving."""
        async def scenario():
            asha = await register(app)
            ravi = await register(app, "ravi@example.com", first_name="Ravi")
            meera = await register(app, "meera@example.com", first_name="Meera")
            created = await app.hives.create(asha, hive_payload(max_members=2), now=NOW)
            hive_id = created.data.hive.id
            return (
                created,
                await app.hives.join(ravi, hive_id, now=NOW),
                await app.hives.join(meera, hive_id, now=NOW),
                await app.hives.join(ravi, hive_id, now=NOW),
                await app.hives.leave(ravi, hive_id, now=NOW),
            )

        created, joined, full, again, left = run(scenario())
        assert created.message == "Hive created successfully"
        assert created.data.hive.current_members == 1
        assert joined.message == "Successfully joined hive"
        assert joined.data.hive.current_members == 2
        assert full.error.kind == ErrorKind.CONFLICT
        assert full.message == "Hive is full"
        assert again.error.kind == ErrorKind.ALREADY_MEMBER
        assert left.message == "Successfully left hive"
        assert left.data.hive.current_members == 1
        assert left.data.membership.status == MembershipStatus.LEFT

    def test_concurrent_joins_respect_capacity(self, app):
        """Test racing joins never overfill a hive."""
        async def scenario():
            asha = await register(app)
            others = [
                await register(app, f"member{i}@example.com", first_name=f"Member{i}")
                for i in range(5)
            ]
            hive_id = (await app.hives.create(asha, hive_payload(max_members=3), now=NOW)).data.hive.id
            results = await asyncio.gather(*[app.hives.join(u, hive_id, now=NOW) for u in others])
            return results, await app.hives.progress(hive_id, now=NOW), await app.storage.get_hive(hive_id)

        results, progress, hive = run(scenario())
        assert sum(r.success for r in results) == 2
        assert {r.error.kind for r in results if not r.success} == {ErrorKind.CONFLICT}
        assert hive.current_members == 3
        assert progress.success is True

    def test_non_numeric_pledge(self, app):
        """Test a pledge that is not a number is invalid input."""
        async def scenario():
            asha = await register(app)
            ravi = await register(app, "ravi@example.com", first_name="Ravi")
            hive_id = (await app.hives.create(asha, hive_payload(), now=NOW)).data.hive.id
            result = await app.hives.join(ravi, hive_id, monthly_contribution="abc", now=NOW)
            return result, await app.storage.get_hive(hive_id)

        result, hive = run(scenario())
        assert result.error.kind == ErrorKind.INVALID_INPUT
        assert result.http_status == 400
        assert hive.current_members == 1

    def test_leave_without_membership(self, app):
        """Test leaving a hive the user never joined."""
        async def scenario():
            asha = await register(app)
            ravi = await register(app, "ravi@example.com", first_name="Ravi")
            hive_id = (await app.hives.create(asha, hive_payload(), now=NOW)).data.hive.id
            return await app.hives.leave(ravi, hive_id, now=NOW)

        assert run(scenario()).error.kind == ErrorKind.NOT_FOUND


class TestChallenges:
    """Tests for behavior challenges."""

    def test_challenge_reward_paid_once(self, app):
        """Test a completed challenge pays and then refuses progress."""
        async def scenario():
            user_id = await register(app)
            await app.transactions.create(
                user_id, expense(category="food", amount="6000", description="Swiggy dinner"), now=NOW
            )
            started = await app.insights.start_challenge(user_id, "habit_change", now=NOW)
            duplicate = await app.insights.start_challenge(user_id, "habit_change", now=NOW)
            challenge_id = started.data.id
            done = await app.insights.record_challenge_progress(user_id, challenge_id, 3, now=NOW)
            extra = await app.insights.record_challenge_progress(user_id, challenge_id, 1, now=NOW)
            return started, duplicate, done, extra, await app.wallets.balance(user_id)

        started, duplicate, done, extra, balance = run(scenario())
        assert started.message == "Challenge started"
        assert started.data.type == "cooking_challenge"
        assert duplicate.error.kind == ErrorKind.ALREADY_EXISTS
        assert done.data.just_completed is True
        assert done.data.reward_earned == Decimal("50")
        assert done.data.challenge.status == ChallengeStatus.COMPLETED
        assert extra.error.kind == ErrorKind.INVALID_INPUT
        assert balance.data.neo_coins == Decimal("210.00")

    def test_no_matching_recommendation(self, app):
        """Test a challenge needs a current recommendation."""
        async def scenario():
            user_id = await register(app)
            return await app.insights.start_challenge(user_id, "habit_change", now=NOW)

        assert run(scenario()).error.kind == ErrorKind.INVALID_INPUT


class TestAnalyticsAndAudit:
    """Tests for dashboards, audit trails and error mapping."""

    def test_unknown_period(self, app):
        """Test only week, month and year are accepted."""
        async def scenario():
            user_id = await register(app)
            return await app.analytics.period(user_id, "decade", now=NOW)

        result = run(scenario())
        assert result.error.kind == ErrorKind.INVALID_INPUT
        assert result.to_envelope()["success"] is False

    def test_month_totals(self, app):
        """Test NeoCoin records stay out of cash analytics."""
        async def scenario():
            user_id = await register(app)
            await app.transactions.create(user_id, expense(), now=NOW)
            return await app.analytics.period(user_id, "month", now=NOW)

        result = run(scenario())
        assert result.data.total_expenses == Decimal("2000.00")
        assert result.data.total_income == Decimal("0.00")

    def test_flows_leave_an_audit_trail(self, app, audit_storage):
        """Test the main events of a session are recorded."""
        async def scenario():
            user_id = await register(app)
            await app.users.login(user_id, now=NOW)
            await app.transactions.create(user_id, expense(), now=NOW)
            return await audit_storage.get_recent_events(limit=100)

        types = {e.event_type for e in run(scenario())}
        assert {
            AuditEventType.USER_REGISTERED,
            AuditEventType.USER_LOGGED_IN,
            AuditEventType.DAILY_REWARD_AWARDED,
            AuditEventType.TRANSACTION_CREATED,
            AuditEventType.WALLET_CREDITED,
        } <= types

    def test_unexpected_error_is_internal(self):
        """Test unknown failures are reported as internal and audited."""
        audit_storage = InMemoryAuditStorage()
        app = create_app_components(BrokenStorage(), AuditLogger(audit_storage))

        async def scenario():
            result = await app.users.get_account(uuid4())
            return result, await audit_storage.get_recent_events()

        result, events = run(scenario())
        assert result.error.kind == ErrorKind.INTERNAL
        assert result.http_status == 500
        assert "disk on fire" not in result.message
        assert events[0].event_type == AuditEventType.SYSTEM_ERROR
