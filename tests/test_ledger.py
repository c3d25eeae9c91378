"""
Tests for the NeoCoin ledger engine.

The ledger is pure, so these tests need no storage: they check the
returned wallet and the records each operation emits.
"""

import pytest
from datetime import timedelta
from decimal import Decimal
from uuid import uuid4

from conftest import NOW, make_transaction

from neowealth.config import RewardSettings
from neowealth.errors import (
    InsufficientBalanceError,
    InvalidAmountError,
    InvalidInputError,
    WalletNotFoundError,
)
from neowealth.models.entities import (
    NEOCOIN_SPEND_CATEGORY,
    REWARDS_CATEGORY,
    TRANSFER_IN_CATEGORY,
    TRANSFER_OUT_CATEGORY,
    TransactionType,
    Wallet,
)
from neowealth.services.ledger import LedgerEngine, to_amount


@pytest.fixture
def ledger() -> LedgerEngine:
    return LedgerEngine(RewardSettings())


class TestToAmount:
    """Tests for amount parsing."""

    @pytest.mark.parametrize("value", [0, "0", -5, "-0.01", "abc", None, "NaN"])
    def test_rejects_non_positive_or_non_numeric(self, value):
        """Test that only positive numbers are amounts."""
        with pytest.raises(InvalidAmountError):
            to_amount(value)

    def test_quantizes(self):
        """Test amounts are rounded to cents."""
        assert to_amount("10.499") == Decimal("10.50")


class TestEarnAndSpend:
    """Tests for earn and spend."""

    def test_earn_credits_and_records(self, ledger, wallet):
        """Test earn adds coins and emits one reward record."""
        mutation = ledger.earn(wallet, 25, "Referral bonus", now=NOW)

        assert mutation.wallet.neo_coins == Decimal("125.00")
        assert mutation.amount == Decimal("25.00")
        [record] = mutation.transactions
        assert record.type == TransactionType.INCOME
        assert record.category == REWARDS_CATEGORY
        assert record.description == "Referral bonus"
        assert record.user_id == wallet.user_id

    def test_earn_marks_reward_date(self, ledger, wallet):
        """Test earn stamps last_reward_date by default."""
        mutation = ledger.earn(wallet, 5, "Bonus", now=NOW)
        assert mutation.wallet.last_reward_date == NOW

    def test_earn_can_skip_reward_date(self, ledger, wallet):
        """Test credits that must not block the daily reward."""
        mutation = ledger.earn(wallet, 5, "Bonus", now=NOW, mark_reward_date=False)
        assert mutation.wallet.last_reward_date is None

    def test_earn_does_not_mutate_input(self, ledger, wallet):
        """Test the original wallet is left untouched."""
        ledger.earn(wallet, 5, "Bonus", now=NOW)
        assert wallet.neo_coins == Decimal("100.00")

    def test_earn_rejects_zero(self, ledger, wallet):
        """Test earn needs a positive amount."""
        with pytest.raises(InvalidAmountError):
            ledger.earn(wallet, 0, "Nothing")

    def test_spend_debits(self, ledger, wallet):
        """Test spend removes coins and records the spend."""
        mutation = ledger.spend(wallet, "40", "Coffee voucher", now=NOW)

        assert mutation.wallet.neo_coins == Decimal("60.00")
        [record] = mutation.transactions
        assert record.type == TransactionType.EXPENSE
        assert record.category == NEOCOIN_SPEND_CATEGORY
        assert record.amount == Decimal("40.00")

    def test_spend_entire_balance(self, ledger, wallet):
        """Test spending exactly the balance is allowed."""
        mutation = ledger.spend(wallet, 100, now=NOW)
        assert mutation.wallet.neo_coins == Decimal("0.00")

    def test_spend_insufficient(self, ledger, wallet):
        """Test overspending raises with both amounts attached."""
        with pytest.raises(InsufficientBalanceError) as exc:
            ledger.spend(wallet, "100.01")
        assert exc.value.details == {"available": "100.00", "requested": "100.01"}


class TestTransfer:
    """Tests for NeoCoin transfers."""

    def test_transfer_conserves_coins(self, ledger, wallet):
        """Test the sum of both balances is unchanged."""
        recipient = Wallet(user_id=uuid4(), neo_coins=Decimal("50"))
        mutation = ledger.transfer(wallet, recipient, 30, "Dinner split", now=NOW)

        assert mutation.sender.neo_coins == Decimal("70.00")
        assert mutation.recipient.neo_coins == Decimal("80.00")
        assert (
            mutation.sender.neo_coins + mutation.recipient.neo_coins
            == wallet.neo_coins + recipient.neo_coins
        )

    def test_transfer_records_both_sides(self, ledger, wallet):
        """Test one record per user with the transfer categories."""
        recipient = Wallet(user_id=uuid4())
        mutation = ledger.transfer(wallet, recipient, 30, now=NOW)

        out_record, in_record = mutation.transactions
        assert out_record.user_id == wallet.user_id
        assert out_record.category == TRANSFER_OUT_CATEGORY
        assert in_record.user_id == recipient.user_id
        assert in_record.category == TRANSFER_IN_CATEGORY
        assert out_record.type == in_record.type == TransactionType.TRANSFER

    def test_transfer_to_self_rejected(self, ledger, wallet):
        """Test a wallet cannot pay itself."""
        with pytest.raises(InvalidInputError, match="yourself"):
            ledger.transfer(wallet, wallet, 10)

    def test_transfer_missing_wallet(self, ledger, wallet):
        """Test a missing recipient wallet."""
        with pytest.raises(WalletNotFoundError):
            ledger.transfer(wallet, None, 10)

    def test_transfer_insufficient(self, ledger, wallet):
        """Test the sender's balance bounds the transfer."""
        with pytest.raises(InsufficientBalanceError):
            ledger.transfer(wallet, Wallet(user_id=uuid4()), 500)


class TestDailyReward:
    """Tests for the daily login reward."""

    def test_base_reward(self, ledger, wallet):
        """Test a never-rewarded wallet gets the base reward."""
        assert ledger.calculate_daily_reward(wallet, 0, now=NOW) == Decimal("5.00")

    def test_active_user_bonus(self, ledger, wallet):
        """Test the bonus applies at the activity threshold."""
        assert ledger.calculate_daily_reward(wallet, 4, now=NOW) == Decimal("5.00")
        assert ledger.calculate_daily_reward(wallet, 5, now=NOW) == Decimal("7.50")

    def test_once_per_calendar_day(self, ledger, wallet):
        """Test a second claim on the same UTC day gets nothing."""
        mutation = ledger.award_daily_reward(wallet, 0, now=NOW)
        assert mutation.amount == Decimal("5.00")

        later_today = NOW.replace(hour=23, minute=59)
        assert ledger.award_daily_reward(mutation.wallet, 0, now=later_today) is None

    def test_next_day_eligible(self, ledger, wallet):
        """Test the reward is available again after midnight UTC."""
        rewarded = ledger.award_daily_reward(wallet, 0, now=NOW.replace(hour=23, minute=59)).wallet
        tomorrow = NOW.replace(hour=0, minute=1) + timedelta(days=1)
        assert ledger.calculate_daily_reward(rewarded, 0, now=tomorrow) == Decimal("5.00")


class TestTransactionRewards:
    """Tests for cashback, income rewards and the cash ledger."""

    def test_cashback_on_expense(self, ledger, wallet):
        """Test 1% cashback scaled by the wallet multiplier."""
        boosted = wallet.model_copy(update={"reward_multiplier": Decimal("2")})
        mutation = ledger.award_transaction_reward(boosted, "1000", TransactionType.EXPENSE, now=NOW)
        assert mutation.amount == Decimal("20.00")
        assert mutation.wallet.neo_coins == Decimal("120.00")

    def test_cashback_does_not_block_daily_reward(self, ledger, wallet):
        """Test cashback leaves last_reward_date alone."""
        mutation = ledger.award_transaction_reward(wallet, "1000", "expense", now=NOW)
        assert mutation.wallet.last_reward_date is None
        assert ledger.calculate_daily_reward(mutation.wallet, 0, now=NOW) == Decimal("5.00")

    def test_no_cashback_for_other_types(self, ledger, wallet):
        """Test income and investments earn no cashback."""
        for kind in (TransactionType.INCOME, TransactionType.INVESTMENT, TransactionType.TRANSFER):
            mutation = ledger.award_transaction_reward(wallet, "1000", kind)
            assert mutation.amount == Decimal("0")
            assert mutation.transactions == []
            assert mutation.wallet is wallet

    def test_cashback_rounding_to_zero(self, ledger, wallet):
        """Test tiny expenses earn nothing rather than a zero-coin record."""
        mutation = ledger.award_transaction_reward(wallet, "0.40", TransactionType.EXPENSE)
        assert mutation.amount == Decimal("0")
        assert mutation.transactions == []

    def test_cashback_unknown_type(self, ledger, wallet):
        """Test an unknown transaction type is invalid input."""
        with pytest.raises(InvalidInputError, match="Unknown transaction type"):
            ledger.award_transaction_reward(wallet, 100, "refund")

    def test_cashback_non_numeric_amount(self, ledger, wallet):
        """Test a non-numeric expense amount is rejected."""
        with pytest.raises(InvalidAmountError):
            ledger.award_transaction_reward(wallet, "abc", TransactionType.EXPENSE)

    def test_cash_ledger_expense(self, ledger, wallet):
        """Test an expense lowers cash and raises total spent."""
        t = make_transaction(wallet.user_id, amount="2000", category="shopping")
        updated = ledger.apply_cash_transaction(wallet, t, now=NOW)
        assert updated.cash_balance == Decimal("-2000.00")
        assert updated.total_spent == Decimal("2000.00")
        assert updated.neo_coins == wallet.neo_coins

    def test_cash_ledger_income(self, ledger, wallet):
        """Test income raises cash and total earned."""
        t = make_transaction(wallet.user_id, type=TransactionType.INCOME, category="salary", amount="30000")
        updated = ledger.apply_cash_transaction(wallet, t, now=NOW)
        assert updated.cash_balance == Decimal("30000.00")
        assert updated.total_earned == Decimal("30000.00")

    def test_cash_ledger_ignores_investments(self, ledger, wallet):
        """Test investment records leave the cash ledger unchanged."""
        t = make_transaction(wallet.user_id, type=TransactionType.INVESTMENT, category="investment")
        assert ledger.apply_cash_transaction(wallet, t) is wallet

    def test_income_reward(self, ledger, wallet):
        """Test recorded income earns NeoCoins at the income rate."""
        t = make_transaction(wallet.user_id, type=TransactionType.INCOME, category="salary", amount="30000")
        mutation = ledger.reward_for_transaction(wallet, t, now=NOW)
        assert mutation.amount == Decimal("300.00")
        assert mutation.wallet.last_reward_date is None
        assert mutation.transactions[0].description == "Income reward for salary"

    def test_reward_for_expense_is_cashback(self, ledger, wallet):
        """Test the reward step dispatches on type."""
        t = make_transaction(wallet.user_id, amount="450")
        assert ledger.reward_for_transaction(wallet, t, now=NOW).amount == Decimal("4.50")
