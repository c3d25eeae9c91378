"""
Ledger / Wallet Engine

Owns all NeoCoin arithmetic plus the cash-side bookkeeping of a wallet.

CRITICAL: This is the ONLY code that changes `Wallet.neo_coins`, and it
only does so through earn / spend / transfer. Every operation returns
the new wallet together with the transaction records it emitted; the
caller persists both in one unit of work.

Two ledgers live on a wallet:
- The reward ledger: `neo_coins` (earn / spend / transfer, cashback,
  income reward, daily reward)
- The cash ledger: `cash_balance`, `total_earned`, `total_spent`
  (apply_cash_transaction)
They are kept as separate steps so each can be tested on its own.
"""

from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Optional

import structlog

from neowealth.config import RewardSettings, get_settings
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
    Transaction,
    TransactionType,
    Wallet,
    as_utc,
    money,
    utcnow,
)
from neowealth.models.results import TransferMutation, WalletMutation

logger = structlog.get_logger(__name__)

DAILY_REWARD_REASON = "Daily login reward"


def to_amount(value) -> Decimal:
    """
    Parse a positive money amount.

    Raises:
        InvalidAmountError: If the value is not numeric or not positive
    """
    try:
        amount = money(value)
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidAmountError(f"Amount is not a number: {value!r}")
    if not amount.is_finite() or amount <= 0:
        raise InvalidAmountError(details={"amount": str(value)})
    return amount


class LedgerEngine:
    """
    Pure NeoCoin ledger operations.

    Nothing here performs I/O. `now` is injectable everywhere so reward
    eligibility is deterministic under test.
    """

    def __init__(self, settings: Optional[RewardSettings] = None):
        self._settings = settings or get_settings().rewards

    @property
    def settings(self) -> RewardSettings:
        return self._settings

    def new_wallet(self, user_id, now: Optional[datetime] = None) -> Wallet:
        """A fresh wallet seeded with the registration bonus."""
        return Wallet(
            user_id=user_id,
            neo_coins=self._settings.initial_neo_coins,
            updated_at=now or utcnow(),
        )

    # -------------------------------------------------------------------------
    # Core operations
    # -------------------------------------------------------------------------

    def earn(
        self,
        wallet: Wallet,
        amount,
        reason: str,
        now: Optional[datetime] = None,
        mark_reward_date: bool = True,
    ) -> WalletMutation:
        """
        Credit NeoCoins.

        Args:
            wallet: Wallet to credit
            amount: Positive number of NeoCoins
            reason: Becomes the description of the reward transaction
            now: Current time (UTC)
            mark_reward_date: Stamp `last_reward_date` with `now`

        Raises:
            InvalidAmountError: If amount is not positive
        """
        amount = to_amount(amount)
        now = now or utcnow()

        updates = {
            "neo_coins": money(wallet.neo_coins + amount),
            "updated_at": now,
        }
        if mark_reward_date:
            updates["last_reward_date"] = as_utc(now)

        record = Transaction(
            user_id=wallet.user_id,
            type=TransactionType.INCOME,
            category=REWARDS_CATEGORY,
            amount=amount,
            description=reason,
            date=now,
            created_at=now,
            tags=[REWARDS_CATEGORY],
        )
        return WalletMutation(
            wallet=wallet.model_copy(update=updates),
            amount=amount,
            transactions=[record],
        )

    def spend(
        self,
        wallet: Wallet,
        amount,
        description: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> WalletMutation:
        """
        Debit NeoCoins.

        Raises:
            InvalidAmountError: If amount is not positive
            InsufficientBalanceError: If amount exceeds the balance
        """
        amount = to_amount(amount)
        now = now or utcnow()

        if amount > wallet.neo_coins:
            raise InsufficientBalanceError(available=wallet.neo_coins, requested=amount)

        record = Transaction(
            user_id=wallet.user_id,
            type=TransactionType.EXPENSE,
            category=NEOCOIN_SPEND_CATEGORY,
            amount=amount,
            description=description or "NeoCoin spending",
            date=now,
            created_at=now,
            tags=[NEOCOIN_SPEND_CATEGORY],
        )
        return WalletMutation(
            wallet=wallet.model_copy(update={
                "neo_coins": money(wallet.neo_coins - amount),
                "updated_at": now,
            }),
            amount=amount,
            transactions=[record],
        )

    def transfer(
        self,
        sender: Optional[Wallet],
        recipient: Optional[Wallet],
        amount,
        message: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> TransferMutation:
        """
        Move NeoCoins between two wallets.

        CRITICAL: The result must be persisted as ONE unit: both wallets
        and both transfer records, or nothing.

        Raises:
            WalletNotFoundError: If either wallet is missing
            InvalidInputError: If both sides are the same wallet
            InvalidAmountError: If amount is not positive
            InsufficientBalanceError: If amount exceeds the sender's balance
        """
        if sender is None or recipient is None:
            raise WalletNotFoundError()
        if sender.id == recipient.id or sender.user_id == recipient.user_id:
            raise InvalidInputError("Cannot transfer NeoCoins to yourself")

        amount = to_amount(amount)
        now = now or utcnow()

        if amount > sender.neo_coins:
            raise InsufficientBalanceError(available=sender.neo_coins, requested=amount)

        note = message or "NeoCoin transfer"
        records = [
            Transaction(
                user_id=sender.user_id,
                type=TransactionType.TRANSFER,
                category=TRANSFER_OUT_CATEGORY,
                amount=amount,
                description=f"Transfer to user {recipient.user_id}: {note}"[:500],
                date=now,
                created_at=now,
                tags=[TRANSFER_OUT_CATEGORY],
            ),
            Transaction(
                user_id=recipient.user_id,
                type=TransactionType.TRANSFER,
                category=TRANSFER_IN_CATEGORY,
                amount=amount,
                description=f"Transfer from user {sender.user_id}: {note}"[:500],
                date=now,
                created_at=now,
                tags=[TRANSFER_IN_CATEGORY],
            ),
        ]
        return TransferMutation(
            sender=sender.model_copy(update={
                "neo_coins": money(sender.neo_coins - amount),
                "updated_at": now,
            }),
            recipient=recipient.model_copy(update={
                "neo_coins": money(recipient.neo_coins + amount),
                "updated_at": now,
            }),
            amount=amount,
            transactions=records,
        )

    # -------------------------------------------------------------------------
    # Rewards
    # -------------------------------------------------------------------------

    def calculate_daily_reward(
        self,
        wallet: Wallet,
        recent_transaction_count: int,
        now: Optional[datetime] = None,
    ) -> Decimal:
        """
        Daily login reward the wallet is eligible for right now.

        Returns 0 if a reward was already stamped on the current UTC
        calendar day. Otherwise the base reward, with the active-user
        bonus once `recent_transaction_count` reaches the threshold.
        """
        now = as_utc(now or utcnow())

        if wallet.last_reward_date and wallet.last_reward_date.date() >= now.date():
            return Decimal("0")

        reward = self._settings.daily_base_reward
        if recent_transaction_count >= self._settings.active_user_threshold:
            reward = reward * self._settings.active_user_bonus
        return money(reward)

    def award_daily_reward(
        self,
        wallet: Wallet,
        recent_transaction_count: int,
        now: Optional[datetime] = None,
    ) -> Optional[WalletMutation]:
        """Apply the daily reward. None if nothing is due today."""
        now = now or utcnow()
        reward = self.calculate_daily_reward(wallet, recent_transaction_count, now)
        if reward <= 0:
            return None
        return self.earn(wallet, reward, DAILY_REWARD_REASON, now=now)

    def award_transaction_reward(
        self,
        wallet: Wallet,
        transaction_amount,
        transaction_type,
        now: Optional[datetime] = None,
    ) -> WalletMutation:
        """
        Cashback on expenses.

        reward = |amount| x cashback rate x wallet.reward_multiplier

        Non-expense types (and rewards that round to zero) return the
        wallet unchanged with a zero amount and no records. The cashback
        credit does not stamp `last_reward_date`, so it never blocks the
        daily reward.

        Raises:
            InvalidInputError: If the transaction type is unknown
            InvalidAmountError: If the amount is not a number
        """
        try:
            transaction_type = TransactionType(transaction_type)
        except ValueError:
            raise InvalidInputError(f"Unknown transaction type: {transaction_type!r}")
        if transaction_type != TransactionType.EXPENSE:
            return WalletMutation(wallet=wallet, amount=Decimal("0"))

        try:
            magnitude = abs(Decimal(str(transaction_amount)))
        except (InvalidOperation, TypeError, ValueError):
            raise InvalidAmountError(f"Amount is not a number: {transaction_amount!r}")

        reward = money(magnitude * self._settings.cashback_rate * wallet.reward_multiplier)
        if reward <= 0:
            return WalletMutation(wallet=wallet, amount=Decimal("0"))

        rate_percent = (self._settings.cashback_rate * 100).normalize()
        return self.earn(
            wallet,
            reward,
            f"Cashback reward ({rate_percent:f}% of {money(magnitude)})",
            now=now,
            mark_reward_date=False,
        )

    # -------------------------------------------------------------------------
    # Financial transactions
    # -------------------------------------------------------------------------

    def apply_cash_transaction(
        self,
        wallet: Wallet,
        transaction: Transaction,
        now: Optional[datetime] = None,
    ) -> Wallet:
        """
        Cash-ledger step for a newly recorded financial transaction.

        income:  cash_balance += amount, total_earned += amount
        expense: cash_balance -= amount, total_spent += amount
        other types leave the wallet unchanged.

        Never touches neo_coins.
        """
        amount = abs(transaction.amount)
        now = now or utcnow()

        if transaction.type == TransactionType.INCOME:
            return wallet.model_copy(update={
                "cash_balance": money(wallet.cash_balance + amount),
                "total_earned": money(wallet.total_earned + amount),
                "updated_at": now,
            })
        if transaction.type == TransactionType.EXPENSE:
            return wallet.model_copy(update={
                "cash_balance": money(wallet.cash_balance - amount),
                "total_spent": money(wallet.total_spent + amount),
                "updated_at": now,
            })
        return wallet

    def income_reward(
        self,
        wallet: Wallet,
        transaction: Transaction,
        now: Optional[datetime] = None,
    ) -> WalletMutation:
        """
        Reward-ledger step for recorded income: amount x income reward rate
        NeoCoins, credited through earn.
        """
        if transaction.type != TransactionType.INCOME:
            return WalletMutation(wallet=wallet, amount=Decimal("0"))

        reward = money(abs(transaction.amount) * self._settings.income_reward_rate)
        if reward <= 0:
            return WalletMutation(wallet=wallet, amount=Decimal("0"))

        return self.earn(
            wallet,
            reward,
            f"Income reward for {transaction.category}",
            now=now,
            mark_reward_date=False,
        )

    def reward_for_transaction(
        self,
        wallet: Wallet,
        transaction: Transaction,
        now: Optional[datetime] = None,
    ) -> WalletMutation:
        """The reward-ledger step matching a transaction's type."""
        if transaction.type == TransactionType.INCOME:
            return self.income_reward(wallet, transaction, now=now)
        return self.award_transaction_reward(
            wallet, transaction.amount, transaction.type, now=now
        )
