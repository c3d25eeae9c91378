"""
Application Flows for NeoWealth

This module ties the pure engines to storage and defines the
end-to-end flows:
1. Users (register → wallet seeded, login → daily reward)
2. Wallet (earn / spend / transfer NeoCoins)
3. Transactions (validate → classify → cash + reward ledger → persist → dispatch)
4. Goals, Hives, Insights & Challenges, Analytics

DESIGN DECISION: Every flow follows the same shape:
    load entities → call engines → stage writes in ONE unit of work → Result

- Engines never touch storage; flows never compute business rules
- Related writes commit together or not at all
- Wallet and hive writes are compare-and-swap; conflicts are retried
- Every significant action is audited
- Best-effort steps (classification, event dispatch) never fail a flow
"""

from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Awaitable, Callable, NamedTuple, Optional, TypeVar
from uuid import UUID

import structlog
from pydantic import ValidationError
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_random_exponential,
)

from neowealth.audit import AuditLogger, create_correlation_id
from neowealth.config import AppSettings, get_settings
from neowealth.dispatcher import EventDispatcher
from neowealth.errors import (
    AlreadyExistsError,
    AlreadyMemberError,
    ConflictError,
    InternalError,
    InvalidInputError,
    NeoWealthError,
    NotFoundError,
    WalletNotFoundError,
)
from neowealth.models.audit import AuditEventBuilder, AuditEventType
from neowealth.models.entities import (
    Challenge,
    ChallengeStatus,
    Goal,
    GoalStatus,
    Hive,
    HiveStatus,
    MembershipStatus,
    Transaction,
    TransactionClassification,
    TransactionType,
    User,
    Wallet,
    as_utc,
    utcnow,
)
from neowealth.models.requests import TransactionCreate, TransactionQuery
from neowealth.models.results import (
    AccountSummary,
    BehaviorProfile,
    ChallengeProgress,
    Classification,
    DispatchOutcome,
    EventType,
    FinancialHealth,
    FlowDirection,
    GoalOptimizationReport,
    GoalProgressItem,
    GoalSuggestion,
    GoalUpdateOutcome,
    HiveCandidate,
    HiveProgress,
    LoginOutcome,
    Milestone,
    Nudge,
    PeriodAnalytics,
    PeriodComparison,
    ProcessedMessage,
    SpendingInsights,
    TransactionOutcome,
    TransferMutation,
    UserSnapshot,
    WalletMutation,
)
from neowealth.queries import QueryExecutor
from neowealth.result import Result
from neowealth.services.analytics import AnalyticsEngine
from neowealth.services.behavior import BehaviorAnalyzer
from neowealth.services.classifier import TransactionClassifier
from neowealth.services.goals import GoalOptimizer
from neowealth.services.hives import HiveCoordinator
from neowealth.services.ledger import LedgerEngine
from neowealth.services.storage import (
    ConcurrencyError,
    DuplicateError,
    FinanceStorageInterface,
    InMemoryAuditStorage,
    InMemoryStorage,
    UnitOfWork,
)
from neowealth.validation import RequestValidator

logger = structlog.get_logger(__name__)

T = TypeVar("T")

MESSAGE_SENDER = "manual"


def conflict_retrying(settings: AppSettings, before_sleep=None) -> AsyncRetrying:
    """
    Retry policy for read-compute-commit steps that lose a version race.

    Only ConcurrencyError is retried, with jittered exponential waits.
    The last error is re-raised once the attempts run out.
    """
    return AsyncRetrying(
        retry=retry_if_exception_type(ConcurrencyError),
        stop=stop_after_attempt(settings.concurrency_retry_attempts),
        wait=wait_random_exponential(
            multiplier=0.01,
            max=settings.concurrency_retry_max_wait,
        ),
        before_sleep=before_sleep,
        reraise=True,
    )


class BaseFlow:
    """
    Shared plumbing for all flows.

    - `_guard` turns exceptions into a Result
    - `_atomic` re-runs a read-compute-commit step on version conflicts
    """

    def __init__(
        self,
        storage: FinanceStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[AppSettings] = None,
    ):
        self._storage = storage
        self._audit_logger = audit_logger or AuditLogger()
        self._settings = settings or get_settings().app

    # -------------------------------------------------------------------------
    # Error handling
    # -------------------------------------------------------------------------

    async def _guard(
        self,
        action: str,
        operation: Awaitable[T],
        message: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Result[T]:
        """
        Await `operation` and wrap the outcome.

        Domain errors become failed Results as they are. Storage errors
        that escape a flow are translated; anything else is audited and
        reported as internal.
        """
        try:
            return Result.ok(await operation, message=message)
        except NeoWealthError as e:
            logger.info("flow_rejected", action=action, kind=e.kind.value, error=e.message)
            return Result.fail(e)
        except ConcurrencyError as e:
            await self._audit_logger.log(AuditEventBuilder.concurrency_conflict(
                entity_type=e.entity_type,
                entity_id=e.entity_id,
                attempt=self._settings.concurrency_retry_attempts,
                correlation_id=correlation_id,
            ))
            return Result.fail(ConflictError(
                "The record was changed by another request, please retry",
                details={"entity_type": e.entity_type, "entity_id": str(e.entity_id)},
            ))
        except DuplicateError as e:
            return Result.fail(AlreadyExistsError(str(e)))
        except ValidationError as e:
            return Result.fail(InvalidInputError(
                "Invalid data",
                details={"errors": [err["msg"] for err in e.errors()]},
            ))
        except Exception as e:
            logger.exception("flow_failed", action=action)
            await self._audit_logger.log_error(
                error_type=type(e).__name__,
                error_message=str(e),
                details={"action": action},
                correlation_id=correlation_id,
            )
            return Result.fail(InternalError())

    # -------------------------------------------------------------------------
    # Optimistic concurrency
    # -------------------------------------------------------------------------

    @staticmethod
    def _log_conflict(retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception()
        logger.warning(
            "write_conflict_retrying",
            attempt=retry_state.attempt_number,
            error=str(error),
        )

    async def _atomic(self, step: Callable[[], Awaitable[T]]) -> T:
        """
        Run `step` until it commits without a version conflict.

        `step` must re-read everything it writes: each attempt starts
        from fresh storage state.

        Raises:
            ConcurrencyError: When every attempt conflicted
        """
        async for attempt in conflict_retrying(self._settings, before_sleep=self._log_conflict):
            with attempt:
                result = await step()
        return result

    # -------------------------------------------------------------------------
    # Loading
    # -------------------------------------------------------------------------

    async def _user(self, user_id: UUID) -> User:
        user = await self._storage.get_user(user_id)
        if user is None:
            raise NotFoundError("User not found", details={"user_id": str(user_id)})
        return user

    async def _wallet(self, user_id: UUID) -> Wallet:
        wallet = await self._storage.get_wallet_by_user(user_id)
        if wallet is None:
            raise WalletNotFoundError(details={"user_id": str(user_id)})
        return wallet

    async def _snapshot(self, user_id: UUID) -> UserSnapshot:
        return UserSnapshot(
            user=await self._storage.get_user(user_id),
            wallet=await self._storage.get_wallet_by_user(user_id),
            transactions=await self._storage.list_transactions(user_id),
            goals=await self._storage.list_goals(user_id),
        )

    @staticmethod
    def _stage(uow: UnitOfWork, mutation: WalletMutation) -> None:
        for record in mutation.transactions:
            uow.add(record)
        uow.update(mutation.wallet)

    async def _validated(self, result, user_id: Optional[UUID] = None, correlation_id=None):
        """The parsed value of a validation result, or raise InvalidInputError."""
        if result.is_valid:
            return result.value
        await self._audit_logger.log_validation_failed(
            entity_type=result.entity_type,
            stage="schema" if not result.schema_valid else "semantic",
            issues=[issue.model_dump() for issue in result.errors],
            user_id=user_id,
            correlation_id=correlation_id,
        )
        raise RequestValidator.to_error(result)


class DispatchingFlow(BaseFlow):
    """A flow that reports events to the dispatcher after it commits."""

    def __init__(
        self,
        storage: FinanceStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[AppSettings] = None,
        dispatcher: Optional[EventDispatcher] = None,
    ):
        super().__init__(storage, audit_logger, settings)
        self._dispatcher = dispatcher or EventDispatcher()

    async def _dispatch(
        self,
        user_id: UUID,
        event_type: EventType,
        event_data: dict[str, Any],
        now: datetime,
        correlation_id: Optional[UUID] = None,
    ) -> Optional[DispatchOutcome]:
        """Best effort: a dispatch failure is logged and returns None."""
        try:
            snapshot = await self._snapshot(user_id)
            outcome = self._dispatcher.handle(
                user_id, event_type.value, event_data, snapshot=snapshot, now=now
            )
        except Exception as e:
            logger.warning("event_dispatch_failed", event_type=event_type.value, error=str(e))
            return None

        await self._audit_logger.log(AuditEventBuilder.event_dispatched(
            user_id=user_id,
            event_type=event_type.value,
            decision_count=len(outcome.decisions),
            failed_actions=sum(1 for r in outcome.results if not r.success),
            correlation_id=correlation_id,
        ))
        return outcome


# =============================================================================
# USERS & WALLETS
# =============================================================================

class UserFlow(DispatchingFlow):
    """
    Registration and login.

    Registration creates the user and a wallet seeded with the welcome
    NeoCoins in one unit of work. Login claims the daily reward.
    """

    def __init__(
        self,
        storage: FinanceStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[AppSettings] = None,
        dispatcher: Optional[EventDispatcher] = None,
        ledger: Optional[LedgerEngine] = None,
        validator: Optional[RequestValidator] = None,
        hives: Optional[HiveCoordinator] = None,
    ):
        super().__init__(storage, audit_logger, settings, dispatcher)
        self._ledger = ledger or LedgerEngine()
        self._validator = validator or RequestValidator(storage, self._settings)
        self._hives = hives or HiveCoordinator()

    async def register(
        self,
        payload,
        now: Optional[datetime] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Result[AccountSummary]:
        return await self._guard(
            "register",
            self._register(payload, as_utc(now or utcnow()), correlation_id),
            message="Registration successful",
            correlation_id=correlation_id,
        )

    async def _register(self, payload, now: datetime, correlation_id) -> AccountSummary:
        data = await self._validated(
            await self._validator.validate_registration(payload),
            correlation_id=correlation_id,
        )
        if await self._storage.get_user_by_email(data.email):
            raise AlreadyExistsError("Email already registered")

        user = User(**data.model_dump(), created_at=now)
        wallet = self._ledger.new_wallet(user.id, now=now)

        try:
            async with self._storage.unit_of_work() as uow:
                uow.add(user)
                uow.add(wallet)
        except DuplicateError:
            # Lost a race with a concurrent registration
            raise AlreadyExistsError("Email already registered")

        await self._audit_logger.log(AuditEventBuilder.user_registered(
            user_id=user.id,
            email=user.email,
            correlation_id=correlation_id,
        ))
        return AccountSummary(user=uow.saved(user), wallet=uow.saved(wallet))

    async def login(
        self,
        user_id: UUID,
        now: Optional[datetime] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Result[LoginOutcome]:
        """
        Record a login and claim today's reward.

        Credentials are checked by the caller; this flow only needs the
        authenticated user id.
        """
        return await self._guard(
            "login",
            self._login(user_id, as_utc(now or utcnow()), correlation_id),
            message="Login successful",
            correlation_id=correlation_id,
        )

    async def _login(self, user_id: UUID, now: datetime, correlation_id) -> LoginOutcome:
        user = await self._user(user_id)
        if not user.is_active:
            raise InvalidInputError("Account is deactivated")

        window = timedelta(days=self._ledger.settings.activity_window_days)
        recent = await self._storage.count_transactions(user_id, created_since=now - window)

        async def step():
            wallet = await self._wallet(user_id)
            mutation = self._ledger.award_daily_reward(wallet, recent, now=now)
            logged_in = user.model_copy(update={"last_login": now})

            async with self._storage.unit_of_work() as uow:
                uow.update(logged_in)
                if mutation is not None:
                    self._stage(uow, mutation)
            saved = uow.saved(mutation.wallet) if mutation else wallet
            return uow.saved(logged_in), saved, mutation.amount if mutation else Decimal("0")

        user, wallet, reward = await self._atomic(step)

        await self._audit_logger.log(AuditEventBuilder.user_logged_in(
            user_id=user.id,
            reward=reward or None,
            correlation_id=correlation_id,
        ))
        if reward:
            await self._audit_logger.log_daily_reward(
                wallet_id=wallet.id,
                user_id=user.id,
                amount=reward,
                correlation_id=correlation_id,
            )

        dispatch = await self._dispatch(user_id, EventType.USER_LOGIN, {}, now, correlation_id)
        return LoginOutcome(user=user, wallet=wallet, daily_reward=reward, dispatch=dispatch)

    async def get_account(self, user_id: UUID) -> Result[AccountSummary]:
        async def load() -> AccountSummary:
            return AccountSummary(user=await self._user(user_id), wallet=await self._wallet(user_id))

        return await self._guard("get_account", load())

    async def deactivate(
        self,
        user_id: UUID,
        now: Optional[datetime] = None,
    ) -> Result[User]:
        """
        Disable an account. Users are never deleted.

        An active hive membership becomes inactive in the same unit.
        """
        now = as_utc(now or utcnow())

        async def step() -> User:
            user = await self._user(user_id)
            disabled = user.model_copy(update={"is_active": False})
            membership = await self._storage.get_active_membership(user_id)

            async with self._storage.unit_of_work() as uow:
                uow.update(disabled)
                if membership is not None:
                    hive = await self._storage.get_hive(membership.hive_id)
                    change = self._hives.deactivate(membership, hive, now=now)
                    uow.update(change.hive)
                    uow.update(change.membership)
            return uow.saved(disabled)

        return await self._guard("deactivate", self._atomic(step), message="Account deactivated")


class WalletFlow(BaseFlow):
    """NeoCoin operations. Every write is compare-and-swap on the wallet."""

    def __init__(
        self,
        storage: FinanceStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[AppSettings] = None,
        ledger: Optional[LedgerEngine] = None,
    ):
        super().__init__(storage, audit_logger, settings)
        self._ledger = ledger or LedgerEngine()

    async def balance(self, user_id: UUID) -> Result[Wallet]:
        return await self._guard("balance", self._wallet(user_id))

    async def earn(
        self,
        user_id: UUID,
        amount,
        reason: str,
        now: Optional[datetime] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Result[Wallet]:
        now = as_utc(now or utcnow())

        async def step() -> tuple[Wallet, WalletMutation]:
            mutation = self._ledger.earn(await self._wallet(user_id), amount, reason, now=now)
            async with self._storage.unit_of_work() as uow:
                self._stage(uow, mutation)
            return uow.saved(mutation.wallet), mutation

        async def run() -> Wallet:
            wallet, mutation = await self._atomic(step)
            await self._audit_logger.log_wallet_credited(
                wallet_id=wallet.id,
                user_id=user_id,
                amount=mutation.amount,
                reason=reason,
                correlation_id=correlation_id,
            )
            return wallet

        return await self._guard(
            "earn", run(), message="NeoCoins earned successfully", correlation_id=correlation_id
        )

    async def spend(
        self,
        user_id: UUID,
        amount,
        description: Optional[str] = None,
        now: Optional[datetime] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Result[Wallet]:
        now = as_utc(now or utcnow())

        async def step() -> tuple[Wallet, WalletMutation]:
            mutation = self._ledger.spend(await self._wallet(user_id), amount, description, now=now)
            async with self._storage.unit_of_work() as uow:
                self._stage(uow, mutation)
            return uow.saved(mutation.wallet), mutation

        async def run() -> Wallet:
            wallet, mutation = await self._atomic(step)
            await self._audit_logger.log_wallet_debited(
                wallet_id=wallet.id,
                user_id=user_id,
                amount=mutation.amount,
                description=mutation.transactions[0].description,
                correlation_id=correlation_id,
            )
            return wallet

        return await self._guard(
            "spend", run(), message="NeoCoins spent successfully", correlation_id=correlation_id
        )

    async def transfer(
        self,
        user_id: UUID,
        recipient_user_id: UUID,
        amount,
        message: Optional[str] = None,
        now: Optional[datetime] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Result[TransferMutation]:
        """
        Move NeoCoins to another user.

        Both wallets and both records commit together. A conflict on
        either wallet re-runs the whole transfer.
        """
        now = as_utc(now or utcnow())

        async def step() -> TransferMutation:
            sender = await self._storage.get_wallet_by_user(user_id)
            recipient = await self._storage.get_wallet_by_user(recipient_user_id)
            mutation = self._ledger.transfer(sender, recipient, amount, message, now=now)

            async with self._storage.unit_of_work() as uow:
                for record in mutation.transactions:
                    uow.add(record)
                uow.update(mutation.sender)
                uow.update(mutation.recipient)
            return mutation.model_copy(update={
                "sender": uow.saved(mutation.sender),
                "recipient": uow.saved(mutation.recipient),
            })

        async def run() -> TransferMutation:
            mutation = await self._atomic(step)
            await self._audit_logger.log_transfer(
                sender_wallet_id=mutation.sender.id,
                recipient_wallet_id=mutation.recipient.id,
                user_id=user_id,
                amount=mutation.amount,
                correlation_id=correlation_id,
            )
            return mutation

        return await self._guard(
            "transfer", run(), message="NeoCoins transferred successfully",
            correlation_id=correlation_id,
        )

    async def claim_daily_reward(
        self,
        user_id: UUID,
        now: Optional[datetime] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Result[Decimal]:
        """Claim today's reward outside of login. 0 if already claimed today."""
        return await self._guard(
            "claim_daily_reward",
            self._claim_daily_reward(user_id, as_utc(now or utcnow()), correlation_id),
            correlation_id=correlation_id,
        )

    async def _claim_daily_reward(self, user_id: UUID, now: datetime, correlation_id) -> Decimal:
        window = timedelta(days=self._ledger.settings.activity_window_days)
        recent = await self._storage.count_transactions(user_id, created_since=now - window)

        async def step() -> Optional[tuple[Wallet, WalletMutation]]:
            mutation = self._ledger.award_daily_reward(await self._wallet(user_id), recent, now=now)
            if mutation is None:
                return None
            async with self._storage.unit_of_work() as uow:
                self._stage(uow, mutation)
            return uow.saved(mutation.wallet), mutation

        claimed = await self._atomic(step)
        if claimed is None:
            return Decimal("0")

        wallet, mutation = claimed
        await self._audit_logger.log_daily_reward(
            wallet_id=wallet.id,
            user_id=user_id,
            amount=mutation.amount,
            correlation_id=correlation_id,
        )
        return mutation.amount


# =============================================================================
# TRANSACTIONS
# =============================================================================

class TransactionFlow(DispatchingFlow):
    """
    Orchestrates recording a financial transaction.

    Flow:
    1. Validate → two-stage, duplicates reported as warnings
    2. Classify → best effort, attached as metadata
    3. Ledger → cash step, then reward step (cashback / income reward)
    4. Save → transaction, reward records and wallet in one unit
    5. Dispatch → transaction_added, best effort
    """

    def __init__(
        self,
        storage: FinanceStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[AppSettings] = None,
        dispatcher: Optional[EventDispatcher] = None,
        ledger: Optional[LedgerEngine] = None,
        classifier: Optional[TransactionClassifier] = None,
        validator: Optional[RequestValidator] = None,
        query_executor: Optional[QueryExecutor] = None,
    ):
        super().__init__(storage, audit_logger, settings, dispatcher)
        self._ledger = ledger or LedgerEngine()
        self._classifier = classifier or TransactionClassifier()
        self._validator = validator or RequestValidator(storage, self._settings)
        self._query_executor = query_executor or QueryExecutor(storage, self._audit_logger)

    async def create(
        self,
        user_id: UUID,
        payload,
        now: Optional[datetime] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Result[TransactionOutcome]:
        correlation_id = correlation_id or create_correlation_id()
        return await self._guard(
            "create_transaction",
            self._create(user_id, payload, as_utc(now or utcnow()), correlation_id),
            message="Transaction added successfully",
            correlation_id=correlation_id,
        )

    async def _create(self, user_id: UUID, payload, now: datetime, correlation_id) -> TransactionOutcome:
        validation = await self._validator.validate_transaction(payload, user_id=user_id, now=now)
        data: TransactionCreate = await self._validated(validation, user_id, correlation_id)

        classification = await self._classify(user_id, data, now, correlation_id)
        transaction = Transaction(
            user_id=user_id,
            type=data.type,
            category=data.category,
            amount=data.amount,
            description=data.description,
            date=data.date or now,
            tags=data.tags,
            is_recurring=data.is_recurring,
            recurring_frequency=data.recurring_frequency,
            classification=TransactionClassification(
                confidence=classification.confidence,
                risk_level=classification.risk_level,
                subcategory=classification.subcategory,
            ) if classification else None,
            created_at=now,
        )

        async def step() -> tuple[Wallet, Decimal]:
            wallet = await self._wallet(user_id)
            cash = self._ledger.apply_cash_transaction(wallet, transaction, now=now)
            reward = self._ledger.reward_for_transaction(cash, transaction, now=now)

            async with self._storage.unit_of_work() as uow:
                uow.add(transaction)
                self._stage(uow, reward)
            return uow.saved(reward.wallet), reward.amount

        wallet, reward = await self._atomic(step)

        await self._audit_logger.log_transaction_created(
            transaction_id=transaction.id,
            user_id=user_id,
            transaction_type=transaction.type.value,
            category=transaction.category,
            amount=transaction.amount,
            correlation_id=correlation_id,
        )
        if reward > 0:
            await self._audit_logger.log_wallet_credited(
                wallet_id=wallet.id,
                user_id=user_id,
                amount=reward,
                reason=f"Reward for {transaction.type.value} transaction",
                correlation_id=correlation_id,
            )

        dispatch = await self._dispatch(
            user_id,
            EventType.TRANSACTION_ADDED,
            {
                "transaction_id": str(transaction.id),
                "type": transaction.type.value,
                "amount": str(transaction.amount),
                "category": transaction.category,
                "description": transaction.description,
            },
            now,
            correlation_id,
        )
        return TransactionOutcome(
            transaction=transaction,
            wallet=wallet,
            reward=reward,
            classification=classification,
            warnings=validation.warnings,
            dispatch=dispatch,
        )

    async def _classify(
        self,
        user_id: UUID,
        data: TransactionCreate,
        now: datetime,
        correlation_id,
    ) -> Optional[Classification]:
        """Best effort: failures are audited and the transaction goes ahead unclassified."""
        if not data.description:
            return None
        try:
            return self._classifier.classify(
                data.description, data.amount, sender=MESSAGE_SENDER, now=now
            )
        except Exception as e:
            logger.warning("classification_failed", user_id=str(user_id), error=str(e))
            await self._audit_logger.log(AuditEventBuilder.classification_failed(
                user_id=user_id,
                error_message=str(e),
                correlation_id=correlation_id,
            ))
            return None

    async def _owned(self, user_id: UUID, transaction_id: UUID) -> Transaction:
        transaction = await self._storage.get_transaction(transaction_id)
        if transaction is None or transaction.user_id != user_id:
            raise NotFoundError("Transaction not found")
        return transaction

    async def get(self, user_id: UUID, transaction_id: UUID) -> Result[Transaction]:
        return await self._guard("get_transaction", self._owned(user_id, transaction_id))

    async def update(
        self,
        user_id: UUID,
        transaction_id: UUID,
        payload,
        now: Optional[datetime] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Result[Transaction]:
        """
        Edit a stored transaction.

        Only the record changes: wallet balances and rewards stay as
        they were when the transaction was created.
        """
        now = as_utc(now or utcnow())

        async def run() -> Transaction:
            changes = await self._validated(
                await self._validator.validate_transaction_update(payload, now=now),
                user_id, correlation_id,
            )
            current = await self._owned(user_id, transaction_id)
            updated = Transaction.model_validate({
                **current.model_dump(),
                **changes.model_dump(exclude_unset=True, exclude_none=True),
            })
            async with self._storage.unit_of_work() as uow:
                uow.update(updated)

            await self._audit_logger.log(AuditEventBuilder.transaction_changed(
                transaction_id=transaction_id,
                user_id=user_id,
                correlation_id=correlation_id,
            ))
            return uow.saved(updated)

        return await self._guard(
            "update_transaction", run(), message="Transaction updated successfully",
            correlation_id=correlation_id,
        )

    async def delete(
        self,
        user_id: UUID,
        transaction_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> Result[UUID]:
        """Remove a transaction. Like update, the wallet is left as it is."""
        async def run() -> UUID:
            current = await self._owned(user_id, transaction_id)
            async with self._storage.unit_of_work() as uow:
                uow.delete(current)
            await self._audit_logger.log(AuditEventBuilder.transaction_changed(
                transaction_id=transaction_id,
                user_id=user_id,
                deleted=True,
                correlation_id=correlation_id,
            ))
            return transaction_id

        return await self._guard(
            "delete_transaction", run(), message="Transaction deleted successfully",
            correlation_id=correlation_id,
        )

    async def list_transactions(self, query: TransactionQuery) -> Result:
        return await self._guard("list_transactions", self._query_executor.execute(query))

    async def reward_history(self, user_id: UUID, page: int = 1, limit: int = 20) -> Result:
        return await self._guard(
            "reward_history", self._query_executor.reward_history(user_id, page, limit)
        )

    async def process_message(
        self,
        message: str,
        sender: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Result[ProcessedMessage]:
        """
        Parse a bank message into a proposed transaction.

        Nothing is stored: the user confirms the proposal through `create`.
        """
        async def run() -> ProcessedMessage:
            processed = self._classifier.process_message(message, sender=sender, now=now)
            if processed is None:
                raise InvalidInputError("No transaction found in message")
            return processed

        return await self._guard("process_message", run())

    @staticmethod
    def proposal_from_message(processed: ProcessedMessage) -> dict[str, Any]:
        """A `create` payload for a parsed message, for the user to confirm."""
        extracted = processed.extracted
        return {
            "type": TransactionType.INCOME if extracted.type == FlowDirection.CREDIT else TransactionType.EXPENSE,
            "category": processed.classification.category,
            "amount": extracted.amount,
            "description": extracted.description,
            "date": extracted.date,
            "tags": processed.classification.tags,
        }


# =============================================================================
# GOALS
# =============================================================================

class GoalFlow(DispatchingFlow):
    """
    Savings goals.

    Contributions that cross a milestone pay its NeoCoin reward in the
    same unit of work as the goal change.
    """

    def __init__(
        self,
        storage: FinanceStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[AppSettings] = None,
        dispatcher: Optional[EventDispatcher] = None,
        optimizer: Optional[GoalOptimizer] = None,
        ledger: Optional[LedgerEngine] = None,
        validator: Optional[RequestValidator] = None,
    ):
        super().__init__(storage, audit_logger, settings, dispatcher)
        self._optimizer = optimizer or GoalOptimizer()
        self._ledger = ledger or LedgerEngine()
        self._validator = validator or RequestValidator(storage, self._settings)

    async def _owned(self, user_id: UUID, goal_id: UUID) -> Goal:
        goal = await self._storage.get_goal(goal_id)
        if goal is None or goal.user_id != user_id:
            raise NotFoundError("Goal not found")
        return goal

    async def create(
        self,
        user_id: UUID,
        payload,
        now: Optional[datetime] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Result[Goal]:
        now = as_utc(now or utcnow())

        async def run() -> Goal:
            data = await self._validated(
                await self._validator.validate_goal(payload, now=now), user_id, correlation_id
            )
            await self._user(user_id)
            goal = self._optimizer.new_goal(user_id, data, now=now)
            async with self._storage.unit_of_work() as uow:
                uow.add(goal)

            await self._audit_logger.log_goal_event(
                event_type=AuditEventType.GOAL_CREATED,
                goal_id=goal.id,
                user_id=user_id,
                title=goal.title,
                details={"target_amount": str(goal.target_amount)},
                correlation_id=correlation_id,
            )
            await self._dispatch(
                user_id,
                EventType.GOAL_CREATED,
                {
                    "goal_id": str(goal.id),
                    "target_amount": str(goal.target_amount),
                    "target_date": goal.target_date.isoformat(),
                },
                now,
                correlation_id,
            )
            return uow.saved(goal)

        return await self._guard(
            "create_goal", run(), message="Goal created successfully", correlation_id=correlation_id
        )

    async def list_goals(
        self,
        user_id: UUID,
        statuses: Optional[list[GoalStatus]] = None,
    ) -> Result[list[Goal]]:
        return await self._guard("list_goals", self._storage.list_goals(user_id, statuses))

    async def update(
        self,
        user_id: UUID,
        goal_id: UUID,
        payload,
        now: Optional[datetime] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Result[GoalUpdateOutcome]:
        now = as_utc(now or utcnow())

        async def run() -> GoalUpdateOutcome:
            changes = await self._validated(
                await self._validator.validate_goal_update(payload, now=now),
                user_id, correlation_id,
            )

            async def step() -> GoalUpdateOutcome:
                goal = await self._owned(user_id, goal_id)
                return await self._save(self._optimizer.apply_update(goal, changes, now=now), now)

            outcome = await self._atomic(step)
            await self._audit_outcome(outcome, AuditEventType.GOAL_UPDATED, correlation_id)
            return outcome

        return await self._guard(
            "update_goal", run(), message="Goal updated successfully", correlation_id=correlation_id
        )

    async def contribute(
        self,
        user_id: UUID,
        goal_id: UUID,
        amount,
        now: Optional[datetime] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Result[GoalUpdateOutcome]:
        now = as_utc(now or utcnow())

        async def step() -> GoalUpdateOutcome:
            goal = await self._owned(user_id, goal_id)
            return await self._save(self._optimizer.add_contribution(goal, amount, now=now), now)

        async def run() -> GoalUpdateOutcome:
            outcome = await self._atomic(step)
            await self._audit_outcome(outcome, AuditEventType.GOAL_UPDATED, correlation_id)
            return outcome

        return await self._guard(
            "contribute_goal", run(), message="Contribution recorded", correlation_id=correlation_id
        )

    async def _save(self, outcome: GoalUpdateOutcome, now: datetime) -> GoalUpdateOutcome:
        """Persist a goal change with the rewards for the milestones it crossed."""
        coins = sum(m.reward for m in outcome.new_milestones)
        mutation = None
        if coins > 0:
            labels = ", ".join(f"{m.percentage}%" for m in outcome.new_milestones)
            mutation = self._ledger.earn(
                await self._wallet(outcome.goal.user_id),
                coins,
                f"Milestone reward ({labels}): {outcome.goal.title}"[:500],
                now=now,
                mark_reward_date=False,
            )

        async with self._storage.unit_of_work() as uow:
            uow.update(outcome.goal)
            if mutation is not None:
                self._stage(uow, mutation)
        return outcome.model_copy(update={
            "goal": uow.saved(outcome.goal),
            "coins_awarded": mutation.amount if mutation else Decimal("0"),
        })

    async def _audit_outcome(
        self,
        outcome: GoalUpdateOutcome,
        event_type: AuditEventType,
        correlation_id,
    ) -> None:
        goal = outcome.goal
        await self._audit_logger.log_goal_event(
            event_type=AuditEventType.GOAL_COMPLETED if outcome.just_completed else event_type,
            goal_id=goal.id,
            user_id=goal.user_id,
            title=goal.title,
            details={"progress": outcome.progress},
            correlation_id=correlation_id,
        )
        for milestone in outcome.new_milestones:
            await self._audit_logger.log(AuditEventBuilder.milestone_achieved(
                goal_id=goal.id,
                user_id=goal.user_id,
                percentage=milestone.percentage,
                reward=milestone.reward,
                correlation_id=correlation_id,
            ))

    async def optimize(
        self,
        user_id: UUID,
        apply: bool = True,
        now: Optional[datetime] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Result[GoalOptimizationReport]:
        """
        Check every active goal against the user's saving capacity.

        With `apply`, recommended adjustments are written to the goals.
        """
        now = as_utc(now or utcnow())

        async def run() -> GoalOptimizationReport:
            transactions = await self._storage.list_transactions(user_id)
            capacity = self._optimizer.estimate_saving_capacity(transactions, now=now)
            goals = await self._storage.list_goals(user_id, [GoalStatus.ACTIVE])

            optimizations, adjusted = [], []
            for goal in goals:
                optimization = self._optimizer.analyze_goal_progress(goal, capacity, now=now)
                optimizations.append(optimization)
                if optimization.should_adjust and apply:
                    adjusted.append(self._optimizer.apply_optimization(goal, optimization, now=now))

            if adjusted:
                async with self._storage.unit_of_work() as uow:
                    for goal in adjusted:
                        uow.update(goal)
                for goal in adjusted:
                    await self._audit_logger.log_goal_event(
                        event_type=AuditEventType.GOAL_OPTIMIZED,
                        goal_id=goal.id,
                        user_id=user_id,
                        title=goal.title,
                        details={"adjustment": goal.ai_recommendation.adjustment_type},
                        correlation_id=correlation_id,
                    )

            return GoalOptimizationReport(
                saving_capacity=capacity,
                optimizations=optimizations,
                adjusted_goals=adjusted,
            )

        return await self._guard("optimize_goals", run(), correlation_id=correlation_id)

    async def suggestions(
        self,
        user_id: UUID,
        now: Optional[datetime] = None,
    ) -> Result[list[GoalSuggestion]]:
        now = as_utc(now or utcnow())

        async def run() -> list[GoalSuggestion]:
            user = await self._user(user_id)
            goals = await self._storage.list_goals(
                user_id, [GoalStatus.ACTIVE, GoalStatus.COMPLETED]
            )
            spending = self._optimizer.spending_by_category(
                await self._storage.list_transactions(user_id), now=now
            )
            return self._optimizer.suggest_new_goals(user, [g.category for g in goals], spending)

        return await self._guard("goal_suggestions", run())

    async def milestones(self, user_id: UUID, goal_id: UUID) -> Result[list[Milestone]]:
        async def run() -> list[Milestone]:
            return self._optimizer.milestones(await self._owned(user_id, goal_id))

        return await self._guard("goal_milestones", run())


# =============================================================================
# HIVES
# =============================================================================

class HiveFlow(BaseFlow):
    """
    Group savings.

    Membership changes update the hive's member count in the same unit
    of work; the hive's version makes concurrent joins serialize.
    """

    def __init__(
        self,
        storage: FinanceStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[AppSettings] = None,
        coordinator: Optional[HiveCoordinator] = None,
        validator: Optional[RequestValidator] = None,
    ):
        super().__init__(storage, audit_logger, settings)
        self._coordinator = coordinator or HiveCoordinator()
        self._validator = validator or RequestValidator(storage, self._settings)

    async def _hive(self, hive_id: UUID) -> Hive:
        hive = await self._storage.get_hive(hive_id)
        if hive is None:
            raise NotFoundError("Hive not found", details={"hive_id": str(hive_id)})
        return hive

    async def _commit_membership(self, change, new_hive: bool = False, new_membership: bool = False):
        try:
            async with self._storage.unit_of_work() as uow:
                (uow.add if new_hive else uow.update)(change.hive)
                (uow.add if new_membership else uow.update)(change.membership)
        except DuplicateError:
            # Another request activated a membership for this user first
            raise AlreadyMemberError()
        return change.model_copy(update={
            "hive": uow.saved(change.hive),
            "membership": uow.saved(change.membership),
        })

    async def create(
        self,
        user_id: UUID,
        payload,
        now: Optional[datetime] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Result:
        now = as_utc(now or utcnow())

        async def run():
            spec = await self._validated(
                await self._validator.validate_hive(payload, now=now), user_id, correlation_id
            )
            creator = await self._user(user_id)
            active = await self._storage.get_active_membership(user_id)
            change = self._coordinator.create(creator, spec, active, now=now)
            saved = await self._commit_membership(change, new_hive=True, new_membership=True)

            await self._audit_logger.log_hive_event(
                event_type=AuditEventType.HIVE_CREATED,
                hive_id=saved.hive.id,
                user_id=user_id,
                current_members=saved.hive.current_members,
                correlation_id=correlation_id,
            )
            return saved

        return await self._guard(
            "create_hive", run(), message="Hive created successfully", correlation_id=correlation_id
        )

    async def join(
        self,
        user_id: UUID,
        hive_id: UUID,
        monthly_contribution=None,
        now: Optional[datetime] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Result:
        now = as_utc(now or utcnow())

        async def step():
            user = await self._user(user_id)
            hive = await self._hive(hive_id)
            active = await self._storage.get_active_membership(user_id)
            change = self._coordinator.join(user, hive, active, monthly_contribution, now=now)
            return await self._commit_membership(change, new_membership=True)

        async def run():
            saved = await self._atomic(step)
            await self._audit_logger.log_hive_event(
                event_type=AuditEventType.HIVE_JOINED,
                hive_id=hive_id,
                user_id=user_id,
                current_members=saved.hive.current_members,
                correlation_id=correlation_id,
            )
            return saved

        return await self._guard(
            "join_hive", run(), message="Successfully joined hive", correlation_id=correlation_id
        )

    async def leave(
        self,
        user_id: UUID,
        hive_id: UUID,
        now: Optional[datetime] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Result:
        now = as_utc(now or utcnow())

        async def step():
            membership = await self._storage.get_active_membership(user_id)
            if membership is None or membership.hive_id != hive_id:
                raise NotFoundError("You are not an active member of this hive")
            hive = await self._hive(hive_id)
            return await self._commit_membership(self._coordinator.leave(membership, hive, now=now))

        async def run():
            saved = await self._atomic(step)
            await self._audit_logger.log_hive_event(
                event_type=AuditEventType.HIVE_LEFT,
                hive_id=hive_id,
                user_id=user_id,
                current_members=saved.hive.current_members,
                correlation_id=correlation_id,
            )
            return saved

        return await self._guard(
            "leave_hive", run(), message="Successfully left hive", correlation_id=correlation_id
        )

    async def contribute(
        self,
        user_id: UUID,
        hive_id: UUID,
        amount,
        now: Optional[datetime] = None,
    ) -> Result:
        async def step():
            membership = await self._storage.get_active_membership(user_id)
            if membership is None or membership.hive_id != hive_id:
                raise NotFoundError("You are not an active member of this hive")
            hive = await self._hive(hive_id)
            change = self._coordinator.record_contribution(membership, hive, amount, now=now)
            return await self._commit_membership(change)

        return await self._guard("contribute_hive", self._atomic(step), message="Contribution recorded")

    async def progress(self, hive_id: UUID, now: Optional[datetime] = None) -> Result[HiveProgress]:
        async def run() -> HiveProgress:
            hive = await self._hive(hive_id)
            members = await self._storage.list_memberships(hive_id, MembershipStatus.ACTIVE)
            return self._coordinator.progress(hive, members, now=now)

        return await self._guard("hive_progress", run())

    async def list_hives(self, status: Optional[HiveStatus] = HiveStatus.ACTIVE) -> Result[list[Hive]]:
        return await self._guard("list_hives", self._storage.list_hives(status))

    async def find_match(self, user_id: UUID) -> Result[Optional[Hive]]:
        """The first active hive (newest first) that suits the user, or None."""
        async def run() -> Optional[Hive]:
            user = await self._user(user_id)
            candidates = []
            for hive in await self._storage.list_hives(HiveStatus.ACTIVE):
                incomes = []
                for member in await self._storage.list_memberships(hive.id, MembershipStatus.ACTIVE):
                    member_user = await self._storage.get_user(member.user_id)
                    if member_user is not None:
                        incomes.append(member_user.monthly_income)
                candidates.append(HiveCandidate(hive=hive, member_incomes=incomes))
            return self._coordinator.find_match(user, candidates)

        return await self._guard("find_hive_match", run())


# =============================================================================
# INSIGHTS & CHALLENGES
# =============================================================================

class InsightFlow(BaseFlow):
    """Behavior analysis, nudges and challenges."""

    def __init__(
        self,
        storage: FinanceStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[AppSettings] = None,
        analyzer: Optional[BehaviorAnalyzer] = None,
        ledger: Optional[LedgerEngine] = None,
    ):
        super().__init__(storage, audit_logger, settings)
        self._analyzer = analyzer or BehaviorAnalyzer()
        self._ledger = ledger or LedgerEngine()

    async def _profile(self, user_id: UUID, now: datetime) -> BehaviorProfile:
        return self._analyzer.analyze(await self._storage.list_transactions(user_id), now=now)

    async def analyze(self, user_id: UUID, now: Optional[datetime] = None) -> Result[BehaviorProfile]:
        return await self._guard("analyze_behavior", self._profile(user_id, as_utc(now or utcnow())))

    async def nudges(self, user_id: UUID, now: Optional[datetime] = None) -> Result[list[Nudge]]:
        now = as_utc(now or utcnow())

        async def run() -> list[Nudge]:
            return self._analyzer.nudges(await self._profile(user_id, now), now=now)

        return await self._guard("nudges", run())

    async def insights(self, user_id: UUID, now: Optional[datetime] = None) -> Result[SpendingInsights]:
        now = as_utc(now or utcnow())

        async def run() -> SpendingInsights:
            transactions = await self._storage.list_transactions(user_id)
            return self._analyzer.spending_insights(transactions, now=now)

        return await self._guard("spending_insights", run())

    async def compare_periods(
        self,
        user_id: UUID,
        days: int = 30,
        now: Optional[datetime] = None,
    ) -> Result[PeriodComparison]:
        """The last `days` days against the `days` days before them."""
        now = as_utc(now or utcnow())

        async def run() -> PeriodComparison:
            if days <= 0:
                raise InvalidInputError("Period length must be positive")
            start = now - timedelta(days=days)
            transactions = await self._storage.list_transactions(
                user_id, date_from=start - timedelta(days=days), date_to=now
            )
            current = [t for t in transactions if t.date >= start]
            previous = [t for t in transactions if t.date < start]
            return self._analyzer.period_comparison(current, previous)

        return await self._guard("compare_periods", run())

    async def start_challenge(
        self,
        user_id: UUID,
        recommendation_type: str,
        now: Optional[datetime] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Result[Challenge]:
        """
        Start the challenge attached to one of the user's current recommendations.

        Raises (as a failed Result):
            InvalidInputError: No current recommendation of that type has a challenge
            AlreadyExistsError: A challenge of that type is already running
        """
        now = as_utc(now or utcnow())

        async def run() -> Challenge:
            profile = await self._profile(user_id, now)
            recommendation = next(
                (
                    r for r in profile.recommendations
                    if r.type == recommendation_type and r.challenge is not None
                ),
                None,
            )
            if recommendation is None:
                raise InvalidInputError(
                    f"No challenge available for '{recommendation_type}'",
                    details={"available": [r.type for r in profile.recommendations if r.challenge]},
                )

            running = await self._storage.list_challenges(user_id, ChallengeStatus.ACTIVE)
            if any(c.type == recommendation.challenge.type for c in running):
                raise AlreadyExistsError("This challenge is already running")

            challenge = self._analyzer.start_challenge(user_id, recommendation, now=now)
            async with self._storage.unit_of_work() as uow:
                uow.add(challenge)

            await self._audit_logger.log(AuditEventBuilder.challenge_event(
                event_type=AuditEventType.CHALLENGE_STARTED,
                challenge_id=challenge.id,
                user_id=user_id,
                challenge_type=challenge.type,
                correlation_id=correlation_id,
            ))
            return uow.saved(challenge)

        return await self._guard(
            "start_challenge", run(), message="Challenge started", correlation_id=correlation_id
        )

    async def record_challenge_progress(
        self,
        user_id: UUID,
        challenge_id: UUID,
        increment,
        now: Optional[datetime] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Result[ChallengeProgress]:
        """
        Add progress; completing the challenge pays its reward in the same unit.

        A completed challenge refuses further progress, so the reward is
        paid exactly once.
        """
        now = as_utc(now or utcnow())

        async def step() -> ChallengeProgress:
            challenge = await self._storage.get_challenge(challenge_id)
            if challenge is None or challenge.user_id != user_id:
                raise NotFoundError("Challenge not found")

            progress = self._analyzer.record_challenge_progress(challenge, increment, now=now)
            mutation = None
            if progress.reward_earned > 0:
                mutation = self._ledger.earn(
                    await self._wallet(user_id),
                    progress.reward_earned,
                    f"Challenge completed: {challenge.title}"[:500],
                    now=now,
                    mark_reward_date=False,
                )

            async with self._storage.unit_of_work() as uow:
                uow.update(progress.challenge)
                if mutation is not None:
                    self._stage(uow, mutation)
            return progress.model_copy(update={
                "challenge": uow.saved(progress.challenge),
                "wallet": uow.saved(mutation.wallet) if mutation else None,
            })

        async def run() -> ChallengeProgress:
            progress = await self._atomic(step)
            if progress.just_completed:
                await self._audit_logger.log(AuditEventBuilder.challenge_event(
                    event_type=AuditEventType.CHALLENGE_COMPLETED,
                    challenge_id=challenge_id,
                    user_id=user_id,
                    challenge_type=progress.challenge.type,
                    reward=progress.reward_earned,
                    correlation_id=correlation_id,
                ))
            return progress

        return await self._guard(
            "record_challenge_progress", run(), correlation_id=correlation_id
        )

    async def list_challenges(
        self,
        user_id: UUID,
        status: Optional[ChallengeStatus] = None,
    ) -> Result[list[Challenge]]:
        return await self._guard("list_challenges", self._storage.list_challenges(user_id, status))


# =============================================================================
# ANALYTICS
# =============================================================================

class AnalyticsFlow(BaseFlow):
    """Read-only dashboards."""

    def __init__(
        self,
        storage: FinanceStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[AppSettings] = None,
        engine: Optional[AnalyticsEngine] = None,
    ):
        super().__init__(storage, audit_logger, settings)
        self._engine = engine or AnalyticsEngine()

    async def period(
        self,
        user_id: UUID,
        period: str = "month",
        now: Optional[datetime] = None,
    ) -> Result[PeriodAnalytics]:
        async def run() -> PeriodAnalytics:
            transactions = await self._storage.list_transactions(user_id)
            return self._engine.period_analytics(transactions, period, now=now)

        return await self._guard("period_analytics", run())

    async def health(self, user_id: UUID, now: Optional[datetime] = None) -> Result[FinancialHealth]:
        async def run() -> FinancialHealth:
            transactions = await self._storage.list_transactions(user_id)
            return self._engine.financial_health(transactions, now=now)

        return await self._guard("financial_health", run())

    async def goal_summary(
        self,
        user_id: UUID,
        now: Optional[datetime] = None,
    ) -> Result[list[GoalProgressItem]]:
        async def run() -> list[GoalProgressItem]:
            goals = await self._storage.list_goals(user_id, [GoalStatus.ACTIVE])
            return self._engine.goal_progress_summary(goals, now=now)

        return await self._guard("goal_summary", run())


class AppComponents(NamedTuple):
    users: UserFlow
    wallets: WalletFlow
    transactions: TransactionFlow
    goals: GoalFlow
    hives: HiveFlow
    insights: InsightFlow
    analytics: AnalyticsFlow
    storage: FinanceStorageInterface
    audit_logger: AuditLogger


def create_app_components(
    storage: Optional[FinanceStorageInterface] = None,
    audit_logger: Optional[AuditLogger] = None,
    settings: Optional[AppSettings] = None,
) -> AppComponents:
    """
    Factory function to create all application components.

    Args:
        storage: Entity storage. Defaults to a fresh in-memory store.
        audit_logger: Defaults to one persisting to in-memory audit storage.
        settings: Application settings override (tests raise retry limits).
    """
    storage = storage or InMemoryStorage()
    audit_logger = audit_logger or AuditLogger(InMemoryAuditStorage())
    settings = settings or get_settings().app

    ledger = LedgerEngine()
    classifier = TransactionClassifier()
    optimizer = GoalOptimizer()
    dispatcher = EventDispatcher(classifier=classifier, optimizer=optimizer, ledger=ledger)
    validator = RequestValidator(storage, settings)

    return AppComponents(
        users=UserFlow(storage, audit_logger, settings, dispatcher, ledger, validator),
        wallets=WalletFlow(storage, audit_logger, settings, ledger),
        transactions=TransactionFlow(
            storage, audit_logger, settings, dispatcher, ledger, classifier, validator,
        ),
        goals=GoalFlow(storage, audit_logger, settings, dispatcher, optimizer, ledger, validator),
        hives=HiveFlow(storage, audit_logger, settings, validator=validator),
        insights=InsightFlow(storage, audit_logger, settings, ledger=ledger),
        analytics=AnalyticsFlow(storage, audit_logger, settings),
        storage=storage,
        audit_logger=audit_logger,
    )
