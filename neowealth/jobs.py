"""
Background Jobs

Stateless entry points for a scheduler (cron, a task queue, ...). Each
run walks the active users, processes them one by one and returns a
SweepReport. Version conflicts are retried like the flows retry them; a
failure or timeout for one user is recorded and the sweep moves on.
"""

import asyncio
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Awaitable, Callable, Optional

import structlog
from tenacity import RetryCallState

from neowealth.audit import AuditLogger, create_correlation_id
from neowealth.config import AppSettings, get_settings
from neowealth.models.audit import AuditEventBuilder
from neowealth.models.entities import GoalStatus, User, as_utc, money, utcnow
from neowealth.models.results import SweepReport
from neowealth.orchestrator import conflict_retrying
from neowealth.services.goals import GoalOptimizer
from neowealth.services.ledger import LedgerEngine
from neowealth.services.storage import FinanceStorageInterface

logger = structlog.get_logger(__name__)

DAILY_REWARD_JOB = "daily_reward_sweep"
PERIODIC_ANALYSIS_JOB = "periodic_analysis"

UserTask = Callable[[User], Awaitable[Decimal]]


def _log_conflict(retry_state: RetryCallState) -> None:
    logger.warning(
        "job_write_conflict_retrying",
        attempt=retry_state.attempt_number,
        error=str(retry_state.outcome.exception()),
    )


async def _process(task: UserTask, user: User, settings: AppSettings) -> Decimal:
    """Run `task` for one user, re-running it when its commit loses a version race."""
    async for attempt in conflict_retrying(settings, before_sleep=_log_conflict):
        with attempt:
            amount = await task(user)
    return amount


async def _sweep(
    job: str,
    storage: FinanceStorageInterface,
    task: UserTask,
    settings: AppSettings,
    audit_logger: Optional[AuditLogger],
    now: datetime,
) -> SweepReport:
    report = SweepReport(job=job, started_at=now, finished_at=now)
    correlation_id = create_correlation_id()

    for user in await storage.list_active_users():
        report.users_processed += 1
        try:
            amount = await asyncio.wait_for(
                _process(task, user, settings), timeout=settings.job_user_timeout_seconds
            )
        except asyncio.TimeoutError:
            report.users_failed += 1
            report.failures[str(user.id)] = "timed out"
            logger.warning("job_user_timeout", job=job, user_id=str(user.id))
            continue
        except Exception as e:
            report.users_failed += 1
            report.failures[str(user.id)] = str(e) or type(e).__name__
            logger.warning("job_user_failed", job=job, user_id=str(user.id), error=str(e))
            continue

        report.users_succeeded += 1
        if amount > 0:
            report.users_rewarded += 1
            report.total_rewards_distributed = money(report.total_rewards_distributed + amount)

    report.finished_at = utcnow()
    logger.info(
        "job_finished",
        job=job,
        processed=report.users_processed,
        failed=report.users_failed,
        rewarded=report.users_rewarded,
    )
    if audit_logger:
        await audit_logger.log(AuditEventBuilder.sweep_completed(
            job=job,
            processed=report.users_processed,
            failed=report.users_failed,
            total_rewards=report.total_rewards_distributed,
            correlation_id=correlation_id,
        ))
    return report


async def run_daily_reward_sweep(
    storage: FinanceStorageInterface,
    ledger: Optional[LedgerEngine] = None,
    audit_logger: Optional[AuditLogger] = None,
    settings: Optional[AppSettings] = None,
    now: Optional[datetime] = None,
) -> SweepReport:
    """
    Award today's daily reward to every active user who has not claimed it.

    Safe to run more than once a day: a user already rewarded today is
    counted as processed with nothing distributed.
    """
    ledger = ledger or LedgerEngine()
    settings = settings or get_settings().app
    now = as_utc(now or utcnow())
    window = timedelta(days=ledger.settings.activity_window_days)

    async def reward(user: User) -> Decimal:
        wallet = await storage.get_wallet_by_user(user.id)
        if wallet is None:
            raise LookupError("wallet missing")
        recent = await storage.count_transactions(user.id, created_since=now - window)
        mutation = ledger.award_daily_reward(wallet, recent, now=now)
        if mutation is None:
            return Decimal("0")

        async with storage.unit_of_work() as uow:
            for record in mutation.transactions:
                uow.add(record)
            uow.update(mutation.wallet)
        if audit_logger:
            await audit_logger.log_daily_reward(
                wallet_id=wallet.id,
                user_id=user.id,
                amount=mutation.amount,
            )
        return mutation.amount

    return await _sweep(DAILY_REWARD_JOB, storage, reward, settings, audit_logger, now)


async def run_periodic_analysis(
    storage: FinanceStorageInterface,
    optimizer: Optional[GoalOptimizer] = None,
    audit_logger: Optional[AuditLogger] = None,
    settings: Optional[AppSettings] = None,
    now: Optional[datetime] = None,
) -> SweepReport:
    """
    Re-run goal optimization for every active user and apply the
    recommended adjustments.

    Distributes no NeoCoins; `users_rewarded` stays 0.
    """
    optimizer = optimizer or GoalOptimizer()
    settings = settings or get_settings().app
    now = as_utc(now or utcnow())

    async def analyze(user: User) -> Decimal:
        goals = await storage.list_goals(user.id, [GoalStatus.ACTIVE])
        if not goals:
            return Decimal("0")

        transactions = await storage.list_transactions(user.id)
        capacity = optimizer.estimate_saving_capacity(transactions, now=now)
        adjusted = []
        for goal in goals:
            optimization = optimizer.analyze_goal_progress(goal, capacity, now=now)
            if optimization.should_adjust:
                adjusted.append(optimizer.apply_optimization(goal, optimization, now=now))

        if adjusted:
            async with storage.unit_of_work() as uow:
                for goal in adjusted:
                    uow.update(goal)
            logger.info("goals_adjusted", user_id=str(user.id), count=len(adjusted))
        return Decimal("0")

    return await _sweep(PERIODIC_ANALYSIS_JOB, storage, analyze, settings, audit_logger, now)
