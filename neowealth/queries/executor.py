"""
Query Execution Engine

DESIGN DECISION: Query execution is DETERMINISTIC.
A TransactionQuery names filters and a page; this engine runs it on
stored data and reports exactly what storage returned.

It never estimates or fills gaps: an empty page is an empty page.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

import structlog

from neowealth.audit import AuditLogger, create_correlation_id
from neowealth.errors import InternalError
from neowealth.models.audit import AuditEventBuilder
from neowealth.models.entities import (
    REWARDS_CATEGORY,
    Transaction,
    TransactionType,
    money,
)
from neowealth.models.requests import Page, TransactionQuery
from neowealth.services.storage import FinanceStorageInterface, StorageError

logger = structlog.get_logger(__name__)

TransactionPage = Page[Transaction]


class QueryExecutionError(InternalError):
    """Error during query execution."""

    default_message = "Query could not be executed"


class QueryExecutor:
    """
    Executes structured transaction queries against storage.

    GUARANTEES:
    - Only returns real data from storage
    - Newest transactions first
    - `total` counts every match, not just the current page
    """

    def __init__(
        self,
        storage: FinanceStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._storage = storage
        self._audit_logger = audit_logger

    async def execute(
        self,
        query: TransactionQuery,
        correlation_id: Optional[UUID] = None,
    ) -> TransactionPage:
        """
        Execute a query and return one page of results.

        Raises:
            QueryExecutionError: If storage fails
        """
        filters = {
            "transaction_type": query.transaction_type,
            "category": query.category,
            "date_from": query.date_from,
            "date_to": query.date_to,
        }
        try:
            items = await self._storage.list_transactions(
                query.user_id,
                limit=query.limit,
                offset=query.offset,
                **filters,
            )
            total = await self._storage.count_transactions(query.user_id, **filters)
        except StorageError as e:
            logger.error("query_failed", user_id=str(query.user_id), error=str(e))
            raise QueryExecutionError(details={"reason": str(e)}) from e

        page = TransactionPage(items=items, total=total, page=query.page, limit=query.limit)

        if self._audit_logger:
            await self._audit_logger.log(AuditEventBuilder.query_executed(
                query_id=create_correlation_id(),
                user_id=query.user_id,
                query_type=self._describe(query),
                result_count=len(items),
                correlation_id=correlation_id,
            ))
        return page

    async def reward_history(
        self,
        user_id: UUID,
        page: int = 1,
        limit: int = 20,
    ) -> TransactionPage:
        """NeoCoin credits for a user, newest first."""
        return await self.execute(TransactionQuery(
            user_id=user_id,
            category=REWARDS_CATEGORY,
            page=page,
            limit=limit,
        ))

    async def category_totals(
        self,
        user_id: UUID,
        transaction_type: Optional[TransactionType] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
    ) -> dict[str, Decimal]:
        """
        Sum of amounts per category over every matching transaction.

        Categories are ordered by total, largest first.
        """
        try:
            transactions = await self._storage.list_transactions(
                user_id,
                transaction_type=transaction_type,
                date_from=date_from,
                date_to=date_to,
            )
        except StorageError as e:
            raise QueryExecutionError(details={"reason": str(e)}) from e

        totals: dict[str, Decimal] = {}
        for t in transactions:
            totals[t.category] = totals.get(t.category, Decimal("0")) + abs(t.amount)

        ranked = sorted(totals.items(), key=lambda item: item[1], reverse=True)
        return {category: money(amount) for category, amount in ranked}

    @staticmethod
    def _describe(query: TransactionQuery) -> str:
        parts = ["list"]
        if query.transaction_type:
            parts.append(f"type:{query.transaction_type.value}")
        if query.category:
            parts.append(f"category:{query.category}")
        if query.date_from or query.date_to:
            start = query.date_from.date() if query.date_from else "start"
            end = query.date_to.date() if query.date_to else "now"
            parts.append(f"{start}..{end}")
        return " | ".join(parts)
