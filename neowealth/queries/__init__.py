"""Query execution package."""

from neowealth.queries.executor import QueryExecutionError, QueryExecutor, TransactionPage

__all__ = ["QueryExecutionError", "QueryExecutor", "TransactionPage"]
