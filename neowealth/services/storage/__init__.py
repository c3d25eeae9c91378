"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage.
Currently implements an in-memory backend, but designed to be swappable.
"""

from neowealth.services.storage.interface import (
    AuditStorageInterface,
    ConcurrencyError,
    ConnectionError,
    DuplicateError,
    FinanceStorageInterface,
    NotFoundError,
    StorageError,
    UnitOfWork,
)
from neowealth.services.storage.memory import (
    InMemoryAuditStorage,
    InMemoryStorage,
    InMemoryUnitOfWork,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "FinanceStorageInterface",
    "UnitOfWork",
    # Exceptions
    "ConcurrencyError",
    "ConnectionError",
    "DuplicateError",
    "NotFoundError",
    "StorageError",
    # In-memory implementation
    "InMemoryAuditStorage",
    "InMemoryStorage",
    "InMemoryUnitOfWork",
]
