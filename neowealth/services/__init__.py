"""Services package."""

from neowealth.services.storage import (
    AuditStorageInterface,
    ConcurrencyError,
    ConnectionError,
    DuplicateError,
    FinanceStorageInterface,
    InMemoryAuditStorage,
    InMemoryStorage,
    NotFoundError,
    StorageError,
)

__all__ = [
    # Storage services
    "AuditStorageInterface",
    "ConcurrencyError",
    "ConnectionError",
    "DuplicateError",
    "FinanceStorageInterface",
    "InMemoryAuditStorage",
    "InMemoryStorage",
    "NotFoundError",
    "StorageError",
]
