"""
Storage Services Package

Provides the abstract persistence ports and two implementations:
in-memory (tests, embedding) and SQLite (durable).
"""

from balance_keeper.services.storage.interface import (
    AccountStorageInterface,
    AuditStorageInterface,
    DuplicateError,
    LedgerStorage,
    RecordNotFoundError,
    StorageConnectionError,
    StorageError,
    TemplateStorageInterface,
    TransactionStorageInterface,
)
from balance_keeper.services.storage.memory import (
    InMemoryAuditStorage,
    InMemoryLedgerStorage,
)
from balance_keeper.services.storage.sqlite import (
    SQLiteAuditStorage,
    SQLiteLedgerStorage,
)

__all__ = [
    # Interfaces
    "AccountStorageInterface",
    "AuditStorageInterface",
    "LedgerStorage",
    "TemplateStorageInterface",
    "TransactionStorageInterface",
    # Exceptions
    "DuplicateError",
    "RecordNotFoundError",
    "StorageConnectionError",
    "StorageError",
    # Implementations
    "InMemoryAuditStorage",
    "InMemoryLedgerStorage",
    "SQLiteAuditStorage",
    "SQLiteLedgerStorage",
]
