"""Services package."""

from balance_keeper.services.storage import (
    AccountStorageInterface,
    AuditStorageInterface,
    DuplicateError,
    InMemoryAuditStorage,
    InMemoryLedgerStorage,
    LedgerStorage,
    RecordNotFoundError,
    SQLiteAuditStorage,
    SQLiteLedgerStorage,
    StorageConnectionError,
    StorageError,
    TemplateStorageInterface,
    TransactionStorageInterface,
)

__all__ = [
    # Storage interfaces
    "AccountStorageInterface",
    "AuditStorageInterface",
    "LedgerStorage",
    "TemplateStorageInterface",
    "TransactionStorageInterface",
    # Storage exceptions
    "DuplicateError",
    "RecordNotFoundError",
    "StorageConnectionError",
    "StorageError",
    # Storage implementations
    "InMemoryAuditStorage",
    "InMemoryLedgerStorage",
    "SQLiteAuditStorage",
    "SQLiteLedgerStorage",
]
