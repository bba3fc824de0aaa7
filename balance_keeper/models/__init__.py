"""
Data Models Package

This package contains all Pydantic models used in Balance Keeper.
All data flowing through the ledger must conform to these schemas.
"""

from balance_keeper.models.ledger import (
    Account,
    AccountType,
    BalanceCheck,
    Direction,
    Frequency,
    RecordedStatus,
    RecurringTemplate,
    TemplateDraft,
    TemplatePatch,
    Transaction,
    TransactionDraft,
    TransactionFilters,
    TransactionPatch,
    TransactionStats,
    TransactionStatus,
)
from balance_keeper.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Ledger models
    "Account",
    "AccountType",
    "BalanceCheck",
    "Direction",
    "Frequency",
    "RecordedStatus",
    "RecurringTemplate",
    "TemplateDraft",
    "TemplatePatch",
    "Transaction",
    "TransactionDraft",
    "TransactionFilters",
    "TransactionPatch",
    "TransactionStats",
    "TransactionStatus",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
