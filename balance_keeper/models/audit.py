"""
Audit Models for Balance Keeper

Every change to a transaction, template or balance is logged for audit
purposes. This provides:
1. Traceability of every balance movement
2. Debugging information when a balance looks wrong
3. Ability to reconstruct history

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from balance_keeper.models.ledger import (
    RecurringTemplate,
    Transaction,
    utcnow,
)


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Transactions
    TRANSACTION_CREATED = "transaction_created"
    TRANSACTION_UPDATED = "transaction_updated"
    TRANSACTION_DELETED = "transaction_deleted"
    TRANSACTION_MARKED_PAID = "transaction_marked_paid"
    TRANSACTION_MARKED_PENDING = "transaction_marked_pending"

    # Balances
    BALANCE_APPLIED = "balance_applied"
    BALANCE_REVERTED = "balance_reverted"

    # Bulk generation
    INSTALLMENTS_CREATED = "installments_created"
    RECURRENCES_GENERATED = "recurrences_generated"
    OVERDUE_SWEPT = "overdue_swept"

    # Templates
    TEMPLATE_CREATED = "template_created"
    TEMPLATE_UPDATED = "template_updated"
    TEMPLATE_DELETED = "template_deleted"
    TEMPLATE_TOGGLED = "template_toggled"
    TEMPLATE_ADVANCED = "template_advanced"

    # Accounts
    ACCOUNT_OPENED = "account_opened"

    # Failures
    OPERATION_FAILED = "operation_failed"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class AuditEvent(BaseModel):
    """A single audit event."""

    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=utcnow,
        description="When the event occurred (UTC)"
    )

    event_type: AuditEventType
    severity: AuditSeverity = AuditSeverity.INFO

    # Partitioning and subject
    owner_id: Optional[UUID] = None
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'transaction', 'account', 'template')"
    )
    entity_id: Optional[UUID] = None

    description: str = Field(..., max_length=500)
    details: dict[str, Any] = Field(default_factory=dict)

    error_code: Optional[str] = None
    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """Convert to a dictionary suitable for structured logging."""
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "owner_id": str(self.owner_id) if self.owner_id else None,
            "entity_type": self.entity_type,
            "entity_id": str(self.entity_id) if self.entity_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
        }


def _transaction_details(transaction: Transaction) -> dict[str, Any]:
    return {
        "account_id": str(transaction.account_id),
        "amount": str(transaction.amount),
        "direction": transaction.direction.value,
        "status": transaction.status.value,
        "occurrence_date": transaction.occurrence_date.isoformat(),
    }


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.transaction_created(transaction)
        event = AuditEventBuilder.balance_changed(transaction, "apply", old, new)
    """

    @staticmethod
    def transaction_created(transaction: Transaction) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_CREATED,
            owner_id=transaction.owner_id,
            entity_type="transaction",
            entity_id=transaction.id,
            description=f"Transaction created: {transaction.title}",
            details=_transaction_details(transaction),
        )

    @staticmethod
    def transaction_updated(
        before: Transaction,
        after: Transaction,
        changed_fields: list[str],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_UPDATED,
            owner_id=after.owner_id,
            entity_type="transaction",
            entity_id=after.id,
            description=f"Transaction updated: {after.title}",
            details={
                "changed_fields": sorted(changed_fields),
                "before": _transaction_details(before),
                "after": _transaction_details(after),
            },
        )

    @staticmethod
    def transaction_deleted(transaction: Transaction) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_DELETED,
            owner_id=transaction.owner_id,
            entity_type="transaction",
            entity_id=transaction.id,
            description=f"Transaction deleted: {transaction.title}",
            details=_transaction_details(transaction),
        )

    @staticmethod
    def status_changed(transaction: Transaction) -> AuditEvent:
        event_type = (
            AuditEventType.TRANSACTION_MARKED_PAID
            if transaction.is_paid
            else AuditEventType.TRANSACTION_MARKED_PENDING
        )
        return AuditEvent(
            event_type=event_type,
            owner_id=transaction.owner_id,
            entity_type="transaction",
            entity_id=transaction.id,
            description=f"Transaction marked {transaction.status.value}: {transaction.title}",
            details=_transaction_details(transaction),
        )

    @staticmethod
    def balance_changed(
        transaction: Transaction,
        mode: str,
        old_balance: Decimal,
        new_balance: Decimal,
    ) -> AuditEvent:
        event_type = (
            AuditEventType.BALANCE_APPLIED
            if mode == "apply"
            else AuditEventType.BALANCE_REVERTED
        )
        return AuditEvent(
            event_type=event_type,
            owner_id=transaction.owner_id,
            entity_type="account",
            entity_id=transaction.account_id,
            description=f"Balance {mode}: {old_balance} -> {new_balance}",
            details={
                "transaction_id": str(transaction.id),
                "amount": str(transaction.amount),
                "direction": transaction.direction.value,
                "old_balance": str(old_balance),
                "new_balance": str(new_balance),
            },
        )

    @staticmethod
    def installments_created(parent: Transaction, child_count: int) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.INSTALLMENTS_CREATED,
            owner_id=parent.owner_id,
            entity_type="transaction",
            entity_id=parent.id,
            description=f"Split into {parent.total_installments} installments",
            details={
                "total_installments": parent.total_installments,
                "children_created": child_count,
                "parent_amount": str(parent.amount),
            },
        )

    @staticmethod
    def recurrences_generated(
        origin: Transaction,
        generated: list[Transaction],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECURRENCES_GENERATED,
            owner_id=origin.owner_id,
            entity_type="transaction",
            entity_id=origin.id,
            description=f"Generated {len(generated)} recurring occurrences",
            details={
                "frequency": origin.frequency.value if origin.frequency else None,
                "count": len(generated),
                "last_date": generated[-1].occurrence_date.isoformat() if generated else None,
            },
        )

    @staticmethod
    def overdue_swept(owner_id: UUID, as_of: str, count: int) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.OVERDUE_SWEPT,
            owner_id=owner_id,
            description=f"Overdue sweep as of {as_of} updated {count} transactions",
            details={"as_of": as_of, "updated": count},
        )

    @staticmethod
    def template_event(
        event_type: AuditEventType,
        template: RecurringTemplate,
        details: Optional[dict] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=event_type,
            owner_id=template.owner_id,
            entity_type="template",
            entity_id=template.id,
            description=f"Template {event_type.value.removeprefix('template_')}: {template.name}",
            details={
                "next_occurrence": template.next_occurrence.isoformat(),
                "active": template.active,
                **(details or {}),
            },
        )

    @staticmethod
    def account_opened(
        owner_id: UUID,
        account_id: UUID,
        name: str,
        opening_balance: Decimal,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ACCOUNT_OPENED,
            owner_id=owner_id,
            entity_type="account",
            entity_id=account_id,
            description=f"Account opened: {name}",
            details={"opening_balance": str(opening_balance)},
        )

    @staticmethod
    def operation_failed(
        operation: str,
        error: Exception,
        owner_id: Optional[UUID] = None,
        entity_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.OPERATION_FAILED,
            severity=AuditSeverity.WARNING,
            owner_id=owner_id,
            entity_id=entity_id,
            description=f"Operation failed: {operation}",
            error_code=type(error).__name__,
            error_message=str(error),
            details={"operation": operation},
        )
