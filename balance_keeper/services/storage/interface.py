"""
Abstract Storage Interface

DESIGN DECISION: The ledger talks to persistence only through these ports.
This allows us to:
1. Use in-memory storage for tests and embedding
2. Use SQLite (or a real database later) without touching ledger logic
3. Keep the atomicity contract in one place: LedgerStorage.atomic()

The interface is intentionally small. It is not an ORM, just the
operations the ledger needs.
"""

from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager
from datetime import date
from decimal import Decimal
from typing import Optional
from uuid import UUID

from balance_keeper.models.audit import AuditEvent
from balance_keeper.models.ledger import (
    Account,
    RecurringTemplate,
    Transaction,
    TransactionFilters,
)


class AccountStorageInterface(ABC):
    """Account reads and balance writes, always scoped by owner."""

    @abstractmethod
    async def get_account(self, owner_id: UUID, account_id: UUID) -> Optional[Account]:
        """
        Retrieve an account.

        Returns:
            The account if it exists and belongs to `owner_id`, None otherwise
        """
        pass

    @abstractmethod
    async def save_account(self, account: Account) -> Account:
        """
        Insert a new account.

        Raises:
            DuplicateError: If an account with this id already exists
        """
        pass

    @abstractmethod
    async def update_balance(
        self,
        owner_id: UUID,
        account_id: UUID,
        balance: Decimal,
    ) -> None:
        """
        Overwrite an account's current balance.

        Only the lifecycle controller calls this, with a value computed by
        the balance accumulator.

        Raises:
            RecordNotFoundError: If the account doesn't exist for this owner
        """
        pass

    @abstractmethod
    async def list_accounts(
        self,
        owner_id: UUID,
        active_only: bool = True,
    ) -> list[Account]:
        """List an owner's accounts, oldest first."""
        pass


class TransactionStorageInterface(ABC):
    """Transaction CRUD, batch insert and the overdue sweep."""

    @abstractmethod
    async def get_transaction(
        self,
        owner_id: UUID,
        transaction_id: UUID,
    ) -> Optional[Transaction]:
        pass

    @abstractmethod
    async def insert_transaction(self, transaction: Transaction) -> None:
        """
        Raises:
            DuplicateError: If a transaction with this id already exists
        """
        pass

    @abstractmethod
    async def insert_transactions(self, transactions: list[Transaction]) -> None:
        """Bulk insert. All rows are written or none are."""
        pass

    @abstractmethod
    async def update_transaction(self, transaction: Transaction) -> None:
        """
        Replace a stored transaction with the given version.

        Raises:
            RecordNotFoundError: If the transaction doesn't exist for its owner
        """
        pass

    @abstractmethod
    async def delete_transaction(self, owner_id: UUID, transaction_id: UUID) -> bool:
        """
        Returns:
            True if a row was removed
        """
        pass

    @abstractmethod
    async def list_transactions(
        self,
        owner_id: UUID,
        filters: Optional[TransactionFilters] = None,
    ) -> list[Transaction]:
        """
        List transactions matching the filters, newest occurrence first.

        Filtering on `status` uses the stored effective status.
        """
        pass

    @abstractmethod
    async def mark_overdue(self, owner_id: UUID, as_of: date) -> int:
        """
        Set status to overdue on every pending transaction dated before `as_of`.

        Returns:
            Number of transactions changed (0 on a repeated call)
        """
        pass


class TemplateStorageInterface(ABC):
    """Recurring template CRUD."""

    @abstractmethod
    async def get_template(
        self,
        owner_id: UUID,
        template_id: UUID,
    ) -> Optional[RecurringTemplate]:
        pass

    @abstractmethod
    async def insert_template(self, template: RecurringTemplate) -> None:
        pass

    @abstractmethod
    async def update_template(self, template: RecurringTemplate) -> None:
        """
        Raises:
            RecordNotFoundError: If the template doesn't exist for its owner
        """
        pass

    @abstractmethod
    async def delete_template(self, owner_id: UUID, template_id: UUID) -> bool:
        pass

    @abstractmethod
    async def list_templates(
        self,
        owner_id: UUID,
        active_only: bool = False,
        due_on: Optional[date] = None,
    ) -> list[RecurringTemplate]:
        """
        List templates ordered by name.

        Args:
            active_only: Only active templates
            due_on: Only templates whose next occurrence is on or before this date
        """
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        """Get all events for a specific entity, in chronological order."""
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
        owner_id: Optional[UUID] = None,
    ) -> list[AuditEvent]:
        """Get the most recent audit events (newest first)."""
        pass


class LedgerStorage(ABC):
    """
    The persistence port handed to the ledger at construction time.

    Bundles the three record stores with the unit-of-work boundary.
    """

    @property
    @abstractmethod
    def accounts(self) -> AccountStorageInterface:
        pass

    @property
    @abstractmethod
    def transactions(self) -> TransactionStorageInterface:
        pass

    @property
    @abstractmethod
    def templates(self) -> TemplateStorageInterface:
        pass

    @abstractmethod
    def atomic(self, owner_id: UUID) -> AbstractAsyncContextManager[None]:
        """
        Unit of work for one owner's data.

        Everything written inside the block commits together or not at all:
        an exception rolls every write back and propagates. Writers for the
        same owner are serialized. A nested atomic() for the same owner in
        the same task joins the enclosing unit.
        """
        pass

    async def close(self) -> None:
        """Release backend resources."""
        return None


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class RecordNotFoundError(StorageError):
    """Row to update does not exist."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class StorageConnectionError(StorageError):
    """Could not open or lock the storage backend."""
    pass
