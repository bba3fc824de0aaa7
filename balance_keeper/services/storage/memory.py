"""
In-Memory Storage Implementation

Used by the test suite and by callers embedding the ledger without a
database. Data is partitioned by owner; each owner's partition has its own
asyncio lock, and atomic() snapshots the partition on entry and restores it
if the block raises.

Stored models are never handed out directly: every read returns a copy,
so a caller mutating a returned object cannot bypass the unit of work.
"""

import asyncio
from contextlib import asynccontextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import AsyncIterator, Optional
from uuid import UUID

from balance_keeper.models.audit import AuditEvent
from balance_keeper.models.ledger import (
    Account,
    RecurringTemplate,
    Transaction,
    TransactionFilters,
    TransactionStatus,
    utcnow,
)
from balance_keeper.services.storage.interface import (
    AccountStorageInterface,
    AuditStorageInterface,
    DuplicateError,
    LedgerStorage,
    RecordNotFoundError,
    StorageError,
    TemplateStorageInterface,
    TransactionStorageInterface,
)


@dataclass
class _Partition:
    """One owner's records."""
    accounts: dict[UUID, Account] = field(default_factory=dict)
    transactions: dict[UUID, Transaction] = field(default_factory=dict)
    templates: dict[UUID, RecurringTemplate] = field(default_factory=dict)

    def snapshot(self) -> "_Partition":
        return _Partition(
            accounts=dict(self.accounts),
            transactions=dict(self.transactions),
            templates=dict(self.templates),
        )

    def restore(self, snapshot: "_Partition") -> None:
        self.accounts = snapshot.accounts
        self.transactions = snapshot.transactions
        self.templates = snapshot.templates


class _PartitionedStore:
    def __init__(self, partitions: dict[UUID, _Partition]):
        self._partitions = partitions

    def _partition(self, owner_id: UUID) -> _Partition:
        return self._partitions.setdefault(owner_id, _Partition())


def matches_filters(transaction: Transaction, filters: TransactionFilters) -> bool:
    """Shared filter semantics for list_transactions."""
    if filters.date_from and transaction.occurrence_date < filters.date_from:
        return False
    if filters.date_to and transaction.occurrence_date > filters.date_to:
        return False
    if filters.account_id and transaction.account_id != filters.account_id:
        return False
    if filters.category_id and transaction.category_id != filters.category_id:
        return False
    if filters.direction and transaction.direction != filters.direction:
        return False
    if filters.status and transaction.status != filters.status:
        return False
    if filters.search:
        needle = filters.search.lower()
        haystack = f"{transaction.title} {transaction.description or ''}".lower()
        if needle not in haystack:
            return False
    return True


class InMemoryAccountStorage(_PartitionedStore, AccountStorageInterface):

    async def get_account(self, owner_id: UUID, account_id: UUID) -> Optional[Account]:
        account = self._partition(owner_id).accounts.get(account_id)
        return account.model_copy() if account else None

    async def save_account(self, account: Account) -> Account:
        accounts = self._partition(account.owner_id).accounts
        if account.id in accounts:
            raise DuplicateError(f"Account already exists: {account.id}")
        accounts[account.id] = account.model_copy()
        return account

    async def update_balance(
        self,
        owner_id: UUID,
        account_id: UUID,
        balance: Decimal,
    ) -> None:
        accounts = self._partition(owner_id).accounts
        account = accounts.get(account_id)
        if account is None:
            raise RecordNotFoundError(f"Account not found: {account_id}")
        accounts[account_id] = account.model_copy(
            update={"current_balance": balance, "updated_at": utcnow()}
        )

    async def list_accounts(
        self,
        owner_id: UUID,
        active_only: bool = True,
    ) -> list[Account]:
        accounts = [
            account.model_copy()
            for account in self._partition(owner_id).accounts.values()
            if account.active or not active_only
        ]
        accounts.sort(key=lambda a: a.created_at)
        return accounts


class InMemoryTransactionStorage(_PartitionedStore, TransactionStorageInterface):

    async def get_transaction(
        self,
        owner_id: UUID,
        transaction_id: UUID,
    ) -> Optional[Transaction]:
        transaction = self._partition(owner_id).transactions.get(transaction_id)
        return transaction.model_copy(deep=True) if transaction else None

    async def insert_transaction(self, transaction: Transaction) -> None:
        await self.insert_transactions([transaction])

    async def insert_transactions(self, transactions: list[Transaction]) -> None:
        for transaction in transactions:
            stored = self._partition(transaction.owner_id).transactions
            if transaction.id in stored:
                raise DuplicateError(f"Transaction already exists: {transaction.id}")
        for transaction in transactions:
            self._partition(transaction.owner_id).transactions[transaction.id] = (
                transaction.model_copy(deep=True)
            )

    async def update_transaction(self, transaction: Transaction) -> None:
        stored = self._partition(transaction.owner_id).transactions
        if transaction.id not in stored:
            raise RecordNotFoundError(f"Transaction not found: {transaction.id}")
        stored[transaction.id] = transaction.model_copy(deep=True)

    async def delete_transaction(self, owner_id: UUID, transaction_id: UUID) -> bool:
        return self._partition(owner_id).transactions.pop(transaction_id, None) is not None

    async def list_transactions(
        self,
        owner_id: UUID,
        filters: Optional[TransactionFilters] = None,
    ) -> list[Transaction]:
        filters = filters or TransactionFilters()
        transactions = [
            t.model_copy(deep=True)
            for t in self._partition(owner_id).transactions.values()
            if matches_filters(t, filters)
        ]
        transactions.sort(key=lambda t: (t.occurrence_date, t.created_at), reverse=True)
        return transactions[filters.offset:filters.offset + filters.limit]

    async def mark_overdue(self, owner_id: UUID, as_of: date) -> int:
        stored = self._partition(owner_id).transactions
        now = utcnow()
        count = 0
        for transaction_id, transaction in list(stored.items()):
            if (
                transaction.status == TransactionStatus.PENDING
                and transaction.occurrence_date < as_of
            ):
                stored[transaction_id] = transaction.model_copy(
                    update={"status": TransactionStatus.OVERDUE, "updated_at": now}
                )
                count += 1
        return count


class InMemoryTemplateStorage(_PartitionedStore, TemplateStorageInterface):

    async def get_template(
        self,
        owner_id: UUID,
        template_id: UUID,
    ) -> Optional[RecurringTemplate]:
        template = self._partition(owner_id).templates.get(template_id)
        return template.model_copy() if template else None

    async def insert_template(self, template: RecurringTemplate) -> None:
        templates = self._partition(template.owner_id).templates
        if template.id in templates:
            raise DuplicateError(f"Template already exists: {template.id}")
        templates[template.id] = template.model_copy()

    async def update_template(self, template: RecurringTemplate) -> None:
        templates = self._partition(template.owner_id).templates
        if template.id not in templates:
            raise RecordNotFoundError(f"Template not found: {template.id}")
        templates[template.id] = template.model_copy()

    async def delete_template(self, owner_id: UUID, template_id: UUID) -> bool:
        return self._partition(owner_id).templates.pop(template_id, None) is not None

    async def list_templates(
        self,
        owner_id: UUID,
        active_only: bool = False,
        due_on: Optional[date] = None,
    ) -> list[RecurringTemplate]:
        templates = [
            template.model_copy()
            for template in self._partition(owner_id).templates.values()
            if (template.active or not active_only)
            and (due_on is None or template.next_occurrence <= due_on)
        ]
        templates.sort(key=lambda t: t.name)
        return templates


class InMemoryAuditStorage(AuditStorageInterface):
    """Append-only list of audit events."""

    def __init__(self):
        self._events: list[AuditEvent] = []

    async def append_event(self, event: AuditEvent) -> bool:
        self._events.append(event)
        return True

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        events = [
            e for e in self._events
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(
        self,
        limit: int = 100,
        owner_id: Optional[UUID] = None,
    ) -> list[AuditEvent]:
        events = [e for e in self._events if owner_id is None or e.owner_id == owner_id]
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]


class InMemoryLedgerStorage(LedgerStorage):
    """LedgerStorage backed by plain dictionaries."""

    def __init__(self):
        self._partitions: dict[UUID, _Partition] = {}
        self._locks: dict[UUID, asyncio.Lock] = {}
        self._scope: ContextVar[Optional[UUID]] = ContextVar(
            f"memory_ledger_scope_{id(self)}", default=None
        )
        self._accounts = InMemoryAccountStorage(self._partitions)
        self._transactions = InMemoryTransactionStorage(self._partitions)
        self._templates = InMemoryTemplateStorage(self._partitions)

    @property
    def accounts(self) -> InMemoryAccountStorage:
        return self._accounts

    @property
    def transactions(self) -> InMemoryTransactionStorage:
        return self._transactions

    @property
    def templates(self) -> InMemoryTemplateStorage:
        return self._templates

    @asynccontextmanager
    async def atomic(self, owner_id: UUID) -> AsyncIterator[None]:
        active_owner = self._scope.get()
        if active_owner is not None:
            if active_owner != owner_id:
                raise StorageError(
                    f"Cannot open a unit of work for {owner_id} inside one for {active_owner}"
                )
            yield
            return

        lock = self._locks.setdefault(owner_id, asyncio.Lock())
        async with lock:
            partition = self._partitions.setdefault(owner_id, _Partition())
            snapshot = partition.snapshot()
            token = self._scope.set(owner_id)
            try:
                yield
            except BaseException:
                partition.restore(snapshot)
                raise
            finally:
                self._scope.reset(token)
