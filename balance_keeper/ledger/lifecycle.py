"""
Transaction Lifecycle Controller

Owns every write that can move money. It guarantees that each
transaction's balance effect is applied exactly once while the transaction
is paid, and reverted exactly once when it stops being paid (update,
mark pending, delete).

CRITICAL: revert, persist and apply always run inside one
storage.atomic() unit. If any step raises, the storage rolls the whole unit
back, so a balance is never left half-updated.

Audit events are buffered while the unit is open and only logged once the
outermost unit commits. A rolled-back operation logs a single
operation_failed event instead.
"""

from contextlib import asynccontextmanager
from contextvars import ContextVar
from decimal import Decimal
from typing import AsyncIterator, Optional
from uuid import UUID

import structlog

from balance_keeper.audit import AuditLogger
from balance_keeper.ledger.balance import BalanceMode, apply_effect
from balance_keeper.ledger.clock import Clock
from balance_keeper.ledger.errors import (
    AccountMismatchError,
    LedgerError,
    NotFoundError,
)
from balance_keeper.ledger.installments import split_installments
from balance_keeper.ledger.status import resolve_status
from balance_keeper.models.audit import AuditEvent, AuditEventBuilder
from balance_keeper.models.ledger import (
    Account,
    RecordedStatus,
    Transaction,
    TransactionDraft,
    TransactionPatch,
    TransactionStatus,
    utcnow,
)
from balance_keeper.services.storage import LedgerStorage
from balance_keeper.validation import LedgerValidator


class TransactionLifecycleController:
    """
    Create, update, delete and status transitions for transactions.

    Collaborators are injected: the storage port (accounts, transactions,
    templates and the unit of work), the clock, the validator and the
    audit logger.
    """

    def __init__(
        self,
        storage: LedgerStorage,
        clock: Clock,
        validator: Optional[LedgerValidator] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._storage = storage
        self._clock = clock
        self._validator = validator or LedgerValidator()
        self._audit = audit_logger or AuditLogger()
        self._logger = structlog.get_logger(__name__)
        self._pending_events: ContextVar[Optional[list[AuditEvent]]] = ContextVar(
            f"lifecycle_events_{id(self)}", default=None
        )

    # =========================================================================
    # Unit of work
    # =========================================================================

    @asynccontextmanager
    async def unit_of_work(
        self,
        owner_id: UUID,
        operation: str,
        entity_id: Optional[UUID] = None,
    ) -> AsyncIterator[list[AuditEvent]]:
        """
        Open (or join) an atomic unit for one owner.

        Yields the audit buffer for the unit. Nested units share the
        outermost buffer, which is flushed only after the outermost commit.
        """
        events = self._pending_events.get()
        if events is not None:
            async with self._storage.atomic(owner_id):
                yield events
            return

        events = []
        token = self._pending_events.set(events)
        try:
            async with self._storage.atomic(owner_id):
                yield events
        except Exception as error:
            self._logger.info(
                "ledger_operation_rolled_back",
                operation=operation,
                owner_id=str(owner_id),
                error=str(error),
            )
            await self._audit.log(
                AuditEventBuilder.operation_failed(operation, error, owner_id, entity_id)
            )
            raise
        finally:
            self._pending_events.reset(token)

        await self._audit.log_all(events)

    # =========================================================================
    # Lookups
    # =========================================================================

    async def require_account(
        self,
        owner_id: UUID,
        account_id: UUID,
        for_new_posting: bool = False,
    ) -> Account:
        """
        Load an account or raise NotFoundError.

        With `for_new_posting`, a closed account raises AccountMismatchError.
        """
        account = await self._storage.accounts.get_account(owner_id, account_id)
        if account is None:
            raise NotFoundError("account", account_id)
        if for_new_posting and not account.active:
            raise AccountMismatchError(
                f"Account {account_id} is closed and cannot take new transactions"
            )
        return account

    async def _require_transaction(self, owner_id: UUID, transaction_id: UUID) -> Transaction:
        transaction = await self._storage.transactions.get_transaction(owner_id, transaction_id)
        if transaction is None:
            raise NotFoundError("transaction", transaction_id)
        return transaction

    def effective(self, transaction: Transaction) -> Transaction:
        """The transaction as it should read today."""
        status = resolve_status(
            transaction.recorded_status,
            transaction.occurrence_date,
            self._clock.today(),
        )
        if status == transaction.status:
            return transaction
        return transaction.model_copy(update={"status": status})

    async def get(self, owner_id: UUID, transaction_id: UUID) -> Transaction:
        return self.effective(await self._require_transaction(owner_id, transaction_id))

    # =========================================================================
    # Balance posting
    # =========================================================================

    async def _post(
        self,
        transaction: Transaction,
        mode: BalanceMode,
        events: list[AuditEvent],
    ) -> Decimal:
        """Apply or revert one transaction's effect on its account."""
        account = await self.require_account(transaction.owner_id, transaction.account_id)
        new_balance = apply_effect(
            account.current_balance,
            transaction.amount,
            transaction.direction,
            mode,
        )
        await self._storage.accounts.update_balance(
            transaction.owner_id,
            transaction.account_id,
            new_balance,
        )
        events.append(
            AuditEventBuilder.balance_changed(
                transaction, mode.value, account.current_balance, new_balance
            )
        )
        return new_balance

    # =========================================================================
    # Creation
    # =========================================================================

    def _materialize(self, draft: TransactionDraft, single: bool = False) -> Transaction:
        """
        Build the transaction to persist from a draft, with its status resolved.

        `single` drops the installment plan so the splitter can apply it.
        """
        return Transaction(
            owner_id=draft.owner_id,
            account_id=draft.account_id,
            category_id=draft.category_id,
            title=draft.title,
            description=draft.description,
            amount=draft.amount,
            direction=draft.direction,
            recorded_status=draft.status,
            status=resolve_status(draft.status, draft.occurrence_date, self._clock.today()),
            occurrence_date=draft.occurrence_date,
            due_date=draft.due_date,
            is_installment=draft.is_installment and not single,
            installment_number=1 if single else draft.installment_number,
            total_installments=1 if single else draft.total_installments,
            parent_id=draft.parent_id,
            is_recurring=draft.is_recurring,
            frequency=draft.frequency,
            recurrence_end_date=draft.recurrence_end_date,
            recurrence_origin_id=draft.recurrence_origin_id,
            source_template_id=draft.source_template_id,
            tags=list(draft.tags),
            notes=draft.notes,
            attachment_url=draft.attachment_url,
        )

    async def _insert_all(
        self,
        transactions: list[Transaction],
        events: list[AuditEvent],
    ) -> None:
        await self._storage.transactions.insert_transactions(transactions)
        for transaction in transactions:
            if transaction.is_paid:
                await self._post(transaction, BalanceMode.APPLY, events)
            events.append(AuditEventBuilder.transaction_created(transaction))

    async def _materialize_batch(self, drafts: list[TransactionDraft]) -> list[Transaction]:
        checked_accounts: set[UUID] = set()
        transactions = []
        for draft in drafts:
            self._validator.validate_draft(draft)
            if draft.account_id not in checked_accounts:
                await self.require_account(draft.owner_id, draft.account_id, for_new_posting=True)
                checked_accounts.add(draft.account_id)
            transactions.append(self._materialize(draft))
        return transactions

    async def create(self, draft: TransactionDraft) -> Transaction:
        """
        Create a transaction.

        The effective status is resolved before persisting, so a pending
        draft dated in the past is stored as overdue. A paid transaction
        moves its account balance. An installment draft with more than one
        installment is split first and all installments are created
        together.
        """
        self._validator.validate_draft(draft)

        async with self.unit_of_work(draft.owner_id, "create_transaction") as events:
            await self.require_account(draft.owner_id, draft.account_id, for_new_posting=True)

            if draft.is_installment and draft.total_installments > 1 and draft.parent_id is None:
                parent, child_drafts = split_installments(
                    self._materialize(draft, single=True),
                    draft.total_installments,
                )
                children = await self._materialize_batch(child_drafts)
                await self._insert_all([parent] + children, events)
                events.append(AuditEventBuilder.installments_created(parent, len(children)))
                return parent

            transaction = self._materialize(draft)
            await self._insert_all([transaction], events)

        return transaction

    async def create_many(self, drafts: list[TransactionDraft]) -> list[Transaction]:
        """
        Create a batch of one owner's transactions through the create path.

        Drafts are validated and resolved exactly as in create(), inserted
        in bulk, and any paid ones are posted to their accounts.
        Installment drafts are taken as given (no further splitting).
        """
        if not drafts:
            return []

        owner_id = drafts[0].owner_id
        if any(draft.owner_id != owner_id for draft in drafts):
            raise LedgerError("A batch can only contain one owner's transactions")

        async with self.unit_of_work(owner_id, "create_transactions") as events:
            transactions = await self._materialize_batch(drafts)
            await self._insert_all(transactions, events)

        return transactions

    # =========================================================================
    # Updates
    # =========================================================================

    def _apply_changes(self, existing: Transaction, changes: dict) -> Transaction:
        data = existing.model_dump()
        data.update(changes)
        data["status"] = resolve_status(
            data["recorded_status"],
            data["occurrence_date"],
            self._clock.today(),
        )
        data["updated_at"] = utcnow()
        return Transaction.model_validate(data)

    async def update(
        self,
        owner_id: UUID,
        transaction_id: UUID,
        patch: TransactionPatch,
    ) -> Transaction:
        """
        Apply a patch.

        The old effect is reverted with the old amount, direction and
        account before the patch, and the new effect is applied with the
        new values after it, even when the patch moves the transaction to
        another account.
        """
        self._validator.validate_patch(patch)
        changes = patch.changes()

        async with self.unit_of_work(owner_id, "update_transaction", transaction_id) as events:
            existing = await self._require_transaction(owner_id, transaction_id)

            new_account_id = changes.get("account_id")
            if new_account_id is not None and new_account_id != existing.account_id:
                await self.require_account(owner_id, new_account_id, for_new_posting=True)

            if existing.is_paid:
                await self._post(existing, BalanceMode.REVERT, events)

            updated = self._apply_changes(existing, changes)
            await self._storage.transactions.update_transaction(updated)

            if updated.is_paid:
                await self._post(updated, BalanceMode.APPLY, events)

            events.append(
                AuditEventBuilder.transaction_updated(existing, updated, list(changes))
            )

        return updated

    async def delete(self, owner_id: UUID, transaction_id: UUID) -> None:
        """Revert the balance effect (if paid), then remove the record."""
        async with self.unit_of_work(owner_id, "delete_transaction", transaction_id) as events:
            existing = await self._require_transaction(owner_id, transaction_id)

            if existing.is_paid:
                await self._post(existing, BalanceMode.REVERT, events)

            await self._storage.transactions.delete_transaction(owner_id, transaction_id)
            events.append(AuditEventBuilder.transaction_deleted(existing))

    async def mark_paid(self, owner_id: UUID, transaction_id: UUID) -> Transaction:
        async with self.unit_of_work(owner_id, "mark_paid", transaction_id) as events:
            existing = await self._require_transaction(owner_id, transaction_id)
            if existing.is_paid:
                return existing

            updated = existing.model_copy(update={
                "recorded_status": RecordedStatus.PAID,
                "status": TransactionStatus.PAID,
                "updated_at": utcnow(),
            })
            await self._storage.transactions.update_transaction(updated)
            await self._post(updated, BalanceMode.APPLY, events)
            events.append(AuditEventBuilder.status_changed(updated))

        return updated

    async def mark_pending(self, owner_id: UUID, transaction_id: UUID) -> Transaction:
        """
        Undo a payment.

        The written status is resolved against today, so a past-dated
        transaction comes back as overdue.
        """
        async with self.unit_of_work(owner_id, "mark_pending", transaction_id) as events:
            existing = await self._require_transaction(owner_id, transaction_id)
            if not existing.is_paid:
                return self.effective(existing)

            await self._post(existing, BalanceMode.REVERT, events)

            updated = existing.model_copy(update={
                "recorded_status": RecordedStatus.PENDING,
                "status": resolve_status(
                    RecordedStatus.PENDING, existing.occurrence_date, self._clock.today()
                ),
                "updated_at": utcnow(),
            })
            await self._storage.transactions.update_transaction(updated)
            events.append(AuditEventBuilder.status_changed(updated))

        return updated

    # =========================================================================
    # Installments on stored transactions
    # =========================================================================

    async def split_existing(
        self,
        owner_id: UUID,
        transaction_id: UUID,
        total_installments: int,
    ) -> tuple[Transaction, list[Transaction]]:
        """
        Turn a stored transaction into an installment plan.

        The parent keeps its status; if it is paid, its full amount is
        reverted and its apportioned amount applied.
        """
        self._validator.validate_installment_count(total_installments)

        async with self.unit_of_work(owner_id, "split_installments", transaction_id) as events:
            existing = await self._require_transaction(owner_id, transaction_id)
            parent, child_drafts = split_installments(existing, total_installments)
            if not child_drafts:
                return existing, []

            if existing.is_paid:
                await self._post(existing, BalanceMode.REVERT, events)

            parent = parent.model_copy(update={"updated_at": utcnow()})
            await self._storage.transactions.update_transaction(parent)

            if parent.is_paid:
                await self._post(parent, BalanceMode.APPLY, events)

            children = await self._materialize_batch(child_drafts)
            await self._insert_all(children, events)
            events.append(AuditEventBuilder.installments_created(parent, len(children)))

        return parent, children

    # =========================================================================
    # Date-driven status
    # =========================================================================

    async def sweep_overdue(self, owner_id: UUID, as_of=None) -> int:
        """
        Mark every pending transaction dated before `as_of` as overdue.

        Idempotent, and never touches balances (nothing pending or overdue
        has a balance effect).
        """
        as_of = as_of or self._clock.today()

        async with self.unit_of_work(owner_id, "sweep_overdue") as events:
            count = await self._storage.transactions.mark_overdue(owner_id, as_of)
            if count:
                events.append(AuditEventBuilder.overdue_swept(owner_id, as_of.isoformat(), count))

        self._logger.debug("overdue_sweep_done", owner_id=str(owner_id), updated=count)
        return count


__all__ = ["TransactionLifecycleController"]
