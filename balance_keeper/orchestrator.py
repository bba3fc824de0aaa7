"""
Main Orchestrator for Balance Keeper

This module ties together all the components and exposes the ledger's
operations through one facade:
1. Transaction lifecycle (create → pay/unpay → update → delete)
2. Recurring templates and inline series
3. Date-driven status (overdue sweep)
4. Read-side queries and balance checks

DESIGN DECISION: The orchestrator only wires and delegates.
- Balance rules live in TransactionLifecycleController
- Generation rules live in RecurringGenerator
- Every write goes through one of the two, so every write is atomic
  and audited the same way
"""

from datetime import date
from decimal import Decimal
from typing import Optional
from uuid import UUID

import structlog

from balance_keeper.audit import AuditLogger, configure_logging
from balance_keeper.config import Settings, get_settings
from balance_keeper.ledger import Clock, InvalidAmountError, SystemClock
from balance_keeper.ledger.lifecycle import TransactionLifecycleController
from balance_keeper.ledger.recurring import RecurringGenerator
from balance_keeper.ledger.balance import has_cent_precision
from balance_keeper.models.audit import AuditEventBuilder
from balance_keeper.models.ledger import (
    Account,
    AccountType,
    BalanceCheck,
    RecurringTemplate,
    TemplateDraft,
    TemplatePatch,
    Transaction,
    TransactionDraft,
    TransactionFilters,
    TransactionPatch,
    TransactionStats,
)
from balance_keeper.queries import LedgerQueryExecutor
from balance_keeper.services.storage import (
    InMemoryAuditStorage,
    InMemoryLedgerStorage,
    LedgerStorage,
    SQLiteLedgerStorage,
)
from balance_keeper.validation import LedgerValidator


logger = structlog.get_logger(__name__)


class LedgerService:
    """
    Facade over the ledger core.

    Every id is scoped by owner_id: a record owned by someone else is
    reported as not found.
    """

    def __init__(
        self,
        storage: LedgerStorage,
        clock: Clock,
        audit_logger: Optional[AuditLogger] = None,
        validator: Optional[LedgerValidator] = None,
        lookahead_months: int = 12,
        upcoming_window_days: int = 7,
    ):
        self._storage = storage
        self._clock = clock
        self._audit_logger = audit_logger or AuditLogger()
        validator = validator or LedgerValidator()

        self.lifecycle = TransactionLifecycleController(
            storage,
            clock,
            validator=validator,
            audit_logger=self._audit_logger,
        )
        self.recurring = RecurringGenerator(
            storage,
            self.lifecycle,
            clock,
            lookahead_months=lookahead_months,
            validator=validator,
        )
        self.queries = LedgerQueryExecutor(
            storage,
            self.lifecycle,
            clock,
            upcoming_window_days=upcoming_window_days,
        )

    @property
    def storage(self) -> LedgerStorage:
        return self._storage

    # =========================================================================
    # Accounts
    # =========================================================================

    async def open_account(
        self,
        owner_id: UUID,
        name: str,
        account_type: AccountType = AccountType.CHECKING,
        opening_balance: Decimal = Decimal("0.00"),
    ) -> Account:
        """Open an account. Its current balance starts at the opening balance."""
        if not has_cent_precision(opening_balance):
            raise InvalidAmountError(
                f"Opening balance must be finite with at most two decimals, got {opening_balance}"
            )

        account = Account(
            owner_id=owner_id,
            name=name,
            account_type=account_type,
            opening_balance=opening_balance,
            current_balance=opening_balance,
        )
        async with self.lifecycle.unit_of_work(owner_id, "open_account") as events:
            await self._storage.accounts.save_account(account)
            events.append(
                AuditEventBuilder.account_opened(owner_id, account.id, name, opening_balance)
            )
        return account

    async def get_account_balance(self, owner_id: UUID, account_id: UUID) -> Decimal:
        account = await self.lifecycle.require_account(owner_id, account_id)
        return account.current_balance

    async def get_total_balance(self, owner_id: UUID) -> Decimal:
        return await self.queries.total_balance(owner_id)

    async def verify_account_balance(self, owner_id: UUID, account_id: UUID) -> BalanceCheck:
        return await self.queries.verify_account_balance(owner_id, account_id)

    # =========================================================================
    # Transactions
    # =========================================================================

    async def create_transaction(self, draft: TransactionDraft) -> Transaction:
        """
        Create a transaction, splitting installments and materializing an
        inline recurring series as the draft asks.

        Returns the transaction created for the draft itself (installment 1
        for a split purchase, the origin for a series).
        """
        async with self.lifecycle.unit_of_work(draft.owner_id, "create_transaction"):
            transaction = await self.lifecycle.create(draft)
            if draft.wants_inline_recurrence:
                await self.recurring.expand_inline(transaction)
        return transaction

    async def get_transaction(self, owner_id: UUID, transaction_id: UUID) -> Transaction:
        return await self.lifecycle.get(owner_id, transaction_id)

    async def update_transaction(
        self,
        owner_id: UUID,
        transaction_id: UUID,
        patch: TransactionPatch,
    ) -> Transaction:
        return await self.lifecycle.update(owner_id, transaction_id, patch)

    async def delete_transaction(self, owner_id: UUID, transaction_id: UUID) -> None:
        await self.lifecycle.delete(owner_id, transaction_id)

    async def mark_paid(self, owner_id: UUID, transaction_id: UUID) -> Transaction:
        return await self.lifecycle.mark_paid(owner_id, transaction_id)

    async def mark_pending(self, owner_id: UUID, transaction_id: UUID) -> Transaction:
        return await self.lifecycle.mark_pending(owner_id, transaction_id)

    async def split_transaction(
        self,
        owner_id: UUID,
        transaction_id: UUID,
        total_installments: int,
    ) -> tuple[Transaction, list[Transaction]]:
        return await self.lifecycle.split_existing(owner_id, transaction_id, total_installments)

    async def sweep_overdue(self, owner_id: UUID, as_of: Optional[date] = None) -> int:
        return await self.lifecycle.sweep_overdue(owner_id, as_of)

    # =========================================================================
    # Templates
    # =========================================================================

    async def create_template(self, draft: TemplateDraft) -> RecurringTemplate:
        return await self.recurring.create_template(draft)

    async def update_template(
        self,
        owner_id: UUID,
        template_id: UUID,
        patch: TemplatePatch,
    ) -> RecurringTemplate:
        return await self.recurring.update_template(owner_id, template_id, patch)

    async def delete_template(self, owner_id: UUID, template_id: UUID) -> None:
        await self.recurring.delete_template(owner_id, template_id)

    async def toggle_template(self, owner_id: UUID, template_id: UUID) -> RecurringTemplate:
        return await self.recurring.toggle_template(owner_id, template_id)

    async def list_templates(
        self,
        owner_id: UUID,
        active_only: bool = False,
    ) -> list[RecurringTemplate]:
        return await self.recurring.list_templates(owner_id, active_only=active_only)

    async def generate_next_from_template(
        self,
        owner_id: UUID,
        template_id: UUID,
    ) -> Transaction:
        return await self.recurring.generate_next(owner_id, template_id)

    async def generate_due(
        self,
        owner_id: UUID,
        as_of: Optional[date] = None,
    ) -> list[Transaction]:
        return await self.recurring.generate_due(owner_id, as_of)

    # =========================================================================
    # Queries
    # =========================================================================

    async def list_transactions(
        self,
        owner_id: UUID,
        filters: Optional[TransactionFilters] = None,
    ) -> list[Transaction]:
        return await self.queries.list_transactions(owner_id, filters)

    async def get_stats(
        self,
        owner_id: UUID,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        account_id: Optional[UUID] = None,
    ) -> TransactionStats:
        return await self.queries.get_stats(owner_id, date_from, date_to, account_id)

    async def overdue_transactions(self, owner_id: UUID) -> list[Transaction]:
        return await self.queries.overdue_transactions(owner_id)

    async def upcoming_transactions(
        self,
        owner_id: UUID,
        days: Optional[int] = None,
    ) -> list[Transaction]:
        return await self.queries.upcoming_transactions(owner_id, days)

    async def close(self) -> None:
        await self._storage.close()


def create_ledger_service(
    settings: Optional[Settings] = None,
    clock: Optional[Clock] = None,
    storage: Optional[LedgerStorage] = None,
) -> LedgerService:
    """
    Factory function to create a fully wired LedgerService.

    Args:
        settings: Settings to read. Defaults to get_settings().
        clock: Clock to use. Defaults to a SystemClock in the configured zone.
        storage: Storage to use. Defaults to the configured backend.

    Returns:
        LedgerService
    """
    settings = settings or get_settings()

    app_settings = settings.app
    log_settings = settings.logging
    # Debug mode overrides the configured level
    configure_logging(
        "DEBUG" if app_settings.debug_mode else log_settings.level,
        log_settings.json_output,
    )

    clock = clock or SystemClock(app_settings.timezone)

    if storage is None:
        storage_settings = settings.storage
        if storage_settings.backend == "sqlite":
            storage = SQLiteLedgerStorage(
                storage_settings.sqlite_path,
                lock_retry_attempts=storage_settings.lock_retry_attempts,
                busy_timeout_seconds=storage_settings.busy_timeout_seconds,
            )
        else:
            storage = InMemoryLedgerStorage()

    audit_storage = getattr(storage, "audit", None) or InMemoryAuditStorage()
    audit_logger = AuditLogger(audit_storage)

    recurrence = settings.recurrence
    logger.info(
        "ledger_service_created",
        environment=app_settings.app_environment,
        backend=type(storage).__name__,
        lookahead_months=recurrence.lookahead_months,
    )

    return LedgerService(
        storage,
        clock,
        audit_logger=audit_logger,
        lookahead_months=recurrence.lookahead_months,
        upcoming_window_days=recurrence.upcoming_window_days,
    )
