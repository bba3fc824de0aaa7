"""
Query Execution Engine

DESIGN DECISION: Queries are read-only and DETERMINISTIC.
Every figure returned here is computed from stored records. Statuses are
resolved against the injected clock at read time, so a pending transaction
that slipped into the past reads as overdue even before a sweep has
persisted it.

The one exception is overdue_transactions(), which runs a sweep first
(as the overdue listing has always done) so the stored statuses match
what is shown.
"""

from datetime import date, timedelta
from decimal import Decimal
from typing import AsyncIterator, Optional
from uuid import UUID

from balance_keeper.ledger.clock import Clock
from balance_keeper.ledger.errors import NotFoundError
from balance_keeper.ledger.lifecycle import TransactionLifecycleController
from balance_keeper.models.ledger import (
    BalanceCheck,
    Direction,
    RecordedStatus,
    Transaction,
    TransactionFilters,
    TransactionStats,
    TransactionStatus,
)
from balance_keeper.services.storage import LedgerStorage

PAGE_SIZE = 1000


class LedgerQueryExecutor:
    """
    Read-side queries over an owner's ledger.

    GUARANTEES:
    - Only returns real data from storage
    - Never estimates; balance checks recompute from every paid transaction
    """

    def __init__(
        self,
        storage: LedgerStorage,
        lifecycle: TransactionLifecycleController,
        clock: Clock,
        upcoming_window_days: int = 7,
    ):
        self._storage = storage
        self._lifecycle = lifecycle
        self._clock = clock
        self._upcoming_window_days = upcoming_window_days

    async def _iter_all(
        self,
        owner_id: UUID,
        filters: TransactionFilters,
    ) -> AsyncIterator[Transaction]:
        """Page through every stored match, ignoring the caller's paging."""
        offset = 0
        while True:
            page = await self._storage.transactions.list_transactions(
                owner_id,
                filters.model_copy(update={"limit": PAGE_SIZE, "offset": offset}),
            )
            for transaction in page:
                yield transaction
            if len(page) < PAGE_SIZE:
                return
            offset += PAGE_SIZE

    async def list_transactions(
        self,
        owner_id: UUID,
        filters: Optional[TransactionFilters] = None,
    ) -> list[Transaction]:
        """
        Filtered listing, newest first, with effective statuses.

        A status filter is applied to the effective status, so paging is
        done here rather than in storage when one is given.
        """
        filters = filters or TransactionFilters()

        if filters.status is None:
            page = await self._storage.transactions.list_transactions(owner_id, filters)
            return [self._lifecycle.effective(t) for t in page]

        unfiltered = filters.model_copy(update={"status": None})
        matches = []
        async for stored in self._iter_all(owner_id, unfiltered):
            resolved = self._lifecycle.effective(stored)
            if resolved.status == filters.status:
                matches.append(resolved)
        return matches[filters.offset:filters.offset + filters.limit]

    async def get_stats(
        self,
        owner_id: UUID,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        account_id: Optional[UUID] = None,
    ) -> TransactionStats:
        """Income, expenses and net over paid transactions only."""
        filters = TransactionFilters(
            date_from=date_from,
            date_to=date_to,
            account_id=account_id,
            status=TransactionStatus.PAID,
        )
        income = Decimal("0.00")
        expenses = Decimal("0.00")
        count = 0

        async for transaction in self._iter_all(owner_id, filters):
            if transaction.direction == Direction.INCOME:
                income += transaction.amount
            else:
                expenses += transaction.amount
            count += 1

        return TransactionStats(
            income=income,
            expenses=expenses,
            net=income - expenses,
            transaction_count=count,
        )

    async def overdue_transactions(self, owner_id: UUID) -> list[Transaction]:
        """Sweep, then list everything overdue, oldest first."""
        await self._lifecycle.sweep_overdue(owner_id)

        overdue = [
            t async for t in self._iter_all(
                owner_id, TransactionFilters(status=TransactionStatus.OVERDUE)
            )
        ]
        overdue.sort(key=lambda t: (t.occurrence_date, t.created_at))
        return overdue

    async def upcoming_transactions(
        self,
        owner_id: UUID,
        days: Optional[int] = None,
    ) -> list[Transaction]:
        """Pending transactions dated from today through today + `days`, soonest first."""
        today = self._clock.today()
        window = days if days is not None else self._upcoming_window_days
        filters = TransactionFilters(date_from=today, date_to=today + timedelta(days=window))

        upcoming = [
            t async for t in self._iter_all(owner_id, filters)
            if t.recorded_status == RecordedStatus.PENDING
        ]
        upcoming.sort(key=lambda t: (t.occurrence_date, t.created_at))
        return [self._lifecycle.effective(t) for t in upcoming]

    async def total_balance(self, owner_id: UUID) -> Decimal:
        """Sum of current balances across the owner's active accounts."""
        accounts = await self._storage.accounts.list_accounts(owner_id, active_only=True)
        return sum((a.current_balance for a in accounts), Decimal("0.00"))

    async def verify_account_balance(self, owner_id: UUID, account_id: UUID) -> BalanceCheck:
        """
        Recompute an account's balance from its opening balance and every
        paid transaction, and compare it with the stored balance.
        """
        account = await self._storage.accounts.get_account(owner_id, account_id)
        if account is None:
            raise NotFoundError("account", account_id)

        expected = account.opening_balance
        async for transaction in self._iter_all(
            owner_id,
            TransactionFilters(account_id=account_id, status=TransactionStatus.PAID),
        ):
            expected += transaction.signed_amount

        return BalanceCheck(
            account_id=account_id,
            stored_balance=account.current_balance,
            expected_balance=expected,
        )
