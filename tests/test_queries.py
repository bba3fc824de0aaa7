"""
Tests for LedgerQueryExecutor: listings, statistics and balance checks.
"""

import pytest
from datetime import date, timedelta
from decimal import Decimal
from uuid import uuid4

from balance_keeper.ledger.errors import NotFoundError
from balance_keeper.models import (
    Direction,
    RecordedStatus,
    TransactionFilters,
    TransactionStatus,
)

TODAY = date(2024, 3, 15)


class TestListing:
    """Tests for filtered transaction listing."""

    async def test_newest_first(self, service, make_draft, owner_id):
        """Test default ordering."""
        for day in (1, 10, 5):
            await service.create_transaction(make_draft(occurrence_date=date(2024, 3, day)))
        listed = await service.list_transactions(owner_id)
        assert [t.occurrence_date.day for t in listed] == [10, 5, 1]

    async def test_effective_status_without_sweep(self, service, make_draft, owner_id, clock):
        """Test that a stale pending record reads as overdue."""
        await service.create_transaction(
            make_draft(status=RecordedStatus.PENDING, occurrence_date=TODAY + timedelta(days=1))
        )
        clock.set(TODAY + timedelta(days=3))

        listed = await service.list_transactions(owner_id)
        assert listed[0].status == TransactionStatus.OVERDUE

        overdue = await service.list_transactions(
            owner_id, TransactionFilters(status=TransactionStatus.OVERDUE)
        )
        assert len(overdue) == 1

    async def test_filters(self, service, make_draft, owner_id):
        """Test direction, date and text filters together."""
        await service.create_transaction(
            make_draft(title="Salary", direction=Direction.INCOME, amount=Decimal("3000.00"))
        )
        await service.create_transaction(make_draft(title="Coffee beans", description="Monthly order"))
        await service.create_transaction(
            make_draft(title="Coffee shop", occurrence_date=date(2024, 2, 1))
        )

        found = await service.list_transactions(
            owner_id,
            TransactionFilters(
                direction=Direction.EXPENSE,
                date_from=date(2024, 3, 1),
                search="COFFEE",
            ),
        )
        assert [t.title for t in found] == ["Coffee beans"]

        by_description = await service.list_transactions(
            owner_id, TransactionFilters(search="monthly")
        )
        assert [t.title for t in by_description] == ["Coffee beans"]

    async def test_paging(self, service, make_draft, owner_id):
        """Test limit and offset."""
        for day in range(1, 6):
            await service.create_transaction(make_draft(occurrence_date=date(2024, 3, day)))
        page = await service.list_transactions(owner_id, TransactionFilters(limit=2, offset=1))
        assert [t.occurrence_date.day for t in page] == [4, 3]

    async def test_owner_isolation(self, service, make_draft, owner_id):
        """Test that another owner sees nothing."""
        await service.create_transaction(make_draft())
        assert await service.list_transactions(uuid4()) == []


class TestStats:
    """Tests for paid-only statistics."""

    async def test_stats_count_paid_only(self, service, make_draft, owner_id):
        """Test that pending transactions are excluded."""
        await service.create_transaction(
            make_draft(direction=Direction.INCOME, amount=Decimal("3000.00"))
        )
        await service.create_transaction(make_draft(amount=Decimal("120.50")))
        await service.create_transaction(
            make_draft(amount=Decimal("999.00"), status=RecordedStatus.PENDING)
        )

        stats = await service.get_stats(owner_id)
        assert stats.income == Decimal("3000.00")
        assert stats.expenses == Decimal("120.50")
        assert stats.net == Decimal("2879.50")
        assert stats.transaction_count == 2

    async def test_stats_empty(self, service, owner_id):
        """Test statistics with no transactions."""
        stats = await service.get_stats(owner_id)
        assert stats.net == Decimal("0.00")
        assert stats.transaction_count == 0


class TestOverdueAndUpcoming:
    """Tests for the overdue and upcoming listings."""

    async def test_overdue_sweeps_and_lists_oldest_first(self, service, storage, make_draft, owner_id):
        """Test that the overdue listing persists the sweep."""
        await service.create_transaction(
            make_draft(status=RecordedStatus.PENDING, occurrence_date=date(2024, 3, 10))
        )
        await service.create_transaction(
            make_draft(status=RecordedStatus.PENDING, occurrence_date=date(2024, 2, 10))
        )
        await service.create_transaction(make_draft(occurrence_date=date(2024, 1, 10)))

        overdue = await service.overdue_transactions(owner_id)

        assert [t.occurrence_date for t in overdue] == [date(2024, 2, 10), date(2024, 3, 10)]
        assert await service.sweep_overdue(owner_id) == 0

    async def test_upcoming_window(self, service, make_draft, owner_id):
        """Test pending transactions within the window, soonest first."""
        for offset in (10, 3, 0, 7):
            await service.create_transaction(
                make_draft(
                    status=RecordedStatus.PENDING,
                    occurrence_date=TODAY + timedelta(days=offset),
                )
            )
        await service.create_transaction(make_draft(occurrence_date=TODAY + timedelta(days=1)))

        upcoming = await service.upcoming_transactions(owner_id)
        assert [(t.occurrence_date - TODAY).days for t in upcoming] == [0, 3, 7]

        wider = await service.upcoming_transactions(owner_id, days=30)
        assert len(wider) == 4


class TestBalances:
    """Tests for balance totals and verification."""

    async def test_total_balance(self, service, account, owner_id):
        """Test the total across active accounts."""
        await service.open_account(owner_id, "Savings", opening_balance=Decimal("250.25"))
        assert await service.get_total_balance(owner_id) == Decimal("1250.25")

    async def test_verify_consistent(self, service, account, make_draft, owner_id):
        """Test verification after regular activity."""
        await service.create_transaction(make_draft())
        check = await service.verify_account_balance(owner_id, account.id)
        assert check.is_consistent
        assert check.expected_balance == Decimal("950.00")

    async def test_verify_detects_drift(self, service, storage, account, owner_id):
        """Test verification flags a balance written outside the ledger."""
        await storage.accounts.update_balance(owner_id, account.id, Decimal("1.00"))
        check = await service.verify_account_balance(owner_id, account.id)
        assert not check.is_consistent
        assert check.expected_balance == Decimal("1000.00")

    async def test_unknown_account(self, service, owner_id):
        """Test balance of a missing account."""
        with pytest.raises(NotFoundError):
            await service.get_account_balance(owner_id, uuid4())
