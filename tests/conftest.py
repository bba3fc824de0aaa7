"""
Shared fixtures.

Every test gets a fresh in-memory ledger with a fixed "today" of
2024-03-15 and one checking account opened with 1000.00.
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from balance_keeper.audit import AuditLogger
from balance_keeper.ledger import FixedClock
from balance_keeper.models import Direction, RecordedStatus, TransactionDraft
from balance_keeper.orchestrator import LedgerService
from balance_keeper.services.storage import InMemoryAuditStorage, InMemoryLedgerStorage


TODAY = date(2024, 3, 15)


@pytest.fixture
def clock():
    return FixedClock(TODAY)


@pytest.fixture
def storage():
    return InMemoryLedgerStorage()


@pytest.fixture
def audit_storage():
    return InMemoryAuditStorage()


@pytest.fixture
def service(storage, clock, audit_storage):
    return LedgerService(storage, clock, audit_logger=AuditLogger(audit_storage))


@pytest.fixture
def owner_id():
    return uuid4()


@pytest.fixture
async def account(service, owner_id):
    return await service.open_account(owner_id, "Checking", opening_balance=Decimal("1000.00"))


@pytest.fixture
def make_draft(owner_id, account):
    """Build a TransactionDraft against the seeded account."""

    def _make(**overrides):
        data = {
            "owner_id": owner_id,
            "account_id": account.id,
            "title": "Groceries",
            "amount": Decimal("50.00"),
            "direction": Direction.EXPENSE,
            "status": RecordedStatus.PAID,
            "occurrence_date": TODAY,
        }
        data.update(overrides)
        return TransactionDraft(**data)

    return _make
