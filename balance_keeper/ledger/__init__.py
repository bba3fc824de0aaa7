"""
Ledger core: balance arithmetic, status resolution, installments and
clocks.

The stateful components live in balance_keeper.ledger.lifecycle and
balance_keeper.ledger.recurring.
"""

from balance_keeper.ledger.balance import CENT, BalanceMode, apply_effect
from balance_keeper.ledger.clock import Clock, FixedClock, SystemClock
from balance_keeper.ledger.errors import (
    AccountMismatchError,
    InvalidAmountError,
    InvalidInstallmentCountError,
    InvalidPatchError,
    InvalidRecurrenceError,
    LedgerError,
    NotFoundError,
    TemplateInactiveOrExpiredError,
)
from balance_keeper.ledger.installments import split_installments
from balance_keeper.ledger.status import resolve_status

__all__ = [
    # Pure functions
    "CENT",
    "BalanceMode",
    "apply_effect",
    "resolve_status",
    "split_installments",
    # Clocks
    "Clock",
    "FixedClock",
    "SystemClock",
    # Errors
    "AccountMismatchError",
    "InvalidAmountError",
    "InvalidInstallmentCountError",
    "InvalidPatchError",
    "InvalidRecurrenceError",
    "LedgerError",
    "NotFoundError",
    "TemplateInactiveOrExpiredError",
]
