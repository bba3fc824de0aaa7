"""
Balance Accumulator

The only code path by which a transaction's monetary effect reaches an
account balance. Pure: callers persist the returned value.
"""

from decimal import Decimal
from enum import Enum

from balance_keeper.models.ledger import CENTS as CENT
from balance_keeper.models.ledger import Direction


class BalanceMode(str, Enum):
    """Apply a transaction's effect, or take it back out."""
    APPLY = "apply"
    REVERT = "revert"


def has_cent_precision(amount: Decimal) -> bool:
    """True when the amount needs no more than two fractional digits."""
    return amount.is_finite() and amount == amount.quantize(CENT)


def apply_effect(
    balance: Decimal,
    amount: Decimal,
    direction: Direction,
    mode: BalanceMode,
) -> Decimal:
    """
    Return the balance after applying or reverting one transaction.

    Income adds and expense subtracts on apply; revert inverts the sign.
    Inputs must already be cent-precise; the result is quantized to cents.
    """
    if not has_cent_precision(amount):
        raise ValueError(f"Amount must be finite with at most two decimals: {amount}")

    signed = amount if direction == Direction.INCOME else -amount
    if mode == BalanceMode.REVERT:
        signed = -signed

    return (balance + signed).quantize(CENT)
