"""
Balance Keeper - Ledger Core

The bookkeeping engine of a personal-finance application: accounts,
transactions, installment plans, recurring series and overdue tracking.

DESIGN PRINCIPLES:
1. A balance always equals its opening balance plus its paid transactions
2. Fail early, fail visibly (typed errors, nothing half-written)
3. No silent corrections (10.005 is rejected, not rounded)
4. Every change must be auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Balance Keeper Team"
