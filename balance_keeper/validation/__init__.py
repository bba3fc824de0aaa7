"""Validation package."""

from balance_keeper.validation.validator import LedgerValidator

__all__ = ["LedgerValidator"]
