"""
Ledger Error Taxonomy

Every failure a caller can cause is raised as one of these. Nothing in the
ledger catches them: an operation either commits completely or raises.
"""

from typing import Optional
from uuid import UUID


class LedgerError(Exception):
    """Base exception for ledger operations."""
    pass


class NotFoundError(LedgerError):
    """Entity is missing or not owned by the caller."""

    def __init__(self, entity: str, entity_id: Optional[UUID] = None):
        self.entity = entity
        self.entity_id = entity_id
        message = f"{entity.capitalize()} not found"
        if entity_id is not None:
            message = f"{message}: {entity_id}"
        super().__init__(message)


class InvalidAmountError(LedgerError):
    """Amount is not a positive, finite value with at most two decimals."""
    pass


class InvalidInstallmentCountError(LedgerError):
    """Installment count below one, or the transaction is already split."""
    pass


class TemplateInactiveOrExpiredError(LedgerError):
    """Template is switched off or has run past its end date."""

    def __init__(self, template_id: UUID, reason: str):
        self.template_id = template_id
        self.reason = reason
        super().__init__(f"Template {template_id} cannot generate: {reason}")


class AccountMismatchError(LedgerError):
    """Account exists for the owner but cannot take new postings (closed)."""
    pass


class InvalidRecurrenceError(LedgerError):
    """Recurrence metadata is incomplete or inconsistent."""
    pass


class InvalidPatchError(LedgerError):
    """A patch tries to clear a field every record must have."""

    def __init__(self, fields: list[str]):
        self.fields = fields
        super().__init__(f"Cannot clear required field(s): {', '.join(fields)}")
