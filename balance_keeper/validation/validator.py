"""
Ledger Input Validation

DESIGN DECISION: Schema checks (types, enum values, lengths) belong to the
Pydantic models. Business checks that a caller can legitimately get wrong
live here and raise the typed ledger errors, so collaborators can tell
"your amount is zero" apart from "your payload is malformed".

IMPORTANT: Validation NEVER silently fixes issues. An amount of 10.005 is
rejected, not rounded.
"""

from decimal import Decimal
from typing import Optional

from balance_keeper.ledger.balance import has_cent_precision
from balance_keeper.ledger.errors import (
    InvalidAmountError,
    InvalidInstallmentCountError,
    InvalidPatchError,
    InvalidRecurrenceError,
)
from balance_keeper.models.ledger import (
    TemplateDraft,
    TemplatePatch,
    TransactionDraft,
    TransactionPatch,
)

# Patch fields that may be changed but never set to None
REQUIRED_TRANSACTION_FIELDS = ("account_id", "title", "direction", "status", "occurrence_date", "tags")
REQUIRED_TEMPLATE_FIELDS = ("name", "title", "direction")


def _cleared(changes: dict, required: tuple[str, ...]) -> list[str]:
    return [name for name in required if name in changes and changes[name] is None]


class LedgerValidator:
    """Validates drafts and patches before they reach storage."""

    def validate_amount(self, amount: Optional[Decimal], field: str = "amount") -> Decimal:
        """Amounts must be finite, strictly positive and cent-precise."""
        if amount is None:
            raise InvalidAmountError(f"{field} is required")
        if not amount.is_finite():
            raise InvalidAmountError(f"{field} must be a finite number, got {amount}")
        if amount <= 0:
            raise InvalidAmountError(f"{field} must be greater than zero, got {amount}")
        if not has_cent_precision(amount):
            raise InvalidAmountError(
                f"{field} must have at most two decimal places, got {amount}"
            )
        return amount

    def validate_installment_count(self, total_installments: int) -> int:
        if total_installments < 1:
            raise InvalidInstallmentCountError(
                f"Installment count must be at least 1, got {total_installments}"
            )
        return total_installments

    def validate_draft(self, draft: TransactionDraft) -> None:
        """
        Check a transaction draft.

        Checks:
        - amount is positive, finite, cent-precise
        - installment count/number are in range
        - recurring drafts name a frequency and a sane end date, and are not
          installment plans
        """
        self.validate_amount(draft.amount)
        self.validate_installment_count(draft.total_installments)

        if not 1 <= draft.installment_number <= draft.total_installments:
            raise InvalidInstallmentCountError(
                f"Installment {draft.installment_number} is outside 1..{draft.total_installments}"
            )

        if draft.is_recurring:
            if draft.total_installments > 1:
                raise InvalidRecurrenceError(
                    "An installment plan cannot also be recurring"
                )
            if draft.frequency is None:
                raise InvalidRecurrenceError("Recurring transactions need a frequency")
            if (
                draft.recurrence_end_date is not None
                and draft.recurrence_end_date < draft.occurrence_date
            ):
                raise InvalidRecurrenceError(
                    "Recurrence end date cannot be before the transaction date"
                )

    def validate_patch(self, patch: TransactionPatch) -> None:
        changes = patch.model_dump(exclude_unset=True)
        cleared = _cleared(changes, REQUIRED_TRANSACTION_FIELDS)
        if cleared:
            raise InvalidPatchError(cleared)
        if "amount" in changes:
            self.validate_amount(patch.amount)

    def validate_template_draft(self, draft: TemplateDraft) -> None:
        self.validate_amount(draft.amount)
        if draft.end_date is not None and draft.end_date < draft.start_date:
            raise InvalidRecurrenceError("Template end date cannot be before its start date")

    def validate_template_patch(self, patch: TemplatePatch) -> None:
        changes = patch.model_dump(exclude_unset=True)
        cleared = _cleared(changes, REQUIRED_TEMPLATE_FIELDS)
        if cleared:
            raise InvalidPatchError(cleared)
        if "amount" in changes:
            self.validate_amount(patch.amount)
