"""
Installment Splitter

Turns one purchase into N monthly installments. The parent transaction
becomes installment 1; installments 2..N are returned as drafts for the
lifecycle controller to create.

Apportionment: every child gets the amount divided by N, truncated to the
cent. The parent keeps whatever is left, so the installments always sum to
the original amount and any rounding remainder sits on installment 1.
"""

from decimal import ROUND_DOWN, Decimal

from balance_keeper.ledger.balance import CENT
from balance_keeper.ledger.errors import (
    InvalidAmountError,
    InvalidInstallmentCountError,
    InvalidRecurrenceError,
)
from balance_keeper.ledger.periods import add_months
from balance_keeper.models.ledger import (
    RecordedStatus,
    Transaction,
    TransactionDraft,
)


def apportion(amount: Decimal, total_installments: int) -> tuple[Decimal, Decimal]:
    """Return (first installment, each later installment)."""
    share = (amount / total_installments).quantize(CENT, rounding=ROUND_DOWN)
    if share < CENT:
        raise InvalidAmountError(
            f"{amount} cannot be split into {total_installments} installments of at least {CENT}"
        )
    first = amount - share * (total_installments - 1)
    return first, share


def installment_title(title: str, number: int, total: int) -> str:
    return f"{title} ({number}/{total})"


def split_installments(
    parent: Transaction,
    total_installments: int,
) -> tuple[Transaction, list[TransactionDraft]]:
    """
    Split `parent` into `total_installments` monthly installments.

    Returns the parent rewritten as installment 1 and the drafts for
    installments 2..N. Child k is dated k-1 calendar months after the
    parent and starts out pending.
    """
    if total_installments < 1:
        raise InvalidInstallmentCountError(
            f"Installment count must be at least 1, got {total_installments}"
        )
    if parent.total_installments > 1 or parent.parent_id is not None:
        raise InvalidInstallmentCountError(
            f"Transaction {parent.id} is already part of an installment plan"
        )
    if (
        parent.is_recurring
        or parent.recurrence_origin_id is not None
        or parent.source_template_id is not None
    ):
        raise InvalidRecurrenceError(
            f"Transaction {parent.id} belongs to a recurring series and cannot be split"
        )
    if total_installments == 1:
        return parent, []

    first, share = apportion(parent.amount, total_installments)

    updated_parent = parent.model_copy(update={
        "title": installment_title(parent.title, 1, total_installments),
        "amount": first,
        "is_installment": True,
        "installment_number": 1,
        "total_installments": total_installments,
    })

    children = [
        TransactionDraft(
            owner_id=parent.owner_id,
            account_id=parent.account_id,
            category_id=parent.category_id,
            title=installment_title(parent.title, number, total_installments),
            description=parent.description,
            amount=share,
            direction=parent.direction,
            status=RecordedStatus.PENDING,
            occurrence_date=add_months(parent.occurrence_date, number - 1),
            is_installment=True,
            installment_number=number,
            total_installments=total_installments,
            parent_id=parent.id,
            tags=list(parent.tags),
            notes=parent.notes,
        )
        for number in range(2, total_installments + 1)
    ]

    return updated_parent, children
