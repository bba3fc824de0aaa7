"""
Core Data Models for Balance Keeper

These models define the schemas for accounts, transactions and recurring
templates. They are designed to:
1. Enforce structural invariants at construction time
2. Keep money exact (Decimal, two fractional digits)
3. Be serializable for storage and logging

DESIGN DECISION: A transaction carries two statuses.
`recorded_status` is what a user action last set (paid or pending) and is
the only input to balance logic. `status` is the effective status
(paid, pending or overdue) derived from the recorded status and the date,
written alongside it so storage queries can filter on it.

Business-rule violations a caller can trigger (zero amounts, bad
installment counts) are NOT enforced on the draft/patch models. They are
checked by LedgerValidator so they surface as typed ledger errors rather
than generic schema errors.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)


def utcnow() -> datetime:
    """Timezone-aware UTC timestamp for created/updated fields."""
    return datetime.now(timezone.utc)


CENTS = Decimal("0.01")


def to_cents(value: Decimal) -> Decimal:
    """
    Store money with exactly two fractional digits.

    Only called after the decimal_places check, so this adds trailing
    zeros (50 or 50.000 becomes 50.00) and never rounds.
    """
    return value.quantize(CENTS)


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class AccountType(str, Enum):
    """Supported account types."""
    CHECKING = "checking"
    SAVINGS = "savings"
    CREDIT_CARD = "credit_card"
    CASH = "cash"
    INVESTMENT = "investment"


class Direction(str, Enum):
    """Whether a transaction brings money in or takes it out."""
    INCOME = "income"
    EXPENSE = "expense"


class RecordedStatus(str, Enum):
    """
    Status as last set by a user action.

    CRITICAL: overdue is never recorded. It is always derived.
    """
    PAID = "paid"
    PENDING = "pending"


class TransactionStatus(str, Enum):
    """Effective status: what should display now."""
    PAID = "paid"
    PENDING = "pending"
    OVERDUE = "overdue"


class Frequency(str, Enum):
    """Recurrence frequencies."""
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


# =============================================================================
# ACCOUNTS
# =============================================================================

class Account(BaseModel):
    """
    A money container owned by one user.

    `current_balance` is maintained by the ledger and must equal
    `opening_balance` plus the signed amounts of its paid transactions.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    owner_id: UUID
    name: str = Field(
        ...,
        min_length=1,
        max_length=200,
    )
    account_type: AccountType = AccountType.CHECKING
    opening_balance: Decimal = Field(
        default=Decimal("0.00"),
        decimal_places=2,
    )
    current_balance: Decimal = Field(
        default=Decimal("0.00"),
        decimal_places=2,
    )
    active: bool = True
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("opening_balance", "current_balance")
    @classmethod
    def quantize_balances(cls, v: Decimal) -> Decimal:
        return to_cents(v)


# =============================================================================
# TRANSACTIONS
# =============================================================================

class TransactionDraft(BaseModel):
    """
    Input for creating a transaction.

    Also used internally for transactions the ledger creates on a user's
    behalf (installment children, recurring occurrences), which is why the
    parent/template reference fields exist here.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    owner_id: UUID
    account_id: UUID
    category_id: Optional[UUID] = None
    title: str = Field(
        ...,
        min_length=1,
        max_length=200,
    )
    description: Optional[str] = Field(default=None, max_length=1000)
    # Range and scale are checked by LedgerValidator
    amount: Decimal = Field(..., allow_inf_nan=True)
    direction: Direction
    status: RecordedStatus = RecordedStatus.PAID
    occurrence_date: date
    due_date: Optional[date] = None

    # Installments
    is_installment: bool = False
    installment_number: int = 1
    total_installments: int = 1
    parent_id: Optional[UUID] = None

    # Recurrence
    is_recurring: bool = False
    frequency: Optional[Frequency] = None
    recurrence_end_date: Optional[date] = None
    recurrence_origin_id: Optional[UUID] = None
    source_template_id: Optional[UUID] = None

    # Metadata
    tags: list[str] = Field(default_factory=list)
    notes: Optional[str] = Field(default=None, max_length=1000)
    attachment_url: Optional[str] = None

    @property
    def wants_inline_recurrence(self) -> bool:
        """A user-created recurring transaction (not a generated occurrence)."""
        return (
            self.is_recurring
            and self.recurrence_origin_id is None
            and self.source_template_id is None
        )


class Transaction(BaseModel):
    """A persisted transaction."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    owner_id: UUID
    account_id: UUID
    category_id: Optional[UUID] = None
    title: str = Field(
        ...,
        min_length=1,
        max_length=200,
    )
    description: Optional[str] = Field(default=None, max_length=1000)
    amount: Decimal = Field(
        ...,
        gt=0,
        decimal_places=2,
    )
    direction: Direction
    recorded_status: RecordedStatus
    status: TransactionStatus
    occurrence_date: date
    due_date: Optional[date] = None

    is_installment: bool = False
    installment_number: int = Field(default=1, ge=1)
    total_installments: int = Field(default=1, ge=1)
    parent_id: Optional[UUID] = None

    is_recurring: bool = False
    frequency: Optional[Frequency] = None
    recurrence_end_date: Optional[date] = None
    recurrence_origin_id: Optional[UUID] = None
    source_template_id: Optional[UUID] = None

    tags: list[str] = Field(default_factory=list)
    notes: Optional[str] = Field(default=None, max_length=1000)
    attachment_url: Optional[str] = None

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("amount")
    @classmethod
    def quantize_amount(cls, v: Decimal) -> Decimal:
        return to_cents(v)

    @model_validator(mode='after')
    def validate_metadata(self) -> 'Transaction':
        """Validate installment, recurrence and status relationships."""
        if self.installment_number > self.total_installments:
            raise ValueError("Installment number cannot exceed total installments")

        if self.is_recurring and self.frequency is None:
            raise ValueError("Recurring transactions need a frequency")

        if (self.status == TransactionStatus.PAID) != (
            self.recorded_status == RecordedStatus.PAID
        ):
            raise ValueError("Effective status and recorded status disagree on paid")

        return self

    @property
    def is_paid(self) -> bool:
        return self.recorded_status == RecordedStatus.PAID

    @property
    def signed_amount(self) -> Decimal:
        """Amount as it affects the account balance."""
        return self.amount if self.direction == Direction.INCOME else -self.amount


class TransactionPatch(BaseModel):
    """
    Partial update for a transaction.

    Only fields explicitly set are applied, so `category_id=None` clears the
    category while omitting it leaves the category alone.
    Installment and recurrence metadata cannot be patched.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    account_id: Optional[UUID] = None
    category_id: Optional[UUID] = None
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=1000)
    amount: Optional[Decimal] = Field(default=None, allow_inf_nan=True)
    direction: Optional[Direction] = None
    status: Optional[RecordedStatus] = None
    occurrence_date: Optional[date] = None
    due_date: Optional[date] = None
    tags: Optional[list[str]] = None
    notes: Optional[str] = Field(default=None, max_length=1000)
    attachment_url: Optional[str] = None

    def changes(self) -> dict:
        """Explicitly set fields, keyed by Transaction field name."""
        changes = self.model_dump(exclude_unset=True)
        if "status" in changes:
            changes["recorded_status"] = changes.pop("status")
        return changes


# =============================================================================
# RECURRING TEMPLATES
# =============================================================================

class TemplateDraft(BaseModel):
    """Input for creating a recurring template."""
    model_config = ConfigDict(str_strip_whitespace=True)

    owner_id: UUID
    name: str = Field(..., min_length=1, max_length=200)
    account_id: UUID
    category_id: Optional[UUID] = None
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=1000)
    amount: Decimal = Field(..., allow_inf_nan=True)
    direction: Direction
    frequency: Frequency
    start_date: date
    end_date: Optional[date] = None


class RecurringTemplate(BaseModel):
    """
    A recipe for generating one transaction per period.

    `next_occurrence` only moves forward. Once it passes `end_date` the
    template is deactivated.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    owner_id: UUID
    name: str = Field(..., min_length=1, max_length=200)
    account_id: UUID
    category_id: Optional[UUID] = None
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=1000)
    amount: Decimal = Field(..., gt=0, decimal_places=2)
    direction: Direction
    frequency: Frequency
    start_date: date
    end_date: Optional[date] = None
    next_occurrence: date
    active: bool = True
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("amount")
    @classmethod
    def quantize_amount(cls, v: Decimal) -> Decimal:
        return to_cents(v)

    @model_validator(mode='after')
    def validate_dates(self) -> 'RecurringTemplate':
        """Validate date relationships."""
        if self.end_date and self.end_date < self.start_date:
            raise ValueError("End date cannot be before start date")

        if self.next_occurrence < self.start_date:
            raise ValueError("Next occurrence cannot be before start date")

        return self

    @property
    def is_exhausted(self) -> bool:
        return self.end_date is not None and self.next_occurrence > self.end_date


class TemplatePatch(BaseModel):
    """Editable template fields. Schedule anchors are not editable."""
    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    category_id: Optional[UUID] = None
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=1000)
    amount: Optional[Decimal] = Field(default=None, allow_inf_nan=True)
    direction: Optional[Direction] = None
    end_date: Optional[date] = None


# =============================================================================
# QUERY MODELS
# =============================================================================

class TransactionFilters(BaseModel):
    """Filters for listing transactions. All are optional and combined with AND."""

    date_from: Optional[date] = None
    date_to: Optional[date] = None
    account_id: Optional[UUID] = None
    category_id: Optional[UUID] = None
    direction: Optional[Direction] = None
    status: Optional[TransactionStatus] = None
    search: Optional[str] = Field(
        default=None,
        description="Case-insensitive match on title or description"
    )
    limit: int = Field(default=500, ge=1, le=10000)
    offset: int = Field(default=0, ge=0)


class TransactionStats(BaseModel):
    """Totals over paid transactions."""

    income: Decimal
    expenses: Decimal
    net: Decimal
    transaction_count: int = Field(ge=0)


class BalanceCheck(BaseModel):
    """Result of checking an account's stored balance against its transactions."""

    account_id: UUID
    stored_balance: Decimal
    expected_balance: Decimal

    @property
    def is_consistent(self) -> bool:
        return self.stored_balance == self.expected_balance
