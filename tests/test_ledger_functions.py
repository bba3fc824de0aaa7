"""
Tests for the pure ledger functions: balance arithmetic, status
resolution, calendar steps and installment apportionment.
"""

import pytest
from datetime import date, datetime
from decimal import Decimal
from uuid import uuid4

from balance_keeper.ledger.balance import BalanceMode, apply_effect, has_cent_precision
from balance_keeper.ledger.errors import (
    InvalidAmountError,
    InvalidInstallmentCountError,
    InvalidRecurrenceError,
)
from balance_keeper.ledger.installments import apportion, split_installments
from balance_keeper.ledger.periods import (
    add_months,
    next_occurrence,
    nth_occurrence,
    occurrences_after,
)
from balance_keeper.ledger.status import resolve_status
from balance_keeper.models.ledger import (
    Direction,
    Frequency,
    RecordedStatus,
    Transaction,
    TransactionStatus,
)


class TestBalanceAccumulator:
    """Tests for apply_effect."""

    def test_apply_income_adds(self):
        """Test that applying income increases the balance."""
        result = apply_effect(Decimal("1000.00"), Decimal("250.00"), Direction.INCOME, BalanceMode.APPLY)
        assert result == Decimal("1250.00")

    def test_apply_expense_subtracts(self):
        """Test that applying an expense decreases the balance."""
        result = apply_effect(Decimal("500.00"), Decimal("50.00"), Direction.EXPENSE, BalanceMode.APPLY)
        assert result == Decimal("450.00")

    def test_revert_inverts(self):
        """Test that revert undoes apply exactly."""
        for direction in Direction:
            applied = apply_effect(Decimal("10.10"), Decimal("0.01"), direction, BalanceMode.APPLY)
            assert apply_effect(applied, Decimal("0.01"), direction, BalanceMode.REVERT) == Decimal("10.10")

    def test_balance_may_go_negative(self):
        """Test that overdrafts are allowed."""
        result = apply_effect(Decimal("10.00"), Decimal("25.50"), Direction.EXPENSE, BalanceMode.APPLY)
        assert result == Decimal("-15.50")

    def test_rejects_sub_cent_amount(self):
        """Test that sub-cent amounts are rejected, not rounded."""
        with pytest.raises(ValueError):
            apply_effect(Decimal("0.00"), Decimal("10.005"), Direction.INCOME, BalanceMode.APPLY)

    def test_has_cent_precision(self):
        """Test cent precision detection."""
        assert has_cent_precision(Decimal("10.5"))
        assert has_cent_precision(Decimal("10.50"))
        assert not has_cent_precision(Decimal("10.505"))
        assert not has_cent_precision(Decimal("Infinity"))


class TestStatusResolver:
    """Tests for resolve_status."""

    today = date(2024, 3, 15)

    def test_paid_stays_paid(self):
        """Test that paid wins regardless of date."""
        status = resolve_status(RecordedStatus.PAID, date(2020, 1, 1), self.today)
        assert status == TransactionStatus.PAID

    def test_pending_today_is_pending(self):
        """Test the boundary: dated today is not overdue."""
        status = resolve_status(RecordedStatus.PENDING, self.today, self.today)
        assert status == TransactionStatus.PENDING

    def test_pending_yesterday_is_overdue(self):
        """Test the boundary: dated yesterday is overdue."""
        status = resolve_status(RecordedStatus.PENDING, date(2024, 3, 14), self.today)
        assert status == TransactionStatus.OVERDUE

    def test_pending_future_is_pending(self):
        """Test that future pending transactions stay pending."""
        status = resolve_status(RecordedStatus.PENDING, date(2024, 4, 1), self.today)
        assert status == TransactionStatus.PENDING

    def test_time_of_day_is_ignored(self):
        """Test that datetimes are compared by calendar day."""
        status = resolve_status(
            RecordedStatus.PENDING,
            datetime(2024, 3, 15, 0, 1),
            datetime(2024, 3, 15, 23, 59),
        )
        assert status == TransactionStatus.PENDING


class TestPeriods:
    """Tests for calendar arithmetic."""

    def test_add_months_clamps(self):
        """Test day clamping to the end of shorter months."""
        assert add_months(date(2024, 1, 31), 1) == date(2024, 2, 29)
        assert add_months(date(2023, 1, 31), 1) == date(2023, 2, 28)
        assert add_months(date(2024, 1, 31), 3) == date(2024, 4, 30)

    def test_add_months_across_year(self):
        """Test month arithmetic across a year boundary."""
        assert add_months(date(2024, 11, 15), 3) == date(2025, 2, 15)

    def test_yearly_leap_day(self):
        """Test that Feb 29 lands on Feb 28 in common years."""
        assert nth_occurrence(date(2024, 2, 29), Frequency.YEARLY, 1) == date(2025, 2, 28)
        assert nth_occurrence(date(2024, 2, 29), Frequency.YEARLY, 4) == date(2028, 2, 29)

    def test_daily_and_weekly(self):
        """Test fixed-length steps."""
        assert nth_occurrence(date(2024, 2, 28), Frequency.DAILY, 2) == date(2024, 3, 1)
        assert nth_occurrence(date(2024, 3, 1), Frequency.WEEKLY, 2) == date(2024, 3, 15)

    def test_next_occurrence_does_not_drift(self):
        """Test that a month-end series returns to the 31st."""
        anchor = date(2024, 1, 31)
        dates = []
        current = anchor
        for _ in range(3):
            current = next_occurrence(anchor, current, Frequency.MONTHLY)
            dates.append(current)
        assert dates == [date(2024, 2, 29), date(2024, 3, 31), date(2024, 4, 30)]

    def test_next_occurrence_strictly_increasing(self):
        """Test that every frequency advances."""
        anchor = date(2024, 1, 31)
        for frequency in Frequency:
            current = anchor
            for _ in range(24):
                following = next_occurrence(anchor, current, frequency)
                assert following > current
                current = following

    def test_occurrences_after_is_end_inclusive(self):
        """Test that occurrences exclude the anchor and include the end."""
        dates = occurrences_after(date(2024, 1, 10), Frequency.MONTHLY, date(2024, 4, 10))
        assert dates == [date(2024, 2, 10), date(2024, 3, 10), date(2024, 4, 10)]

    def test_occurrences_after_end_before_first(self):
        """Test an empty series when the end is before the first step."""
        assert occurrences_after(date(2024, 1, 10), Frequency.WEEKLY, date(2024, 1, 16)) == []


class TestInstallmentSplitter:
    """Tests for apportionment and split_installments."""

    def _parent(self, amount: str = "300.00", **overrides) -> Transaction:
        data = {
            "owner_id": uuid4(),
            "account_id": uuid4(),
            "title": "Laptop",
            "amount": Decimal(amount),
            "direction": Direction.EXPENSE,
            "recorded_status": RecordedStatus.PAID,
            "status": TransactionStatus.PAID,
            "occurrence_date": date(2024, 1, 15),
            "tags": ["tech"],
        }
        data.update(overrides)
        return Transaction(**data)

    def test_apportion_even(self):
        """Test an amount that divides evenly."""
        assert apportion(Decimal("300.00"), 3) == (Decimal("100.00"), Decimal("100.00"))

    def test_apportion_remainder_on_first(self):
        """Test that the rounding remainder lands on installment 1."""
        first, share = apportion(Decimal("100.00"), 3)
        assert share == Decimal("33.33")
        assert first == Decimal("33.34")
        assert first + share * 2 == Decimal("100.00")

    def test_apportion_below_a_cent(self):
        """Test that a share below one cent is rejected."""
        with pytest.raises(InvalidAmountError):
            apportion(Decimal("0.02"), 3)

    def test_split_parent_and_children(self):
        """Test the split of a paid 300.00 expense into 3."""
        parent, children = split_installments(self._parent(), 3)

        assert parent.amount == Decimal("100.00")
        assert parent.title == "Laptop (1/3)"
        assert parent.occurrence_date == date(2024, 1, 15)
        assert parent.installment_number == 1
        assert parent.total_installments == 3
        assert parent.is_paid

        assert [c.occurrence_date for c in children] == [date(2024, 2, 15), date(2024, 3, 15)]
        assert [c.title for c in children] == ["Laptop (2/3)", "Laptop (3/3)"]
        assert all(c.amount == Decimal("100.00") for c in children)
        assert all(c.status == RecordedStatus.PENDING for c in children)
        assert all(c.parent_id == parent.id for c in children)
        assert all(c.tags == ["tech"] for c in children)

    def test_split_children_clamp_month_end(self):
        """Test child dates clamp to the end of short months."""
        _, children = split_installments(self._parent(occurrence_date=date(2024, 1, 31)), 3)
        assert [c.occurrence_date for c in children] == [date(2024, 2, 29), date(2024, 3, 31)]

    def test_split_sums_to_original(self):
        """Test that installments always sum to the original amount."""
        for amount, n in [("100.00", 3), ("0.05", 4), ("999.99", 7), ("10.00", 12)]:
            parent, children = split_installments(self._parent(amount), n)
            assert parent.amount + sum(c.amount for c in children) == Decimal(amount)

    def test_split_one_is_noop(self):
        """Test that one installment leaves the transaction alone."""
        original = self._parent()
        parent, children = split_installments(original, 1)
        assert parent == original
        assert children == []

    def test_split_zero_rejected(self):
        """Test that fewer than one installment is rejected."""
        with pytest.raises(InvalidInstallmentCountError):
            split_installments(self._parent(), 0)

    def test_resplit_rejected(self):
        """Test that an installment cannot be split again."""
        parent, _ = split_installments(self._parent(), 3)
        with pytest.raises(InvalidInstallmentCountError):
            split_installments(parent, 2)

    @pytest.mark.parametrize("overrides", [
        {"is_recurring": True, "frequency": Frequency.MONTHLY},
        {"recurrence_origin_id": uuid4()},
        {"source_template_id": uuid4()},
    ])
    def test_recurring_rejected(self, overrides):
        """Test that members of a recurring series cannot be split."""
        with pytest.raises(InvalidRecurrenceError):
            split_installments(self._parent(**overrides), 3)
