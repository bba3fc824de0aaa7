"""
Calendar arithmetic for installments and recurrences.

Month and year steps clamp the day to the last valid day of the target
month (Jan 31 + 1 month = Feb 28/29). Occurrences are always computed from
the series anchor, never from the previous clamped date, so a series that
starts on the 31st returns to the 31st whenever the month allows it.
"""

import calendar
from datetime import date, timedelta

from balance_keeper.models.ledger import Frequency


def add_months(anchor: date, months: int) -> date:
    """Add calendar months, clamping the day to the target month's length."""
    month_index = anchor.month - 1 + months
    year = anchor.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(anchor.day, last_day))


def add_years(anchor: date, years: int) -> date:
    """Add calendar years (Feb 29 lands on Feb 28 in common years)."""
    return add_months(anchor, 12 * years)


def nth_occurrence(anchor: date, frequency: Frequency, n: int) -> date:
    """The date `n` periods after `anchor` (n = 0 is the anchor itself)."""
    if n < 0:
        raise ValueError("Occurrence index cannot be negative")

    if frequency == Frequency.DAILY:
        return anchor + timedelta(days=n)
    if frequency == Frequency.WEEKLY:
        return anchor + timedelta(weeks=n)
    if frequency == Frequency.MONTHLY:
        return add_months(anchor, n)
    if frequency == Frequency.YEARLY:
        return add_years(anchor, n)

    raise ValueError(f"Unsupported frequency: {frequency}")


def periods_between(anchor: date, current: date, frequency: Frequency) -> int:
    """
    How many whole periods separate `current` from `anchor`.

    Inverse of nth_occurrence for dates on the anchor's schedule.
    """
    if frequency == Frequency.DAILY:
        return (current - anchor).days
    if frequency == Frequency.WEEKLY:
        return (current - anchor).days // 7
    if frequency == Frequency.MONTHLY:
        return (current.year - anchor.year) * 12 + (current.month - anchor.month)
    if frequency == Frequency.YEARLY:
        return current.year - anchor.year

    raise ValueError(f"Unsupported frequency: {frequency}")


def next_occurrence(anchor: date, current: date, frequency: Frequency) -> date:
    """The occurrence after `current` on the schedule anchored at `anchor`."""
    following = nth_occurrence(
        anchor, frequency, periods_between(anchor, current, frequency) + 1
    )
    # Strictly increasing even if `current` was moved off the anchor's schedule
    while following <= current:
        following = nth_occurrence(
            anchor, frequency, periods_between(anchor, following, frequency) + 1
        )
    return following


def occurrences_after(
    anchor: date,
    frequency: Frequency,
    end: date,
) -> list[date]:
    """Every occurrence strictly after `anchor` and on or before `end`."""
    dates = []
    n = 1
    current = nth_occurrence(anchor, frequency, n)
    while current <= end:
        dates.append(current)
        n += 1
        current = nth_occurrence(anchor, frequency, n)
    return dates
