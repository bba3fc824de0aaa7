"""
Status Resolver

Derives the effective status of a transaction from its recorded status and
its date. Overdue is never stored as a user decision; it is what a pending
transaction becomes once its day has passed.
"""

from datetime import date, datetime
from typing import Union

from balance_keeper.models.ledger import RecordedStatus, TransactionStatus


def _calendar_day(value: Union[date, datetime]) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value


def resolve_status(
    recorded_status: RecordedStatus,
    occurrence_date: Union[date, datetime],
    today: Union[date, datetime],
) -> TransactionStatus:
    """
    Paid stays paid. Otherwise a transaction dated before today is overdue
    and one dated today or later is pending.
    """
    if recorded_status == RecordedStatus.PAID:
        return TransactionStatus.PAID

    if _calendar_day(occurrence_date) < _calendar_day(today):
        return TransactionStatus.OVERDUE

    return TransactionStatus.PENDING
