"""Late-return fines.

A fine is ``days_overdue * unit_rate`` where days are counted at day
granularity and partial days round down. Nothing in this module touches the
database; the ledger persists the value on return and the read model uses
``projected_fine`` for display only.
"""
from datetime import date, datetime, timedelta
from typing import Optional, Union

from library_app.config import settings
from library_app.models import Loan, LoanStatus

DateLike = Union[date, datetime]

ONE_DAY = timedelta(days=1)


def _as_datetime(value: DateLike) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime(value.year, value.month, value.day)


def days_overdue(due_date: DateLike, on_date: DateLike) -> int:
    """Whole days between ``due_date`` and ``on_date``, never negative."""
    due = _as_datetime(due_date)
    end = _as_datetime(on_date)
    if due.tzinfo is not None and end.tzinfo is None:
        end = end.replace(tzinfo=due.tzinfo)
    elif end.tzinfo is not None and due.tzinfo is None:
        due = due.replace(tzinfo=end.tzinfo)
    # Floor division of timedeltas rounds partial days down
    return max(0, (end - due) // ONE_DAY)


def compute_fine(due_date: DateLike, return_date: DateLike, unit_rate: Optional[int] = None) -> int:
    """Fine owed for returning on ``return_date`` a book due on ``due_date``."""
    rate = settings.fine_per_day if unit_rate is None else unit_rate
    if rate < 0:
        raise ValueError("unit_rate must be non-negative")
    return days_overdue(due_date, return_date) * rate


def is_overdue(loan: Loan, today: Optional[date] = None) -> bool:
    today = today or date.today()
    return loan.status is LoanStatus.APPROVED and loan.due_date < today


def projected_fine(loan: Loan, today: Optional[date] = None, unit_rate: Optional[int] = None) -> int:
    """Fine to display for ``loan``.

    Approved loans project what would be owed if returned ``today``; every
    other status shows the stored value.
    """
    if loan.status is LoanStatus.APPROVED:
        return compute_fine(loan.due_date, today or date.today(), unit_rate)
    return loan.fine
