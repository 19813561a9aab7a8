"""Fine calculator.

Pure functions: no database access, no clock. The ledger and the sweeper
both price fines through here so the two paths always agree.
"""

from datetime import date
from decimal import ROUND_HALF_UP, Decimal

from ..errors import InvalidInputError

CENT = Decimal("0.01")


def days_overdue(due_date: date, today: date) -> int:
    """Whole days past the due date, 0 when returned on or before it."""
    return max(0, (today - due_date).days)


def calculate_fine(days: int, daily_rate: Decimal) -> Decimal:
    """Fine for ``days`` overdue at ``daily_rate`` per day.

    Rounded only to the currency's minor unit.
    """
    if days < 0:
        raise InvalidInputError("days overdue cannot be negative")
    if daily_rate < 0:
        raise InvalidInputError("daily fine rate cannot be negative")
    return (Decimal(days) * daily_rate).quantize(CENT, rounding=ROUND_HALF_UP)
