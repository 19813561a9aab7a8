"""Exceptions raised by the lending engine.

Every business rule failure is a ``LendingError`` with a stable ``code``
so callers (the CLI, a desk application) can map it without string matching.
"""

from decimal import Decimal
from typing import Optional


class LendingError(Exception):
    """Base class for all lending engine errors."""

    code = "lending_error"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.__class__.__doc__ or self.code)
        self.message = message or self.__class__.__doc__ or self.code


class InvalidInputError(LendingError, ValueError):
    """Request rejected before any write: bad day count or identifier."""

    code = "invalid_input"


class ItemNotFoundError(LendingError):
    """No item exists with the given identifier."""

    code = "item_not_found"

    def __init__(self, item_id: str):
        super().__init__(f"Item not found: {item_id}")
        self.item_id = item_id


class TransitionConflict(LendingError):
    """The item was not in an expected state when the transition ran."""

    code = "conflict"

    def __init__(self, item_id: str, current_status: Optional[str]):
        super().__init__(
            f"Item {item_id} is '{current_status}', transition rejected"
        )
        self.item_id = item_id
        self.current_status = current_status


class ItemUnavailableError(LendingError):
    """Item is not in a state that allows it to be claimed."""

    code = "item_unavailable"

    def __init__(self, item_id: str, current_status: Optional[str] = None):
        detail = f" (status: {current_status})" if current_status else ""
        super().__init__(f"Item {item_id} is not available{detail}")
        self.item_id = item_id
        self.current_status = current_status


class ItemOnLoanError(LendingError):
    """The copy still has an open loan; it has to come back through a return."""

    code = "item_on_loan"

    def __init__(self, item_id: str, loan_id: str):
        super().__init__(
            f"Item {item_id} is still on loan {loan_id}; return it instead of restoring it"
        )
        self.item_id = item_id
        self.loan_id = loan_id


class MemberInactiveError(LendingError):
    """Membership is expired, suspended or unknown."""

    code = "member_inactive"

    def __init__(self, member_id: str, status: Optional[str] = None):
        super().__init__(f"Member {member_id} is not active ({status or 'unknown'})")
        self.member_id = member_id
        self.status = status


class OutstandingFinesError(LendingError):
    """Unpaid fines block new loans."""

    code = "outstanding_fines"

    def __init__(self, member_id: str, amount: Decimal):
        super().__init__(f"Member {member_id} owes {amount} in pending fines")
        self.member_id = member_id
        self.amount = amount


class NoActiveLoanError(LendingError):
    """There is no open loan for the item or loan given."""

    code = "no_active_loan"


class RenewalLimitReachedError(LendingError):
    """The loan has already been renewed the maximum number of times."""

    code = "renewal_limit_reached"

    def __init__(self, loan_id: str, max_renewals: int):
        super().__init__(f"Loan {loan_id} reached the limit of {max_renewals} renewals")
        self.loan_id = loan_id
        self.max_renewals = max_renewals


class ReservationNotFoundError(LendingError):
    """No reservation exists with the given identifier."""

    code = "reservation_not_found"


class ReservationNotPendingError(LendingError):
    """Only pending reservations can change status."""

    code = "reservation_not_pending"

    def __init__(self, reservation_id: str, status: str):
        super().__init__(f"Reservation {reservation_id} is already {status}")
        self.reservation_id = reservation_id
        self.status = status


class NoItemAvailableError(LendingError):
    """No copy of the reserved work could be set aside."""

    code = "no_item_available"

    def __init__(self, work_id: str):
        super().__init__(f"No available copy of work {work_id}")
        self.work_id = work_id


class FineNotFoundError(LendingError):
    """No fine exists with the given identifier."""

    code = "fine_not_found"


class FineNotPendingError(LendingError):
    """Only pending fines can be paid or waived."""

    code = "fine_not_pending"
