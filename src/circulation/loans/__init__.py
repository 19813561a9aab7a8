"""Loan ledger module.

Provides functionality for:
- Checkout, return and renewal of items
- Overdue fine assessment and settlement
"""

from .fines import calculate_fine, days_overdue
from .ledger import LoanLedger
from .models import Fine, Loan
from .schemas import (
    CheckoutRequest,
    FineStatus,
    RenewRequest,
    ReturnSummary,
)

__all__ = [
    "LoanLedger",
    "Loan",
    "Fine",
    "FineStatus",
    "CheckoutRequest",
    "RenewRequest",
    "ReturnSummary",
    "calculate_fine",
    "days_overdue",
]
