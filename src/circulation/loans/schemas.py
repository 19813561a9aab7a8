"""Pydantic schemas for loans and fines."""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field


class FineStatus(str, Enum):
    """Status of a fine."""

    PENDING = "pending"
    PAID = "paid"
    WAIVED = "waived"


class CheckoutRequest(BaseModel):
    """Schema for lending an item to a member."""

    item_id: UUID
    member_id: UUID
    loan_days: int = Field(..., gt=0)


class ReturnRequest(BaseModel):
    """Schema for returning an item."""

    item_id: UUID


class RenewRequest(BaseModel):
    """Schema for extending an open loan."""

    loan_id: UUID
    additional_days: int = Field(..., gt=0)


class FinePayment(BaseModel):
    """Schema for settling a fine."""

    fine_id: UUID
    amount: Optional[Decimal] = Field(None, gt=0, decimal_places=2)


class ReturnSummary(BaseModel):
    """Outcome of a return, as shown at the desk."""

    loan_id: str
    item_id: str
    member_id: str
    returned_at: datetime
    due_date: date
    days_overdue: int
    fine_applied: bool
    fine_amount: Decimal = Decimal("0.00")
    fine_id: Optional[str] = None
    reservation_waiting: bool = False
