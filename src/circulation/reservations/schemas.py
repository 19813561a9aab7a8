"""Pydantic schemas for reservations."""

from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field


class ReservationStatus(str, Enum):
    """Status of a reservation. Everything but PENDING is terminal."""

    PENDING = "pending"
    FULFILLED = "fulfilled"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class ReservationCreate(BaseModel):
    """Schema for placing a reservation on a work."""

    work_id: UUID
    member_id: UUID
    expiry_days: int = Field(..., gt=0)


class ReservationRef(BaseModel):
    """Identifier of an existing reservation."""

    reservation_id: UUID
