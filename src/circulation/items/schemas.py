"""Pydantic schemas for physical items."""

from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field


class ItemStatus(str, Enum):
    """Lifecycle status of a physical copy."""

    AVAILABLE = "available"
    LOANED = "loaned"
    RESERVED = "reserved"
    LOST = "lost"
    UNDER_MAINTENANCE = "under_maintenance"


class ItemCondition(str, Enum):
    """Physical condition grade of a copy."""

    NEW = "new"
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"


class ItemCreate(BaseModel):
    """Schema for acquiring a new copy of a work."""

    work_id: UUID
    barcode: str = Field(..., min_length=1, max_length=50)
    location: str = Field(..., min_length=1, max_length=50)
    acquisition_date: Optional[date] = None
    price: Optional[Decimal] = Field(None, ge=0, decimal_places=2)
    condition: ItemCondition = ItemCondition.NEW
