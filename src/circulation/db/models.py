"""SQLAlchemy declarative base and shared column helpers.

Tables are declared next to the component that owns them:
- works, members: catalog/models.py (external collaborators)
- items: items/models.py
- loans, fines: loans/models.py
- reservations: reservations/models.py
"""

from datetime import datetime, timezone
from decimal import Decimal
from uuid import uuid4

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def generate_uuid() -> str:
    """Generate a UUID string for primary keys."""
    return str(uuid4())


def utc_now_iso() -> str:
    """Current UTC timestamp as an ISO string, used for bookkeeping columns."""
    return datetime.now(timezone.utc).isoformat()


def to_cents(amount: Decimal) -> int:
    """Convert a currency amount to integer minor units."""
    return int((amount * 100).to_integral_value())


def from_cents(cents: int) -> Decimal:
    """Convert integer minor units back to a two-place currency amount."""
    return (Decimal(cents) / 100).quantize(Decimal("0.01"))
