"""Reservation module.

Provides functionality for:
- Placing and cancelling reservations on works
- Fulfilling a reservation by setting a copy aside
- Expiring stale requests
"""

from .coordinator import ReservationCoordinator
from .models import Reservation
from .schemas import ReservationCreate, ReservationStatus

__all__ = [
    "ReservationCoordinator",
    "Reservation",
    "ReservationCreate",
    "ReservationStatus",
]
