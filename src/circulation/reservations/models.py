"""SQLAlchemy model for reservations.

Tables:
- reservations: A member's standing request for any copy of a work
"""

from datetime import date
from typing import Optional

from sqlalchemy import ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

from ..db.models import Base, generate_uuid, utc_now_iso
from .schemas import ReservationStatus


class Reservation(Base):
    """Reservation model - a hold request, and the copy set aside for it."""

    __tablename__ = "reservations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)

    work_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("works.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    member_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("members.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    reservation_date: Mapped[str] = mapped_column(String(32), nullable=False)  # ISO datetime
    expiry_date: Mapped[str] = mapped_column(String(10), nullable=False)  # ISO date
    status: Mapped[str] = mapped_column(
        String(20), default=ReservationStatus.PENDING.value, nullable=False, index=True
    )

    # Copy set aside on fulfillment, the last pickup day, and when the member
    # picked it up or the copy went back on the shelf uncollected
    item_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("items.id", ondelete="SET NULL"), index=True
    )
    hold_until: Mapped[Optional[str]] = mapped_column(String(10))  # ISO date
    collected_at: Mapped[Optional[str]] = mapped_column(String(32))
    released_at: Mapped[Optional[str]] = mapped_column(String(32))

    # Timestamps
    created_at: Mapped[str] = mapped_column(String(32), default=utc_now_iso)
    updated_at: Mapped[str] = mapped_column(
        String(32), default=utc_now_iso, onupdate=utc_now_iso
    )

    def __repr__(self) -> str:
        return f"<Reservation(id={self.id}, work_id={self.work_id}, status={self.status})>"

    @property
    def is_pending(self) -> bool:
        return self.status == ReservationStatus.PENDING.value

    @property
    def expires_on(self) -> date:
        return date.fromisoformat(self.expiry_date)
