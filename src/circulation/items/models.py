"""SQLAlchemy model for physical item copies.

Tables:
- items: One row per physical copy of a work
"""

from datetime import date
from decimal import Decimal
from typing import Optional

from sqlalchemy import ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..db.models import Base, from_cents, generate_uuid, utc_now_iso
from .schemas import ItemCondition, ItemStatus


class Item(Base):
    """Item model - a physical copy whose status the registry controls."""

    __tablename__ = "items"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)

    work_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("works.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    barcode: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    location: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default=ItemStatus.AVAILABLE.value, nullable=False, index=True
    )
    acquisition_date: Mapped[str] = mapped_column(String(10), nullable=False)  # ISO date
    price_cents: Mapped[Optional[int]] = mapped_column(Integer)
    condition: Mapped[str] = mapped_column(
        String(10), default=ItemCondition.NEW.value, nullable=False
    )

    # Timestamps
    created_at: Mapped[str] = mapped_column(String(26), default=utc_now_iso)
    updated_at: Mapped[str] = mapped_column(
        String(26), default=utc_now_iso, onupdate=utc_now_iso
    )

    # Relationships
    work: Mapped["Work"] = relationship("Work", back_populates="items")  # noqa: F821

    def __repr__(self) -> str:
        return f"<Item(id={self.id}, barcode='{self.barcode}', status={self.status})>"

    @property
    def is_available(self) -> bool:
        return self.status == ItemStatus.AVAILABLE.value

    @property
    def acquired_on(self) -> date:
        return date.fromisoformat(self.acquisition_date)

    @property
    def price(self) -> Optional[Decimal]:
        if self.price_cents is None:
            return None
        return from_cents(self.price_cents)
