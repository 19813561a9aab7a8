"""SQLAlchemy models for loans and fines.

Tables:
- loans: One row per borrowing episode, never deleted by the engine
- fines: Penalties for overdue loans, at most one per loan
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import CheckConstraint, ForeignKey, Index, Integer, String, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..db.models import Base, from_cents, generate_uuid, utc_now_iso
from .schemas import FineStatus


class Loan(Base):
    """Loan model - one item lent to one member."""

    __tablename__ = "loans"
    __table_args__ = (
        # At most one open loan per item
        Index(
            "uq_loans_open_item",
            "item_id",
            unique=True,
            sqlite_where=text("return_date IS NULL"),
            postgresql_where=text("return_date IS NULL"),
        ),
        CheckConstraint("renewal_count >= 0", name="ck_loans_renewal_count"),
        CheckConstraint("due_date > substr(loan_date, 1, 10)", name="ck_loans_due_after_loan"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)

    item_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("items.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    member_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("members.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # Dates
    loan_date: Mapped[str] = mapped_column(String(32), nullable=False)  # ISO datetime
    due_date: Mapped[str] = mapped_column(String(10), nullable=False, index=True)  # ISO date
    return_date: Mapped[Optional[str]] = mapped_column(String(32))  # ISO datetime

    renewal_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Timestamps
    created_at: Mapped[str] = mapped_column(String(32), default=utc_now_iso)
    updated_at: Mapped[str] = mapped_column(
        String(32), default=utc_now_iso, onupdate=utc_now_iso
    )

    # Relationships
    fine: Mapped[Optional["Fine"]] = relationship("Fine", back_populates="loan", uselist=False)

    def __repr__(self) -> str:
        return f"<Loan(id={self.id}, item_id={self.item_id}, due={self.due_date})>"

    @property
    def is_open(self) -> bool:
        return self.return_date is None

    @property
    def due(self) -> date:
        return date.fromisoformat(self.due_date)

    @property
    def loaned_at(self) -> datetime:
        return datetime.fromisoformat(self.loan_date)

    @property
    def returned_at(self) -> Optional[datetime]:
        if self.return_date is None:
            return None
        return datetime.fromisoformat(self.return_date)

    def is_overdue(self, today: date) -> bool:
        """Check if the loan is open and past its due date."""
        return self.is_open and self.due < today


class Fine(Base):
    """Fine model - penalty assessed against an overdue loan."""

    __tablename__ = "fines"
    __table_args__ = (
        CheckConstraint("amount_cents >= 0", name="ck_fines_amount"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)

    loan_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("loans.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    member_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("members.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    fine_date: Mapped[str] = mapped_column(String(10), nullable=False)  # ISO date
    payment_date: Mapped[Optional[str]] = mapped_column(String(10))
    payment_amount_cents: Mapped[Optional[int]] = mapped_column(Integer)
    status: Mapped[str] = mapped_column(
        String(10), default=FineStatus.PENDING.value, nullable=False, index=True
    )

    # Timestamps
    created_at: Mapped[str] = mapped_column(String(32), default=utc_now_iso)
    updated_at: Mapped[str] = mapped_column(
        String(32), default=utc_now_iso, onupdate=utc_now_iso
    )

    # Relationships
    loan: Mapped["Loan"] = relationship("Loan", back_populates="fine")

    def __repr__(self) -> str:
        return f"<Fine(id={self.id}, loan_id={self.loan_id}, amount={self.amount}, status={self.status})>"

    @property
    def amount(self) -> Decimal:
        return from_cents(self.amount_cents)

    @property
    def payment_amount(self) -> Optional[Decimal]:
        if self.payment_amount_cents is None:
            return None
        return from_cents(self.payment_amount_cents)

    @property
    def is_pending(self) -> bool:
        return self.status == FineStatus.PENDING.value
