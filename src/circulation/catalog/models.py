"""SQLAlchemy models for the external catalog and member store.

Only the columns the lending engine reads are declared here; full catalog
metadata (authors, publishers, categories) lives with the catalog service.

Tables:
- works: Catalog-level book entries
- members: Library members and their membership status
"""

from typing import Optional

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..db.models import Base, generate_uuid
from .schemas import MembershipStatus


class Work(Base):
    """Work model - the catalog entry every physical item is a copy of."""

    __tablename__ = "works"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    title: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    isbn: Mapped[Optional[str]] = mapped_column(String(20), unique=True)

    # Relationships
    items: Mapped[list["Item"]] = relationship(  # noqa: F821
        "Item", back_populates="work", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<Work(id={self.id}, title='{self.title}')>"


class Member(Base):
    """Member model - borrowers and their eligibility."""

    __tablename__ = "members"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    first_name: Mapped[str] = mapped_column(String(50), nullable=False)
    last_name: Mapped[str] = mapped_column(String(50), nullable=False)
    email: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    # Set by the member store when the member joins
    membership_date: Mapped[Optional[str]] = mapped_column(String(10))
    membership_status: Mapped[str] = mapped_column(
        String(20), default=MembershipStatus.ACTIVE.value, nullable=False
    )

    def __repr__(self) -> str:
        return f"<Member(id={self.id}, name='{self.full_name}', status={self.membership_status})>"

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    @property
    def is_active(self) -> bool:
        return self.membership_status == MembershipStatus.ACTIVE.value
