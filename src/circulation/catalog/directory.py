"""Read-only lookups against the catalog and member store.

Every lookup takes the caller's session so it reads inside the same unit
of work as the writes that depend on it.
"""

from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..items.models import Item
from .models import Member


class CatalogDirectory:
    """Data-access contract the engine needs from the catalog store."""

    def membership_status(self, session: Session, member_id: str) -> Optional[str]:
        """Membership status for a member, or None if the member is unknown."""
        return session.execute(
            select(Member.membership_status).where(Member.id == member_id)
        ).scalar_one_or_none()

    def work_for_item(self, session: Session, item_id: str) -> Optional[str]:
        """The owning work of an item."""
        return session.execute(
            select(Item.work_id).where(Item.id == item_id)
        ).scalar_one_or_none()

    def sibling_items(self, session: Session, work_id: str) -> list[str]:
        """All item ids of a work in ascending identifier order."""
        stmt = select(Item.id).where(Item.work_id == work_id).order_by(Item.id)
        return list(session.execute(stmt).scalars().all())
