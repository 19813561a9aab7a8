"""Item registry: the only writer of ``items.status``.

Status changes are compare-and-set updates: the row is updated only if its
current status is one the caller expected, so two desks racing for the same
copy cannot both win.
"""

import logging
from typing import Callable, Iterable, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..audit import AuditAction, AuditBuffer, AuditSink, LoggingAuditSink
from ..clock import Clock, SystemClock
from ..db.models import generate_uuid, to_cents, utc_now_iso
from ..db.sqlite import Database, get_db
from ..errors import (
    InvalidInputError,
    ItemNotFoundError,
    ItemOnLoanError,
    TransitionConflict,
)
from ..validation import parse_request
from .models import Item
from .schemas import ItemCreate, ItemStatus

logger = logging.getLogger(__name__)

# Statuses an item may be moved out of by staff actions
LOSABLE = frozenset({ItemStatus.AVAILABLE, ItemStatus.LOANED, ItemStatus.RESERVED})
RESTORABLE = frozenset(
    {ItemStatus.LOST, ItemStatus.UNDER_MAINTENANCE, ItemStatus.RESERVED}
)


class ItemRegistry:
    """Holds each copy's current status and guards every transition."""

    def __init__(
        self,
        db: Optional[Database] = None,
        clock: Optional[Clock] = None,
        audit_sink: Optional[AuditSink] = None,
    ):
        self.db = db or get_db()
        self.clock = clock or SystemClock()
        self.audit_sink = audit_sink or LoggingAuditSink()

    # -------------------------------------------------------------------------
    # Compare-and-set
    # -------------------------------------------------------------------------

    def try_transition(
        self,
        session: Session,
        item_id: str,
        expected: Iterable[ItemStatus],
        to: ItemStatus,
        audit: Optional[AuditBuffer] = None,
    ) -> None:
        """Move an item to ``to`` if its status is one of ``expected``.

        Runs inside the caller's session so the change commits or rolls back
        with the rest of the caller's unit of work.

        Raises:
            ItemNotFoundError: no such item
            TransitionConflict: the item is in some other status
        """
        allowed = [status.value for status in expected]
        result = session.execute(
            update(Item)
            .where(Item.id == item_id, Item.status.in_(allowed))
            .values(status=to.value, updated_at=utc_now_iso())
            .execution_options(synchronize_session="fetch")
        )

        if result.rowcount != 1:
            current = self.current_status(session, item_id)
            if current is None:
                raise ItemNotFoundError(item_id)
            logger.debug(
                "Transition of %s to %s rejected: status is %s", item_id, to.value, current
            )
            raise TransitionConflict(item_id, current)

        if audit is not None:
            audit.record(
                AuditAction.UPDATE,
                "items",
                item_id,
                self.clock.now(),
                f"Status changed to {to.value}",
            )

    def current_status(self, session: Session, item_id: str) -> Optional[str]:
        """Read an item's status without locking it."""
        return session.execute(
            select(Item.status).where(Item.id == item_id)
        ).scalar_one_or_none()

    # -------------------------------------------------------------------------
    # Acquisition and staff transitions
    # -------------------------------------------------------------------------

    def acquire(self, data: ItemCreate) -> Item:
        """Register a newly acquired copy. New copies start Available.

        Args:
            data: Item creation data

        Returns:
            Created item

        Raises:
            InvalidInputError: the barcode is already registered
        """
        audit = AuditBuffer(self.audit_sink)
        try:
            item = self._insert(data, audit)
        except IntegrityError as e:
            raise InvalidInputError(f"Barcode already registered: {data.barcode}") from e
        audit.flush()

        logger.info("Acquired item %s (%s)", item.id, item.barcode)
        return item

    def _insert(self, data: ItemCreate, audit: AuditBuffer) -> Item:
        with self.db.get_session() as session:
            item = Item(
                id=generate_uuid(),
                work_id=str(data.work_id),
                barcode=data.barcode,
                location=data.location,
                status=ItemStatus.AVAILABLE.value,
                acquisition_date=(data.acquisition_date or self.clock.today()).isoformat(),
                price_cents=to_cents(data.price) if data.price is not None else None,
                condition=data.condition.value,
            )
            session.add(item)
            session.flush()
            audit.record(
                AuditAction.INSERT,
                "items",
                item.id,
                self.clock.now(),
                f"Item {item.barcode} acquired at {item.location}",
            )
            session.expunge(item)
        return item

    def add_copy(self, work_id: str, barcode: str, location: str, **kwargs) -> Item:
        """Convenience wrapper around ``acquire`` taking plain arguments."""
        data = parse_request(
            ItemCreate, work_id=work_id, barcode=barcode, location=location, **kwargs
        )
        return self.acquire(data)

    def mark_lost(self, item_id: str) -> Item:
        """Mark a copy as lost, from any circulating status."""
        return self._staff_transition(item_id, LOSABLE, ItemStatus.LOST)

    def send_to_maintenance(self, item_id: str) -> Item:
        """Pull an available copy off the shelf for repair."""
        return self._staff_transition(
            item_id, {ItemStatus.AVAILABLE}, ItemStatus.UNDER_MAINTENANCE
        )

    def restore(self, item_id: str) -> Item:
        """Put a found, repaired or released copy back on the shelf.

        Raises:
            ItemOnLoanError: a lost copy that is still on loan; it goes back
                through ``LoanLedger.return_item`` so the loan is closed
        """
        return self._staff_transition(
            item_id, RESTORABLE, ItemStatus.AVAILABLE, guard=self._refuse_open_loan
        )

    def _refuse_open_loan(self, session: Session, item_id: str) -> None:
        # Loan lives with the ledger, which imports this module
        from ..loans.models import Loan

        loan_id = session.execute(
            select(Loan.id).where(Loan.item_id == item_id, Loan.return_date.is_(None))
        ).scalar_one_or_none()
        if loan_id is not None:
            logger.warning("Restore of %s refused: open loan %s", item_id, loan_id)
            raise ItemOnLoanError(item_id, loan_id)

    def _staff_transition(
        self,
        item_id: str,
        expected: Iterable[ItemStatus],
        to: ItemStatus,
        guard: Optional[Callable[[Session, str], None]] = None,
    ) -> Item:
        audit = AuditBuffer(self.audit_sink)
        with self.db.get_session() as session:
            self.try_transition(session, item_id, expected, to, audit=audit)
            if guard is not None:
                guard(session, item_id)
            item = session.get(Item, item_id)
            session.expunge(item)
        audit.flush()

        logger.info("Item %s is now %s", item_id, to.value)
        return item

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_item(self, item_id: str) -> Optional[Item]:
        """Get an item by ID."""
        with self.db.get_session() as session:
            item = session.get(Item, item_id)
            if item:
                session.expunge(item)
            return item

    def get_by_barcode(self, barcode: str) -> Optional[Item]:
        """Get an item by its scan code."""
        with self.db.get_session() as session:
            item = session.execute(
                select(Item).where(Item.barcode == barcode)
            ).scalar_one_or_none()
            if item:
                session.expunge(item)
            return item

    def list_items(
        self,
        work_id: Optional[str] = None,
        status: Optional[ItemStatus] = None,
    ) -> list[Item]:
        """List items with optional filters, ordered by identifier."""
        with self.db.get_session() as session:
            stmt = select(Item)

            if work_id:
                stmt = stmt.where(Item.work_id == work_id)
            if status:
                stmt = stmt.where(Item.status == status.value)

            items = session.execute(stmt.order_by(Item.id)).scalars().all()
            for item in items:
                session.expunge(item)
            return list(items)
