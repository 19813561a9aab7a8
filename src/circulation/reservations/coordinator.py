"""Reservation coordinator.

Owns reservation status transitions. Fulfilling a reservation sets a copy
of the work aside through the item registry in the same unit of work, so a
reservation is never Fulfilled without a copy actually being Reserved.
"""

import logging
from datetime import timedelta
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from ..audit import AuditAction, AuditBuffer, AuditSink, LoggingAuditSink
from ..catalog.directory import CatalogDirectory
from ..clock import Clock, SystemClock
from ..config import Config, get_config
from ..db.models import generate_uuid, utc_now_iso
from ..db.sqlite import Database, get_db
from ..errors import (
    ItemNotFoundError,
    NoItemAvailableError,
    ReservationNotFoundError,
    ReservationNotPendingError,
    TransitionConflict,
)
from ..items.registry import ItemRegistry
from ..items.schemas import ItemStatus
from ..validation import parse_request
from .models import Reservation
from .schemas import ReservationCreate, ReservationRef, ReservationStatus

logger = logging.getLogger(__name__)


class ReservationCoordinator:
    """Manages reservation requests and the copies set aside for them."""

    def __init__(
        self,
        db: Optional[Database] = None,
        config: Optional[Config] = None,
        clock: Optional[Clock] = None,
        audit_sink: Optional[AuditSink] = None,
        registry: Optional[ItemRegistry] = None,
        catalog: Optional[CatalogDirectory] = None,
    ):
        """Initialize reservation coordinator.

        Args:
            db: Database instance
            config: Engine configuration
            clock: Time source for request and expiry dates
            audit_sink: Destination for audit facts
            registry: Item registry used to claim copies
            catalog: Lookups against the catalog store
        """
        self.db = db or get_db()
        self.config = config or get_config()
        self.clock = clock or SystemClock()
        self.audit_sink = audit_sink or LoggingAuditSink()
        self.registry = registry or ItemRegistry(self.db, self.clock, self.audit_sink)
        self.catalog = catalog or CatalogDirectory()

    # -------------------------------------------------------------------------
    # Reservation lifecycle
    # -------------------------------------------------------------------------

    def place(
        self, work_id: str, member_id: str, expiry_days: Optional[int] = None
    ) -> Reservation:
        """Place a reservation for any copy of a work.

        Args:
            work_id: Work to reserve
            member_id: Requesting member
            expiry_days: Days the request stays open (default from config)

        Returns:
            Created reservation, Pending
        """
        request = parse_request(
            ReservationCreate,
            work_id=work_id,
            member_id=member_id,
            expiry_days=(
                expiry_days if expiry_days is not None else self.config.reservation_expiry_days
            ),
        )

        audit = AuditBuffer(self.audit_sink)
        now = self.clock.now()
        with self.db.get_session() as session:
            reservation = Reservation(
                id=generate_uuid(),
                work_id=str(request.work_id),
                member_id=str(request.member_id),
                reservation_date=now.isoformat(),
                expiry_date=(now.date() + timedelta(days=request.expiry_days)).isoformat(),
                status=ReservationStatus.PENDING.value,
            )
            session.add(reservation)
            session.flush()
            audit.record(
                AuditAction.INSERT,
                "reservations",
                reservation.id,
                now,
                f"Reservation placed for work {reservation.work_id}",
            )
            session.expunge(reservation)
        audit.flush()

        logger.info(
            "Reservation %s placed by member %s", reservation.id, reservation.member_id
        )
        return reservation

    def fulfill(self, reservation_id: str) -> Reservation:
        """Mark a reservation Fulfilled and set aside one copy of the work.

        Copies are tried in ascending identifier order; the first one that
        can be moved Available -> Reserved is taken. The copy is held for
        ``config.reservation_expiry_days`` days, after which
        ``release_uncollected`` puts it back on the shelf.

        Raises:
            ReservationNotFoundError: unknown reservation
            ReservationNotPendingError: reservation already closed
            NoItemAvailableError: no copy could be claimed; the reservation
                stays Pending
        """
        parse_request(ReservationRef, reservation_id=reservation_id)

        audit = AuditBuffer(self.audit_sink)
        with self.db.get_session() as session:
            reservation = self._transition(
                session, reservation_id, ReservationStatus.FULFILLED, audit
            )

            claimed = None
            for item_id in self.catalog.sibling_items(session, reservation.work_id):
                try:
                    self.registry.try_transition(
                        session, item_id, {ItemStatus.AVAILABLE}, ItemStatus.RESERVED, audit
                    )
                except (TransitionConflict, ItemNotFoundError):
                    continue
                claimed = item_id
                break

            if claimed is None:
                logger.warning(
                    "Reservation %s not fulfilled: no copy of work %s available",
                    reservation_id,
                    reservation.work_id,
                )
                raise NoItemAvailableError(reservation.work_id)

            reservation.item_id = claimed
            reservation.hold_until = (
                self.clock.today() + timedelta(days=self.config.reservation_expiry_days)
            ).isoformat()
            session.flush()
            session.expunge(reservation)
        audit.flush()

        logger.info("Reservation %s fulfilled with item %s", reservation_id, claimed)
        return reservation

    def cancel(self, reservation_id: str) -> Reservation:
        """Cancel a pending reservation."""
        parse_request(ReservationRef, reservation_id=reservation_id)

        audit = AuditBuffer(self.audit_sink)
        with self.db.get_session() as session:
            reservation = self._transition(
                session, reservation_id, ReservationStatus.CANCELLED, audit
            )
            session.expunge(reservation)
        audit.flush()

        logger.info("Reservation %s cancelled", reservation_id)
        return reservation

    def expire_stale(self) -> int:
        """Expire pending reservations whose expiry date has passed.

        Returns:
            Number of reservations expired
        """
        today = self.clock.today().isoformat()
        audit = AuditBuffer(self.audit_sink)
        expired = 0
        with self.db.get_session() as session:
            stale = session.execute(
                select(Reservation.id).where(
                    Reservation.status == ReservationStatus.PENDING.value,
                    Reservation.expiry_date < today,
                )
            ).scalars().all()

            for reservation_id in stale:
                try:
                    self._transition(
                        session, reservation_id, ReservationStatus.EXPIRED, audit
                    )
                except ReservationNotPendingError:
                    continue
                expired += 1
        audit.flush()

        if expired:
            logger.info("Expired %d stale reservations", expired)
        return expired

    def release_uncollected(self) -> int:
        """Put copies back on the shelf when their pickup window has passed.

        The reservation stays Fulfilled; it is stamped ``released_at`` so the
        member can no longer collect the copy from Reserved. A copy staff
        already moved out of Reserved is left where it is.

        Returns:
            Number of holds released
        """
        today = self.clock.today().isoformat()
        audit = AuditBuffer(self.audit_sink)
        released = 0
        with self.db.get_session() as session:
            overdue_holds = session.execute(
                select(Reservation.id, Reservation.item_id).where(
                    Reservation.status == ReservationStatus.FULFILLED.value,
                    Reservation.collected_at.is_(None),
                    Reservation.released_at.is_(None),
                    Reservation.hold_until < today,
                )
            ).all()

            for reservation_id, item_id in overdue_holds:
                result = session.execute(
                    update(Reservation)
                    .where(
                        Reservation.id == reservation_id,
                        Reservation.collected_at.is_(None),
                        Reservation.released_at.is_(None),
                    )
                    .values(released_at=self.clock.now().isoformat(), updated_at=utc_now_iso())
                    .execution_options(synchronize_session="fetch")
                )
                if result.rowcount != 1:
                    continue

                if item_id is not None:
                    try:
                        self.registry.try_transition(
                            session, item_id, {ItemStatus.RESERVED}, ItemStatus.AVAILABLE, audit
                        )
                    except (TransitionConflict, ItemNotFoundError):
                        logger.debug("Item %s no longer reserved, leaving it", item_id)

                audit.record(
                    AuditAction.UPDATE,
                    "reservations",
                    reservation_id,
                    self.clock.now(),
                    f"Uncollected item {item_id} released",
                )
                released += 1
        audit.flush()

        if released:
            logger.info("Released %d uncollected holds", released)
        return released

    def _transition(
        self,
        session: Session,
        reservation_id: str,
        to: ReservationStatus,
        audit: AuditBuffer,
    ) -> Reservation:
        """Move a pending reservation to ``to``; the only status writer."""
        result = session.execute(
            update(Reservation)
            .where(
                Reservation.id == reservation_id,
                Reservation.status == ReservationStatus.PENDING.value,
            )
            .values(status=to.value, updated_at=utc_now_iso())
            .execution_options(synchronize_session="fetch")
        )

        reservation = session.get(Reservation, reservation_id)
        if reservation is None:
            raise ReservationNotFoundError(f"Reservation not found: {reservation_id}")
        if result.rowcount != 1:
            raise ReservationNotPendingError(reservation_id, reservation.status)

        audit.record(
            AuditAction.UPDATE,
            "reservations",
            reservation_id,
            self.clock.now(),
            f"Reservation {to.value}",
        )
        return reservation

    # -------------------------------------------------------------------------
    # Hand-off to the loan ledger
    # -------------------------------------------------------------------------

    def hold_for(
        self, session: Session, item_id: str, member_id: str
    ) -> Optional[Reservation]:
        """The uncollected fulfilled reservation that set this copy aside for the member."""
        return session.execute(
            select(Reservation).where(
                Reservation.item_id == item_id,
                Reservation.member_id == member_id,
                Reservation.status == ReservationStatus.FULFILLED.value,
                Reservation.collected_at.is_(None),
                Reservation.released_at.is_(None),
            )
        ).scalars().first()

    def collect(self, session: Session, reservation: Reservation, audit: AuditBuffer) -> None:
        """Record that the member picked up the copy set aside for them."""
        now = self.clock.now()
        reservation.collected_at = now.isoformat()
        session.flush()
        audit.record(
            AuditAction.UPDATE,
            "reservations",
            reservation.id,
            now,
            f"Reserved item {reservation.item_id} collected",
        )

    def count_waiting(self, session: Session, work_id: str) -> int:
        """Number of pending reservations for a work."""
        return session.execute(
            select(func.count()).select_from(Reservation).where(
                Reservation.work_id == work_id,
                Reservation.status == ReservationStatus.PENDING.value,
            )
        ).scalar() or 0

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get(self, reservation_id: str) -> Optional[Reservation]:
        """Get a reservation by ID."""
        with self.db.get_session() as session:
            reservation = session.get(Reservation, reservation_id)
            if reservation:
                session.expunge(reservation)
            return reservation

    def pending_for_work(self, work_id: str) -> list[Reservation]:
        """Pending reservations for a work, oldest request first."""
        with self.db.get_session() as session:
            stmt = (
                select(Reservation)
                .where(
                    Reservation.work_id == work_id,
                    Reservation.status == ReservationStatus.PENDING.value,
                )
                .order_by(Reservation.reservation_date, Reservation.id)
            )
            reservations = session.execute(stmt).scalars().all()
            for r in reservations:
                session.expunge(r)
            return list(reservations)

    def list_for_member(self, member_id: str) -> list[Reservation]:
        """All reservations of a member, newest first."""
        with self.db.get_session() as session:
            stmt = (
                select(Reservation)
                .where(Reservation.member_id == member_id)
                .order_by(Reservation.reservation_date.desc())
            )
            reservations = session.execute(stmt).scalars().all()
            for r in reservations:
                session.expunge(r)
            return list(reservations)
