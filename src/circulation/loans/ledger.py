"""Loan ledger for checkout, return and renewal.

Each operation is one unit of work: the item status change, the loan row
and any fine are committed together or not at all. Business rule failures
raise ``LendingError`` subclasses from inside the session block so the
session rolls back whatever was already written.
"""

import logging
import time
from datetime import date, timedelta
from decimal import Decimal
from typing import Callable, Optional, TypeVar

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from ..audit import AuditAction, AuditBuffer, AuditSink, LoggingAuditSink
from ..catalog.directory import CatalogDirectory
from ..catalog.schemas import MembershipStatus
from ..clock import Clock, SystemClock
from ..config import Config, get_config
from ..db.models import from_cents, generate_uuid, to_cents, utc_now_iso
from ..db.sqlite import Database, get_db
from ..errors import (
    FineNotFoundError,
    FineNotPendingError,
    InvalidInputError,
    ItemNotFoundError,
    ItemUnavailableError,
    MemberInactiveError,
    NoActiveLoanError,
    OutstandingFinesError,
    RenewalLimitReachedError,
    TransitionConflict,
)
from ..items.registry import ItemRegistry
from ..items.schemas import ItemStatus
from ..reservations.coordinator import ReservationCoordinator
from ..validation import parse_request
from .fines import calculate_fine, days_overdue
from .models import Fine, Loan
from .schemas import (
    CheckoutRequest,
    FinePayment,
    FineStatus,
    RenewRequest,
    ReturnRequest,
    ReturnSummary,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Errors worth another attempt: a lost compare-and-set race, a locked
# database, or a uniqueness violation from a concurrent writer
RETRYABLE = (TransitionConflict, OperationalError, IntegrityError)


class LoanLedger:
    """Creates, renews and closes loans and assesses fines."""

    def __init__(
        self,
        db: Optional[Database] = None,
        config: Optional[Config] = None,
        clock: Optional[Clock] = None,
        audit_sink: Optional[AuditSink] = None,
        registry: Optional[ItemRegistry] = None,
        reservations: Optional[ReservationCoordinator] = None,
        catalog: Optional[CatalogDirectory] = None,
    ):
        """Initialize loan ledger.

        Args:
            db: Database instance
            config: Engine configuration (fine rate, renewal limit, retries)
            clock: Time source for loan, due and return dates
            audit_sink: Destination for audit facts
            registry: Item registry guarding item status
            reservations: Coordinator consulted for held copies
            catalog: Lookups against the catalog and member store
        """
        self.db = db or get_db()
        self.config = config or get_config()
        self.clock = clock or SystemClock()
        self.audit_sink = audit_sink or LoggingAuditSink()
        self.catalog = catalog or CatalogDirectory()
        self.registry = registry or ItemRegistry(self.db, self.clock, self.audit_sink)
        self.reservations = reservations or ReservationCoordinator(
            self.db,
            self.config,
            self.clock,
            self.audit_sink,
            registry=self.registry,
            catalog=self.catalog,
        )

    # -------------------------------------------------------------------------
    # Checkout
    # -------------------------------------------------------------------------

    def checkout(
        self, item_id: str, member_id: str, loan_days: Optional[int] = None
    ) -> Loan:
        """Lend an item to a member.

        Checks, in order: the item can move Available -> Loaned, the member
        is active, the member owes nothing. A copy set aside by a fulfilled
        reservation can also be checked out from Reserved by that member.

        Args:
            item_id: Item being lent
            member_id: Borrowing member
            loan_days: Loan period in days (default from config)

        Returns:
            The new open loan

        Raises:
            InvalidInputError: malformed ids or non-positive loan_days
            ItemUnavailableError: item missing or not claimable
            MemberInactiveError: membership not active
            OutstandingFinesError: member has pending fines
        """
        request = parse_request(
            CheckoutRequest,
            item_id=item_id,
            member_id=member_id,
            loan_days=loan_days if loan_days is not None else self.config.default_loan_days,
        )

        try:
            return self._with_retry(lambda: self._checkout(request))
        except TransitionConflict as e:
            raise ItemUnavailableError(str(request.item_id), e.current_status)
        except (IntegrityError, OperationalError):
            raise ItemUnavailableError(str(request.item_id))

    def _checkout(self, request: CheckoutRequest) -> Loan:
        item_id = str(request.item_id)
        member_id = str(request.member_id)
        now = self.clock.now()
        audit = AuditBuffer(self.audit_sink)

        with self.db.get_session() as session:
            hold = self.reservations.hold_for(session, item_id, member_id)
            expected = {ItemStatus.AVAILABLE}
            if hold is not None:
                expected.add(ItemStatus.RESERVED)

            try:
                self.registry.try_transition(
                    session, item_id, expected, ItemStatus.LOANED, audit
                )
            except ItemNotFoundError:
                raise ItemUnavailableError(item_id)

            status = self.catalog.membership_status(session, member_id)
            if status != MembershipStatus.ACTIVE.value:
                logger.warning("Checkout of %s refused: member %s is %s", item_id, member_id, status)
                raise MemberInactiveError(member_id, status)

            owed = self._pending_total(session, member_id)
            if owed > 0:
                logger.warning("Checkout of %s refused: member %s owes %s", item_id, member_id, owed)
                raise OutstandingFinesError(member_id, owed)

            loan = Loan(
                id=generate_uuid(),
                item_id=item_id,
                member_id=member_id,
                loan_date=now.isoformat(),
                due_date=(now.date() + timedelta(days=request.loan_days)).isoformat(),
                renewal_count=0,
            )
            session.add(loan)
            session.flush()

            if hold is not None:
                self.reservations.collect(session, hold, audit)

            audit.record(
                AuditAction.INSERT,
                "loans",
                loan.id,
                now,
                f"Item {item_id} checked out to member {member_id}, due {loan.due_date}",
            )
            session.expunge(loan)
        audit.flush()

        logger.info("Loan %s opened: item %s due %s", loan.id, item_id, loan.due_date)
        return loan

    # -------------------------------------------------------------------------
    # Return
    # -------------------------------------------------------------------------

    def return_item(self, item_id: str) -> ReturnSummary:
        """Close the open loan for an item and assess a fine if it is late.

        A fine already assessed by the overdue sweep is brought up to the
        final amount instead of being charged twice.

        Raises:
            InvalidInputError: malformed item id
            NoActiveLoanError: the item has no open loan
        """
        request = parse_request(ReturnRequest, item_id=item_id)
        try:
            return self._with_retry(lambda: self._return(str(request.item_id)))
        except TransitionConflict as e:
            raise ItemUnavailableError(str(request.item_id), e.current_status)

    def _return(self, item_id: str) -> ReturnSummary:
        now = self.clock.now()
        today = now.date()
        audit = AuditBuffer(self.audit_sink)

        with self.db.get_session() as session:
            loan = self._open_loan(session, item_id)
            if loan is None:
                raise NoActiveLoanError(f"No active loan found for item {item_id}")

            closed = session.execute(
                update(Loan)
                .where(Loan.id == loan.id, Loan.return_date.is_(None))
                .values(return_date=now.isoformat(), updated_at=utc_now_iso())
                .execution_options(synchronize_session="fetch")
            )
            if closed.rowcount != 1:
                raise NoActiveLoanError(f"No active loan found for item {item_id}")
            audit.record(AuditAction.UPDATE, "loans", loan.id, now, "Item returned")

            # Lost copies that turn up are returned the same way
            self.registry.try_transition(
                session,
                item_id,
                {ItemStatus.LOANED, ItemStatus.LOST},
                ItemStatus.AVAILABLE,
                audit,
            )

            overdue = days_overdue(loan.due, today)
            fine = None
            if overdue > 0:
                amount = calculate_fine(overdue, self.config.daily_fine_rate)
                fine = self._assess(session, loan, amount, today, audit)

            work_id = self.catalog.work_for_item(session, item_id)
            waiting = bool(work_id) and self.reservations.count_waiting(session, work_id) > 0

            summary = ReturnSummary(
                loan_id=loan.id,
                item_id=item_id,
                member_id=loan.member_id,
                returned_at=now,
                due_date=loan.due,
                days_overdue=overdue,
                fine_applied=fine is not None,
                fine_amount=fine.amount if fine is not None else Decimal("0.00"),
                fine_id=fine.id if fine is not None else None,
                reservation_waiting=waiting,
            )
        audit.flush()

        if summary.fine_applied:
            logger.info(
                "Item %s returned %d days late, fine %s", item_id, overdue, summary.fine_amount
            )
        else:
            logger.info("Item %s returned", item_id)
        return summary

    def _assess(
        self,
        session: Session,
        loan: Loan,
        amount: Decimal,
        today: date,
        audit: AuditBuffer,
    ) -> Fine:
        """Insert the loan's fine, or raise a pending sweep fine to ``amount``."""
        existing = session.execute(
            select(Fine).where(Fine.loan_id == loan.id)
        ).scalar_one_or_none()

        if existing is None:
            fine = Fine(
                id=generate_uuid(),
                loan_id=loan.id,
                member_id=loan.member_id,
                amount_cents=to_cents(amount),
                fine_date=today.isoformat(),
                status=FineStatus.PENDING.value,
            )
            session.add(fine)
            session.flush()
            audit.record(
                AuditAction.INSERT, "fines", fine.id, self.clock.now(), f"Overdue fine {amount}"
            )
            return fine

        if existing.is_pending and existing.amount_cents < to_cents(amount):
            existing.amount_cents = to_cents(amount)
            existing.fine_date = today.isoformat()
            session.flush()
            audit.record(
                AuditAction.UPDATE,
                "fines",
                existing.id,
                self.clock.now(),
                f"Overdue fine reassessed to {amount} on return",
            )
        return existing

    # -------------------------------------------------------------------------
    # Renewal
    # -------------------------------------------------------------------------

    def renew(self, loan_id: str, additional_days: Optional[int] = None) -> date:
        """Extend an open loan from its current due date.

        Args:
            loan_id: Loan to renew
            additional_days: Days to add (default from config)

        Returns:
            The new due date

        Raises:
            InvalidInputError: malformed id or non-positive day count
            NoActiveLoanError: loan missing or already returned
            RenewalLimitReachedError: renewal quota exhausted
        """
        request = parse_request(
            RenewRequest,
            loan_id=loan_id,
            additional_days=(
                additional_days
                if additional_days is not None
                else self.config.default_loan_days
            ),
        )
        return self._with_retry(lambda: self._renew(request))

    def _renew(self, request: RenewRequest) -> date:
        loan_id = str(request.loan_id)
        audit = AuditBuffer(self.audit_sink)

        with self.db.get_session() as session:
            loan = session.get(Loan, loan_id)
            if loan is None or not loan.is_open:
                raise NoActiveLoanError(f"No active loan found with ID {loan_id}")
            if loan.renewal_count >= self.config.max_renewals:
                logger.warning("Renewal of loan %s refused: limit reached", loan_id)
                raise RenewalLimitReachedError(loan_id, self.config.max_renewals)

            new_due = loan.due + timedelta(days=request.additional_days)
            result = session.execute(
                update(Loan)
                .where(
                    Loan.id == loan_id,
                    Loan.return_date.is_(None),
                    Loan.due_date == loan.due_date,
                    Loan.renewal_count == loan.renewal_count,
                )
                .values(
                    due_date=new_due.isoformat(),
                    renewal_count=Loan.renewal_count + 1,
                    updated_at=utc_now_iso(),
                )
                .execution_options(synchronize_session="fetch")
            )
            if result.rowcount != 1:
                raise TransitionConflict(loan.item_id, "renewed concurrently")

            audit.record(
                AuditAction.UPDATE,
                "loans",
                loan_id,
                self.clock.now(),
                f"Loan renewed, due {new_due.isoformat()}",
            )
        audit.flush()

        logger.info("Loan %s renewed until %s", loan_id, new_due)
        return new_due

    # -------------------------------------------------------------------------
    # Fine settlement
    # -------------------------------------------------------------------------

    def pay_fine(self, fine_id: str, amount: Optional[Decimal] = None) -> Fine:
        """Record payment of a pending fine, in full by default."""
        request = parse_request(FinePayment, fine_id=fine_id, amount=amount)
        return self._settle(str(request.fine_id), FineStatus.PAID, request.amount)

    def waive_fine(self, fine_id: str) -> Fine:
        """Waive a pending fine."""
        request = parse_request(FinePayment, fine_id=fine_id)
        return self._settle(str(request.fine_id), FineStatus.WAIVED, None)

    def _settle(self, fine_id: str, to: FineStatus, amount: Optional[Decimal]) -> Fine:
        today = self.clock.today()
        audit = AuditBuffer(self.audit_sink)

        with self.db.get_session() as session:
            fine = session.get(Fine, fine_id)
            if fine is None:
                raise FineNotFoundError(f"Fine not found: {fine_id}")
            if not fine.is_pending:
                raise FineNotPendingError(f"Fine {fine_id} is already {fine.status}")

            values = {"status": to.value, "updated_at": utc_now_iso()}
            if to == FineStatus.PAID:
                paid = amount if amount is not None else fine.amount
                if paid < fine.amount:
                    raise InvalidInputError(
                        f"Payment of {paid} does not cover fine of {fine.amount}"
                    )
                values["payment_date"] = today.isoformat()
                values["payment_amount_cents"] = to_cents(paid)

            result = session.execute(
                update(Fine)
                .where(Fine.id == fine_id, Fine.status == FineStatus.PENDING.value)
                .values(**values)
                .execution_options(synchronize_session="fetch")
            )
            if result.rowcount != 1:
                raise FineNotPendingError(f"Fine {fine_id} was settled concurrently")

            audit.record(AuditAction.UPDATE, "fines", fine_id, self.clock.now(), f"Fine {to.value}")
            session.refresh(fine)
            session.expunge(fine)
        audit.flush()

        logger.info("Fine %s %s", fine_id, to.value)
        return fine

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_loan(self, loan_id: str) -> Optional[Loan]:
        """Get a loan by ID."""
        with self.db.get_session() as session:
            loan = session.get(Loan, loan_id)
            if loan:
                session.expunge(loan)
            return loan

    def open_loan_for_item(self, item_id: str) -> Optional[Loan]:
        """The open loan for an item, if any."""
        with self.db.get_session() as session:
            loan = self._open_loan(session, item_id)
            if loan:
                session.expunge(loan)
            return loan

    def list_loans(
        self,
        member_id: Optional[str] = None,
        item_id: Optional[str] = None,
        open_only: bool = False,
        overdue_only: bool = False,
    ) -> list[Loan]:
        """List loans with optional filters, newest first."""
        with self.db.get_session() as session:
            stmt = select(Loan)

            if member_id:
                stmt = stmt.where(Loan.member_id == member_id)
            if item_id:
                stmt = stmt.where(Loan.item_id == item_id)
            if open_only or overdue_only:
                stmt = stmt.where(Loan.return_date.is_(None))
            if overdue_only:
                stmt = stmt.where(Loan.due_date < self.clock.today().isoformat())

            loans = session.execute(stmt.order_by(Loan.loan_date.desc())).scalars().all()
            for loan in loans:
                session.expunge(loan)
            return list(loans)

    def list_fines(
        self,
        member_id: Optional[str] = None,
        status: Optional[FineStatus] = None,
    ) -> list[Fine]:
        """List fines with optional filters, newest first."""
        with self.db.get_session() as session:
            stmt = select(Fine)

            if member_id:
                stmt = stmt.where(Fine.member_id == member_id)
            if status:
                stmt = stmt.where(Fine.status == status.value)

            fines = session.execute(stmt.order_by(Fine.fine_date.desc())).scalars().all()
            for fine in fines:
                session.expunge(fine)
            return list(fines)

    def pending_fines_total(self, member_id: str) -> Decimal:
        """Total a member owes in pending fines."""
        with self.db.get_session() as session:
            return self._pending_total(session, member_id)

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _open_loan(self, session: Session, item_id: str) -> Optional[Loan]:
        return session.execute(
            select(Loan).where(Loan.item_id == item_id, Loan.return_date.is_(None))
        ).scalar_one_or_none()

    def _pending_total(self, session: Session, member_id: str) -> Decimal:
        cents = session.execute(
            select(func.coalesce(func.sum(Fine.amount_cents), 0)).where(
                Fine.member_id == member_id,
                Fine.status == FineStatus.PENDING.value,
            )
        ).scalar()
        return from_cents(cents or 0)

    def _with_retry(self, operation: Callable[[], T]) -> T:
        """Run ``operation``, retrying lost races with exponential backoff.

        The last error is re-raised once ``config.conflict_retries`` attempts
        have been used.
        """
        attempts = self.config.conflict_retries
        delay = self.config.retry_backoff_seconds

        attempt = 1
        while True:
            try:
                return operation()
            except RETRYABLE as e:
                if attempt >= attempts:
                    raise
                logger.debug("Attempt %d/%d lost a race: %s", attempt, attempts, e)
                time.sleep(delay * (2 ** (attempt - 1)))
                attempt += 1
