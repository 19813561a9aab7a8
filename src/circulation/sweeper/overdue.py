"""Overdue sweep.

Finds open loans past their due date that have no fine yet and assesses
one for each. Every fine is inserted in its own transaction and the
``fines.loan_id`` uniqueness constraint decides races with the return
desk or an overlapping sweep, so a run can be interrupted and simply
started again.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import date
from typing import Iterator, NamedTuple, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..audit import AuditAction, AuditBuffer, AuditSink, LoggingAuditSink
from ..clock import Clock, SystemClock
from ..config import Config, get_config
from ..db.models import generate_uuid, to_cents
from ..db.sqlite import Database, get_db
from ..errors import LendingError
from ..loans.fines import calculate_fine, days_overdue
from ..loans.models import Fine, Loan
from ..loans.schemas import FineStatus

logger = logging.getLogger(__name__)


class OverdueCandidate(NamedTuple):
    """An open, overdue loan with no fine at the time it was read."""

    loan_id: str
    member_id: str
    due_date: date


@dataclass
class SweepResult:
    """Result of one sweep run."""

    assessed: int = 0
    skipped: int = 0
    fined_loans: list[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.assessed + self.skipped


class OverdueSweeper:
    """Periodically assesses fines on overdue loans."""

    def __init__(
        self,
        db: Optional[Database] = None,
        config: Optional[Config] = None,
        clock: Optional[Clock] = None,
        audit_sink: Optional[AuditSink] = None,
        batch_size: int = 200,
    ):
        """Initialize overdue sweeper.

        Args:
            db: Database instance
            config: Engine configuration (fine rate, sweep interval)
            clock: Time source deciding what "today" is
            audit_sink: Destination for audit facts
            batch_size: Loans read per query while scanning
        """
        self.db = db or get_db()
        self.config = config or get_config()
        self.clock = clock or SystemClock()
        self.audit_sink = audit_sink or LoggingAuditSink()
        self.batch_size = batch_size

    def candidates(self, today: Optional[date] = None) -> Iterator[OverdueCandidate]:
        """Lazily yield overdue loans that have no fine.

        Reads in keyset-paginated batches, each in a short session, so no
        read transaction stays open while fines are being written.
        """
        cutoff = (today or self.clock.today()).isoformat()
        last_id = ""

        while True:
            with self.db.get_session() as session:
                stmt = (
                    select(Loan.id, Loan.member_id, Loan.due_date)
                    .outerjoin(Fine, Fine.loan_id == Loan.id)
                    .where(
                        Loan.return_date.is_(None),
                        Loan.due_date < cutoff,
                        Fine.id.is_(None),
                        Loan.id > last_id,
                    )
                    .order_by(Loan.id)
                    .limit(self.batch_size)
                )
                rows = session.execute(stmt).all()

            for loan_id, member_id, due_date in rows:
                yield OverdueCandidate(loan_id, member_id, date.fromisoformat(due_date))

            if len(rows) < self.batch_size:
                return
            last_id = rows[-1][0]

    def run_once(self) -> SweepResult:
        """Assess fines for every overdue loan without one.

        Returns:
            SweepResult with counts of fines created and loans skipped
        """
        today = self.clock.today()
        result = SweepResult()

        for candidate in self.candidates(today):
            if self._assess(candidate, today):
                result.assessed += 1
                result.fined_loans.append(candidate.loan_id)
            else:
                result.skipped += 1

        logger.info(
            "Overdue sweep for %s: %d fines assessed, %d skipped",
            today.isoformat(),
            result.assessed,
            result.skipped,
        )
        return result

    def _assess(self, candidate: OverdueCandidate, today: date) -> bool:
        """Insert one fine. False if the loan closed, was renewed or was fined meanwhile.

        The fine is priced from the loan as it is now, not from the candidate,
        which may be stale by the time this runs.
        """
        audit = AuditBuffer(self.audit_sink)

        try:
            with self.db.get_session() as session:
                loan = session.get(Loan, candidate.loan_id)
                if loan is None or not loan.is_open:
                    return False

                overdue = days_overdue(loan.due, today)
                if overdue == 0:
                    logger.debug("Loan %s no longer overdue, skipping", loan.id)
                    return False
                amount = calculate_fine(overdue, self.config.daily_fine_rate)

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
                    AuditAction.INSERT,
                    "fines",
                    fine.id,
                    self.clock.now(),
                    f"Overdue fine {amount} for loan {candidate.loan_id} ({overdue} days)",
                )
        except IntegrityError:
            logger.debug("Loan %s already fined, skipping", candidate.loan_id)
            return False

        audit.flush()
        return True

    def run_forever(self, stop_event: Optional[threading.Event] = None) -> None:
        """Run the sweep every ``config.sweep_interval_hours`` until stopped.

        A failed run is logged and the next one happens on schedule; since
        each fine is inserted independently, nothing needs to be resumed.
        """
        stop = stop_event or threading.Event()
        interval = self.config.sweep_interval_hours * 3600

        logger.info("Overdue sweeper started, every %d hours", self.config.sweep_interval_hours)
        while not stop.is_set():
            try:
                self.run_once()
            except (SQLAlchemyError, LendingError):
                logger.exception("Overdue sweep failed")
            if stop.wait(interval):
                break
        logger.info("Overdue sweeper stopped")
