"""Tests for the overdue sweeper."""

import threading
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError

from circulation.errors import OutstandingFinesError
from circulation.loans.schemas import FineStatus
from circulation.sweeper import OverdueSweeper


class TestRunOnce:
    """Tests for a single sweep."""

    def test_nothing_overdue(self, sweeper, ledger, item, member):
        ledger.checkout(item.id, member, 14)
        result = sweeper.run_once()
        assert result.assessed == 0
        assert result.total == 0

    def test_due_today_is_not_overdue(self, sweeper, ledger, clock, item, member):
        ledger.checkout(item.id, member, 14)
        clock.advance(days=14)
        assert sweeper.run_once().assessed == 0

    def test_assesses_overdue_loans(
        self, sweeper, ledger, clock, copies, member, make_member
    ):
        late = ledger.checkout(copies[0].id, member, 3)
        later = ledger.checkout(copies[1].id, make_member(), 1)
        ledger.checkout(copies[2].id, make_member(), 30)
        clock.advance(days=5)

        result = sweeper.run_once()

        assert result.assessed == 2
        assert set(result.fined_loans) == {late.id, later.id}
        amounts = {f.loan_id: f.amount for f in ledger.list_fines()}
        assert amounts == {late.id: Decimal("1.00"), later.id: Decimal("2.00")}
        assert all(f.status == FineStatus.PENDING.value for f in ledger.list_fines())

    def test_second_run_adds_nothing(self, sweeper, ledger, clock, item, member):
        ledger.checkout(item.id, member, 3)
        clock.advance(days=5)

        assert sweeper.run_once().assessed == 1
        clock.advance(days=1)
        assert sweeper.run_once().assessed == 0
        assert len(ledger.list_fines()) == 1

    def test_loan_renewed_after_read_is_not_fined(
        self, sweeper, ledger, clock, item, member
    ):
        loan = ledger.checkout(item.id, member, 5)
        clock.advance(days=8)
        candidates = list(sweeper.candidates())
        assert [c.loan_id for c in candidates] == [loan.id]

        assert ledger.renew(loan.id, 14) == date(2025, 2, 3)

        assert sweeper._assess(candidates[0], clock.today()) is False
        assert ledger.list_fines() == []

    def test_fine_priced_from_current_due_date(
        self, sweeper, ledger, clock, item, member
    ):
        loan = ledger.checkout(item.id, member, 5)
        clock.advance(days=8)
        candidates = list(sweeper.candidates())
        ledger.renew(loan.id, 1)

        assert sweeper._assess(candidates[0], clock.today()) is True
        [fine] = ledger.list_fines()
        assert fine.amount == Decimal("1.00")
        assert fine.member_id == member

    def test_returned_loans_ignored(self, sweeper, ledger, clock, item, member):
        ledger.checkout(item.id, member, 3)
        clock.advance(days=5)
        ledger.return_item(item.id)

        assert sweeper.run_once().assessed == 0
        assert len(ledger.list_fines()) == 1

    def test_audit_fact_per_fine(self, sweeper, ledger, clock, item, member, audit):
        ledger.checkout(item.id, member, 3)
        clock.advance(days=5)
        audit.clear()

        sweeper.run_once()

        facts = audit.for_table("fines")
        assert len(facts) == 1
        assert facts[0].timestamp == clock.now()

    def test_fined_member_blocked_from_borrowing(
        self, sweeper, ledger, registry, clock, work, item, member
    ):
        ledger.checkout(item.id, member, 3)
        clock.advance(days=5)
        sweeper.run_once()
        other = registry.add_copy(work, "BC-0002", "Shelf A2")

        with pytest.raises(OutstandingFinesError):
            ledger.checkout(other.id, member, 14)


class TestCandidates:
    """Tests for batched candidate scanning."""

    def test_pages_through_small_batches(
        self, db, config, clock, audit, ledger, copies, make_member
    ):
        for copy in copies:
            ledger.checkout(copy.id, make_member(), 2)
        clock.advance(days=4)
        sweeper = OverdueSweeper(db, config, clock, audit, batch_size=1)

        candidates = list(sweeper.candidates())

        assert len(candidates) == 3
        assert len({c.loan_id for c in candidates}) == 3
        assert all(c.due_date == date(2025, 1, 17) for c in candidates)
        assert sweeper.run_once().assessed == 3

    def test_fined_loans_not_candidates(self, sweeper, ledger, clock, item, member):
        ledger.checkout(item.id, member, 2)
        clock.advance(days=4)
        sweeper.run_once()
        assert list(sweeper.candidates()) == []


class TestRunForever:
    """Tests for the periodic loop."""

    def test_stops_when_event_set(self, sweeper, ledger, clock, item, member):
        ledger.checkout(item.id, member, 2)
        clock.advance(days=4)
        stop = threading.Event()
        runs = []
        run_once = sweeper.run_once

        def run_and_stop():
            runs.append(run_once())
            stop.set()
            return runs[-1]

        sweeper.run_once = run_and_stop
        sweeper.run_forever(stop)

        assert len(runs) == 1
        assert runs[0].assessed == 1

    def test_failed_run_is_logged_and_loop_continues(self, sweeper, caplog):
        stop = threading.Event()
        calls = []

        def failing():
            calls.append(1)
            if len(calls) == 2:
                stop.set()
            raise OperationalError("SELECT 1", {}, Exception("database is locked"))

        sweeper.config.sweep_interval_hours = 0
        sweeper.run_once = failing
        sweeper.run_forever(stop)

        assert len(calls) == 2
        assert "Overdue sweep failed" in caplog.text
