"""Tests for ItemRegistry."""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from circulation.audit import AuditAction
from circulation.errors import (
    InvalidInputError,
    ItemNotFoundError,
    ItemOnLoanError,
    ItemUnavailableError,
    TransitionConflict,
)
from circulation.items.schemas import ItemCondition, ItemCreate, ItemStatus


class TestAcquire:
    """Tests for registering copies."""

    def test_new_copy_is_available(self, registry, work, clock):
        item = registry.add_copy(work, "BC-9000", "Shelf C1")

        assert item.id is not None
        assert item.work_id == work
        assert item.status == ItemStatus.AVAILABLE.value
        assert item.acquired_on == clock.today()
        assert item.condition == ItemCondition.NEW.value

    def test_acquire_with_all_fields(self, registry, work):
        data = ItemCreate(
            work_id=work,
            barcode="BC-9001",
            location="Stacks",
            acquisition_date=date(2020, 6, 1),
            price=Decimal("24.99"),
            condition=ItemCondition.FAIR,
        )
        item = registry.acquire(data)

        assert item.acquired_on == date(2020, 6, 1)
        assert item.price == Decimal("24.99")
        assert item.condition == "fair"

    def test_duplicate_barcode(self, registry, work, item):
        with pytest.raises(InvalidInputError, match="BC-0001"):
            registry.add_copy(work, "BC-0001", "Shelf Z")

    def test_blank_barcode(self, registry, work):
        with pytest.raises(InvalidInputError):
            registry.add_copy(work, "", "Shelf Z")

    def test_acquire_emits_insert_fact(self, registry, work, audit):
        item = registry.add_copy(work, "BC-9002", "Shelf C2")
        facts = audit.for_table("items")
        assert facts[-1].action_type == AuditAction.INSERT
        assert facts[-1].entity_id == item.id


class TestTryTransition:
    """Tests for the compare-and-set primitive."""

    def test_transition_from_expected(self, registry, db, item, status_of):
        with db.get_session() as session:
            registry.try_transition(
                session, item.id, {ItemStatus.AVAILABLE}, ItemStatus.LOANED
            )
        assert status_of(item.id) == ItemStatus.LOANED.value

    def test_transition_from_unexpected(self, registry, db, item, status_of):
        with pytest.raises(TransitionConflict) as exc:
            with db.get_session() as session:
                registry.try_transition(
                    session, item.id, {ItemStatus.LOANED}, ItemStatus.AVAILABLE
                )
        assert exc.value.current_status == ItemStatus.AVAILABLE.value
        assert status_of(item.id) == ItemStatus.AVAILABLE.value

    def test_transition_unknown_item(self, registry, db):
        with pytest.raises(ItemNotFoundError):
            with db.get_session() as session:
                registry.try_transition(
                    session, str(uuid4()), {ItemStatus.AVAILABLE}, ItemStatus.LOANED
                )

    def test_rolled_back_with_caller(self, registry, db, item, status_of):
        """A transition inside a failed unit of work does not stick."""
        with pytest.raises(RuntimeError):
            with db.get_session() as session:
                registry.try_transition(
                    session, item.id, {ItemStatus.AVAILABLE}, ItemStatus.LOANED
                )
                raise RuntimeError("caller failed")
        assert status_of(item.id) == ItemStatus.AVAILABLE.value

    def test_second_claim_loses(self, registry, db, item):
        with db.get_session() as session:
            registry.try_transition(
                session, item.id, {ItemStatus.AVAILABLE}, ItemStatus.RESERVED
            )
            with pytest.raises(TransitionConflict):
                registry.try_transition(
                    session, item.id, {ItemStatus.AVAILABLE}, ItemStatus.LOANED
                )


class TestStaffTransitions:
    """Tests for lost, maintenance and restore."""

    def test_mark_lost_and_restore(self, registry, item):
        assert registry.mark_lost(item.id).status == ItemStatus.LOST.value
        assert registry.restore(item.id).status == ItemStatus.AVAILABLE.value

    def test_maintenance_cycle(self, registry, item):
        assert (
            registry.send_to_maintenance(item.id).status
            == ItemStatus.UNDER_MAINTENANCE.value
        )
        assert registry.restore(item.id).status == ItemStatus.AVAILABLE.value

    def test_loaned_copy_cannot_go_to_maintenance(self, registry, ledger, item, member):
        ledger.checkout(item.id, member, 14)
        with pytest.raises(TransitionConflict):
            registry.send_to_maintenance(item.id)

    def test_loaned_copy_cannot_be_restored(self, registry, ledger, item, member):
        ledger.checkout(item.id, member, 14)
        with pytest.raises(TransitionConflict):
            registry.restore(item.id)

    def test_maintenance_blocks_checkout(self, registry, ledger, item, member):
        registry.send_to_maintenance(item.id)
        with pytest.raises(ItemUnavailableError):
            ledger.checkout(item.id, member, 14)

    def test_lost_copy_on_loan_must_be_returned(self, registry, ledger, item, member):
        """A lost copy still out on loan comes back through a return, not a restore."""
        loan = ledger.checkout(item.id, member, 14)
        registry.mark_lost(item.id)

        with pytest.raises(ItemOnLoanError) as exc_info:
            registry.restore(item.id)

        assert exc_info.value.code == "item_on_loan"
        assert exc_info.value.loan_id == loan.id
        assert registry.get_item(item.id).status == ItemStatus.LOST.value
        assert ledger.open_loan_for_item(item.id).id == loan.id

        ledger.return_item(item.id)
        assert registry.get_item(item.id).status == ItemStatus.AVAILABLE.value
        assert ledger.checkout(item.id, member, 14).item_id == item.id


class TestQueries:
    """Tests for item lookups."""

    def test_get_by_barcode(self, registry, item):
        assert registry.get_by_barcode("BC-0001").id == item.id
        assert registry.get_by_barcode("missing") is None

    def test_get_item_missing(self, registry):
        assert registry.get_item(str(uuid4())) is None

    def test_list_items_by_status(self, registry, copies):
        registry.mark_lost(copies[1].id)

        available = registry.list_items(status=ItemStatus.AVAILABLE)
        lost = registry.list_items(status=ItemStatus.LOST)

        assert {i.id for i in available} == {copies[0].id, copies[2].id}
        assert [i.id for i in lost] == [copies[1].id]

    def test_list_items_ordered_by_id(self, registry, work, copies):
        ids = [i.id for i in registry.list_items(work_id=work)]
        assert ids == sorted(ids)
