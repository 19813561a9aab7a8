"""Pytest configuration and shared fixtures.

This module provides fixtures for testing the lending engine, including
in-memory databases, a pinned clock, a collecting audit sink and seeded
works, members and items.
"""

from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Callable, Generator

import pytest

from circulation.audit import MemoryAuditSink
from circulation.catalog.models import Member, Work
from circulation.catalog.schemas import MembershipStatus
from circulation.clock import FixedClock
from circulation.config import Config, reset_config
from circulation.db.models import generate_uuid
from circulation.db.sqlite import Database, reset_db
from circulation.engine import LendingEngine
from circulation.items.models import Item


# ============================================================================
# Database Fixtures
# ============================================================================


@pytest.fixture(scope="function")
def db() -> Generator[Database, None, None]:
    """Create an in-memory database for testing."""
    reset_db()
    reset_config()

    database = Database(":memory:")
    database.create_tables()
    yield database

    reset_db()


@pytest.fixture(scope="function")
def file_db(tmp_path: Path) -> Database:
    """Create a file database; needed when several threads hit the engine."""
    database = Database(str(tmp_path / "circulation.db"))
    database.create_tables()
    return database


# ============================================================================
# Engine Fixtures
# ============================================================================


@pytest.fixture
def config() -> Config:
    """Engine configuration with the default rules and no retry delay."""
    return Config(
        db_path=Path(":memory:"),
        daily_fine_rate=Decimal("0.50"),
        max_renewals=2,
        default_loan_days=14,
        sweep_interval_hours=24,
        conflict_retries=3,
        retry_backoff_seconds=0.0,
    )


@pytest.fixture
def clock() -> FixedClock:
    """A clock pinned to 2025-01-15 10:00 UTC."""
    return FixedClock(datetime(2025, 1, 15, 10, 0, tzinfo=timezone.utc))


@pytest.fixture
def audit() -> MemoryAuditSink:
    """An audit sink that keeps every fact."""
    return MemoryAuditSink()


@pytest.fixture
def engine(db, config, clock, audit) -> LendingEngine:
    """All engine components wired to the test database."""
    return LendingEngine.build(db=db, config=config, clock=clock, audit_sink=audit)


@pytest.fixture
def file_engine(file_db, config, clock, audit) -> LendingEngine:
    """Engine components on a file database shared by several threads."""
    return LendingEngine.build(db=file_db, config=config, clock=clock, audit_sink=audit)


@pytest.fixture
def ledger(engine):
    return engine.ledger


@pytest.fixture
def registry(engine):
    return engine.registry


@pytest.fixture
def reservations(engine):
    return engine.reservations


@pytest.fixture
def sweeper(engine):
    return engine.sweeper


# ============================================================================
# Sample Data Fixtures
# ============================================================================


def add_work(database: Database, title: str = "The Left Hand of Darkness") -> str:
    """Insert a catalog work and return its id."""
    with database.get_session() as session:
        work = Work(id=generate_uuid(), title=title)
        session.add(work)
        session.flush()
        return work.id


def add_member(
    database: Database,
    first_name: str = "Ada",
    status: MembershipStatus = MembershipStatus.ACTIVE,
) -> str:
    """Insert a member and return their id."""
    member_id = generate_uuid()
    with database.get_session() as session:
        session.add(
            Member(
                id=member_id,
                first_name=first_name,
                last_name="Reader",
                email=f"{first_name.lower()}.{member_id[:8]}@example.org",
                membership_date="2024-01-01",
                membership_status=status.value,
            )
        )
    return member_id


def item_status(database: Database, item_id: str) -> str:
    """Read an item's status straight from the table."""
    with database.get_session() as session:
        return session.get(Item, item_id).status


@pytest.fixture
def work(db) -> str:
    """A catalog work."""
    return add_work(db)


@pytest.fixture
def member(db) -> str:
    """An active member with no fines."""
    return add_member(db)


@pytest.fixture
def make_member(db) -> Callable[..., str]:
    """Factory for additional members."""

    def _make(first_name: str = "Grace", status: MembershipStatus = MembershipStatus.ACTIVE):
        return add_member(db, first_name, status)

    return _make


@pytest.fixture
def item(registry, work) -> Item:
    """An available copy of ``work``."""
    return registry.add_copy(work, "BC-0001", "Shelf A1")


@pytest.fixture
def copies(registry, work) -> list[Item]:
    """Three available copies of ``work``."""
    return [registry.add_copy(work, f"BC-10{i}", f"Shelf B{i}") for i in range(3)]


@pytest.fixture
def status_of(db) -> Callable[[str], str]:
    """Read an item's status straight from the table."""
    return lambda item_id: item_status(db, item_id)
