"""Wiring for the lending engine's components.

All components share one database, clock and audit sink so that their
units of work and audit facts line up.
"""

from dataclasses import dataclass
from typing import Optional

from .audit import AuditSink, LoggingAuditSink
from .catalog.directory import CatalogDirectory
from .clock import Clock, SystemClock
from .config import Config, get_config
from .db.sqlite import Database, get_db
from .items.registry import ItemRegistry
from .loans.ledger import LoanLedger
from .reservations.coordinator import ReservationCoordinator
from .sweeper.overdue import OverdueSweeper


@dataclass
class LendingEngine:
    """The item registry, loan ledger, reservation coordinator and sweeper."""

    db: Database
    config: Config
    registry: ItemRegistry
    ledger: LoanLedger
    reservations: ReservationCoordinator
    sweeper: OverdueSweeper

    @classmethod
    def build(
        cls,
        db: Optional[Database] = None,
        config: Optional[Config] = None,
        clock: Optional[Clock] = None,
        audit_sink: Optional[AuditSink] = None,
    ) -> "LendingEngine":
        """Create every component around shared collaborators."""
        config = config or get_config()
        db = db or get_db(str(config.db_path))
        clock = clock or SystemClock()
        audit_sink = audit_sink or LoggingAuditSink()
        catalog = CatalogDirectory()

        registry = ItemRegistry(db, clock, audit_sink)
        reservations = ReservationCoordinator(
            db, config, clock, audit_sink, registry=registry, catalog=catalog
        )
        ledger = LoanLedger(
            db,
            config,
            clock,
            audit_sink,
            registry=registry,
            reservations=reservations,
            catalog=catalog,
        )
        sweeper = OverdueSweeper(db, config, clock, audit_sink)

        return cls(
            db=db,
            config=config,
            registry=registry,
            ledger=ledger,
            reservations=reservations,
            sweeper=sweeper,
        )
