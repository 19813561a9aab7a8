"""Audit fact emission.

The engine does not store audit records itself. State-changing operations
collect ``AuditFact`` objects while their unit of work is open and hand them
to an ``AuditSink`` once the transaction has committed.
"""

import logging
from datetime import datetime
from enum import Enum
from typing import Iterable, Optional, Protocol

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class AuditAction(str, Enum):
    """Kind of change recorded by an audit fact."""

    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


class AuditFact(BaseModel):
    """One state change, as reported to the external audit log."""

    action_type: AuditAction
    entity_table: str = Field(..., min_length=1)
    entity_id: str
    timestamp: datetime
    description: Optional[str] = None


class AuditSink(Protocol):
    """Append-only destination for audit facts."""

    def emit(self, fact: AuditFact) -> None: ...


class LoggingAuditSink:
    """Writes audit facts through the ``circulation.audit`` logger."""

    def emit(self, fact: AuditFact) -> None:
        logger.info(
            "%s %s/%s at %s: %s",
            fact.action_type.value,
            fact.entity_table,
            fact.entity_id,
            fact.timestamp.isoformat(),
            fact.description or "",
        )


class MemoryAuditSink:
    """Keeps emitted facts in a list. Handy for tests and previews."""

    def __init__(self) -> None:
        self.facts: list[AuditFact] = []

    def emit(self, fact: AuditFact) -> None:
        self.facts.append(fact)

    def for_table(self, entity_table: str) -> list[AuditFact]:
        return [f for f in self.facts if f.entity_table == entity_table]

    def clear(self) -> None:
        self.facts.clear()


class AuditBuffer:
    """Collects facts during a transaction and releases them after commit."""

    def __init__(self, sink: AuditSink):
        self.sink = sink
        self.pending: list[AuditFact] = []

    def record(
        self,
        action: AuditAction,
        entity_table: str,
        entity_id: str,
        timestamp: datetime,
        description: Optional[str] = None,
    ) -> None:
        self.pending.append(
            AuditFact(
                action_type=action,
                entity_table=entity_table,
                entity_id=entity_id,
                timestamp=timestamp,
                description=description,
            )
        )

    def flush(self) -> None:
        facts, self.pending = self.pending, []
        emit_all(self.sink, facts)


def emit_all(sink: AuditSink, facts: Iterable[AuditFact]) -> None:
    for fact in facts:
        sink.emit(fact)
