"""Overdue sweep module."""

from .overdue import OverdueCandidate, OverdueSweeper, SweepResult

__all__ = [
    "OverdueSweeper",
    "OverdueCandidate",
    "SweepResult",
]
