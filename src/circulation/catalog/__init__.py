"""Catalog and membership records the engine reads but does not own."""

from .directory import CatalogDirectory
from .models import Member, Work
from .schemas import MembershipStatus

__all__ = [
    "CatalogDirectory",
    "Member",
    "Work",
    "MembershipStatus",
]
