"""Enums shared with the external catalog and member store."""

from enum import Enum


class MembershipStatus(str, Enum):
    """Status of a library membership."""

    ACTIVE = "active"
    EXPIRED = "expired"
    SUSPENDED = "suspended"
