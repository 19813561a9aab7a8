"""Item registry module.

Provides functionality for:
- Registering acquired copies
- Compare-and-set status transitions
- Lost / maintenance handling
"""

from .models import Item
from .registry import ItemRegistry
from .schemas import ItemCondition, ItemCreate, ItemStatus

__all__ = [
    "ItemRegistry",
    "Item",
    "ItemCondition",
    "ItemCreate",
    "ItemStatus",
]
