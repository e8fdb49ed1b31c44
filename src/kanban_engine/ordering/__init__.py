"""Dense sibling ordering: model, pure compaction rules, store and manager."""

from .manager import OrderIndexManager
from .model import OrderChange, OrderedItem
from .store import ItemStore

__all__ = ["ItemStore", "OrderChange", "OrderIndexManager", "OrderedItem"]
