"""Ordered item model for sibling groups (tasks in a column, columns in a board)."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Optional

from ..constants import ITEM_KIND_TASK
from ..utils import _now_iso


@dataclass
class OrderedItem:
    """An entity holding a position inside its parent container.

    ``order`` is unique within ``container_id`` and the orders of one
    container always form a contiguous run starting at the configured base.
    ``parent_id`` links a subtask to its epic independently of the column
    it sits in.
    """

    id: str
    container_id: str
    order: int = 0
    title: str = ""
    kind: str = ITEM_KIND_TASK
    created_at: str = field(default_factory=_now_iso)
    parent_id: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "OrderedItem":
        return cls(
            id=str(data.get("id") or ""),
            container_id=str(data.get("container_id") or ""),
            order=int(data.get("order") or 0),
            title=str(data.get("title") or ""),
            kind=str(data.get("kind") or ITEM_KIND_TASK),
            created_at=str(data.get("created_at") or _now_iso()),
            parent_id=str(data["parent_id"]) if data.get("parent_id") else None,
        )


@dataclass
class OrderChange:
    """Before/after position of one item touched by a mutation.

    ``old_order`` is None for a freshly appended item and ``new_order`` is
    None for a removed one.
    """

    item_id: str
    container_id: str
    old_order: Optional[int]
    new_order: Optional[int]
    old_container_id: Optional[str] = None

    @property
    def moved_container(self) -> bool:
        return self.old_container_id is not None and self.old_container_id != self.container_id

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
