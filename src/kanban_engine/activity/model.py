"""Immutable activity events."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from ..utils import _generate_id, _now, _parse_iso, _to_iso


class ActivityType(str, Enum):
    """Kinds of domain events written to the activity log."""

    ENTITY_CREATED = "ENTITY_CREATED"
    ENTITY_UPDATED = "ENTITY_UPDATED"
    ENTITY_MOVED = "ENTITY_MOVED"
    ENTITY_DELETED = "ENTITY_DELETED"
    COMMENT_ADDED = "COMMENT_ADDED"
    BOARD_UPDATED = "BOARD_UPDATED"
    START_DATE_ADDED = "START_DATE_ADDED"
    START_DATE_UPDATED = "START_DATE_UPDATED"
    START_DATE_REMOVED = "START_DATE_REMOVED"
    DUE_DATE_ADDED = "DUE_DATE_ADDED"
    DUE_DATE_UPDATED = "DUE_DATE_UPDATED"
    DUE_DATE_REMOVED = "DUE_DATE_REMOVED"
    ENTITY_ASSIGNED = "ENTITY_ASSIGNED"
    ENTITY_UNASSIGNED = "ENTITY_UNASSIGNED"
    EPIC_CREATED = "EPIC_CREATED"
    EPIC_UPDATED = "EPIC_UPDATED"
    MEETING_NOTE_ADDED = "MEETING_NOTE_ADDED"
    QUICK_NOTE_ADDED = "QUICK_NOTE_ADDED"


@dataclass(frozen=True)
class ActivityEvent:
    """One row of the append-only log.

    ``seq`` is assigned by the log on append and breaks ties between events
    sharing the same ``occurred_at``.
    """

    entity_id: str
    type: ActivityType
    occurred_at: datetime = field(default_factory=_now)
    from_container_id: Optional[str] = None
    to_container_id: Optional[str] = None
    id: str = field(default_factory=lambda: _generate_id("act"))
    seq: int = 0
    actor: Optional[str] = None
    board_id: Optional[str] = None
    content: Optional[str] = None

    @property
    def sort_key(self) -> tuple[datetime, int]:
        return (self.occurred_at, self.seq)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "seq": self.seq,
            "type": self.type.value,
            "entity_id": self.entity_id,
            "from_container_id": self.from_container_id,
            "to_container_id": self.to_container_id,
            "occurred_at": _to_iso(self.occurred_at),
            "actor": self.actor,
            "board_id": self.board_id,
            "content": self.content,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ActivityEvent":
        """Deserialize a log row; raises ``ValueError`` for unusable rows."""
        occurred_at = _parse_iso(data.get("occurred_at"))
        if occurred_at is None:
            raise ValueError(f"Activity row {data.get('id')} has no valid occurred_at")
        return cls(
            id=str(data.get("id") or _generate_id("act")),
            seq=int(data.get("seq") or 0),
            type=ActivityType(str(data.get("type"))),
            entity_id=str(data.get("entity_id") or ""),
            from_container_id=data.get("from_container_id"),
            to_container_id=data.get("to_container_id"),
            occurred_at=occurred_at,
            actor=data.get("actor"),
            board_id=data.get("board_id"),
            content=data.get("content"),
        )
