"""Derived timeline shapes; computed per query and never persisted."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from ..utils import _to_iso


@dataclass(frozen=True)
class EntityBase:
    """The base row a timeline starts from."""

    id: str
    created_at: datetime
    container_id: Optional[str]
    title: str = ""


@dataclass(frozen=True)
class ResidencySegment:
    """A half-open interval ``[start_at, end_at)`` spent in one container."""

    container_id: Optional[str]
    container_label: str
    start_at: datetime
    end_at: datetime
    duration_days: int
    is_current: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "container_id": self.container_id,
            "container_label": self.container_label,
            "start_at": _to_iso(self.start_at),
            "end_at": _to_iso(self.end_at),
            "duration_days": self.duration_days,
            "is_current": self.is_current,
        }


@dataclass
class EntityTimeline:
    """Projection result for one entity.

    ``found`` is False when the entity id had no base row; such timelines
    carry no segments.
    """

    entity_id: str
    title: str = ""
    created_at: Optional[datetime] = None
    segments: list[ResidencySegment] = field(default_factory=list)
    found: bool = True

    @property
    def current(self) -> Optional[ResidencySegment]:
        for segment in reversed(self.segments):
            if segment.is_current:
                return segment
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "entity_id": self.entity_id,
            "title": self.title,
            "created_at": _to_iso(self.created_at) if self.created_at else None,
            "found": self.found,
            "segments": [s.to_dict() for s in self.segments],
        }
