"""Pydantic models for the shapes handed to route handlers."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from .ordering.model import OrderChange
from .timeline.model import EntityTimeline, ResidencySegment


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SegmentOut(_CamelModel):
    """One residency segment."""

    container_id: Optional[str] = None
    container_label: str
    start_at: datetime
    end_at: datetime
    duration_days: int = Field(ge=1)
    is_current: bool = False

    @classmethod
    def from_segment(cls, segment: ResidencySegment) -> "SegmentOut":
        return cls(
            container_id=segment.container_id,
            container_label=segment.container_label,
            start_at=segment.start_at,
            end_at=segment.end_at,
            duration_days=segment.duration_days,
            is_current=segment.is_current,
        )


class EntityTimelineOut(_CamelModel):
    """Timeline of one entity; ``found`` is False for unknown ids."""

    entity_id: str
    title: str = ""
    created_at: Optional[datetime] = None
    found: bool = True
    segments: list[SegmentOut] = Field(default_factory=list)

    @classmethod
    def from_timeline(cls, timeline: EntityTimeline) -> "EntityTimelineOut":
        return cls(
            entity_id=timeline.entity_id,
            title=timeline.title,
            created_at=timeline.created_at,
            found=timeline.found,
            segments=[SegmentOut.from_segment(s) for s in timeline.segments],
        )


class OrderChangeOut(_CamelModel):
    """Order update returned by a mutation."""

    item_id: str
    container_id: str
    old_order: Optional[int] = None
    new_order: Optional[int] = None
    old_container_id: Optional[str] = None

    @classmethod
    def from_change(cls, change: OrderChange) -> "OrderChangeOut":
        return cls(**change.to_dict())


class TimelineQuery(_CamelModel):
    """Inbound timeline request: entity ids plus an optional date window."""

    entity_ids: list[str] = Field(min_length=1)
    since: Optional[datetime] = None
    until: Optional[datetime] = None

    @model_validator(mode="after")
    def _check_window(self) -> "TimelineQuery":
        if self.since is not None and self.until is not None and self.since >= self.until:
            raise ValueError("since must be earlier than until")
        return self


def dump_timelines(timelines: Iterable[EntityTimeline]) -> list[dict[str, Any]]:
    return [EntityTimelineOut.from_timeline(t).model_dump(mode="json", by_alias=True) for t in timelines]


def dump_changes(changes: Iterable[OrderChange]) -> list[dict[str, Any]]:
    return [OrderChangeOut.from_change(c).model_dump(mode="json", by_alias=True) for c in changes]
