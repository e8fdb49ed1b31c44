"""Residency timeline projection over the activity log."""

from .model import EntityBase, EntityTimeline, ResidencySegment
from .projector import TimelineProjector, build_segments, duration_days
from .sources import StoreTimelineSource, TimelineSource

__all__ = [
    "EntityBase",
    "EntityTimeline",
    "ResidencySegment",
    "StoreTimelineSource",
    "TimelineProjector",
    "TimelineSource",
    "build_segments",
    "duration_days",
]
