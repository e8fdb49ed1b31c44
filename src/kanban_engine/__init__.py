"""Provide the public `kanban_engine` package exports."""

from __future__ import annotations

from .activity import ActivityEvent, ActivityLog, ActivityRecorder, ActivityType
from .engine import HistoryEngine
from .errors import (
    ConfigError,
    DuplicateItemError,
    EngineError,
    ItemNotFoundError,
    LockTimeoutError,
    OrderIntegrityError,
    ProjectionTimeoutError,
)
from .ordering import ItemStore, OrderChange, OrderedItem, OrderIndexManager
from .timeline import EntityTimeline, ResidencySegment, TimelineProjector, build_segments

__all__ = [
    "ActivityEvent",
    "ActivityLog",
    "ActivityRecorder",
    "ActivityType",
    "ConfigError",
    "DuplicateItemError",
    "EngineError",
    "EntityTimeline",
    "HistoryEngine",
    "ItemNotFoundError",
    "ItemStore",
    "LockTimeoutError",
    "OrderChange",
    "OrderIndexManager",
    "OrderIntegrityError",
    "OrderedItem",
    "ProjectionTimeoutError",
    "ResidencySegment",
    "TimelineProjector",
    "build_segments",
]
