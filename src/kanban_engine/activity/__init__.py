"""Append-only activity log and the non-fatal recorder that feeds it."""

from .log import ActivityLog
from .model import ActivityEvent, ActivityType
from .recorder import ActivityRecorder

__all__ = ["ActivityEvent", "ActivityLog", "ActivityRecorder", "ActivityType"]
