"""Record domain events without ever failing the triggering mutation.

A failed append is logged and dropped.  The log is the only record of how
an item reached its current container, so every dropped write makes later
timelines less accurate; callers accept that in exchange for mutations that
never fail on logging.
"""

from __future__ import annotations

from datetime import datetime
from typing import Callable, Optional

from loguru import logger

from ..utils import _now
from .log import ActivityLog
from .model import ActivityEvent, ActivityType


class ActivityRecorder:
    """Write-only front of the activity log."""

    def __init__(self, log: ActivityLog, clock: Callable[[], datetime] = _now) -> None:
        self.log = log
        self.clock = clock

    def record(
        self,
        entity_id: str,
        event_type: ActivityType,
        from_container_id: Optional[str] = None,
        to_container_id: Optional[str] = None,
        *,
        actor: Optional[str] = None,
        board_id: Optional[str] = None,
        content: Optional[str] = None,
    ) -> Optional[ActivityEvent]:
        """Append one event stamped with the current time.

        Returns the stored event, or ``None`` when the write failed.
        """
        try:
            event = ActivityEvent(
                entity_id=entity_id,
                type=ActivityType(event_type),
                occurred_at=self.clock(),
                from_container_id=from_container_id,
                to_container_id=to_container_id,
                actor=actor,
                board_id=board_id,
                content=content,
            )
            stored = self.log.append(event)
        except Exception:
            logger.exception("Failed to append activity {} for {}", event_type, entity_id)
            return None
        logger.debug("Recorded {} for {} (seq {})", stored.type.value, entity_id, stored.seq)
        return stored
