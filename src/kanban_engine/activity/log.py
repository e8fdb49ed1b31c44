"""JSON-lines activity log.

Rows are only ever appended; nothing in this module rewrites or deletes a
line.  Appends take the log's file lock so ``seq`` stays strictly
increasing across processes.
"""

from __future__ import annotations

import dataclasses
import threading
from pathlib import Path
from typing import Iterable, Optional

from filelock import FileLock
from loguru import logger

from ..constants import ACTIVITY_FILE, ACTIVITY_LOCK_FILE, DEFAULT_LOCK_TIMEOUT_SECONDS
from ..io_utils import _append_jsonl, _read_jsonl
from ..locks import _hold
from .model import ActivityEvent, ActivityType


class ActivityLog:
    """Append-only event log backed by ``activity.jsonl``.

    Parameters
    ----------
    state_dir:
        Path to the ``.kanban_engine/`` directory.
    lock_timeout:
        Default seconds to wait for the log lock.
    """

    def __init__(self, state_dir: Path, lock_timeout: float = DEFAULT_LOCK_TIMEOUT_SECONDS) -> None:
        self._path = state_dir / ACTIVITY_FILE
        self._lock = FileLock(str(state_dir / ACTIVITY_LOCK_FILE), timeout=lock_timeout)
        self._thread_lock = threading.RLock()

    @property
    def path(self) -> Path:
        return self._path

    def append(self, event: ActivityEvent) -> ActivityEvent:
        """Write *event* with the next sequence number and return the stored row."""
        with _hold(self._thread_lock, self._lock):
            # A torn final line is skipped by _read_jsonl, so look a few rows back.
            tail = _read_jsonl(self._path, limit=8)
            seq = max((int(row.get("seq") or 0) for row in tail), default=0) + 1
            stored = dataclasses.replace(event, seq=seq)
            _append_jsonl(self._path, stored.to_dict())
        return stored

    def _rows(self, limit: Optional[int] = None, timeout: Optional[float] = None) -> list[dict]:
        with _hold(self._thread_lock, self._lock, timeout):
            return _read_jsonl(self._path, limit=limit)

    def _load(self, timeout: Optional[float] = None) -> list[ActivityEvent]:
        events: list[ActivityEvent] = []
        for row in self._rows(timeout=timeout):
            try:
                events.append(ActivityEvent.from_dict(row))
            except ValueError as exc:
                logger.warning("Skipping unreadable activity row {}: {}", row.get("id"), exc)
        return events

    def query(
        self,
        *,
        entity_ids: Optional[Iterable[str]] = None,
        types: Optional[Iterable[ActivityType]] = None,
        timeout: Optional[float] = None,
    ) -> list[ActivityEvent]:
        """Return matching events ordered by ``(occurred_at, seq)``.

        One pass over the log regardless of how many ids are requested.
        *timeout* caps the wait for the log lock.
        """
        id_filter = set(entity_ids) if entity_ids is not None else None
        type_filter = set(types) if types is not None else None
        out = [
            e
            for e in self._load(timeout)
            if (id_filter is None or e.entity_id in id_filter)
            and (type_filter is None or e.type in type_filter)
        ]
        out.sort(key=lambda e: e.sort_key)
        return out

    def moved_events(self, entity_ids: Iterable[str], timeout: Optional[float] = None) -> list[ActivityEvent]:
        return self.query(entity_ids=entity_ids, types=[ActivityType.ENTITY_MOVED], timeout=timeout)

    def events_for(self, entity_id: str) -> list[ActivityEvent]:
        return self.query(entity_ids=[entity_id])

    def recent(self, limit: int = 100) -> list[ActivityEvent]:
        """Return the last *limit* rows in append order."""
        if limit < 1:
            return []
        events: list[ActivityEvent] = []
        for row in self._rows(limit=limit):
            try:
                events.append(ActivityEvent.from_dict(row))
            except ValueError:
                continue
        return events
