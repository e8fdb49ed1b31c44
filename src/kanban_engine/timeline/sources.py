"""Read-side adapters feeding the timeline projector.

A source answers the three batched questions a projection needs.  Each
method is one round trip against the backing store no matter how many ids
are passed in.  *timeout* is what is left of the request's budget; a source
that cannot answer in time raises :class:`~kanban_engine.errors.LockTimeoutError`.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional, Sequence

from loguru import logger

from ..activity.log import ActivityLog
from ..activity.model import ActivityEvent
from ..ordering.model import OrderedItem
from ..ordering.store import ItemStore
from ..utils import _parse_iso
from .model import EntityBase


class TimelineSource(ABC):
    @abstractmethod
    def fetch_entities(self, entity_ids: Sequence[str], timeout: Optional[float] = None) -> dict[str, EntityBase]:
        raise NotImplementedError

    @abstractmethod
    def fetch_children(self, parent_id: str, timeout: Optional[float] = None) -> list[EntityBase]:
        """Return the items whose ``parent_id`` is *parent_id* (an epic's subtasks)."""
        raise NotImplementedError

    @abstractmethod
    def fetch_moved_events(self, entity_ids: Sequence[str], timeout: Optional[float] = None) -> list[ActivityEvent]:
        """Return ``ENTITY_MOVED`` rows for all ids, ascending by ``(occurred_at, seq)``."""
        raise NotImplementedError

    @abstractmethod
    def fetch_container_labels(
        self, container_ids: Sequence[str], timeout: Optional[float] = None
    ) -> dict[str, str]:
        raise NotImplementedError


def _to_base(item: OrderedItem) -> EntityBase | None:
    created_at = _parse_iso(item.created_at)
    if created_at is None:
        logger.warning("Item {} has an unreadable created_at {!r}", item.id, item.created_at)
        return None
    return EntityBase(id=item.id, created_at=created_at, container_id=item.container_id, title=item.title)


class StoreTimelineSource(TimelineSource):
    """Serve projections from the file-backed item store and activity log."""

    def __init__(self, store: ItemStore, log: ActivityLog) -> None:
        self.store = store
        self.log = log

    def fetch_entities(self, entity_ids: Sequence[str], timeout: Optional[float] = None) -> dict[str, EntityBase]:
        wanted = set(entity_ids)
        out: dict[str, EntityBase] = {}
        for item in self.store.read_snapshot(timeout):
            if item.id in wanted:
                base = _to_base(item)
                if base is not None:
                    out[item.id] = base
        return out

    def fetch_children(self, parent_id: str, timeout: Optional[float] = None) -> list[EntityBase]:
        bases = (_to_base(i) for i in self.store.read_snapshot(timeout) if i.parent_id == parent_id)
        return [b for b in bases if b is not None]

    def fetch_moved_events(self, entity_ids: Sequence[str], timeout: Optional[float] = None) -> list[ActivityEvent]:
        return self.log.moved_events(entity_ids, timeout=timeout)

    def fetch_container_labels(
        self, container_ids: Sequence[str], timeout: Optional[float] = None
    ) -> dict[str, str]:
        wanted = set(container_ids)
        return {i.id: i.title or i.id for i in self.store.read_snapshot(timeout) if i.id in wanted}
