"""Timeline projector: rebuild residency segments from the move log.

The per-entity algorithm is a pure function (:func:`build_segments`); the
:class:`TimelineProjector` only adds the batched I/O around it.  A request
for any number of entities costs exactly three source queries: base rows,
move events for the whole id set, and labels for the whole set of
referenced container ids.
"""

from __future__ import annotations

import math
import time
from collections import defaultdict
from datetime import datetime
from typing import Any, Callable, Iterable, Optional, Sequence, TypeVar

from loguru import logger

from ..activity.model import ActivityEvent
from ..constants import (
    DEFAULT_QUERY_TIMEOUT_SECONDS,
    DEFAULT_UNKNOWN_LABEL,
    MIN_DURATION_DAYS,
    SECONDS_PER_DAY,
)
from ..errors import LockTimeoutError, ProjectionTimeoutError
from ..utils import _as_utc, _now
from .model import EntityBase, EntityTimeline, ResidencySegment
from .sources import TimelineSource

LabelResolver = Callable[[Optional[str]], str]
_T = TypeVar("_T")


def duration_days(start_at: datetime, end_at: datetime) -> int:
    """Whole days between two instants, rounded up, never below one."""
    elapsed = (end_at - start_at).total_seconds()
    return max(MIN_DURATION_DAYS, math.ceil(elapsed / SECONDS_PER_DAY))


def _segment(
    container_id: Optional[str],
    start_at: datetime,
    end_at: datetime,
    is_current: bool,
    resolve: LabelResolver,
) -> ResidencySegment:
    return ResidencySegment(
        container_id=container_id,
        container_label=resolve(container_id),
        start_at=start_at,
        end_at=end_at,
        duration_days=duration_days(start_at, end_at),
        is_current=is_current,
    )


def build_segments(
    created_at: datetime,
    current_container_id: Optional[str],
    events: Sequence[ActivityEvent],
    now: datetime,
    resolve: Optional[LabelResolver] = None,
) -> list[ResidencySegment]:
    """Project one entity's move events into residency segments.

    *events* must already be the entity's ``ENTITY_MOVED`` rows in fetch
    order (ascending ``occurred_at``, ties by ``seq``).  They are used as
    given: out-of-order timestamps from clock skew are not corrected.
    """
    if resolve is None:
        resolve = lambda cid: cid or DEFAULT_UNKNOWN_LABEL  # noqa: E731
    if not events:
        return [_segment(current_container_id, created_at, now, True, resolve)]

    first = events[0]
    segments = [_segment(first.from_container_id, created_at, first.occurred_at, False, resolve)]
    last_idx = len(events) - 1
    for idx, event in enumerate(events):
        end_at = events[idx + 1].occurred_at if idx < last_idx else now
        segments.append(_segment(event.to_container_id, event.occurred_at, end_at, idx == last_idx, resolve))
    return segments


def _overlaps(segment: ResidencySegment, since: Optional[datetime], until: Optional[datetime]) -> bool:
    if until is not None and segment.start_at >= until:
        return False
    if since is not None:
        if segment.end_at < since:
            return False
        if segment.end_at == since and segment.start_at < since:
            return False
    return True


class _Deadline:
    """Single time budget shared by every query of one request.

    Each query gets only what is left of the budget, lock waits included.
    """

    def __init__(self, seconds: Optional[float]) -> None:
        self.seconds = seconds
        self._expires = time.monotonic() + seconds if seconds else None

    def _expired(self, stage: str) -> ProjectionTimeoutError:
        return ProjectionTimeoutError(f"Timeline query exceeded {self.seconds:.1f}s while fetching {stage}")

    def remaining(self, stage: str) -> Optional[float]:
        if self._expires is None:
            return None
        left = self._expires - time.monotonic()
        if left <= 0:
            raise self._expired(stage)
        return left

    def check(self, stage: str) -> None:
        self.remaining(stage)

    def fetch(self, stage: str, query: Callable[..., _T], *args: Any) -> _T:
        try:
            result = query(*args, timeout=self.remaining(stage))
        except LockTimeoutError as exc:
            raise self._expired(stage) from exc
        self.check(stage)
        return result


class TimelineProjector:
    """Batch-aware residency timeline projector.

    Parameters
    ----------
    source:
        Provides the three batched queries.
    clock:
        Returns "now" when a request does not pin it.
    unknown_label:
        Label used for containers missing from the lookup.
    timeout_seconds:
        Budget for the whole three-query pipeline of one request.
    """

    def __init__(
        self,
        source: TimelineSource,
        clock: Callable[[], datetime] = _now,
        unknown_label: str = DEFAULT_UNKNOWN_LABEL,
        timeout_seconds: Optional[float] = DEFAULT_QUERY_TIMEOUT_SECONDS,
    ) -> None:
        self.source = source
        self.clock = clock
        self.unknown_label = unknown_label
        self.timeout_seconds = timeout_seconds

    def project(
        self,
        entity_id: str,
        *,
        now: Optional[datetime] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> EntityTimeline:
        return self.project_many([entity_id], now=now, since=since, until=until)[0]

    def project_many(
        self,
        entity_ids: Iterable[str],
        *,
        now: Optional[datetime] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> list[EntityTimeline]:
        """Project every id in one pass; results follow the input order.

        Ids without a base row come back with ``found=False``.  On timeout
        :class:`ProjectionTimeoutError` is raised and no partial result is
        returned.
        """
        ids = list(dict.fromkeys(entity_ids))
        if not ids:
            return []
        deadline = _Deadline(self.timeout_seconds)
        bases = deadline.fetch("entities", self.source.fetch_entities, ids)
        found = [bases[i] for i in ids if i in bases]
        timelines = {t.entity_id: t for t in self._project_bases(found, deadline, now, since, until)}
        missing = [i for i in ids if i not in bases]
        if missing:
            logger.info("Timeline requested for {} unknown entities: {}", len(missing), missing)
        return [timelines.get(i) or EntityTimeline(entity_id=i, found=False) for i in ids]

    def project_children(
        self,
        parent_id: str,
        *,
        now: Optional[datetime] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> list[EntityTimeline]:
        """Project every item whose ``parent_id`` is *parent_id* (an epic's subtasks), oldest first.

        Each subtask's segments track the columns it moved through.
        """
        deadline = _Deadline(self.timeout_seconds)
        children = deadline.fetch("children", self.source.fetch_children, parent_id)
        children = sorted(children, key=lambda b: (b.created_at, b.id))
        return self._project_bases(children, deadline, now, since, until)

    def _project_bases(
        self,
        bases: Sequence[EntityBase],
        deadline: _Deadline,
        now: Optional[datetime],
        since: Optional[datetime],
        until: Optional[datetime],
    ) -> list[EntityTimeline]:
        if not bases:
            return []
        entity_ids = [b.id for b in bases]
        events = deadline.fetch("move events", self.source.fetch_moved_events, entity_ids)

        by_entity: dict[str, list[ActivityEvent]] = defaultdict(list)
        for event in events:
            by_entity[event.entity_id].append(event)

        container_ids: set[str] = {b.container_id for b in bases if b.container_id}
        for event in events:
            container_ids.update(c for c in (event.from_container_id, event.to_container_id) if c)
        labels = deadline.fetch("container labels", self.source.fetch_container_labels, sorted(container_ids))

        resolve = self._resolver(labels)
        at = _as_utc(now if now is not None else self.clock())
        since = _as_utc(since) if since is not None else None
        until = _as_utc(until) if until is not None else None

        timelines: list[EntityTimeline] = []
        for base in bases:
            segments = build_segments(base.created_at, base.container_id, by_entity.get(base.id, []), at, resolve)
            if since is not None or until is not None:
                segments = [s for s in segments if _overlaps(s, since, until)]
            timelines.append(
                EntityTimeline(entity_id=base.id, title=base.title, created_at=base.created_at, segments=segments)
            )
        return timelines

    def _resolver(self, labels: dict[str, str]) -> LabelResolver:
        reported: set[Optional[str]] = set()

        def resolve(container_id: Optional[str]) -> str:
            label = labels.get(container_id) if container_id else None
            if label is not None:
                return label
            if container_id not in reported:
                reported.add(container_id)
                logger.warning("No label for container {}; using {!r}", container_id, self.unknown_label)
            return self.unknown_label

        return resolve
