"""Cycle-time and lead-time figures derived from projected timelines."""

from __future__ import annotations

from collections import defaultdict
from typing import Collection, Iterable, Optional

from .model import EntityTimeline
from .projector import duration_days


def residency_totals(timeline: EntityTimeline) -> dict[str, int]:
    """Total days per container label; a revisited container is summed."""
    totals: dict[str, int] = defaultdict(int)
    for segment in timeline.segments:
        totals[segment.container_label] += segment.duration_days
    return dict(totals)


def lead_time_days(timeline: EntityTimeline) -> Optional[int]:
    """Days from creation to the end of the last segment (now, for open items)."""
    if not timeline.found or not timeline.segments or timeline.created_at is None:
        return None
    return duration_days(timeline.created_at, timeline.segments[-1].end_at)


def cycle_time_days(
    timeline: EntityTimeline,
    start_containers: Collection[str],
    done_containers: Collection[str],
) -> Optional[int]:
    """Days from first entering a start container to first entering a done one.

    Returns None until the entity has passed through both.
    """
    started_at = None
    for segment in timeline.segments:
        if started_at is None and segment.container_id in start_containers:
            started_at = segment.start_at
        elif started_at is not None and segment.container_id in done_containers:
            return duration_days(started_at, segment.start_at)
    return None


def average_residency(timelines: Iterable[EntityTimeline]) -> dict[str, float]:
    """Mean days spent per container label across the entities that visited it."""
    sums: dict[str, int] = defaultdict(int)
    counts: dict[str, int] = defaultdict(int)
    for timeline in timelines:
        for label, days in residency_totals(timeline).items():
            sums[label] += days
            counts[label] += 1
    return {label: round(sums[label] / counts[label], 2) for label in sums}
