"""Tests for residency timeline projection."""

from __future__ import annotations

import threading
import time
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional, Sequence

import pytest
from loguru import logger

from kanban_engine.activity import ActivityEvent, ActivityLog, ActivityRecorder, ActivityType
from kanban_engine.errors import ProjectionTimeoutError
from kanban_engine.ordering import ItemStore, OrderIndexManager
from kanban_engine.timeline import StoreTimelineSource, TimelineProjector, build_segments
from kanban_engine.timeline import projector as projector_module
from kanban_engine.timeline.model import EntityBase
from kanban_engine.timeline.projector import duration_days
from kanban_engine.timeline.sources import TimelineSource

T0 = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime = T0) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


def _move(entity_id: str, src: str, dst: str, at: datetime, seq: int = 0) -> ActivityEvent:
    return ActivityEvent(
        entity_id=entity_id,
        type=ActivityType.ENTITY_MOVED,
        occurred_at=at,
        from_container_id=src,
        to_container_id=dst,
        seq=seq,
    )


class CountingSource(TimelineSource):
    """In-memory source that records every query it receives."""

    def __init__(
        self,
        bases: Sequence[EntityBase],
        events: Sequence[ActivityEvent],
        labels: dict[str, str],
        parents: Optional[dict[str, str]] = None,
    ) -> None:
        self.bases = {b.id: b for b in bases}
        self.parents = dict(parents or {})
        self.events = sorted(events, key=lambda e: e.sort_key)
        self.labels = labels
        self.calls: list[str] = []

    def fetch_entities(self, entity_ids, timeout=None):
        self.calls.append("entities")
        return {i: self.bases[i] for i in entity_ids if i in self.bases}

    def fetch_children(self, parent_id, timeout=None):
        self.calls.append("children")
        return [b for b in self.bases.values() if self.parents.get(b.id) == parent_id]

    def fetch_moved_events(self, entity_ids, timeout=None):
        self.calls.append("events")
        wanted = set(entity_ids)
        return [e for e in self.events if e.entity_id in wanted]

    def fetch_container_labels(self, container_ids, timeout=None):
        self.calls.append("labels")
        return {c: self.labels[c] for c in container_ids if c in self.labels}


def _source_abc() -> CountingSource:
    bases = [
        EntityBase(id="t1", created_at=T0, container_id="c", title="Write docs"),
        EntityBase(id="t2", created_at=T0 + timedelta(days=1), container_id="a", title="Fix bug"),
        EntityBase(id="t3", created_at=T0 + timedelta(days=3), container_id="b", title="Review"),
    ]
    events = [
        _move("t1", "a", "b", T0 + timedelta(days=2), seq=1),
        _move("t1", "b", "c", T0 + timedelta(days=9), seq=2),
        _move("t3", "a", "b", T0 + timedelta(days=4), seq=3),
    ]
    labels = {"a": "To do", "b": "In progress", "c": "Done"}
    return CountingSource(bases, events, labels)


# ---------------------------------------------------------------------------
# Pure segment building
# ---------------------------------------------------------------------------

class TestDurationDays:
    @pytest.mark.parametrize(
        "elapsed, expected",
        [
            (timedelta(0), 1),
            (timedelta(minutes=5), 1),
            (timedelta(days=1), 1),
            (timedelta(days=1, seconds=1), 2),
            (timedelta(days=7), 7),
        ],
    )
    def test_rounds_up_with_floor(self, elapsed: timedelta, expected: int) -> None:
        assert duration_days(T0, T0 + elapsed) == expected

    def test_negative_span_is_floored(self) -> None:
        assert duration_days(T0, T0 - timedelta(days=3)) == 1


class TestBuildSegments:
    def test_no_moves_single_current_segment(self) -> None:
        now = T0 + timedelta(days=3)
        segments = build_segments(T0, "a", [], now)
        assert len(segments) == 1
        assert segments[0].container_id == "a"
        assert (segments[0].start_at, segments[0].end_at) == (T0, now)
        assert segments[0].is_current
        assert segments[0].duration_days == 3

    def test_three_columns(self) -> None:
        events = [
            _move("t1", "a", "b", T0 + timedelta(days=2)),
            _move("t1", "b", "c", T0 + timedelta(days=9)),
        ]
        segments = build_segments(T0, "c", events, T0 + timedelta(days=14))

        assert [s.container_id for s in segments] == ["a", "b", "c"]
        assert [s.duration_days for s in segments] == [2, 7, 5]
        assert [s.is_current for s in segments] == [False, False, True]

    def test_segments_are_contiguous(self) -> None:
        events = [
            _move("t1", "a", "b", T0 + timedelta(hours=5)),
            _move("t1", "b", "a", T0 + timedelta(hours=6)),
            _move("t1", "a", "c", T0 + timedelta(days=4)),
        ]
        segments = build_segments(T0, "c", events, T0 + timedelta(days=5))

        assert segments[0].start_at == T0
        for prev, nxt in zip(segments, segments[1:]):
            assert prev.end_at == nxt.start_at
        assert segments[-1].end_at == T0 + timedelta(days=5)
        assert all(s.duration_days >= 1 for s in segments)

    def test_skewed_events_are_kept_in_given_order(self) -> None:
        events = [
            _move("t1", "a", "b", T0 + timedelta(days=3), seq=1),
            _move("t1", "b", "c", T0 + timedelta(days=2), seq=2),
        ]
        segments = build_segments(T0, "c", events, T0 + timedelta(days=5))

        assert [s.container_id for s in segments] == ["a", "b", "c"]
        assert segments[1].duration_days == 1

    def test_idempotent_with_fixed_now(self) -> None:
        events = [_move("t1", "a", "b", T0 + timedelta(days=2))]
        now = T0 + timedelta(days=6)
        assert build_segments(T0, "b", events, now) == build_segments(T0, "b", events, now)


# ---------------------------------------------------------------------------
# Projector with a counting source
# ---------------------------------------------------------------------------

class TestTimelineProjector:
    def test_project_uses_labels(self) -> None:
        source = _source_abc()
        projector = TimelineProjector(source, clock=FakeClock(T0 + timedelta(days=14)))

        timeline = projector.project("t1")

        assert timeline.found
        assert timeline.title == "Write docs"
        assert [s.container_label for s in timeline.segments] == ["To do", "In progress", "Done"]
        assert [s.duration_days for s in timeline.segments] == [2, 7, 5]
        assert timeline.current.container_label == "Done"

    def test_batch_uses_exactly_three_queries(self) -> None:
        source = _source_abc()
        projector = TimelineProjector(source)

        projector.project_many(["t1", "t2", "t3"], now=T0 + timedelta(days=14))

        assert source.calls == ["entities", "events", "labels"]

    def test_batch_matches_single_projection(self) -> None:
        now = T0 + timedelta(days=14)
        batch = TimelineProjector(_source_abc()).project_many(["t3", "t1", "t2"], now=now)
        singles = [TimelineProjector(_source_abc()).project(i, now=now) for i in ("t3", "t1", "t2")]

        assert [t.entity_id for t in batch] == ["t3", "t1", "t2"]
        assert [t.segments for t in batch] == [t.segments for t in singles]

    def test_unknown_ids_are_not_found(self) -> None:
        source = _source_abc()
        timelines = TimelineProjector(source).project_many(["ghost", "t2"], now=T0 + timedelta(days=2))

        assert [t.found for t in timelines] == [False, True]
        assert timelines[0].segments == []
        assert timelines[1].segments[0].container_label == "To do"

    def test_all_unknown_ids_skip_later_queries(self) -> None:
        source = _source_abc()
        timelines = TimelineProjector(source).project_many(["ghost"])
        assert [t.found for t in timelines] == [False]
        assert source.calls == ["entities"]

    def test_duplicate_ids_projected_once(self) -> None:
        timelines = TimelineProjector(_source_abc()).project_many(["t1", "t1"], now=T0 + timedelta(days=14))
        assert [t.entity_id for t in timelines] == ["t1"]

    def test_empty_request(self) -> None:
        source = _source_abc()
        assert TimelineProjector(source).project_many([]) == []
        assert source.calls == []

    def test_missing_label_falls_back_and_logs_once(self) -> None:
        source = _source_abc()
        del source.labels["b"]
        messages: list[str] = []
        sink_id = logger.add(messages.append, level="WARNING")
        try:
            timelines = TimelineProjector(source).project_many(["t1", "t3"], now=T0 + timedelta(days=14))
        finally:
            logger.remove(sink_id)

        labels = [s.container_label for t in timelines for s in t.segments]
        assert labels.count("Unknown") == 2
        assert sum("No label for container b" in m for m in messages) == 1

    def test_custom_unknown_label(self) -> None:
        source = _source_abc()
        source.labels.clear()
        timeline = TimelineProjector(source, unknown_label="(deleted)").project("t2", now=T0 + timedelta(days=2))
        assert timeline.segments[0].container_label == "(deleted)"

    def test_window_keeps_overlapping_segments(self) -> None:
        projector = TimelineProjector(_source_abc())
        timeline = projector.project(
            "t1",
            now=T0 + timedelta(days=14),
            since=T0 + timedelta(days=3),
            until=T0 + timedelta(days=10),
        )
        assert [s.container_id for s in timeline.segments] == ["b", "c"]
        assert timeline.segments[0].start_at == T0 + timedelta(days=2)

    def test_window_excludes_segment_ending_at_since(self) -> None:
        projector = TimelineProjector(_source_abc())
        timeline = projector.project("t1", now=T0 + timedelta(days=14), since=T0 + timedelta(days=2))
        assert [s.container_id for s in timeline.segments] == ["b", "c"]

    def test_project_children_oldest_first(self) -> None:
        source = _source_abc()
        source.bases["t4"] = EntityBase(id="t4", created_at=T0 - timedelta(days=1), container_id="a")
        source.parents.update({"t1": "epic-1", "t4": "epic-1", "t3": "epic-2"})

        timelines = TimelineProjector(source).project_children("epic-1", now=T0 + timedelta(days=14))

        assert [t.entity_id for t in timelines] == ["t4", "t1"]
        assert [s.container_label for s in timelines[1].segments] == ["To do", "In progress", "Done"]
        assert source.calls == ["children", "events", "labels"]

    def test_timeout_returns_nothing(self, monkeypatch: pytest.MonkeyPatch) -> None:
        ticks = iter([0.0, 0.2, 0.5, 5.0])
        monkeypatch.setattr(projector_module.time, "monotonic", lambda: next(ticks, 5.0))
        projector = TimelineProjector(_source_abc(), timeout_seconds=1.0)

        with pytest.raises(ProjectionTimeoutError, match="move events"):
            projector.project_many(["t1", "t2"], now=T0 + timedelta(days=14))

    def test_timeout_disabled(self) -> None:
        projector = TimelineProjector(_source_abc(), timeout_seconds=None)
        assert projector.project("t1", now=T0 + timedelta(days=14)).found


# ---------------------------------------------------------------------------
# End to end through the file store
# ---------------------------------------------------------------------------

class TestStoreBackedTimeline:
    @pytest.fixture
    def clock(self) -> FakeClock:
        return FakeClock()

    @pytest.fixture
    def setup(self, tmp_path: Path, clock: FakeClock):
        state_dir = tmp_path / ".kanban_engine"
        state_dir.mkdir()
        store = ItemStore(state_dir)
        log = ActivityLog(state_dir)
        manager = OrderIndexManager(store, ActivityRecorder(log, clock), clock=clock)
        projector = TimelineProjector(StoreTimelineSource(store, log), clock=clock)
        for col, title in (("col-a", "To do"), ("col-b", "Doing"), ("col-c", "Done")):
            manager.append("board-1", col, title=title, kind="column")
        return manager, projector

    def test_a_b_c_scenario(self, setup, clock: FakeClock) -> None:
        manager, projector = setup
        manager.append("col-a", "t1", title="Ship it")
        clock.advance(days=2)
        manager.move("t1", "col-b")
        clock.advance(days=7)
        manager.move("t1", "col-c")
        clock.advance(days=5)

        timeline = projector.project("t1")

        assert [(s.container_label, s.duration_days, s.is_current) for s in timeline.segments] == [
            ("To do", 2, False),
            ("Doing", 7, False),
            ("Done", 5, True),
        ]

    def test_zero_moves(self, setup, clock: FakeClock) -> None:
        manager, projector = setup
        manager.append("col-b", "t1")
        clock.advance(hours=3)

        timeline = projector.project("t1")

        assert len(timeline.segments) == 1
        assert timeline.segments[0].container_id == "col-b"
        assert timeline.segments[0].start_at == T0
        assert timeline.segments[0].end_at == T0 + timedelta(hours=3)
        assert timeline.segments[0].is_current

    def test_reorder_within_column_adds_no_segment(self, setup, clock: FakeClock) -> None:
        manager, projector = setup
        manager.append("col-a", "t1")
        manager.append("col-a", "t2")
        clock.advance(days=1)
        manager.move("t2", "col-a", position=0)

        assert len(projector.project("t2").segments) == 1

    def test_deleted_column_label_is_unknown(self, setup, clock: FakeClock) -> None:
        manager, projector = setup
        manager.append("col-a", "t1")
        clock.advance(days=1)
        manager.move("t1", "col-b")
        manager.delete_container("col-a", delete_children=False)

        timeline = projector.project("t1")

        assert [s.container_label for s in timeline.segments] == ["Unknown", "Doing"]

    def test_epic_subtasks_track_their_columns(self, setup, clock: FakeClock) -> None:
        manager, projector = setup
        manager.append("col-a", "epic-1", title="Checkout", kind="epic")
        manager.append("col-a", "s1", title="Cart", parent_id="epic-1")
        clock.advance(hours=1)
        manager.append("col-b", "s2", title="Payment", parent_id="epic-1")
        manager.append("col-a", "other")
        clock.advance(days=3)
        manager.move("s1", "col-c")
        clock.advance(days=2)

        timelines = projector.project_children("epic-1")

        assert [t.entity_id for t in timelines] == ["s1", "s2"]
        assert [(s.container_label, s.duration_days) for s in timelines[0].segments] == [
            ("To do", 4),
            ("Done", 2),
        ]
        assert [s.container_label for s in timelines[1].segments] == ["Doing"]
        assert timelines[1].current.container_id == "col-b"

    def test_lock_wait_counts_against_timeout(self, tmp_path: Path, setup) -> None:
        manager, _ = setup
        manager.append("col-a", "t1")
        state_dir = tmp_path / ".kanban_engine"
        projector = TimelineProjector(
            StoreTimelineSource(ItemStore(state_dir), ActivityLog(state_dir)),
            timeout_seconds=0.3,
        )
        holder = ItemStore(state_dir)
        held = threading.Event()
        release = threading.Event()

        def _hold() -> None:
            with holder.locked():
                held.set()
                release.wait(10)

        thread = threading.Thread(target=_hold)
        thread.start()
        assert held.wait(5)
        started = time.monotonic()
        try:
            with pytest.raises(ProjectionTimeoutError, match="entities"):
                projector.project("t1")
        finally:
            release.set()
            thread.join(5)

        assert time.monotonic() - started < 3
