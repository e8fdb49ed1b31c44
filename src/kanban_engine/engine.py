"""Wire the store, activity log, order manager and projector for one project."""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Optional

from .activity import ActivityLog, ActivityRecorder
from .config import (
    get_lock_timeout,
    get_order_base,
    get_query_timeout,
    get_unknown_label,
    load_engine_config,
)
from .constants import STATE_DIR_NAME
from .errors import ConfigError
from .ordering import ItemStore, OrderIndexManager
from .timeline import StoreTimelineSource, TimelineProjector
from .utils import _now


class HistoryEngine:
    """Position & history engine bound to ``<project_dir>/.kanban_engine``.

    Parameters
    ----------
    project_dir:
        Directory holding the engine state directory.
    config:
        Explicit configuration; when omitted ``config.yaml`` is loaded.
    clock:
        Time source for activity stamps and timeline "now".
    """

    def __init__(
        self,
        project_dir: Path,
        config: Optional[dict[str, Any]] = None,
        clock: Callable[[], datetime] = _now,
    ) -> None:
        self.project_dir = project_dir.resolve()
        if config is None:
            config, err = load_engine_config(self.project_dir)
            if err:
                raise ConfigError(f"Invalid engine config: {err}")
        self.config = config
        self.state_dir = self.project_dir / STATE_DIR_NAME
        self.state_dir.mkdir(parents=True, exist_ok=True)

        lock_timeout = get_lock_timeout(config)
        self.store = ItemStore(self.state_dir, base=get_order_base(config), lock_timeout=lock_timeout)
        self.log = ActivityLog(self.state_dir, lock_timeout=lock_timeout)
        self.recorder = ActivityRecorder(self.log, clock=clock)
        self.orders = OrderIndexManager(self.store, self.recorder, clock=clock)
        self.timelines = TimelineProjector(
            StoreTimelineSource(self.store, self.log),
            clock=clock,
            unknown_label=get_unknown_label(config),
            timeout_seconds=get_query_timeout(config),
        )
