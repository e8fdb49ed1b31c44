"""Load optional engine configuration from `.kanban_engine/config.yaml`."""

from __future__ import annotations

from pathlib import Path
from typing import Any

from .constants import (
    CONFIG_FILE,
    DEFAULT_LOCK_TIMEOUT_SECONDS,
    DEFAULT_LOG_LEVEL,
    DEFAULT_ORDER_BASE,
    DEFAULT_QUERY_TIMEOUT_SECONDS,
    DEFAULT_UNKNOWN_LABEL,
    STATE_DIR_NAME,
)
from .io_utils import _load_data_with_error


def load_engine_config(project_dir: Path) -> tuple[dict[str, Any], str | None]:
    """Load the optional engine config file.

    Args:
        project_dir: Directory holding the `.kanban_engine/` state directory.

    Returns:
        A tuple of `(config, error_message)`. If the file is missing, returns `({}, None)`.
    """
    project_dir = project_dir.resolve()
    path = project_dir / STATE_DIR_NAME / CONFIG_FILE
    data, err = _load_data_with_error(path, {})
    if not path.exists():
        return {}, None
    if err:
        return {}, err
    return data, None


def _get_nested(config: dict[str, Any], *keys: str) -> Any:
    cur: Any = config
    for key in keys:
        if not isinstance(cur, dict):
            return None
        cur = cur.get(key)
    return cur


def _positive_float(raw: Any, default: float) -> float:
    if isinstance(raw, bool) or not isinstance(raw, (int, float)):
        return default
    return float(raw) if raw > 0 else default


def get_order_base(config: dict[str, Any]) -> int:
    """Return the first order value of a sibling group (0 or 1).

    Args:
        config: Engine configuration dictionary.

    Returns:
        `ordering.base` when it is 0 or 1, otherwise the default of 0.
    """
    raw = _get_nested(config, "ordering", "base")
    if raw in (0, 1) and not isinstance(raw, bool):
        return int(raw)
    return DEFAULT_ORDER_BASE


def get_unknown_label(config: dict[str, Any]) -> str:
    raw = _get_nested(config, "timeline", "unknown_label")
    if isinstance(raw, str) and raw.strip():
        return raw
    return DEFAULT_UNKNOWN_LABEL


def get_query_timeout(config: dict[str, Any]) -> float:
    """Extract the timeline pipeline timeout in seconds.

    Args:
        config: Engine configuration dictionary.

    Returns:
        `timeline.query_timeout_seconds` if positive, else the default.
    """
    return _positive_float(
        _get_nested(config, "timeline", "query_timeout_seconds"),
        DEFAULT_QUERY_TIMEOUT_SECONDS,
    )


def get_lock_timeout(config: dict[str, Any]) -> float:
    return _positive_float(
        _get_nested(config, "store", "lock_timeout_seconds"),
        DEFAULT_LOCK_TIMEOUT_SECONDS,
    )


def get_log_level(config: dict[str, Any]) -> str:
    raw = _get_nested(config, "logging", "level")
    if isinstance(raw, str) and raw.strip():
        return raw.strip().upper()
    return DEFAULT_LOG_LEVEL
