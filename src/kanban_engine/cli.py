from __future__ import annotations

import argparse
import json
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

import yaml
from loguru import logger
from rich.console import Console
from rich.table import Table

from .config import get_log_level
from .constants import ITEM_KIND_COLUMN, ITEM_KIND_TASK
from .engine import HistoryEngine
from .errors import EngineError
from .schemas import TimelineQuery, dump_changes, dump_timelines
from .timeline.analytics import lead_time_days, residency_totals
from .timeline.model import EntityTimeline
from .utils import _parse_iso


def _configure_logging(level: str = 'INFO') -> None:
    """Configure loguru logger with the specified level."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=level.upper(),
        format=(
            '<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | '
            '<level>{level: <8}</level> | '
            '<cyan>{module}</cyan>:<cyan>{line}</cyan> - '
            '{message}'
        ),
    )


def _datetime_arg(value: str) -> datetime:
    parsed = _parse_iso(value)
    if parsed is None:
        raise argparse.ArgumentTypeError(f'Invalid ISO-8601 timestamp: {value}')
    return parsed


def _resolve_project_dir(project_dir: Optional[str]) -> Path:
    return Path(project_dir).expanduser().resolve() if project_dir else Path.cwd().resolve()


def _engine(args: argparse.Namespace) -> HistoryEngine:
    engine = HistoryEngine(_resolve_project_dir(args.project_dir))
    _configure_logging(args.log_level or get_log_level(engine.config))
    return engine


def _emit(payload: Any) -> int:
    sys.stdout.write(json.dumps(payload, indent=2) + '\n')
    return 0


def _item_add(args: argparse.Namespace) -> int:
    engine = _engine(args)
    order = engine.orders.append(
        args.container_id,
        args.item_id,
        title=args.title,
        kind=args.kind,
        parent_id=args.parent,
        actor=args.actor,
    )
    return _emit({'item_id': args.item_id, 'container_id': args.container_id, 'order': order})


def _item_move(args: argparse.Namespace) -> int:
    engine = _engine(args)
    changes = engine.orders.move(args.item_id, args.container_id, position=args.position, actor=args.actor)
    return _emit({'changes': dump_changes(changes)})


def _item_delete(args: argparse.Namespace) -> int:
    engine = _engine(args)
    changes = engine.orders.delete(args.item_id, actor=args.actor)
    return _emit({'changes': dump_changes(changes)})


def _item_list(args: argparse.Namespace) -> int:
    engine = _engine(args)
    items = engine.orders.siblings(args.container_id)
    return _emit({'container_id': args.container_id, 'items': [i.to_dict() for i in items]})


def _container_delete(args: argparse.Namespace) -> int:
    engine = _engine(args)
    changes = engine.orders.delete_container(
        args.container_id, delete_children=not args.keep_children, actor=args.actor
    )
    return _emit({'changes': dump_changes(changes)})


def _container_clear(args: argparse.Namespace) -> int:
    engine = _engine(args)
    removed = engine.orders.clear_container(args.container_id, actor=args.actor)
    return _emit({'container_id': args.container_id, 'removed': removed})


def _layout_apply(args: argparse.Namespace) -> int:
    engine = _engine(args)
    path = Path(args.path)
    try:
        raw = yaml.safe_load(path.read_text(encoding='utf-8'))
    except (OSError, yaml.YAMLError) as exc:
        sys.stderr.write(f'Cannot read layout {path}: {exc}\n')
        return 1
    if not isinstance(raw, dict) or not all(isinstance(v, list) for v in raw.values()):
        sys.stderr.write(f'{path}: expected a mapping of container id to a list of item ids\n')
        return 1
    layout = {str(k): [str(i) for i in v] for k, v in raw.items()}
    changes = engine.orders.apply_layout(layout, actor=args.actor)
    return _emit({'changes': dump_changes(changes)})


def _render_table(timelines: list[EntityTimeline]) -> None:
    console = Console()
    for timeline in timelines:
        if not timeline.found:
            console.print(f'[red]{timeline.entity_id}: not found[/red]')
            continue
        table = Table(title=f'{timeline.entity_id} {timeline.title}'.strip())
        table.add_column('Container')
        table.add_column('Start')
        table.add_column('End')
        table.add_column('Days', justify='right')
        table.add_column('Current', justify='center')
        for segment in timeline.segments:
            table.add_row(
                segment.container_label,
                segment.start_at.strftime('%Y-%m-%d %H:%M'),
                segment.end_at.strftime('%Y-%m-%d %H:%M'),
                str(segment.duration_days),
                '*' if segment.is_current else '',
            )
        console.print(table)
        console.print(f'Lead time: {lead_time_days(timeline)} days; per column: {residency_totals(timeline)}')


def _timeline(args: argparse.Namespace) -> int:
    if not args.entity_ids and not args.children_of:
        sys.stderr.write('Pass entity ids or --children-of\n')
        return 1
    engine = _engine(args)
    if args.children_of:
        timelines = engine.timelines.project_children(args.children_of, since=args.since, until=args.until)
    else:
        query = TimelineQuery(entity_ids=args.entity_ids, since=args.since, until=args.until)
        timelines = engine.timelines.project_many(query.entity_ids, since=query.since, until=query.until)
    if args.table:
        _render_table(timelines)
        return 0
    return _emit({'timelines': dump_timelines(timelines)})


def _activity_recent(args: argparse.Namespace) -> int:
    engine = _engine(args)
    events = engine.log.recent(limit=args.limit)
    return _emit({'events': [e.to_dict() for e in events]})


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Kanban position & history engine')
    parser.add_argument('--project-dir', default=None, help='Directory holding .kanban_engine/ (default: current working directory)')
    parser.add_argument('--log-level', default=None, help='Override logging.level from config.yaml')
    parser.add_argument('--actor', default=None, help='User recorded on activity events')
    subparsers = parser.add_subparsers(dest='command', required=True)

    item = subparsers.add_parser('item', help='Append, move, delete and list ordered items')
    item_sub = item.add_subparsers(dest='item_cmd', required=True)
    iadd = item_sub.add_parser('add', help='Append an item to a container')
    iadd.add_argument('container_id')
    iadd.add_argument('item_id')
    iadd.add_argument('--title', default='')
    iadd.add_argument('--kind', default=ITEM_KIND_TASK, help=f'Item kind, e.g. {ITEM_KIND_TASK} or {ITEM_KIND_COLUMN}')
    iadd.add_argument('--parent', default=None, help='Epic this item belongs to')
    iadd.set_defaults(func=_item_add)
    imove = item_sub.add_parser('move', help='Move an item to a container (optionally at an index)')
    imove.add_argument('item_id')
    imove.add_argument('container_id')
    imove.add_argument('--position', default=None, type=int)
    imove.set_defaults(func=_item_move)
    idelete = item_sub.add_parser('delete', help='Delete an item and compact its siblings')
    idelete.add_argument('item_id')
    idelete.set_defaults(func=_item_delete)
    ilist = item_sub.add_parser('list', help='List a container in order')
    ilist.add_argument('container_id')
    ilist.set_defaults(func=_item_list)

    container = subparsers.add_parser('container', help='Delete or clear containers')
    container_sub = container.add_subparsers(dest='container_cmd', required=True)
    cdelete = container_sub.add_parser('delete', help='Delete a container item')
    cdelete.add_argument('container_id')
    cdelete.add_argument('--keep-children', action='store_true')
    cdelete.set_defaults(func=_container_delete)
    cclear = container_sub.add_parser('clear', help='Delete every item inside a container')
    cclear.add_argument('container_id')
    cclear.set_defaults(func=_container_clear)

    layout = subparsers.add_parser('layout', help='Apply a saved board layout')
    layout_sub = layout.add_subparsers(dest='layout_cmd', required=True)
    lapply = layout_sub.add_parser('apply', help='Apply a YAML/JSON mapping of container -> item ids')
    lapply.add_argument('path')
    lapply.set_defaults(func=_layout_apply)

    timeline = subparsers.add_parser('timeline', help='Project residency timelines')
    timeline.add_argument('entity_ids', nargs='*')
    timeline.add_argument('--children-of', default=None, help='Project every subtask of this epic')
    timeline.add_argument('--since', default=None, type=_datetime_arg)
    timeline.add_argument('--until', default=None, type=_datetime_arg)
    timeline.add_argument('--table', action='store_true', help='Render a table instead of JSON')
    timeline.set_defaults(func=_timeline)

    activity = subparsers.add_parser('activity', help='Inspect the activity log')
    activity_sub = activity.add_subparsers(dest='activity_cmd', required=True)
    arecent = activity_sub.add_parser('recent', help='Show the most recent events')
    arecent.add_argument('--limit', default=20, type=int)
    arecent.set_defaults(func=_activity_recent)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    handler = getattr(args, 'func', None)
    if handler is None:
        parser.print_help()
        return 1
    try:
        return int(handler(args) or 0)
    except (EngineError, ValueError) as exc:
        sys.stderr.write(str(exc) + '\n')
        return 1


def run() -> None:
    raise SystemExit(main())
