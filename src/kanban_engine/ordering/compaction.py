"""Pure order arithmetic over a sibling group.

Every function here works on in-memory :class:`OrderedItem` lists loaded
from one consistent snapshot; the store applies the result in a single
write.  None of them perform I/O.
"""

from __future__ import annotations

from typing import Iterable, Optional

from ..errors import OrderIntegrityError
from .model import OrderedItem


def next_order(orders: Iterable[int], base: int = 0) -> int:
    """Return ``max(orders) + 1``, or *base* for an empty group."""
    current = list(orders)
    if not current:
        return base
    return max(current) + 1


def sort_siblings(items: Iterable[OrderedItem]) -> list[OrderedItem]:
    return sorted(items, key=lambda i: (i.order, i.created_at, i.id))


def compact_after_removal(siblings: Iterable[OrderedItem], removed_order: int) -> list[OrderedItem]:
    """Close the gap left at *removed_order*.

    Each remaining sibling above the removed slot moves down by exactly one.
    Returns the siblings whose order changed.
    """
    shifted: list[OrderedItem] = []
    for sibling in siblings:
        if sibling.order > removed_order:
            sibling.order -= 1
            shifted.append(sibling)
    return shifted


def insert_at(
    siblings: Iterable[OrderedItem],
    item: OrderedItem,
    position: Optional[int],
    base: int = 0,
) -> list[OrderedItem]:
    """Place *item* at index *position* among *siblings* (``None`` = end).

    Siblings at or above the target slot move up by one.  *position* is
    clamped to ``[0, len(siblings)]``.  Returns the siblings that shifted.
    """
    ordered = sort_siblings(siblings)
    if position is None or position >= len(ordered):
        item.order = next_order((s.order for s in ordered), base)
        return []
    slot = base + max(0, position)
    shifted: list[OrderedItem] = []
    for sibling in ordered:
        if sibling.order >= slot:
            sibling.order += 1
            shifted.append(sibling)
    item.order = slot
    return shifted


def renumber(items: Iterable[OrderedItem], base: int = 0) -> list[OrderedItem]:
    """Assign ``base, base+1, ...`` in the given sequence; return changed items."""
    changed: list[OrderedItem] = []
    for idx, item in enumerate(items):
        target = base + idx
        if item.order != target:
            item.order = target
            changed.append(item)
    return changed


def is_dense(orders: Iterable[int], base: int = 0) -> bool:
    values = sorted(orders)
    return values == list(range(base, base + len(values)))


def assert_dense(container_id: str, orders: Iterable[int], base: int = 0) -> None:
    """Raise :class:`OrderIntegrityError` unless *orders* is exactly ``base..base+n-1``."""
    values = list(orders)
    if not is_dense(values, base):
        raise OrderIntegrityError(container_id, values, base)
