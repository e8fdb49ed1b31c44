"""Order index manager: append, move and delete with dense sibling orders.

This is the mutation entry-point for drag-and-drop.  Each operation loads
one consistent snapshot under the store lock, applies the pure rules from
:mod:`.compaction` in memory, and writes every affected order back in a
single save.  Activity is recorded after the save succeeded but before
the store lock is released, so the log sees mutations of one item in the
order they were committed.
"""

from __future__ import annotations

from datetime import datetime
from typing import Callable, Mapping, Optional, Sequence

from loguru import logger

from ..activity.model import ActivityType
from ..activity.recorder import ActivityRecorder
from ..constants import ITEM_KIND_TASK
from ..utils import _now, _to_iso
from .compaction import compact_after_removal, insert_at, next_order, renumber
from .model import OrderChange, OrderedItem
from .store import ItemStore, _ItemTx

_Position = tuple[str, int]


class OrderIndexManager:
    """Maintain the ``order`` field of every item in its sibling group.

    Parameters
    ----------
    store:
        Backing item store; its transaction is the unit of atomicity.
    recorder:
        Optional activity recorder notified after each committed mutation.
    clock:
        Time source for the ``created_at`` of appended items.
    """

    def __init__(
        self,
        store: ItemStore,
        recorder: Optional[ActivityRecorder] = None,
        clock: Callable[[], datetime] = _now,
    ) -> None:
        self.store = store
        self.recorder = recorder
        self.clock = clock

    @property
    def base(self) -> int:
        return self.store.base

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, item_id: str) -> Optional[OrderedItem]:
        return self.store.get_one(item_id)

    def siblings(self, container_id: str) -> list[OrderedItem]:
        """Return the items of *container_id* in display order."""
        with self.store.transaction() as tx:
            return tx.siblings(container_id)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def append(
        self,
        container_id: str,
        item_id: str,
        title: str = "",
        kind: str = ITEM_KIND_TASK,
        *,
        parent_id: Optional[str] = None,
        actor: Optional[str] = None,
        board_id: Optional[str] = None,
    ) -> int:
        """Add *item_id* at the end of *container_id* and return its order.

        *parent_id* optionally links the item to an epic; it does not affect
        ordering.
        """
        if not container_id or not item_id:
            raise ValueError("container_id and item_id are required")
        if item_id in (container_id, parent_id):
            raise ValueError("An item cannot contain itself")

        with self.store.locked():
            with self.store.transaction() as tx:
                order = next_order((s.order for s in tx.siblings(container_id)), tx.base)
                tx.add(
                    OrderedItem(
                        id=item_id,
                        container_id=container_id,
                        order=order,
                        title=title,
                        kind=kind,
                        created_at=_to_iso(self.clock()),
                        parent_id=parent_id,
                    )
                )

            logger.info("Appended {} to {} at order {}", item_id, container_id, order)
            self._record(
                item_id,
                ActivityType.ENTITY_CREATED,
                to_container_id=container_id,
                actor=actor,
                board_id=board_id,
                content=title or None,
            )
        return order

    def delete(self, item_id: str, *, actor: Optional[str] = None) -> list[OrderChange]:
        """Remove *item_id* and shift every later sibling down by one.

        Raises :class:`~kanban_engine.errors.ItemNotFoundError` for unknown ids
        and :class:`~kanban_engine.errors.OrderIntegrityError` if the
        container would not be dense afterwards (nothing is written then).
        """
        with self.store.locked():
            with self.store.transaction() as tx:
                item = tx.require(item_id)
                before = _snapshot(tx, item.container_id)
                tx.remove(item_id)
                compact_after_removal(tx.siblings(item.container_id), item.order)
                changes = _diff(before, tx)

            logger.info(
                "Deleted {} from {} (order {}); {} siblings shifted",
                item_id,
                item.container_id,
                item.order,
                len(changes) - 1,
            )
            self._record(item_id, ActivityType.ENTITY_DELETED, from_container_id=item.container_id, actor=actor)
        return changes

    def move(
        self,
        item_id: str,
        new_container_id: str,
        position: Optional[int] = None,
        *,
        actor: Optional[str] = None,
        board_id: Optional[str] = None,
    ) -> list[OrderChange]:
        """Move *item_id* into *new_container_id*.

        The old container is compacted as for a delete; the item then joins
        the destination at the end, or at index *position* when given, with
        later siblings shifted up by one.  Within one container this is a
        positional reorder.  Returns every order change, the moved item first.
        """
        if not new_container_id:
            raise ValueError("new_container_id is required")
        if position is not None and position < 0:
            raise ValueError("position must be non-negative")
        if item_id == new_container_id:
            raise ValueError("An item cannot contain itself")

        with self.store.locked():
            with self.store.transaction() as tx:
                item = tx.require(item_id)
                old_container_id = item.container_id
                old_order = item.order
                before = _snapshot(tx, old_container_id, new_container_id)

                tx.touch(old_container_id, new_container_id)
                compact_after_removal(tx.siblings(old_container_id, exclude=item_id), old_order)
                item.container_id = new_container_id
                insert_at(tx.siblings(new_container_id, exclude=item_id), item, position, tx.base)
                changes = _diff(before, tx)
                if not changes:
                    tx.dirty = False

            if old_container_id != new_container_id:
                logger.info(
                    "Moved {} from {} to {} at order {}",
                    item_id,
                    old_container_id,
                    new_container_id,
                    item.order,
                )
                self._record(
                    item_id,
                    ActivityType.ENTITY_MOVED,
                    from_container_id=old_container_id,
                    to_container_id=new_container_id,
                    actor=actor,
                    board_id=board_id,
                )
            elif changes:
                logger.info("Reordered {} in {}: {} -> {}", item_id, new_container_id, old_order, item.order)

        changes.sort(key=lambda c: c.item_id != item_id)
        return changes

    def delete_container(
        self,
        container_id: str,
        *,
        delete_children: bool = True,
        actor: Optional[str] = None,
    ) -> list[OrderChange]:
        """Delete a container item (e.g. a column) and compact its own siblings.

        With ``delete_children=False`` the children keep pointing at the
        deleted container; timelines then label it as unknown.
        """
        with self.store.locked():
            with self.store.transaction() as tx:
                container = tx.require(container_id)
                children = tx.siblings(container_id)
                before = _snapshot(tx, container.container_id, container_id)
                if delete_children:
                    for child in children:
                        tx.remove(child.id)
                tx.remove(container_id)
                compact_after_removal(tx.siblings(container.container_id), container.order)
                changes = _diff(before, tx)

            logger.info(
                "Deleted {} {} ({} children {})",
                container.kind,
                container_id,
                len(children),
                "deleted" if delete_children else "kept",
            )
            self._record(
                container_id,
                ActivityType.ENTITY_DELETED,
                from_container_id=container.container_id,
                actor=actor,
            )
            if delete_children:
                for child in children:
                    self._record(child.id, ActivityType.ENTITY_DELETED, from_container_id=container_id, actor=actor)
        return changes

    def clear_container(self, container_id: str, *, actor: Optional[str] = None) -> list[str]:
        """Delete every item inside *container_id*; return the removed ids."""
        with self.store.locked():
            with self.store.transaction() as tx:
                removed = [child.id for child in tx.siblings(container_id)]
                for child_id in removed:
                    tx.remove(child_id)
                if not removed:
                    tx.dirty = False

            if removed:
                logger.info("Cleared {} items from {}", len(removed), container_id)
            for child_id in removed:
                self._record(child_id, ActivityType.ENTITY_DELETED, from_container_id=container_id, actor=actor)
        return removed

    def apply_layout(
        self,
        layout: Mapping[str, Sequence[str]],
        *,
        actor: Optional[str] = None,
        board_id: Optional[str] = None,
    ) -> list[OrderChange]:
        """Save a whole drag-and-drop board snapshot in one transaction.

        *layout* maps container id to the item ids it should hold, in display
        order.  Items not mentioned keep their relative order after the listed
        ones, and containers that lost items are renumbered.  Each item whose
        container changed gets an ``ENTITY_MOVED`` event.
        """
        seen: set[str] = set()
        for ids in layout.values():
            for item_id in ids:
                if item_id in seen:
                    raise ValueError(f"Item {item_id} appears more than once in the layout")
                seen.add(item_id)

        moves: list[tuple[str, str, str]] = []
        with self.store.locked():
            with self.store.transaction() as tx:
                listed = {cid: [tx.require(i) for i in ids] for cid, ids in layout.items()}
                affected = set(layout) | {item.container_id for items in listed.values() for item in items}
                before = _snapshot(tx, *affected)

                for container_id, items in listed.items():
                    for item in items:
                        if item.id == container_id:
                            raise ValueError("An item cannot contain itself")
                        if item.container_id != container_id:
                            moves.append((item.id, item.container_id, container_id))
                            item.container_id = container_id
                tx.touch(*affected)

                for container_id in sorted(affected):
                    head = listed.get(container_id, [])
                    head_ids = {i.id for i in head}
                    rest = [s for s in tx.siblings(container_id) if s.id not in head_ids]
                    renumber(head + rest, tx.base)
                changes = _diff(before, tx)
                if not changes:
                    tx.dirty = False

            logger.info("Applied board layout: {} order changes, {} moves", len(changes), len(moves))
            for item_id, old_container_id, new_container_id in moves:
                self._record(
                    item_id,
                    ActivityType.ENTITY_MOVED,
                    from_container_id=old_container_id,
                    to_container_id=new_container_id,
                    actor=actor,
                    board_id=board_id,
                )
        return changes

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _record(self, entity_id: str, event_type: ActivityType, **fields: Optional[str]) -> None:
        if self.recorder is None:
            return
        self.recorder.record(entity_id, event_type, **fields)


def _snapshot(tx: _ItemTx, *container_ids: str) -> dict[str, _Position]:
    wanted = set(container_ids)
    return {i.id: (i.container_id, i.order) for i in tx.list_all() if i.container_id in wanted}


def _diff(before: dict[str, _Position], tx: _ItemTx) -> list[OrderChange]:
    changes: list[OrderChange] = []
    for item_id, (old_container_id, old_order) in before.items():
        item = tx.get(item_id)
        if item is None:
            changes.append(OrderChange(item_id, old_container_id, old_order, None))
            continue
        if (item.container_id, item.order) == (old_container_id, old_order):
            continue
        changes.append(
            OrderChange(
                item_id=item_id,
                container_id=item.container_id,
                old_order=old_order,
                new_order=item.order,
                old_container_id=old_container_id if old_container_id != item.container_id else None,
            )
        )
    return changes
