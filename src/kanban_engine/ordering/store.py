"""File-based ordered item store with single-writer transactions.

Stores every ordered item in a single YAML file (``items.yaml``) inside the
engine's ``.kanban_engine/`` directory.  All writes go through
:meth:`ItemStore.transaction`, which holds an exclusive file lock for the
whole load-mutate-verify-save cycle so two mutations on the same container
can never interleave.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from filelock import FileLock
from loguru import logger

from ..constants import (
    DEFAULT_LOCK_TIMEOUT_SECONDS,
    DEFAULT_ORDER_BASE,
    ITEMS_FILE,
    ITEMS_LOCK_FILE,
    STORE_VERSION,
)
from ..errors import DuplicateItemError, EngineError, ItemNotFoundError
from ..io_utils import _atomic_write_yaml, _load_data_with_error
from ..locks import _hold
from .compaction import assert_dense, sort_siblings
from .model import OrderedItem


class ItemStore:
    """Thread-safe, file-backed store for :class:`OrderedItem` rows.

    Parameters
    ----------
    state_dir:
        Path to the ``.kanban_engine/`` directory.
    base:
        First order value of every sibling group (0 or 1).
    lock_timeout:
        Seconds to wait for the store lock before giving up.
    """

    def __init__(
        self,
        state_dir: Path,
        base: int = DEFAULT_ORDER_BASE,
        lock_timeout: float = DEFAULT_LOCK_TIMEOUT_SECONDS,
    ) -> None:
        self._state_dir = state_dir
        self._store_path = state_dir / ITEMS_FILE
        self._lock = FileLock(str(state_dir / ITEMS_LOCK_FILE), timeout=lock_timeout)
        self._thread_lock = threading.RLock()
        self.base = base

    # -- internal helpers ---------------------------------------------------

    def _load(self) -> list[OrderedItem]:
        data, err = _load_data_with_error(self._store_path, {})
        if err:
            # Refuse to continue: saving over a corrupt file would lose every order.
            raise EngineError(f"Cannot read item store: {err}")
        raw = data.get("items", [])
        if not isinstance(raw, list):
            return []
        return [OrderedItem.from_dict(d) for d in raw if isinstance(d, dict)]

    def _save(self, items: list[OrderedItem]) -> None:
        payload = {"version": STORE_VERSION, "items": [i.to_dict() for i in items]}
        _atomic_write_yaml(self._store_path, payload)

    # -- public API ---------------------------------------------------------

    @contextmanager
    def locked(self, timeout: Optional[float] = None) -> Iterator[None]:
        """Hold the store lock, e.g. across a transaction and the work that must follow it.

        Re-entrant for the calling thread, so transactions can run inside.
        Raises :class:`~kanban_engine.errors.LockTimeoutError` when the lock
        is not acquired within *timeout* seconds (default: the store's
        ``lock_timeout``).
        """
        with _hold(self._thread_lock, self._lock, timeout):
            yield

    @contextmanager
    def transaction(self) -> Iterator[_ItemTx]:
        """Acquire the lock, load items, yield a transaction, verify and save.

        Every container touched by the transaction is checked for dense
        orders before anything is written.  If the check fails, or the body
        raises, the file on disk is left exactly as it was.

        Usage::

            with store.transaction() as tx:
                item = tx.require("task-abc123")
                ...
                # verified and saved on exit
        """
        with self.locked():
            tx = _ItemTx(self._load(), self.base)
            yield tx
            if tx.dirty:
                tx.verify()
                self._save(tx.items)
                logger.debug(
                    "Saved item store ({} items, touched containers: {})",
                    len(tx.items),
                    sorted(tx.touched),
                )

    def read_snapshot(self, timeout: Optional[float] = None) -> list[OrderedItem]:
        """Return a read-only snapshot (no lock held after return)."""
        with self.locked(timeout):
            return self._load()

    def get_one(self, item_id: str) -> Optional[OrderedItem]:
        for item in self.read_snapshot():
            if item.id == item_id:
                return item
        return None


class _ItemTx:
    """In-memory transaction over the full item list.

    Mutations are collected and flushed back to disk when the
    ``transaction`` context-manager exits.
    """

    def __init__(self, items: list[OrderedItem], base: int) -> None:
        self.items = items
        self.base = base
        self.dirty = False
        self.touched: set[str] = set()
        self._index: dict[str, OrderedItem] = {i.id: i for i in items}

    # -- lookups ------------------------------------------------------------

    def get(self, item_id: str) -> Optional[OrderedItem]:
        return self._index.get(item_id)

    def require(self, item_id: str) -> OrderedItem:
        item = self._index.get(item_id)
        if item is None:
            raise ItemNotFoundError(item_id)
        return item

    def siblings(self, container_id: str, *, exclude: Optional[str] = None) -> list[OrderedItem]:
        return sort_siblings(
            i for i in self.items if i.container_id == container_id and i.id != exclude
        )

    def list_all(self) -> list[OrderedItem]:
        return list(self.items)

    # -- mutations ----------------------------------------------------------

    def touch(self, *container_ids: str) -> None:
        self.touched.update(c for c in container_ids if c)
        self.dirty = True

    def add(self, item: OrderedItem) -> OrderedItem:
        if item.id in self._index:
            raise DuplicateItemError(f"Item {item.id} already exists")
        self._index[item.id] = item
        self.items.append(item)
        self.touch(item.container_id)
        return item

    def remove(self, item_id: str) -> OrderedItem:
        item = self.require(item_id)
        del self._index[item_id]
        self.items = [i for i in self.items if i.id != item_id]
        self.touch(item.container_id)
        return item

    def verify(self) -> None:
        """Check the density of every touched container."""
        for container_id in sorted(self.touched):
            orders = [i.order for i in self.items if i.container_id == container_id]
            assert_dense(container_id, orders, self.base)
