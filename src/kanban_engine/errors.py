"""Exception hierarchy for the position and history engine."""

from __future__ import annotations


class EngineError(Exception):
    """Base class for all engine errors."""


class ConfigError(EngineError):
    """The engine configuration file could not be loaded."""


class ItemNotFoundError(EngineError, KeyError):
    """An ordered item id has no row in the store."""

    def __init__(self, item_id: str) -> None:
        super().__init__(item_id)
        self.item_id = item_id

    def __str__(self) -> str:
        return f"Item {self.item_id} not found"


class DuplicateItemError(EngineError, ValueError):
    """An append tried to reuse an existing item id."""


class OrderIntegrityError(EngineError):
    """Sibling orders would be left with a gap or a duplicate.

    Raised from inside the store transaction, so the write is abandoned and
    the previously persisted orders stay untouched.
    """

    def __init__(self, container_id: str, orders: list[int], base: int) -> None:
        self.container_id = container_id
        self.orders = list(orders)
        self.base = base
        super().__init__(
            f"Container {container_id} has non-dense orders {sorted(orders)} "
            f"(expected {base}..{base + len(orders) - 1})"
        )


class ProjectionTimeoutError(EngineError, TimeoutError):
    """The timeline query pipeline exceeded its time budget."""


class LockTimeoutError(EngineError, TimeoutError):
    """A store or log lock could not be acquired in time."""

    def __init__(self, lock_file: str) -> None:
        self.lock_file = lock_file
        super().__init__(f"Timed out waiting for lock {lock_file}")
