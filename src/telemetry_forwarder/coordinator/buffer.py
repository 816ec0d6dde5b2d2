from __future__ import annotations

from collections import deque
from typing import Iterable, Iterator

from .types import QueueItem
from ..metrics.registry import BUFFER_DEPTH


class RecordBuffer:
    """Unbounded FIFO of pending items; insertion order is submission order.

    Only the engine that owns the buffer mutates it. All operations are
    synchronous so they can run from submit() and from teardown hooks that
    cannot await.
    """

    def __init__(self, engine_id: str = "default", items: Iterable[QueueItem] = ()):
        self._engine_id = engine_id
        self._items: deque[QueueItem] = deque(items)
        self._report()

    def __len__(self) -> int:
        return len(self._items)

    def __bool__(self) -> bool:
        return bool(self._items)

    def __iter__(self) -> Iterator[QueueItem]:
        return iter(list(self._items))

    @property
    def size(self) -> int:
        return len(self._items)

    def append(self, item: QueueItem) -> int:
        """Add an item at the back. Returns the new length."""
        self._items.append(item)
        self._report()
        return len(self._items)

    def extend(self, items: Iterable[QueueItem]) -> int:
        self._items.extend(items)
        self._report()
        return len(self._items)

    def take(self, limit: int) -> list[QueueItem]:
        """Remove and return up to ``limit`` items from the front (oldest first)."""
        if limit <= 0:
            raise ValueError("limit must be > 0")
        n = min(limit, len(self._items))
        taken = [self._items.popleft() for _ in range(n)]
        self._report()
        return taken

    def take_all(self) -> list[QueueItem]:
        """Remove and return every pending item."""
        taken = list(self._items)
        self._items.clear()
        self._report()
        return taken

    def snapshot(self) -> list[QueueItem]:
        return list(self._items)

    def _report(self) -> None:
        BUFFER_DEPTH.labels(engine=self._engine_id).set(len(self._items))
