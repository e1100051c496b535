"""Fixed-capacity FIFO history.

Price windows, rolling trade outcomes and the recent-event logs all keep
the N most recent items and evict the oldest first. ``BoundedHistory``
wraps a ``deque(maxlen=N)`` so append and eviction are O(1).

Usage::

    history = BoundedHistory[float](capacity=3)
    for value in (1.0, 2.0, 3.0, 4.0):
        history.append(value)
    history.items()  # [2.0, 3.0, 4.0]
"""

from __future__ import annotations

from collections import deque
from typing import Generic, Iterator, List, Optional, TypeVar

T = TypeVar("T")


class BoundedHistory(Generic[T]):
    """Append-only sequence that retains the ``capacity`` newest items."""

    def __init__(self, capacity: int) -> None:
        if capacity < 1:
            raise ValueError(f"capacity must be >= 1, got {capacity}")
        self._items: deque[T] = deque(maxlen=capacity)

    @property
    def capacity(self) -> int:
        return self._items.maxlen or 0

    def append(self, item: T) -> Optional[T]:
        """Append ``item``; return the evicted item when the buffer was full."""
        evicted = None
        if len(self._items) == self.capacity:
            evicted = self._items[0]
        self._items.append(item)
        return evicted

    def items(self) -> List[T]:
        """Oldest-first copy of the retained items."""
        return list(self._items)

    def latest(self, n: int) -> List[T]:
        """Up to ``n`` most recent items, oldest first."""
        if n <= 0:
            return []
        if n >= len(self._items):
            return list(self._items)
        return list(self._items)[-n:]

    def newest(self) -> Optional[T]:
        return self._items[-1] if self._items else None

    def find(self, predicate) -> Optional[T]:
        for item in self._items:
            if predicate(item):
                return item
        return None

    def clear(self) -> None:
        self._items.clear()

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[T]:
        return iter(list(self._items))

    def __bool__(self) -> bool:
        return bool(self._items)
