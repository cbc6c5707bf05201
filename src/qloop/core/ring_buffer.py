"""Fixed-capacity containers with oldest-first eviction."""

from __future__ import annotations

from collections import OrderedDict, deque
from collections.abc import Iterator
from typing import Generic, TypeVar

T = TypeVar("T")
V = TypeVar("V")


class RingBuffer(Generic[T]):
    """Append-only rolling history; the oldest item is dropped past capacity."""

    def __init__(self, max_size: int = 100) -> None:
        if max_size < 1:
            raise ValueError("RingBuffer max_size must be at least 1")
        self._items: deque[T] = deque(maxlen=max_size)

    @property
    def max_size(self) -> int:
        return self._items.maxlen or 0

    def append(self, item: T) -> None:
        self._items.append(item)

    def items(self) -> list[T]:
        return list(self._items)

    def last(self, n: int) -> list[T]:
        """Return up to the ``n`` newest items, oldest first."""
        if n <= 0:
            return []
        return list(self._items)[-n:]

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[T]:
        return iter(list(self._items))


class BoundedOrderedMap(Generic[V]):
    """Insertion-ordered mapping that evicts its oldest key past capacity."""

    def __init__(self, capacity: int = 500) -> None:
        if capacity < 1:
            raise ValueError("BoundedOrderedMap capacity must be at least 1")
        self._capacity = capacity
        self._data: OrderedDict[str, V] = OrderedDict()

    @property
    def capacity(self) -> int:
        return self._capacity

    def put(self, key: str, value: V) -> str | None:
        """Store ``value`` and return the evicted key, if any."""
        if key in self._data:
            self._data.move_to_end(key)
        self._data[key] = value
        if len(self._data) > self._capacity:
            evicted, _ = self._data.popitem(last=False)
            return evicted
        return None

    def pop(self, key: str) -> V | None:
        return self._data.pop(key, None)

    def get(self, key: str) -> V | None:
        return self._data.get(key)

    def keys(self) -> list[str]:
        return list(self._data.keys())

    def __contains__(self, key: object) -> bool:
        return key in self._data

    def __len__(self) -> int:
        return len(self._data)
