"""
============================================================================
Bounded Collections - Fixed-Capacity History and Recency Maps
============================================================================

Reliability Level: L6 Critical

Every tracking collection in the engine is capacity-bounded. Insertion past
capacity evicts the oldest entry; nothing grows without limit.

    BoundedHistory: ring buffer of the last N items (oldest evicted first)
    RecencyMap:     key/value map ordered by last touch, with LRU eviction
                    and an explicit trim() for memory-pressure cleanup
============================================================================
"""

from collections import OrderedDict, deque
from typing import Any, Callable, Deque, Generic, Iterator, List, Optional, Tuple, TypeVar

K = TypeVar("K")
V = TypeVar("V")
T = TypeVar("T")


class BoundedHistory(Generic[T]):
    """Fixed-capacity ordered buffer. Appending to a full buffer drops the oldest item."""

    def __init__(self, capacity: int):
        if capacity <= 0:
            raise ValueError(f"capacity must be positive, got: {capacity}")
        self._items = deque(maxlen=capacity)  # type: Deque[T]

    @property
    def capacity(self) -> int:
        return self._items.maxlen or 0

    def append(self, item: T) -> Optional[T]:
        """
        Append an item.

        Returns:
            The evicted item, or None if nothing was evicted
        """
        evicted = None
        if len(self._items) == self._items.maxlen:
            evicted = self._items[0]
        self._items.append(item)
        return evicted

    def items(self) -> List[T]:
        """Items from oldest to newest."""
        return list(self._items)

    def latest(self, count: int) -> List[T]:
        """The newest `count` items, oldest first."""
        if count <= 0:
            return []
        return list(self._items)[-count:]

    def clear(self) -> None:
        self._items.clear()

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[T]:
        return iter(list(self._items))


class RecencyMap(Generic[K, V]):
    """
    Map with a capacity, ordered by last touch.

    set() and touch() move a key to the most-recent end. When capacity is
    exceeded the least recently touched key is evicted.
    """

    def __init__(self, capacity: int):
        if capacity <= 0:
            raise ValueError(f"capacity must be positive, got: {capacity}")
        self._capacity = capacity
        self._data = OrderedDict()  # type: OrderedDict[K, V]

    @property
    def capacity(self) -> int:
        return self._capacity

    def get(self, key: K, default: Optional[V] = None) -> Optional[V]:
        return self._data.get(key, default)

    def set(self, key: K, value: V) -> Optional[Tuple[K, V]]:
        """
        Insert or replace a value and mark it most recently touched.

        Returns:
            The evicted (key, value) pair, or None
        """
        self._data[key] = value
        self._data.move_to_end(key)
        if len(self._data) > self._capacity:
            return self._data.popitem(last=False)
        return None

    def get_or_create(self, key: K, factory: Callable[[], V]) -> V:
        """Return the value for key, creating it with factory() if absent. Touches the key."""
        if key in self._data:
            self._data.move_to_end(key)
            return self._data[key]
        value = factory()
        self.set(key, value)
        return value

    def touch(self, key: K) -> bool:
        if key not in self._data:
            return False
        self._data.move_to_end(key)
        return True

    def pop(self, key: K, default: Optional[V] = None) -> Optional[V]:
        return self._data.pop(key, default)

    def trim(self, keep: int) -> int:
        """
        Drop all but the `keep` most recently touched entries.

        Returns:
            Number of entries removed
        """
        removed = 0
        while len(self._data) > max(keep, 0):
            self._data.popitem(last=False)
            removed += 1
        return removed

    def keys(self) -> List[K]:
        return list(self._data.keys())

    def values(self) -> List[V]:
        return list(self._data.values())

    def items(self) -> List[Tuple[K, V]]:
        return list(self._data.items())

    def clear(self) -> None:
        self._data.clear()

    def __contains__(self, key: Any) -> bool:
        return key in self._data

    def __len__(self) -> int:
        return len(self._data)
