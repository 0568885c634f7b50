from __future__ import annotations

import time
from collections.abc import Callable, Hashable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

T = TypeVar("T")

Clock = Callable[[], float]

RECENT_ORDERS_KEY = "recent_orders"
ITEMS_LIST_KEY = "items"


@dataclass(frozen=True, slots=True)
class CacheEntry(Generic[T]):
    value: T
    timestamp: float


class TTLCache(Generic[T]):
    """Map whose entries expire ``ttl`` seconds after they were written.

    Staleness is only ever a comparison against the write timestamp; an
    expired entry is dropped on read and never returned.
    """

    def __init__(self, ttl: float, *, clock: Clock = time.time):
        self.ttl = ttl
        self._clock = clock
        self._entries: dict[Hashable, CacheEntry[T]] = {}

    def get(self, key: Hashable) -> T | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() - entry.timestamp < self.ttl:
            return entry.value
        del self._entries[key]
        return None

    def __contains__(self, key: Hashable) -> bool:
        return self.get(key) is not None

    def set(self, key: Hashable, value: T) -> None:
        self._entries[key] = CacheEntry(value=value, timestamp=self._clock())

    def invalidate(self, key: Hashable) -> None:
        self._entries.pop(key, None)

    def keys(self) -> list[Hashable]:
        return list(self._entries)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


class DataCache:
    """Caches for rows read often by the screens: customers, items, order lists."""

    def __init__(self, ttl: float, *, clock: Clock = time.time):
        self.customers: TTLCache[Any] = TTLCache(ttl, clock=clock)
        self.items: TTLCache[Any] = TTLCache(ttl, clock=clock)
        self.lists: TTLCache[list[Any]] = TTLCache(ttl, clock=clock)

    def entry_count(self) -> int:
        return len(self.customers) + len(self.items) + len(self.lists)

    def clear_all(self) -> None:
        self.customers.clear()
        self.items.clear()
        self.lists.clear()
