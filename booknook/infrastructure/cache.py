"""In-process read-through cache with a fixed time-to-live.

Entries are checked for freshness on read. Writers are last-writer-wins;
concurrent refreshes may both hit the upstream, which is acceptable for
advisory data such as new-release listings.
"""

import time
from dataclasses import dataclass
from typing import Any, Callable, Generic, Hashable, Optional, TypeVar

T = TypeVar("T")


@dataclass
class _Entry(Generic[T]):
    value: T
    stored_at: float


class TTLCache(Generic[T]):

    def __init__(
        self,
        ttl_seconds: float,
        max_entries: int = 128,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: dict[Hashable, _Entry[T]] = {}

    def get(self, key: Hashable) -> Optional[T]:
        """Fresh value for *key*, or ``None`` if missing or expired."""
        entry = self._entries.get(key)
        if entry is None or self._clock() - entry.stored_at >= self.ttl_seconds:
            return None
        return entry.value

    def get_stale(self, key: Hashable) -> Optional[T]:
        """Last stored value for *key* regardless of age."""
        entry = self._entries.get(key)
        return entry.value if entry else None

    def set(self, key: Hashable, value: T) -> None:
        self._entries.pop(key, None)
        if len(self._entries) >= self.max_entries:
            # Insertion order doubles as age order.
            oldest = next(iter(self._entries))
            del self._entries[oldest]
        self._entries[key] = _Entry(value=value, stored_at=self._clock())

    def invalidate(self, key: Any = None) -> None:
        if key is None:
            self._entries.clear()
        else:
            self._entries.pop(key, None)

    def __len__(self) -> int:
        return len(self._entries)
