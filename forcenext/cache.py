"""
Bounded recency cache for correlated payloads.
Evicts the oldest entry once the capacity is exceeded; the first payload seen
for a key is kept.
"""

from collections import OrderedDict
from typing import Any, Iterator, Optional, Tuple

from forcenext.config import CACHE_CAPACITY


class BoundedCache:
    def __init__(self, capacity: int = CACHE_CAPACITY):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self._entries: "OrderedDict[str, Any]" = OrderedDict()

    def insert_if_absent(self, key: str, value: Any) -> bool:
        """Store value under key unless key is already present. Returns True if stored."""
        if key in self._entries:
            return False
        self._entries[key] = value
        if len(self._entries) > self.capacity:
            self._entries.popitem(last=False)
        return True

    def get(self, key: str, default: Optional[Any] = None) -> Any:
        return self._entries.get(key, default)

    def items(self) -> Iterator[Tuple[str, Any]]:
        return iter(list(self._entries.items()))

    def keys(self):
        return list(self._entries.keys())

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, key) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self):
        return iter(list(self._entries))
