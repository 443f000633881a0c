"""
Process-local key/value state with a bounded lifetime.

Backs the session registry and the rate-limit windows. Everything here is
mutated from the event loop thread only and never across an await, so no
locking is needed. A shared store (e.g. Redis) can replace it later by
implementing the same get/set/delete/sweep surface.
"""

from typing import Callable, Dict, Generic, Optional, TypeVar

V = TypeVar("V")


class MemoryStore(Generic[V]):
    """Plain in-memory map with predicate-based sweeping."""

    def __init__(self) -> None:
        self._items: Dict[str, V] = {}

    def get(self, key: str) -> Optional[V]:
        return self._items.get(key)

    def set(self, key: str, value: V) -> None:
        self._items[key] = value

    def delete(self, key: str) -> bool:
        """Remove a key. Returns True if it was present."""
        return self._items.pop(key, None) is not None

    def sweep(self, is_expired: Callable[[V], bool]) -> int:
        """
        Drop every entry for which is_expired(value) is true.

        Returns:
            Number of entries removed
        """
        expired = [key for key, value in self._items.items() if is_expired(value)]
        for key in expired:
            del self._items[key]
        return len(expired)

    def __contains__(self, key: object) -> bool:
        return key in self._items

    def __len__(self) -> int:
        return len(self._items)
