"""Bounded in-memory LRU cache.

Holds derived key material (NIP-44 conversation keys) for the lifetime of
one active secret key. Owners call :meth:`LRUCache.clear` whenever that key
changes.
"""

from __future__ import annotations

from collections import OrderedDict
from typing import Generic, TypeVar

K = TypeVar("K")
V = TypeVar("V")


class LRUCache(Generic[K, V]):
    """Least-recently-used cache with a fixed capacity.

    Usage::

        cache: LRUCache[str, bytes] = LRUCache(100)
        cache.set("peer", key)
        cache.get("peer")
    """

    def __init__(self, max_size: int = 100) -> None:
        if max_size < 1:
            msg = f"max_size must be positive, got {max_size}"
            raise ValueError(msg)
        self._max_size = max_size
        self._cache: OrderedDict[K, V] = OrderedDict()

    @property
    def max_size(self) -> int:
        return self._max_size

    def get(self, key: K) -> V | None:
        """Return the cached value and mark it most recently used."""
        if key not in self._cache:
            return None
        self._cache.move_to_end(key)
        return self._cache[key]

    def set(self, key: K, value: V) -> None:
        """Insert or refresh *key*, evicting the oldest entry when full."""
        if key in self._cache:
            del self._cache[key]
        self._cache[key] = value
        if len(self._cache) > self._max_size:
            self._cache.popitem(last=False)

    def delete(self, key: K) -> None:
        self._cache.pop(key, None)

    def clear(self) -> None:
        """Drop every entry."""
        self._cache.clear()

    def __contains__(self, key: object) -> bool:
        return key in self._cache

    def __len__(self) -> int:
        return len(self._cache)
