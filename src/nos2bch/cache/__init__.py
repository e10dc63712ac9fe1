"""In-process caches."""

from __future__ import annotations

from nos2bch.cache.lru import LRUCache

__all__ = ["LRUCache"]
