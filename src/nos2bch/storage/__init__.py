"""Key-value storage collaborator — memory and SQLite backends."""

from __future__ import annotations

from nos2bch.storage.client import MemoryStorage, Storage, create_storage

__all__ = ["MemoryStorage", "Storage", "create_storage"]
