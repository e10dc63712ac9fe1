"""Storage abstraction with SQLite and in-memory backends.

Values are JSON-compatible objects (dicts, lists, strings, numbers). Every
read returns an independent copy, so callers may mutate what they get
without touching stored state until they write it back.
"""

from __future__ import annotations

import copy
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from nos2bch.config.settings import StorageConfig


class Storage(Protocol):
    """Protocol for key-value storage backends."""

    async def open(self) -> None: ...
    async def close(self) -> None: ...
    async def get(self, key: str) -> Any | None: ...
    async def get_many(self, keys: list[str]) -> dict[str, Any]: ...
    async def set(self, key: str, value: Any) -> None: ...
    async def set_many(self, values: dict[str, Any]) -> None: ...
    async def delete(self, key: str) -> None: ...


class MemoryStorage:
    """Process-local dictionary storage for development and testing."""

    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        self._data: dict[str, Any] = copy.deepcopy(initial) if initial else {}

    async def open(self) -> None:  # noqa: ASYNC910
        """Open (no-op for in-memory)."""

    async def close(self) -> None:  # noqa: ASYNC910
        """Close (no-op; contents are kept for inspection)."""

    async def get(self, key: str) -> Any | None:  # noqa: ASYNC910
        """Return a copy of the value under *key*, or None."""
        return copy.deepcopy(self._data.get(key))

    async def get_many(self, keys: list[str]) -> dict[str, Any]:  # noqa: ASYNC910
        """Return copies of the present keys among *keys*."""
        return {k: copy.deepcopy(self._data[k]) for k in keys if k in self._data}

    async def set(self, key: str, value: Any) -> None:  # noqa: ASYNC910
        """Store a copy of *value* under *key*."""
        self._data[key] = copy.deepcopy(value)

    async def set_many(self, values: dict[str, Any]) -> None:  # noqa: ASYNC910
        """Store copies of several values at once."""
        for key, value in values.items():
            self._data[key] = copy.deepcopy(value)

    async def delete(self, key: str) -> None:  # noqa: ASYNC910
        """Remove *key* if present."""
        self._data.pop(key, None)

    def snapshot(self) -> dict[str, Any]:
        """Copy of the whole store (testing aid)."""
        return copy.deepcopy(self._data)


def create_storage(config: StorageConfig) -> Storage:
    """Build the backend selected by *config*.

    Raises:
        ValueError: If the storage engine is unsupported.
    """
    from nos2bch.storage.sql import SQLStorage

    engine = config.engine.lower()
    if engine == "sqlite":
        return SQLStorage(config)
    if engine == "memory":
        return MemoryStorage()
    msg = f"Unsupported storage engine: {engine}"
    raise ValueError(msg)
