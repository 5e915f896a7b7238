"""
Key-value storage interface for small client-local records (bound identities).
"""

import copy
from abc import ABC, abstractmethod
from typing import Any


class KeyValueStore(ABC):
    """Async key-value store holding JSON-compatible values."""

    @abstractmethod
    async def get(self, key: str) -> Any | None:
        """Return the stored value, or None if absent."""
        pass

    @abstractmethod
    async def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> bool:
        """Store a value, optionally expiring. Returns True on success."""
        pass

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Remove a key. Returns True if it existed."""
        pass


class InMemoryKeyValueStore(KeyValueStore):
    """Dict-backed store for tests and single-process development. TTL is ignored."""

    def __init__(self) -> None:
        self._data: dict[str, Any] = {}

    async def get(self, key: str) -> Any | None:
        value = self._data.get(key)
        return copy.deepcopy(value) if value is not None else None

    async def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> bool:
        self._data[key] = copy.deepcopy(value)
        return True

    async def delete(self, key: str) -> bool:
        return self._data.pop(key, None) is not None
