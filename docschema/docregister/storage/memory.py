"""
In-memory storage adapter.

This module provides a simple in-memory backend for:
- Unit tests
- Integration tests
- Local development without a data directory

Invariants:
    - All data is lost on process exit
    - Values are deep-copied on write and read, so callers never share
      structure with the store

How to change safely:
    - Keep interface compatible with the StorageAdapter protocol
    - Add features to help with testing scenarios
"""

from __future__ import annotations

import asyncio
import copy
from typing import Any, Dict, List, Optional
import logging

from .base import WriteAck

logger = logging.getLogger(__name__)


class MemoryStorage:
    """In-memory implementation of StorageAdapter.

    Thread safety:
        Uses an asyncio lock around mutations. Safe to use from
        multiple coroutines.

    Example:
        >>> storage = MemoryStorage()
        >>> await storage.write("k", {"a": 1})
        >>> await storage.read("k")
        {'a': 1}
    """

    def __init__(self) -> None:
        self._data: Dict[str, Dict[str, Any]] = {}
        self._lock = asyncio.Lock()
        self._write_count = 0

    async def write(self, key: str, value: Dict[str, Any]) -> WriteAck:
        """Store a deep copy of value under key."""
        async with self._lock:
            self._data[key] = copy.deepcopy(value)
            self._write_count += 1

        logger.debug("Value written to memory storage", extra={"key": key})
        return WriteAck(key=key, location="memory")

    async def read(self, key: str) -> Optional[Dict[str, Any]]:
        """Return a deep copy of the value under key, or None."""
        value = self._data.get(key)
        return copy.deepcopy(value) if value is not None else None

    async def list(self) -> List[Dict[str, Any]]:
        """Return deep copies of all stored values in insertion order."""
        return [copy.deepcopy(v) for v in self._data.values()]

    async def delete(self, key: str) -> bool:
        """Delete key, returning whether it existed."""
        async with self._lock:
            return self._data.pop(key, None) is not None

    # Testing helpers

    async def clear(self) -> None:
        """Remove every stored value (testing helper)."""
        async with self._lock:
            self._data.clear()

    @property
    def size(self) -> int:
        """Number of stored keys."""
        return len(self._data)

    @property
    def write_count(self) -> int:
        """Total writes performed (testing helper)."""
        return self._write_count
