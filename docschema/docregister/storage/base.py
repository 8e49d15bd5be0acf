"""
Base protocol and types for the storage adapter abstraction.

This module defines the StorageAdapter protocol that every backend must
implement, along with the write acknowledgment type and storage errors.

Invariants:
    - Values are JSON-shaped mappings and must round-trip losslessly
    - read() returns None for a missing key, never raises for absence
    - Callers never observe aliasing: mutating a returned value must not
      change what is stored

How to change safely:
    - Protocol changes require updating all implementations
    - Add new methods as optional with default implementations
"""

from __future__ import annotations

from abc import abstractmethod
from dataclasses import dataclass
from typing import (
    Any,
    Dict,
    List,
    Optional,
    Protocol,
    runtime_checkable,
    TYPE_CHECKING,
)
import logging

if TYPE_CHECKING:
    from ..config import RegisterSettings

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Base exception for storage adapter operations."""
    pass


class StorageSerializationError(StorageError):
    """Failed to serialize/deserialize a stored value."""
    pass


@dataclass(frozen=True)
class WriteAck:
    """Acknowledgment returned by a successful write.

    Attributes:
        key: Key that was written
        location: Backend-specific location (file path, memory slot)
    """
    key: str
    location: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {"key": self.key, "location": self.location, "success": True}


@runtime_checkable
class StorageAdapter(Protocol):
    """Protocol for register storage backends.

    This is the only place the register yields: every method is a
    coroutine so that I/O-bound backends can suspend.

    Example:
        >>> storage = MemoryStorage()
        >>> await storage.write("doc-1", {"id": "doc-1", "data": {}})
        >>> await storage.read("doc-1")
        {'id': 'doc-1', 'data': {}}
    """

    @abstractmethod
    async def write(self, key: str, value: Dict[str, Any]) -> WriteAck:
        """Store a value under a key, replacing any previous value.

        Args:
            key: Storage key (entry id)
            value: JSON-shaped mapping

        Returns:
            WriteAck for the stored value

        Raises:
            StorageError: If the write fails
        """
        ...

    @abstractmethod
    async def read(self, key: str) -> Optional[Dict[str, Any]]:
        """Read the value stored under a key.

        Args:
            key: Storage key

        Returns:
            The stored mapping, or None if absent
        """
        ...

    @abstractmethod
    async def list(self) -> List[Dict[str, Any]]:
        """Return every stored value."""
        ...

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Delete a key.

        Returns:
            True if something was deleted, False if the key was absent
        """
        ...


def create_storage(settings: "RegisterSettings") -> StorageAdapter:
    """Factory function to create a storage adapter from configuration.

    Args:
        settings: Register settings

    Returns:
        Appropriate StorageAdapter implementation

    Raises:
        ValueError: If backend is not supported
    """
    from ..config import StorageBackend
    from .file import FileStorage
    from .memory import MemoryStorage

    if settings.storage_backend == StorageBackend.MEMORY:
        return MemoryStorage()
    elif settings.storage_backend == StorageBackend.FILE:
        return FileStorage(settings.storage_path, extension=settings.storage_extension)
    else:
        raise ValueError(f"Unsupported storage backend: {settings.storage_backend}")
