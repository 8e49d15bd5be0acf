"""
Storage adapter abstraction for the document register.

This module provides a pluggable key -> record backend interface:
- In-memory (tests, local development)
- JSON files on local disk

Invariants:
    - Stored mappings round-trip losslessly
    - Adapter errors propagate to callers unmodified

How to change safely:
    - New backends must implement the StorageAdapter protocol
    - Verify round-trip fidelity of nested structures before use
"""

from .base import (
    StorageAdapter,
    StorageError,
    StorageSerializationError,
    WriteAck,
    create_storage,
)
from .file import FileStorage
from .memory import MemoryStorage

__all__ = [
    # Protocol and types
    "StorageAdapter",
    "StorageError",
    "StorageSerializationError",
    "WriteAck",
    # Factory
    "create_storage",
    # Implementations
    "FileStorage",
    "MemoryStorage",
]
