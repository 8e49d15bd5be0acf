"""
Error types for the document register.

This module defines the exceptions raised by the register core:
- RegisterError: Base exception
- EntryNotFoundError: get/update/archive on an unknown id
- VersionNotFoundError: Explicit version request with no match
- DuplicateEntryError: Import of an id that already exists
- InvalidQueryError: Unknown search operator or malformed operand
- ImportItemError: Per-item import failure (collected, not raised)

Storage adapter failures are not wrapped here; they propagate unmodified
from the adapter (see storage.base.StorageError).

Invariants:
    - All register errors inherit from RegisterError
    - Errors carry a stable code and a details mapping
    - Conflict and overlap detection never raise
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class RegisterError(Exception):
    """Base exception for all register errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "REGISTER_ERROR"
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for API responses."""
        return {
            "error": self.message,
            "error_code": self.code,
            "details": self.details,
        }


class EntryNotFoundError(RegisterError):
    """No entry is stored under the requested id."""

    def __init__(self, entry_id: str) -> None:
        super().__init__(
            f"Document not found: {entry_id}",
            code="ENTRY_NOT_FOUND",
            details={"entry_id": entry_id},
        )
        self.entry_id = entry_id


class VersionNotFoundError(RegisterError):
    """The entry exists but has no such version."""

    def __init__(self, entry_id: str, version: int) -> None:
        super().__init__(
            f"Version {version} not found for document {entry_id}",
            code="VERSION_NOT_FOUND",
            details={"entry_id": entry_id, "version": version},
        )
        self.entry_id = entry_id
        self.version = version


class DuplicateEntryError(RegisterError):
    """An import item names an id that is already stored."""

    def __init__(self, entry_id: str) -> None:
        super().__init__(
            f"Document already exists: {entry_id}",
            code="DUPLICATE_ENTRY",
            details={"entry_id": entry_id},
        )
        self.entry_id = entry_id


class InvalidQueryError(RegisterError):
    """A search query uses an unknown operator or a malformed operand."""

    def __init__(self, message: str, field_name: Optional[str] = None) -> None:
        super().__init__(
            message,
            code="INVALID_QUERY",
            details={"field": field_name},
        )
        self.field_name = field_name


class ImportItemError(RegisterError):
    """A single item of a bulk import failed.

    Import collects these into ImportResult.errors instead of aborting.

    Attributes:
        entry_id: Id of the failing item, if it had one
        index: Position of the item in the import payload
    """

    def __init__(
        self,
        message: str,
        entry_id: Optional[str] = None,
        index: Optional[int] = None,
    ) -> None:
        super().__init__(
            message,
            code="IMPORT_ITEM_ERROR",
            details={"entry_id": entry_id, "index": index},
        )
        self.entry_id = entry_id
        self.index = index
