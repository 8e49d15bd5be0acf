"""
File-backed storage adapter.

Stores one JSON document per key under a base directory:

    <base_path>/<safe_key><extension>

Invariants:
    - Keys are sanitized to [A-Za-z0-9_-] to prevent path traversal
    - Distinct keys map to distinct files: a key that needed sanitizing
      gets a ".<sha256 prefix>" suffix, which a safe key can never produce
    - Writes go to a temporary file first and are renamed into place
    - Values must be JSON-serializable; anything else is rejected

How to change safely:
    - Changing key sanitization orphans existing files
    - Keep the on-disk format plain JSON so files stay hand-editable
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
from pathlib import Path
from typing import Any

from .base import StorageError, StorageSerializationError, WriteAck

logger = logging.getLogger(__name__)


class FileStorage:
    """JSON-file implementation of StorageAdapter.

    Thread safety:
        Each operation opens and closes its own file handle. Concurrent
        writers to the same key are serialized by the register, not here.

    Example:
        >>> storage = FileStorage("/var/lib/docregister")
        >>> await storage.write("doc-1", {"id": "doc-1"})
    """

    def __init__(self, path: str | Path, extension: str = ".json") -> None:
        """Initialize file storage.

        Args:
            path: Base directory for stored documents
            extension: File extension for stored documents
        """
        self.base_path = Path(path)
        self.extension = extension
        self.base_path.mkdir(parents=True, exist_ok=True)

    def _get_file_path(self, key: str) -> Path:
        """Get the file path for a key."""
        safe_key = "".join(c if c.isalnum() or c in "-_" else "_" for c in key)
        if safe_key != key:
            digest = hashlib.sha256(key.encode("utf-8")).hexdigest()[:16]
            safe_key = f"{safe_key}.{digest}"
        return self.base_path / f"{safe_key}{self.extension}"

    async def write(self, key: str, value: dict[str, Any]) -> WriteAck:
        """Serialize value to JSON and store it atomically."""
        file_path = self._get_file_path(key)
        try:
            content = json.dumps(value, indent=2, sort_keys=True)
        except (TypeError, ValueError) as e:
            raise StorageSerializationError(f"Value for key '{key}' is not JSON-serializable: {e}")

        tmp_path = file_path.with_suffix(file_path.suffix + ".tmp")
        try:
            tmp_path.write_text(content, encoding="utf-8")
            os.replace(tmp_path, file_path)
        except OSError as e:
            raise StorageError(f"Failed to write key '{key}' to {file_path}: {e}")

        logger.debug("Value written to file storage", extra={"key": key, "path": str(file_path)})
        return WriteAck(key=key, location=str(file_path))

    async def read(self, key: str) -> dict[str, Any] | None:
        """Read and parse the JSON document for key, or None if absent."""
        file_path = self._get_file_path(key)
        if not file_path.exists():
            return None
        return self._load(file_path)

    async def list(self) -> list[dict[str, Any]]:
        """Load every stored document, ordered by file name."""
        return [self._load(p) for p in sorted(self.base_path.glob(f"*{self.extension}"))]

    async def delete(self, key: str) -> bool:
        """Delete the file for key, returning whether it existed."""
        file_path = self._get_file_path(key)
        if not file_path.exists():
            return False
        file_path.unlink()
        return True

    async def clear(self) -> None:
        """Delete every stored document."""
        for p in self.base_path.glob(f"*{self.extension}"):
            p.unlink()

    def _load(self, file_path: Path) -> dict[str, Any]:
        try:
            return json.loads(file_path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise StorageSerializationError(f"Corrupt document at {file_path}: {e}")
