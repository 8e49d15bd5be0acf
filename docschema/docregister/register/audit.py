"""
Append-only audit log of register mutations.

Invariants:
    - Entries are write-once and kept in insertion order
    - Only ADD, UPDATE and ARCHIVE are recorded
    - When max_entries is set, the oldest entries are dropped once the bound
      is exceeded. Trimming is lossy: dropped entries are gone for good and
      are only counted in `dropped`

How to change safely:
    - Persisting the log belongs to a separate backend; keep this in-memory
    - Add new actions at the end of AuditAction
"""

from __future__ import annotations

import copy
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Iterable, Mapping

from .types import Timestamp, format_ts, to_utc, utcnow

logger = logging.getLogger(__name__)


class AuditAction(str, Enum):
    """Register mutations recorded in the audit log."""

    ADD = "ADD"
    UPDATE = "UPDATE"
    ARCHIVE = "ARCHIVE"


@dataclass(frozen=True)
class AuditLogEntry:
    """A single audit record.

    Attributes:
        timestamp: When the mutation happened
        action: What kind of mutation
        document_id: Entry the mutation applied to
        details: Action-specific context (versions, actor, reason)
    """

    timestamp: datetime
    action: AuditAction
    document_id: str
    details: Mapping[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": format_ts(self.timestamp),
            "action": self.action.value,
            "document_id": self.document_id,
            "details": copy.deepcopy(dict(self.details)),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> AuditLogEntry:
        return cls(
            timestamp=to_utc(data["timestamp"]),
            action=AuditAction(data["action"]),
            document_id=data["document_id"],
            details=dict(data.get("details") or {}),
        )


class AuditLog:
    """Bounded or unbounded append-only audit trail.

    Example:
        >>> log = AuditLog(max_entries=1000)
        >>> log.append(AuditAction.ADD, "doc-1", {"version": 1})
        >>> [e.action for e in log.query(document_id="doc-1")]
        [<AuditAction.ADD: 'ADD'>]
    """

    def __init__(self, max_entries: int | None = None) -> None:
        """Initialize the audit log.

        Args:
            max_entries: Keep at most this many entries (None = unbounded)
        """
        if max_entries is not None and max_entries < 1:
            raise ValueError(f"max_entries must be positive, got {max_entries}")
        self.max_entries = max_entries
        self._entries: deque[AuditLogEntry] = deque()
        self._dropped = 0

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def dropped(self) -> int:
        """How many entries trimming has discarded so far."""
        return self._dropped

    def append(
        self,
        action: AuditAction,
        document_id: str,
        details: Mapping[str, Any] | None = None,
        timestamp: datetime | None = None,
    ) -> AuditLogEntry:
        """Record a mutation and trim to the bound if needed."""
        entry = AuditLogEntry(
            timestamp=timestamp or utcnow(),
            action=AuditAction(action),
            document_id=document_id,
            details=copy.deepcopy(dict(details or {})),
        )
        self._entries.append(entry)

        if self.max_entries is not None:
            while len(self._entries) > self.max_entries:
                self._entries.popleft()
                self._dropped += 1
            if self._dropped and self._dropped % 1000 == 0:
                logger.warning(
                    "Audit log trimmed",
                    extra={"dropped": self._dropped, "max_entries": self.max_entries},
                )

        return entry

    def extend(self, entries: Iterable[AuditLogEntry]) -> None:
        """Append already-built entries (used when importing a log)."""
        for entry in entries:
            self.append(entry.action, entry.document_id, entry.details, entry.timestamp)

    def query(
        self,
        document_id: str | None = None,
        action: AuditAction | str | None = None,
        since: Timestamp | None = None,
        until: Timestamp | None = None,
        limit: int | None = 1000,
    ) -> list[AuditLogEntry]:
        """Filter the log.

        Args:
            document_id: Only entries for this document
            action: Only entries with this action
            since: Only entries at or after this time
            until: Only entries strictly before this time
            limit: Return at most the newest `limit` matches

        Returns:
            Matching entries in insertion order
        """
        action = AuditAction(action) if action is not None else None
        since_dt = to_utc(since)
        until_dt = to_utc(until)

        matches = [
            e for e in self._entries
            if (document_id is None or e.document_id == document_id)
            and (action is None or e.action == action)
            and (since_dt is None or e.timestamp >= since_dt)
            and (until_dt is None or e.timestamp < until_dt)
        ]
        if limit is not None:
            matches = matches[-limit:] if limit > 0 else []
        return matches

    def to_list(self) -> list[dict[str, Any]]:
        """Serialize the whole log."""
        return [e.to_dict() for e in self._entries]
