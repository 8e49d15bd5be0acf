"""
Core types for the versioned document register.

This module defines the record model stored by the register:
- Entry: the versioned unit of storage (head version + history)
- HistoryRecord: immutable snapshot of a superseded version
- EntryVersion: a single version re-shaped for versioned/as-of reads
- EntrySummary: metadata-level projection used by list()
- EntryMetadata: typed metadata with free-form extension fields
- ExtractedRecord: the caller-supplied record (data + extraction metadata)

Invariants:
    - For an entry at version N, history holds versions 1..N-1 in order
    - History records are never mutated or removed, only appended
    - All timestamps are timezone-aware UTC datetimes
    - to_dict()/from_dict() round-trip losslessly through JSON

How to change safely:
    - Add new fields with defaults so stored documents still load
    - Never rename serialized keys; stored entries depend on them

Example:
    >>> record = ExtractedRecord(data={"amount": 100}, confidence=0.92)
    >>> entry = Entry.create("inv-1", record, effective_from="2024-01-01")
    >>> entry.version
    1
"""

from __future__ import annotations

import copy
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any


Timestamp = datetime | date | str


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def to_utc(value: Timestamp | None) -> datetime | None:
    """Normalize a timestamp-like value to an aware UTC datetime.

    Accepts datetimes (naive values are taken as UTC), dates (midnight
    UTC) and ISO-8601 strings, including a trailing 'Z'.

    Raises:
        ValueError: If a string is not valid ISO-8601
        TypeError: If the value is of an unsupported type
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, date):
        dt = datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        dt = datetime.fromisoformat(text)
    else:
        raise TypeError(f"Unsupported timestamp type: {type(value).__name__}")

    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def format_ts(value: datetime | None) -> str | None:
    """Serialize a datetime to ISO-8601, or None."""
    return value.isoformat() if value is not None else None


class EntryStatus(str, Enum):
    """Lifecycle status of an entry."""

    ACTIVE = "active"
    ARCHIVED = "archived"


_KNOWN_METADATA_KEYS = (
    "category",
    "tags",
    "source",
    "schema_id",
    "schema_version",
    "confidence",
    "extraction_id",
)


@dataclass(frozen=True)
class EntryMetadata:
    """Metadata attached to an entry version.

    Attributes:
        category: Optional single category tag (indexed)
        tags: Set of free-form tags (indexed)
        source: Where the record came from
        schema_id: Schema the data was extracted against
        schema_version: Version of that schema
        confidence: Extraction confidence in [0, 1]
        extraction_id: Upstream extraction run identifier
        extra: Free-form extension fields
    """

    category: str | None = None
    tags: frozenset[str] = frozenset()
    source: str | None = None
    schema_id: str | None = None
    schema_version: str | None = None
    confidence: float | None = None
    extraction_id: str | None = None
    extra: Mapping[str, Any] = field(default_factory=dict)

    def get(self, key: str, default: Any = None) -> Any:
        """Look up a known field or an extension field by name."""
        if key in _KNOWN_METADATA_KEYS:
            return getattr(self, key)
        return self.extra.get(key, default)

    def merged(self, overrides: Mapping[str, Any]) -> EntryMetadata:
        """Return a copy with overrides applied key by key.

        Known keys replace the current value; extension keys are merged
        into extra.
        """
        merged = self.to_dict()
        merged.update(overrides)
        return EntryMetadata.from_dict(merged)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a flat dictionary (extension fields inlined)."""
        result: dict[str, Any] = copy.deepcopy(dict(self.extra))
        result.update({
            "category": self.category,
            "tags": sorted(self.tags),
            "source": self.source,
            "schema_id": self.schema_id,
            "schema_version": self.schema_version,
            "confidence": self.confidence,
            "extraction_id": self.extraction_id,
        })
        return result

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> EntryMetadata:
        """Create from a flat dictionary; unknown keys become extra."""
        data = dict(data or {})
        tags = data.pop("tags", None) or ()
        if isinstance(tags, str):
            tags = (tags,)
        known = {k: data.pop(k, None) for k in _KNOWN_METADATA_KEYS if k != "tags"}
        return cls(tags=frozenset(tags), extra=copy.deepcopy(data), **known)


@dataclass
class ExtractedRecord:
    """A structured record produced upstream by extraction.

    Attributes:
        data: Field name -> JSON-shaped value
        schema_id: Schema the record was extracted against
        schema_version: Version of that schema
        extraction_id: Upstream extraction run identifier
        confidence: Extraction confidence
    """

    data: dict[str, Any]
    schema_id: str | None = None
    schema_version: str | None = None
    extraction_id: str | None = None
    confidence: float | None = None

    _ENVELOPE_KEYS = frozenset({"data", "schema_id", "schema_version", "extraction_id", "confidence"})

    @classmethod
    def coerce(cls, record: ExtractedRecord | Mapping[str, Any]) -> ExtractedRecord:
        """Accept an ExtractedRecord, an envelope mapping, or bare data.

        A mapping is treated as an envelope only when its 'data' value is
        a mapping and every other key is an envelope key; otherwise the
        whole mapping is the data.
        """
        if isinstance(record, ExtractedRecord):
            return record
        if not isinstance(record, Mapping):
            raise TypeError(f"Record must be a mapping, got {type(record).__name__}")
        if isinstance(record.get("data"), Mapping) and set(record) <= cls._ENVELOPE_KEYS:
            return cls(
                data=dict(record["data"]),
                schema_id=record.get("schema_id"),
                schema_version=record.get("schema_version"),
                extraction_id=record.get("extraction_id"),
                confidence=record.get("confidence"),
            )
        return cls(data=dict(record))


@dataclass(frozen=True)
class HistoryRecord:
    """Immutable snapshot of a superseded version.

    Attributes:
        version: The version number this record captures
        data: That version's data
        metadata: That version's metadata
        effective_from: Start of the version's validity interval
        effective_to: End of the interval (closed when superseded)
        archived_at: When the version was superseded
    """

    version: int
    data: dict[str, Any]
    metadata: EntryMetadata
    effective_from: datetime
    effective_to: datetime | None
    archived_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "data": copy.deepcopy(self.data),
            "metadata": self.metadata.to_dict(),
            "effective_from": format_ts(self.effective_from),
            "effective_to": format_ts(self.effective_to),
            "archived_at": format_ts(self.archived_at),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> HistoryRecord:
        return cls(
            version=int(data["version"]),
            data=copy.deepcopy(dict(data.get("data") or {})),
            metadata=EntryMetadata.from_dict(data.get("metadata")),
            effective_from=to_utc(data["effective_from"]),
            effective_to=to_utc(data.get("effective_to")),
            archived_at=to_utc(data.get("archived_at") or data["effective_from"]),
        )


@dataclass(frozen=True)
class EntryVersion:
    """One version of an entry, as returned by versioned and as-of reads."""

    id: str
    version: int
    data: dict[str, Any]
    metadata: EntryMetadata
    effective_from: datetime
    effective_to: datetime | None
    is_historic: bool

    @classmethod
    def from_history(cls, entry_id: str, record: HistoryRecord) -> EntryVersion:
        return cls(
            id=entry_id,
            version=record.version,
            data=copy.deepcopy(record.data),
            metadata=record.metadata,
            effective_from=record.effective_from,
            effective_to=record.effective_to,
            is_historic=True,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "version": self.version,
            "data": copy.deepcopy(self.data),
            "metadata": self.metadata.to_dict(),
            "effective_from": format_ts(self.effective_from),
            "effective_to": format_ts(self.effective_to),
            "is_historic": self.is_historic,
        }


@dataclass(frozen=True)
class EntrySummary:
    """Metadata-level projection of an entry (no data mapping)."""

    id: str
    version: int
    status: EntryStatus
    created_at: datetime
    updated_at: datetime
    effective_from: datetime
    effective_to: datetime | None
    metadata: EntryMetadata

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "version": self.version,
            "status": self.status.value,
            "created_at": format_ts(self.created_at),
            "updated_at": format_ts(self.updated_at),
            "effective_from": format_ts(self.effective_from),
            "effective_to": format_ts(self.effective_to),
            "metadata": self.metadata.to_dict(),
        }


@dataclass
class Entry:
    """The versioned record unit stored by the register.

    Attributes:
        id: Opaque identifier, immutable for the entry's lifetime
        version: Head version number (1..N)
        data: Head version's data
        metadata: Head version's metadata
        status: active or archived
        effective_from: Start of the head's validity interval
        effective_to: End of the head's interval (None = open-ended)
        created_at: Set by the register on add
        updated_at: Set by the register on every mutation
        history: Superseded versions, oldest first
        archived_at: When the entry was archived, if it was
        archive_reason: Caller-supplied archive reason
    """

    id: str
    version: int
    data: dict[str, Any]
    metadata: EntryMetadata
    status: EntryStatus
    effective_from: datetime
    effective_to: datetime | None
    created_at: datetime
    updated_at: datetime
    history: list[HistoryRecord] = field(default_factory=list)
    archived_at: datetime | None = None
    archive_reason: str | None = None

    @classmethod
    def create(
        cls,
        entry_id: str,
        record: ExtractedRecord,
        metadata: EntryMetadata | None = None,
        effective_from: Timestamp | None = None,
        effective_to: Timestamp | None = None,
        status: EntryStatus = EntryStatus.ACTIVE,
        now: datetime | None = None,
    ) -> Entry:
        """Build a version-1 entry."""
        now = now or utcnow()
        return cls(
            id=entry_id,
            version=1,
            data=copy.deepcopy(record.data),
            metadata=metadata or EntryMetadata(),
            status=EntryStatus(status),
            effective_from=to_utc(effective_from) or now,
            effective_to=to_utc(effective_to),
            created_at=now,
            updated_at=now,
        )

    def head(self) -> EntryVersion:
        """The current version as an EntryVersion."""
        return EntryVersion(
            id=self.id,
            version=self.version,
            data=copy.deepcopy(self.data),
            metadata=self.metadata,
            effective_from=self.effective_from,
            effective_to=self.effective_to,
            is_historic=False,
        )

    def find_version(self, version: int) -> EntryVersion | None:
        """Return the requested version, current or historic, or None."""
        if version == self.version:
            return self.head()
        for record in self.history:
            if record.version == version:
                return EntryVersion.from_history(self.id, record)
        return None

    def all_versions(self) -> list[EntryVersion]:
        """Every version, ascending by version number."""
        versions = [EntryVersion.from_history(self.id, h) for h in self.history]
        versions.append(self.head())
        return sorted(versions, key=lambda v: v.version)

    def summary(self) -> EntrySummary:
        return EntrySummary(
            id=self.id,
            version=self.version,
            status=self.status,
            created_at=self.created_at,
            updated_at=self.updated_at,
            effective_from=self.effective_from,
            effective_to=self.effective_to,
            metadata=self.metadata,
        )

    def with_status(self, status: EntryStatus, **changes: Any) -> Entry:
        """Copy of this entry with a new status (history list copied)."""
        return replace(self, status=status, history=list(self.history), **changes)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-shaped dictionary for storage and export."""
        return {
            "id": self.id,
            "version": self.version,
            "status": self.status.value,
            "data": copy.deepcopy(self.data),
            "metadata": self.metadata.to_dict(),
            "effective_from": format_ts(self.effective_from),
            "effective_to": format_ts(self.effective_to),
            "created_at": format_ts(self.created_at),
            "updated_at": format_ts(self.updated_at),
            "archived_at": format_ts(self.archived_at),
            "archive_reason": self.archive_reason,
            "history": [h.to_dict() for h in self.history],
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Entry:
        """Create from dictionary representation.

        Raises:
            KeyError: If id or effective_from is missing
        """
        created_at = to_utc(data.get("created_at")) or to_utc(data["effective_from"])
        return cls(
            id=data["id"],
            version=int(data.get("version", 1)),
            data=copy.deepcopy(dict(data.get("data") or {})),
            metadata=EntryMetadata.from_dict(data.get("metadata")),
            status=EntryStatus(data.get("status", EntryStatus.ACTIVE.value)),
            effective_from=to_utc(data["effective_from"]),
            effective_to=to_utc(data.get("effective_to")),
            created_at=created_at,
            updated_at=to_utc(data.get("updated_at")) or created_at,
            history=[HistoryRecord.from_dict(h) for h in data.get("history") or ()],
            archived_at=to_utc(data.get("archived_at")),
            archive_reason=data.get("archive_reason"),
        )


def normalize_tags(tags: Iterable[str] | str | None) -> frozenset[str] | None:
    """Normalize a caller-supplied tags argument; None means not supplied."""
    if tags is None:
        return None
    if isinstance(tags, str):
        return frozenset((tags,))
    return frozenset(tags)
