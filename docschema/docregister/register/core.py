"""
Versioned document register.

The register owns the lifecycle of entries: create (version 1), update as a
new version (the previous head is demoted into history), and archive. It
maintains private category/tag indexes, an audit log of mutations, and
answers filtered listing, query-based search and as-of reads.

Invariants:
    - For every id, versions are exactly 1..N and history holds 1..N-1
    - History records are only ever appended
    - update() and archive() on one id are serialized by a per-id lock, so
      concurrent updates within one register instance never lose a version
    - Indexes are owned by the register; accessors hand out copies
    - Storage adapter errors propagate unmodified

How to change safely:
    - The only suspension points are storage adapter calls; keep index and
      audit updates free of awaits so they stay consistent with the write
    - New list filters must work for entries loaded from storage, not just
      ones added through this instance

Example:
    >>> register = VersionedRegister(name="invoices")
    >>> entry = await register.add({"amount": 100}, effective_from="2024-01-01")
    >>> entry = await register.update(entry.id, {"amount": 150})
    >>> (await register.get(entry.id, version=1)).data
    {'amount': 100}
"""

from __future__ import annotations

import asyncio
import logging
import uuid
import weakref
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any

from ..config import RegisterSettings
from ..errors import (
    DuplicateEntryError,
    EntryNotFoundError,
    ImportItemError,
    RegisterError,
    VersionNotFoundError,
)
from ..storage.base import StorageAdapter
from ..storage.memory import MemoryStorage
from .audit import AuditAction, AuditLog, AuditLogEntry
from .query import evaluate, parse_query
from .temporal import Interval, TemporalResolver
from .types import (
    Entry,
    EntryMetadata,
    EntryStatus,
    EntrySummary,
    EntryVersion,
    ExtractedRecord,
    HistoryRecord,
    Timestamp,
    format_ts,
    normalize_tags,
    to_utc,
    utcnow,
)

logger = logging.getLogger(__name__)

# Entry attributes that list() can sort by directly; anything else is
# looked up in metadata.
_SORTABLE_ATTRIBUTES = frozenset({
    "id",
    "version",
    "status",
    "effective_from",
    "effective_to",
    "created_at",
    "updated_at",
    "archived_at",
})


@dataclass
class ListPage:
    """One page of list() results."""

    items: list[Entry | EntrySummary]
    total: int
    offset: int
    limit: int
    has_more: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "entries": [item.to_dict() for item in self.items],
            "total": self.total,
            "offset": self.offset,
            "limit": self.limit,
            "has_more": self.has_more,
        }


@dataclass
class SearchHit:
    """An entry that satisfied at least one query predicate."""

    entry: Entry
    score: float
    matched_fields: list[str]

    def to_dict(self) -> dict[str, Any]:
        result = self.entry.to_dict()
        result["match_score"] = self.score
        result["matched_fields"] = list(self.matched_fields)
        return result


@dataclass
class SearchResult:
    """Ranked search hits; total counts hits before the limit."""

    results: list[SearchHit]
    total: int
    query: Mapping[str, Any]

    def to_dict(self) -> dict[str, Any]:
        return {
            "results": [hit.to_dict() for hit in self.results],
            "total": self.total,
            "query": dict(self.query),
        }


@dataclass(frozen=True)
class VersionSummary:
    """Interval-level view of one version in an entry's history."""

    version: int
    effective_from: datetime
    effective_to: datetime | None
    is_current: bool
    updated_at: datetime | None = None
    archived_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "effective_from": format_ts(self.effective_from),
            "effective_to": format_ts(self.effective_to),
            "is_current": self.is_current,
            "updated_at": format_ts(self.updated_at),
            "archived_at": format_ts(self.archived_at),
        }


@dataclass
class EntryHistory:
    """Every version of an entry, newest first."""

    id: str
    current_version: int
    versions: list[VersionSummary]

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "current_version": self.current_version,
            "versions": [v.to_dict() for v in self.versions],
        }


@dataclass
class ImportResult:
    """Outcome of a bulk import. Per-item failures are collected in errors."""

    imported: int = 0
    skipped: int = 0
    errors: list[ImportItemError] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "imported": self.imported,
            "skipped": self.skipped,
            "errors": [e.to_dict() for e in self.errors],
        }


class VersionedRegister:
    """Versioned, effective-dated register of extracted records.

    Thread safety:
        Not thread-safe. Intended for a single asyncio event loop; per-id
        locks serialize read-modify-write cycles within one instance only.

    Example:
        >>> register = VersionedRegister(storage=FileStorage("/var/lib/docreg"))
        >>> await register.rebuild_indexes()
        >>> page = await register.list(category="invoice", limit=20)
    """

    def __init__(
        self,
        storage: StorageAdapter | None = None,
        settings: RegisterSettings | None = None,
        *,
        name: str | None = None,
        schema_id: str | None = None,
        audit_log: AuditLog | None = None,
    ) -> None:
        """Initialize the register.

        Args:
            storage: Storage adapter (defaults to a fresh MemoryStorage)
            settings: Register settings (defaults to environment settings)
            name: Register name, overrides settings.register_name
            schema_id: Default schema id, overrides settings.schema_id
            audit_log: Audit log to record into; built from settings if omitted
        """
        self.settings = settings or RegisterSettings()
        self.storage: StorageAdapter = storage if storage is not None else MemoryStorage()
        self.name = name or self.settings.register_name
        self.schema_id = schema_id if schema_id is not None else self.settings.schema_id

        if audit_log is not None:
            self.audit_log: AuditLog | None = audit_log
        elif self.settings.enable_audit_log:
            self.audit_log = AuditLog(max_entries=self.settings.audit_log_max_entries)
        else:
            self.audit_log = None

        self._resolver = TemporalResolver()
        # a lock lives only while some call holds or awaits it
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )
        self._category_index: dict[str, set[str]] = {}
        self._tag_index: dict[str, set[str]] = {}
        self._indexes_ready = False

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def add(
        self,
        record: ExtractedRecord | Mapping[str, Any],
        *,
        entry_id: str | None = None,
        effective_from: Timestamp | None = None,
        effective_to: Timestamp | None = None,
        status: EntryStatus | str = EntryStatus.ACTIVE,
        category: str | None = None,
        tags: Iterable[str] | str | None = None,
        source: str | None = None,
        metadata: Mapping[str, Any] | None = None,
        actor: str | None = None,
    ) -> Entry:
        """Create a new entry at version 1.

        Adding under an id that already exists replaces that entry.

        Args:
            record: Extracted record, envelope mapping, or bare data mapping
            entry_id: Id to use (a UUID is generated if omitted)
            effective_from: Start of validity (defaults to now)
            effective_to: End of validity (None = open-ended)
            status: Initial status
            category: Indexed category
            tags: Indexed tags
            source: Record origin
            metadata: Extra metadata; keys here win over everything else
            actor: Who made the change (audit only)

        Returns:
            The stored entry

        Raises:
            StorageError: If the storage adapter fails
        """
        record = ExtractedRecord.coerce(record)
        entry_id = entry_id or str(uuid.uuid4())

        base = {
            "schema_id": record.schema_id or self.schema_id,
            "schema_version": record.schema_version,
            "extraction_id": record.extraction_id,
            "confidence": record.confidence,
            "source": source,
            "category": category,
            "tags": sorted(normalize_tags(tags) or ()),
        }
        base.update(metadata or {})

        async with self._lock_for(entry_id):
            entry = Entry.create(
                entry_id,
                record,
                metadata=EntryMetadata.from_dict(base),
                effective_from=effective_from,
                effective_to=effective_to,
                status=EntryStatus(status),
            )

            previous = await self._load(entry_id)
            await self._save(entry)

            if previous is not None:
                logger.warning(
                    "Add replaced an existing entry",
                    extra={"entry_id": entry_id, "replaced_version": previous.version},
                )
                self._unindex(previous)
            self._index(entry)

        self._audit(
            AuditAction.ADD,
            entry_id,
            {
                "version": entry.version,
                "effective_from": format_ts(entry.effective_from),
                "actor": actor,
            },
        )
        logger.debug("Entry added", extra={"entry_id": entry_id, "register": self.name})
        return entry

    async def update(
        self,
        entry_id: str,
        record: ExtractedRecord | Mapping[str, Any],
        *,
        effective_from: Timestamp | None = None,
        effective_to: Timestamp | None = None,
        supersede_at: Timestamp | None = None,
        category: str | None = None,
        tags: Iterable[str] | str | None = None,
        source: str | None = None,
        metadata: Mapping[str, Any] | None = None,
        actor: str | None = None,
        change_reason: str | None = None,
    ) -> Entry:
        """Store a new version of an entry.

        The current head is appended to history with its interval closed at
        supersede_at (default: now). Metadata is merged: keys supplied here
        override, extraction_id and confidence follow the new record, and
        schema id/version fall back to the previous version's.

        Raises:
            EntryNotFoundError: If no entry exists under entry_id
            StorageError: If the storage adapter fails
        """
        record = ExtractedRecord.coerce(record)

        async with self._lock_for(entry_id):
            existing = await self._load(entry_id)
            if existing is None:
                raise EntryNotFoundError(entry_id)

            now = utcnow()
            demoted = HistoryRecord(
                version=existing.version,
                data=existing.data,
                metadata=existing.metadata,
                effective_from=existing.effective_from,
                effective_to=to_utc(supersede_at) or now,
                archived_at=now,
            )

            overrides: dict[str, Any] = {
                "schema_id": record.schema_id or existing.metadata.schema_id,
                "schema_version": record.schema_version or existing.metadata.schema_version,
                "extraction_id": record.extraction_id,
                "confidence": record.confidence,
            }
            if category is not None:
                overrides["category"] = category
            if source is not None:
                overrides["source"] = source
            new_tags = normalize_tags(tags)
            if new_tags is not None:
                overrides["tags"] = sorted(new_tags)
            overrides.update(metadata or {})

            updated = replace(
                existing,
                version=existing.version + 1,
                data=dict(record.data),
                metadata=existing.metadata.merged(overrides),
                effective_from=to_utc(effective_from) or now,
                effective_to=to_utc(effective_to),
                updated_at=now,
                history=[*existing.history, demoted],
            )
            await self._save(updated)

            self._unindex(existing)
            self._index(updated)

        self._audit(
            AuditAction.UPDATE,
            entry_id,
            {
                "previous_version": existing.version,
                "new_version": updated.version,
                "effective_from": format_ts(updated.effective_from),
                "actor": actor,
                "change_reason": change_reason,
            },
        )
        logger.debug(
            "Entry updated",
            extra={"entry_id": entry_id, "version": updated.version},
        )
        return updated

    async def archive(
        self,
        entry_id: str,
        *,
        reason: str | None = None,
        actor: str | None = None,
        effective_to: Timestamp | None = None,
    ) -> Entry:
        """Mark an entry archived. The version number does not change.

        Args:
            entry_id: Entry to archive
            reason: Recorded on the entry and in the audit log
            actor: Who archived it (audit only)
            effective_to: If given, closes the head version's interval

        Raises:
            EntryNotFoundError: If no entry exists under entry_id
        """
        async with self._lock_for(entry_id):
            existing = await self._load(entry_id)
            if existing is None:
                raise EntryNotFoundError(entry_id)

            now = utcnow()
            archived = existing.with_status(
                EntryStatus.ARCHIVED,
                archived_at=now,
                archive_reason=reason,
                updated_at=now,
                effective_to=to_utc(effective_to) if effective_to is not None else existing.effective_to,
            )
            await self._save(archived)

        self._audit(
            AuditAction.ARCHIVE,
            entry_id,
            {"version": archived.version, "reason": reason, "actor": actor},
        )
        logger.info(f"Archived entry {entry_id} at version {archived.version}")
        return archived

    async def add_many(
        self,
        records: Iterable[ExtractedRecord | Mapping[str, Any] | tuple[Any, Mapping[str, Any]]],
        *,
        concurrency: int | None = None,
    ) -> list[Entry]:
        """Add several records with a bounded number of in-flight adds.

        Each item is a record, or a (record, options) pair where options are
        keyword arguments for add().

        Returns:
            Stored entries, in input order
        """
        limit = concurrency if concurrency is not None else self.settings.batch_concurrency
        if limit < 1:
            raise ValueError(f"concurrency must be positive, got {limit}")
        semaphore = asyncio.Semaphore(limit)

        async def add_one(item: Any) -> Entry:
            if isinstance(item, tuple):
                record, options = item
            else:
                record, options = item, {}
            async with semaphore:
                return await self.add(record, **options)

        return list(await asyncio.gather(*(add_one(item) for item in records)))

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get(
        self,
        entry_id: str,
        *,
        version: int | None = None,
        as_of: Timestamp | None = None,
    ) -> Entry | EntryVersion | None:
        """Read an entry.

        Args:
            entry_id: Entry id
            version: Return exactly this version (takes precedence over as_of)
            as_of: Return the version in force at this time, or None

        Returns:
            The current Entry when neither option is given; otherwise an
            EntryVersion (or None for an as_of with no version in force)

        Raises:
            EntryNotFoundError: If no entry exists under entry_id
            VersionNotFoundError: If the requested version does not exist
        """
        entry = await self._load(entry_id)
        if entry is None:
            raise EntryNotFoundError(entry_id)

        if version is not None:
            found = entry.find_version(version)
            if found is None:
                raise VersionNotFoundError(entry_id, version)
            return found

        if as_of is not None:
            return self._resolver.resolve(entry, as_of)

        return entry

    async def exists(self, entry_id: str) -> bool:
        return await self.storage.read(entry_id) is not None

    async def get_history(self, entry_id: str) -> EntryHistory:
        """Summaries of the current and historic versions, newest first.

        Raises:
            EntryNotFoundError: If no entry exists under entry_id
        """
        entry = await self._load(entry_id)
        if entry is None:
            raise EntryNotFoundError(entry_id)

        versions = [
            VersionSummary(
                version=entry.version,
                effective_from=entry.effective_from,
                effective_to=entry.effective_to,
                is_current=True,
                updated_at=entry.updated_at,
            )
        ]
        for record in reversed(entry.history):
            versions.append(
                VersionSummary(
                    version=record.version,
                    effective_from=record.effective_from,
                    effective_to=record.effective_to,
                    is_current=False,
                    archived_at=record.archived_at,
                )
            )
        return EntryHistory(id=entry.id, current_version=entry.version, versions=versions)

    async def list(
        self,
        *,
        status: EntryStatus | str | None = None,
        category: str | None = None,
        tags: Iterable[str] | str | None = None,
        effective_at: Timestamp | None = None,
        schema_id: str | None = None,
        sort_by: str = "updated_at",
        sort_dir: str = "desc",
        offset: int = 0,
        limit: int | None = None,
        include_data: bool = False,
    ) -> ListPage:
        """Filtered, sorted, paginated listing.

        Args:
            status: Only entries with this status
            category: Only entries in this category
            tags: Only entries sharing at least one of these tags
            effective_at: Only entries whose head interval contains this time
            schema_id: Only entries extracted against this schema
            sort_by: Entry attribute, or else a metadata key
            sort_dir: "asc" or "desc"
            offset: Items to skip
            limit: Page size (defaults to settings.default_list_limit)
            include_data: Return full entries instead of summaries

        Returns:
            ListPage with the requested slice and the total match count
        """
        if sort_dir not in ("asc", "desc"):
            raise ValueError(f"sort_dir must be 'asc' or 'desc', got {sort_dir!r}")
        limit = limit if limit is not None else self.settings.default_list_limit
        offset = max(offset, 0)

        entries = await self._select(
            status=status,
            category=category,
            tags=tags,
            effective_at=effective_at,
            schema_id=schema_id,
        )
        entries = _sorted(entries, sort_by, descending=sort_dir == "desc")

        total = len(entries)
        page = entries[offset:offset + limit]
        items: list[Entry | EntrySummary] = page if include_data else [e.summary() for e in page]
        return ListPage(
            items=items,
            total=total,
            offset=offset,
            limit=limit,
            has_more=offset + limit < total,
        )

    async def search(
        self,
        query: Mapping[str, Any],
        *,
        limit: int | None = None,
        status: EntryStatus | str | None = None,
    ) -> SearchResult:
        """Score every entry's data against a query and rank the hits.

        This is a linear scan over all stored entries.

        Raises:
            InvalidQueryError: If the query uses an unknown operator or a
                malformed operand
        """
        predicates = parse_query(query)
        limit = limit if limit is not None else self.settings.default_search_limit
        wanted_status = EntryStatus(status) if status is not None else None

        hits: list[SearchHit] = []
        for entry in await self._load_all():
            if wanted_status is not None and entry.status != wanted_status:
                continue
            match = evaluate(predicates, entry.data)
            if match.matched:
                hits.append(SearchHit(entry=entry, score=match.score, matched_fields=match.fields))

        hits.sort(key=lambda hit: hit.score, reverse=True)
        return SearchResult(results=hits[:limit], total=len(hits), query=query)

    def get_audit_log(
        self,
        *,
        document_id: str | None = None,
        action: AuditAction | str | None = None,
        since: Timestamp | None = None,
        until: Timestamp | None = None,
        limit: int | None = 1000,
    ) -> list[AuditLogEntry]:
        """Query the audit log; empty when auditing is disabled."""
        if self.audit_log is None:
            return []
        return self.audit_log.query(
            document_id=document_id,
            action=action,
            since=since,
            until=until,
            limit=limit,
        )

    # ------------------------------------------------------------------
    # Export / import
    # ------------------------------------------------------------------

    async def export(self, *, include_audit_log: bool = False, **filters: Any) -> dict[str, Any]:
        """Export matching entries, history included, as plain data.

        Args:
            include_audit_log: Also export the audit log
            **filters: status, category, tags, effective_at, schema_id

        Returns:
            {register_name, schema_id, exported_at, total_entries, entries,
            audit_log?}
        """
        entries = await self._select(**filters)
        entries = _sorted(entries, "created_at", descending=False)

        payload: dict[str, Any] = {
            "register_name": self.name,
            "schema_id": self.schema_id,
            "exported_at": format_ts(utcnow()),
            "total_entries": len(entries),
            "entries": [e.to_dict() for e in entries],
        }
        if include_audit_log:
            payload["audit_log"] = self.audit_log.to_list() if self.audit_log is not None else []
        logger.info(f"Exported {len(entries)} entries from register {self.name}")
        return payload

    async def import_entries(
        self,
        payload: Mapping[str, Any] | Iterable[Mapping[str, Any]],
        *,
        skip_existing: bool = False,
        restore_audit_log: bool = True,
    ) -> ImportResult:
        """Import entries produced by export(), or bare entry-shaped mappings.

        Version, history, status, metadata and effective interval are kept
        as supplied. Items without an id get a generated one; items without
        a 'data' mapping are taken as bare data. An entry whose version and
        history disagree is reported as an item error.

        When the payload carries an "audit_log" (export(include_audit_log=True)),
        its records for the imported entries are appended to this register's
        log in place of the usual "import" ADD record.

        Args:
            payload: {"entries": [...], "audit_log"?: [...]} or a sequence
                of entries
            skip_existing: Skip ids that already exist instead of reporting
                them as errors
            restore_audit_log: Restore exported audit records, if present

        Returns:
            ImportResult; per-item failures are collected, never raised
        """
        if isinstance(payload, Mapping):
            items = payload.get("entries") or []
            raw_audit = payload.get("audit_log") if restore_audit_log else None
        else:
            items = payload
            raw_audit = None

        result = ImportResult()
        restored: list[AuditLogEntry] = []
        for record in raw_audit or []:
            try:
                restored.append(AuditLogEntry.from_dict(record))
            except (KeyError, ValueError, TypeError) as e:
                document_id = record.get("document_id") if isinstance(record, Mapping) else None
                result.errors.append(
                    ImportItemError(f"Invalid audit record: {e}", entry_id=document_id)
                )
        audited_ids = {record.document_id for record in restored}

        imported_ids: set[str] = set()
        for index, item in enumerate(items):
            entry_id = item.get("id") if isinstance(item, Mapping) else None
            try:
                entry = _entry_from_import(item)
                entry_id = entry.id
                async with self._lock_for(entry.id):
                    if await self._load(entry.id) is not None:
                        if skip_existing:
                            result.skipped += 1
                            continue
                        raise DuplicateEntryError(entry.id)
                    await self._save(entry)
                    self._index(entry)
            except (RegisterError, KeyError, ValueError, TypeError) as e:
                message = e.message if isinstance(e, RegisterError) else f"Invalid entry: {e}"
                result.errors.append(ImportItemError(message, entry_id=entry_id, index=index))
                continue

            imported_ids.add(entry.id)
            if entry.id not in audited_ids:
                self._audit(
                    AuditAction.ADD,
                    entry.id,
                    {"version": entry.version, "source": "import"},
                )
            result.imported += 1

        if self.audit_log is not None:
            self.audit_log.extend(r for r in restored if r.document_id in imported_ids)

        if result.errors:
            logger.warning(
                "Import finished with errors",
                extra={"imported": result.imported, "errors": len(result.errors)},
            )
        else:
            logger.info(
                f"Imported {result.imported} entries (skipped {result.skipped})"
            )
        return result

    # ------------------------------------------------------------------
    # Indexes
    # ------------------------------------------------------------------

    async def rebuild_indexes(self) -> int:
        """Rebuild category and tag indexes from storage.

        Returns:
            Number of entries indexed
        """
        entries = await self._load_all()
        self._reindex(entries)
        return len(entries)

    @property
    def category_index(self) -> dict[str, set[str]]:
        """Copy of the category -> ids index."""
        return {k: set(v) for k, v in self._category_index.items()}

    @property
    def tag_index(self) -> dict[str, set[str]]:
        """Copy of the tag -> ids index."""
        return {k: set(v) for k, v in self._tag_index.items()}

    def _reindex(self, entries: Iterable[Entry]) -> None:
        self._category_index = {}
        self._tag_index = {}
        for entry in entries:
            self._index(entry)
        self._indexes_ready = True

    def _index(self, entry: Entry) -> None:
        if entry.metadata.category:
            self._category_index.setdefault(entry.metadata.category, set()).add(entry.id)
        for tag in entry.metadata.tags:
            self._tag_index.setdefault(tag, set()).add(entry.id)

    def _unindex(self, entry: Entry) -> None:
        category = entry.metadata.category
        if category and category in self._category_index:
            self._category_index[category].discard(entry.id)
            if not self._category_index[category]:
                del self._category_index[category]
        for tag in entry.metadata.tags:
            if tag in self._tag_index:
                self._tag_index[tag].discard(entry.id)
                if not self._tag_index[tag]:
                    del self._tag_index[tag]

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _lock_for(self, entry_id: str) -> asyncio.Lock:
        lock = self._locks.get(entry_id)
        if lock is None:
            lock = self._locks[entry_id] = asyncio.Lock()
        return lock

    def _audit(self, action: AuditAction, entry_id: str, details: dict[str, Any]) -> None:
        if self.audit_log is not None:
            self.audit_log.append(action, entry_id, details)

    async def _load(self, entry_id: str) -> Entry | None:
        raw = await self.storage.read(entry_id)
        return Entry.from_dict(raw) if raw is not None else None

    async def _load_all(self) -> list[Entry]:
        return [Entry.from_dict(raw) for raw in await self.storage.list()]

    async def _save(self, entry: Entry) -> None:
        await self.storage.write(entry.id, entry.to_dict())

    async def _select(
        self,
        *,
        status: EntryStatus | str | None = None,
        category: str | None = None,
        tags: Iterable[str] | str | None = None,
        effective_at: Timestamp | None = None,
        schema_id: str | None = None,
    ) -> list[Entry]:
        entries = await self._load_all()
        if not self._indexes_ready:
            self._reindex(entries)

        if status is not None:
            wanted = EntryStatus(status)
            entries = [e for e in entries if e.status == wanted]

        if category is not None:
            ids = self._category_index.get(category, set())
            entries = [e for e in entries if e.id in ids]

        wanted_tags = normalize_tags(tags)
        if wanted_tags:
            ids = set().union(*(self._tag_index.get(tag, set()) for tag in wanted_tags))
            entries = [e for e in entries if e.id in ids]

        if effective_at is not None:
            instant = to_utc(effective_at)
            entries = [
                e for e in entries
                if Interval(e.effective_from, e.effective_to).contains(instant)
            ]

        if schema_id is not None:
            entries = [e for e in entries if e.metadata.schema_id == schema_id]

        return entries


def _sort_value(entry: Entry, sort_by: str) -> Any:
    if sort_by in _SORTABLE_ATTRIBUTES:
        return getattr(entry, sort_by)
    return entry.metadata.get(sort_by)


def _sorted(entries: list[Entry], sort_by: str, descending: bool) -> list[Entry]:
    """Sort by a field; entries without a value go last in either direction."""
    present = [e for e in entries if _sort_value(e, sort_by) is not None]
    absent = [e for e in entries if _sort_value(e, sort_by) is None]
    try:
        present.sort(key=lambda e: _sort_value(e, sort_by), reverse=descending)
    except TypeError:
        present.sort(key=lambda e: str(_sort_value(e, sort_by)), reverse=descending)
    return present + absent


def _entry_from_import(item: Any) -> Entry:
    """Build an Entry from one import item."""
    if not isinstance(item, Mapping):
        raise TypeError(f"expected a mapping, got {type(item).__name__}")

    raw = dict(item)
    if not isinstance(raw.get("data"), Mapping):
        raw = {"data": dict(item)}
    raw["id"] = raw.get("id") or str(uuid.uuid4())
    if not raw.get("effective_from"):
        raw["effective_from"] = format_ts(utcnow())
    entry = Entry.from_dict(raw)

    # history must hold exactly versions 1..version-1, oldest first
    history_versions = [record.version for record in entry.history]
    if history_versions != list(range(1, entry.version)):
        raise ValueError(
            f"version {entry.version} does not match history versions {history_versions}"
        )
    return entry
