"""
Unit tests for VersionedRegister.

Tests cover:
- Versioning: monotonic versions, append-only history
- Version and as-of reads, including before creation and after archive
- Metadata merging and index maintenance
- Listing filters, sorting and pagination
- Query search ranking
- Export/import round trips and per-item import errors
- Concurrent updates and batch adds
- Audit logging
"""

import asyncio
import gc

import pytest

from docschema.docregister.compare.comparator import ChangeKind, Comparator
from docschema.docregister.config import RegisterSettings
from docschema.docregister.errors import (
    EntryNotFoundError,
    InvalidQueryError,
    VersionNotFoundError,
)
from docschema.docregister.register import (
    AuditAction,
    Entry,
    EntryStatus,
    EntrySummary,
    EntryVersion,
    ExtractedRecord,
    VersionedRegister,
)
from docschema.docregister.storage import MemoryStorage


@pytest.fixture
def register():
    """Create a register over fresh memory storage."""
    return VersionedRegister(MemoryStorage(), RegisterSettings(), name="invoices")


async def add_amount_history(register):
    """amount 100 from Jan 1, superseded by 150 on Feb 1."""
    entry = await register.add({"amount": 100}, entry_id="inv-1", effective_from="2024-01-01")
    return await register.update(
        entry.id,
        {"amount": 150},
        effective_from="2024-02-01",
        supersede_at="2024-02-01",
        change_reason="corrected",
    )


class TestVersioning:
    """Tests for add/update/archive version bookkeeping."""

    @pytest.mark.asyncio
    async def test_add_creates_version_one(self, register):
        """New entries start at version 1 with no history."""
        entry = await register.add({"amount": 100})

        assert entry.version == 1
        assert entry.history == []
        assert entry.status == EntryStatus.ACTIVE
        assert entry.id
        assert await register.exists(entry.id)

    @pytest.mark.asyncio
    async def test_update_increments_and_demotes(self, register):
        """Each update adds one version and one history record."""
        entry = await register.add({"amount": 1}, effective_from="2024-01-01")
        for i in range(2, 5):
            entry = await register.update(entry.id, {"amount": i})

        assert entry.version == 4
        assert [h.version for h in entry.history] == [1, 2, 3]
        assert len(entry.history) == entry.version - 1

    @pytest.mark.asyncio
    async def test_history_is_append_only(self, register):
        """Earlier history records are untouched by later updates."""
        first = await add_amount_history(register)
        before = first.history[0]

        later = await register.update(first.id, {"amount": 175})

        assert later.history[0] == before

    @pytest.mark.asyncio
    async def test_supersede_closes_interval(self, register):
        """The demoted version ends where the new one starts."""
        entry = await add_amount_history(register)

        (demoted,) = entry.history
        assert demoted.effective_to == entry.effective_from
        assert demoted.data == {"amount": 100}

    @pytest.mark.asyncio
    async def test_update_missing_entry(self, register):
        with pytest.raises(EntryNotFoundError):
            await register.update("nope", {"amount": 1})

    @pytest.mark.asyncio
    async def test_archive_keeps_version(self, register):
        """Archiving changes status, not version."""
        entry = await add_amount_history(register)

        archived = await register.archive(entry.id, reason="duplicate")

        assert archived.version == 2
        assert archived.status == EntryStatus.ARCHIVED
        assert archived.archive_reason == "duplicate"
        assert archived.archived_at is not None
        assert len(archived.history) == 1

    @pytest.mark.asyncio
    async def test_archive_missing_entry(self, register):
        with pytest.raises(EntryNotFoundError):
            await register.archive("nope")

    @pytest.mark.asyncio
    async def test_add_existing_id_replaces(self, register):
        """Adding under an existing id replaces the entry."""
        await add_amount_history(register)

        entry = await register.add({"amount": 1}, entry_id="inv-1")

        assert entry.version == 1
        assert (await register.get("inv-1")).data == {"amount": 1}

    @pytest.mark.asyncio
    async def test_envelope_record(self, register):
        """Envelope mappings set schema metadata."""
        entry = await register.add({
            "data": {"amount": 5},
            "schema_id": "invoice",
            "schema_version": "2",
            "confidence": 0.9,
        })

        assert entry.data == {"amount": 5}
        assert entry.metadata.schema_id == "invoice"
        assert entry.metadata.confidence == 0.9

    @pytest.mark.asyncio
    async def test_default_schema_id(self):
        """The register schema id applies when the record has none."""
        register = VersionedRegister(MemoryStorage(), RegisterSettings(), schema_id="receipt")

        entry = await register.add({"amount": 5})

        assert entry.metadata.schema_id == "receipt"


class TestReads:
    """Tests for get by version and as-of."""

    @pytest.mark.asyncio
    async def test_get_current(self, register):
        """Without options, get returns the full entry."""
        await add_amount_history(register)

        entry = await register.get("inv-1")

        assert isinstance(entry, Entry)
        assert entry.data == {"amount": 150}

    @pytest.mark.asyncio
    async def test_get_by_version(self, register):
        """Any historic version can be read back."""
        await add_amount_history(register)

        v1 = await register.get("inv-1", version=1)
        v2 = await register.get("inv-1", version=2)

        assert isinstance(v1, EntryVersion)
        assert v1.data == {"amount": 100}
        assert v1.is_historic
        assert v2.data == {"amount": 150}
        assert not v2.is_historic

    @pytest.mark.asyncio
    async def test_get_as_of(self, register):
        """as_of resolves the version in force at that instant."""
        await add_amount_history(register)

        assert (await register.get("inv-1", as_of="2024-01-15")).version == 1
        assert (await register.get("inv-1", as_of="2024-02-01")).version == 2
        assert (await register.get("inv-1", as_of="2025-01-01")).version == 2

    @pytest.mark.asyncio
    async def test_as_of_before_creation(self, register):
        """Nothing is in force before the first effective date."""
        await add_amount_history(register)

        assert await register.get("inv-1", as_of="2023-12-31") is None

    @pytest.mark.asyncio
    async def test_as_of_after_archive_with_end(self, register):
        """Archiving with effective_to closes the head interval."""
        await add_amount_history(register)
        await register.archive("inv-1", effective_to="2024-06-01")

        assert (await register.get("inv-1", as_of="2024-05-31")).version == 2
        assert await register.get("inv-1", as_of="2024-06-01") is None

    @pytest.mark.asyncio
    async def test_version_takes_precedence(self, register):
        await add_amount_history(register)

        found = await register.get("inv-1", version=1, as_of="2025-01-01")

        assert found.version == 1

    @pytest.mark.asyncio
    async def test_missing_version(self, register):
        await add_amount_history(register)

        with pytest.raises(VersionNotFoundError) as exc_info:
            await register.get("inv-1", version=3)
        assert exc_info.value.code == "VERSION_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_missing_entry(self, register):
        with pytest.raises(EntryNotFoundError) as exc_info:
            await register.get("nope")
        assert exc_info.value.to_dict()["error_code"] == "ENTRY_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_get_history_newest_first(self, register):
        """History summaries list the current version first."""
        await add_amount_history(register)

        history = await register.get_history("inv-1")

        assert history.current_version == 2
        assert [v.version for v in history.versions] == [2, 1]
        assert history.versions[0].is_current
        assert history.versions[1].archived_at is not None

    @pytest.mark.asyncio
    async def test_stored_entry_is_isolated(self, register):
        """Mutating a returned entry does not change storage."""
        entry = await register.add({"items": [1]}, entry_id="x")
        entry.data["items"].append(2)

        assert (await register.get("x")).data == {"items": [1]}

    @pytest.mark.asyncio
    async def test_amount_scenario_end_to_end(self, register):
        """100 from Jan 1, 150 from Jun 1: as-of reads and the timeline agree."""
        entry = await register.add({"amount": 100}, effective_from="2024-01-01")
        await register.update(entry.id, {"amount": 150}, effective_from="2024-06-01")

        assert (await register.get(entry.id, as_of="2024-03-01")).data == {"amount": 100}
        assert (await register.get(entry.id, as_of="2024-07-01")).data == {"amount": 150}

        timeline = Comparator().compare_versions(await register.get(entry.id))
        (transition,) = timeline.timeline
        (change,) = transition.changes
        assert change.field == "amount"
        assert change.kind == ChangeKind.NUMERIC_CHANGE
        assert change.delta == 50

    @pytest.mark.asyncio
    async def test_amount_comparison(self, register):
        """Comparing v1 and v2 shows the amount change."""
        await add_amount_history(register)

        result = Comparator().compare(
            await register.get("inv-1", version=1),
            await register.get("inv-1", version=2),
        )

        (diff,) = result.differences
        assert diff.kind == ChangeKind.NUMERIC_CHANGE
        assert diff.delta == 50
        assert result.document_a.version == 1
        assert result.document_b.version == 2


class TestMetadataAndIndexes:
    """Tests for metadata merging and index maintenance."""

    @pytest.mark.asyncio
    async def test_update_merges_metadata(self, register):
        """Unspecified metadata carries over; supplied keys override."""
        entry = await register.add(
            ExtractedRecord(data={"a": 1}, schema_id="invoice", schema_version="1"),
            category="invoice",
            tags=["q1"],
            source="scanner",
            metadata={"reviewer": "kim"},
        )

        updated = await register.update(
            entry.id,
            ExtractedRecord(data={"a": 2}, extraction_id="run-2", confidence=0.8),
            tags=["q2"],
            metadata={"reviewer": "lee"},
        )

        meta = updated.metadata
        assert meta.category == "invoice"
        assert meta.source == "scanner"
        assert meta.schema_id == "invoice"
        assert meta.schema_version == "1"
        assert meta.extraction_id == "run-2"
        assert meta.confidence == 0.8
        assert meta.tags == frozenset({"q2"})
        assert meta.get("reviewer") == "lee"

    @pytest.mark.asyncio
    async def test_update_removes_stale_index_entries(self, register):
        """Changing category and tags leaves no stale index entries."""
        entry = await register.add({"a": 1}, category="invoice", tags=["a"])

        await register.update(entry.id, {"a": 2}, category="receipt", tags=["b"])

        assert register.category_index == {"receipt": {entry.id}}
        assert register.tag_index == {"b": {entry.id}}
        assert (await register.list(category="invoice")).total == 0
        assert (await register.list(category="receipt")).total == 1

    @pytest.mark.asyncio
    async def test_index_accessors_return_copies(self, register):
        """Callers cannot mutate the register's indexes."""
        entry = await register.add({"a": 1}, category="invoice")

        register.category_index["invoice"].add("intruder")

        assert register.category_index == {"invoice": {entry.id}}

    @pytest.mark.asyncio
    async def test_rebuild_indexes_from_storage(self):
        """A new register over existing storage rebuilds its indexes."""
        storage = MemoryStorage()
        first = VersionedRegister(storage, RegisterSettings())
        entry = await first.add({"a": 1}, category="invoice", tags=["x", "y"])

        second = VersionedRegister(storage, RegisterSettings())
        count = await second.rebuild_indexes()

        assert count == 1
        assert second.category_index == {"invoice": {entry.id}}
        assert second.tag_index == {"x": {entry.id}, "y": {entry.id}}




async def fill(register):
    """Three entries: two invoices (one archived) and a receipt."""
    await register.add(
        {"n": 1},
        entry_id="a",
        category="invoice",
        tags=["q1"],
        effective_from="2024-01-01",
        effective_to="2024-06-01",
        metadata={"priority": 2},
    )
    await register.add(
        {"n": 2},
        entry_id="b",
        category="invoice",
        tags=["q2"],
        effective_from="2024-07-01",
        metadata={"priority": 1},
    )
    await register.add(
        ExtractedRecord(data={"n": 3}, schema_id="receipt-v1"),
        entry_id="c",
        category="receipt",
        tags=["q1", "q2"],
        effective_from="2024-01-01",
    )
    await register.archive("b")


class TestList:
    """Tests for list filtering, sorting and pagination."""

    @pytest.mark.asyncio
    async def test_filters(self, register):
        """Each filter narrows the result independently."""
        await fill(register)

        async def ids(**filters):
            page = await register.list(sort_by="id", sort_dir="asc", **filters)
            return [item.id for item in page.items]

        assert await ids() == ["a", "b", "c"]
        assert await ids(status="archived") == ["b"]
        assert await ids(category="invoice") == ["a", "b"]
        assert await ids(tags=["q2"]) == ["b", "c"]
        assert await ids(tags="q1") == ["a", "c"]
        assert await ids(effective_at="2024-03-01") == ["a", "c"]
        assert await ids(effective_at="2024-06-01") == ["c"]
        assert await ids(schema_id="receipt-v1") == ["c"]
        assert await ids(category="invoice", status="active") == ["a"]

    @pytest.mark.asyncio
    async def test_summaries_unless_include_data(self, register):
        """Listing returns summaries by default."""
        await fill(register)

        summaries = await register.list()
        full = await register.list(include_data=True)

        assert all(isinstance(item, EntrySummary) for item in summaries.items)
        assert all(isinstance(item, Entry) for item in full.items)
        assert "data" not in summaries.to_dict()["entries"][0]

    @pytest.mark.asyncio
    async def test_sort_by_metadata_missing_last(self, register):
        """Metadata sort keys work; entries without the key go last."""
        await fill(register)

        asc = await register.list(sort_by="priority", sort_dir="asc")
        desc = await register.list(sort_by="priority", sort_dir="desc")

        assert [i.id for i in asc.items] == ["b", "a", "c"]
        assert [i.id for i in desc.items] == ["a", "b", "c"]

    @pytest.mark.asyncio
    async def test_pagination(self, register):
        """offset/limit slice the sorted result; total counts all matches."""
        for i in range(5):
            await register.add({"i": i}, entry_id=f"e{i}")

        first = await register.list(sort_by="id", sort_dir="asc", limit=2)
        last = await register.list(sort_by="id", sort_dir="asc", offset=4, limit=2)

        assert [i.id for i in first.items] == ["e0", "e1"]
        assert first.total == 5
        assert first.has_more
        assert [i.id for i in last.items] == ["e4"]
        assert not last.has_more

    @pytest.mark.asyncio
    async def test_default_limit_from_settings(self):
        register = VersionedRegister(MemoryStorage(), RegisterSettings(default_list_limit=2))
        for i in range(3):
            await register.add({"i": i})

        page = await register.list()

        assert len(page.items) == 2
        assert page.limit == 2

    @pytest.mark.asyncio
    async def test_invalid_sort_dir(self, register):
        with pytest.raises(ValueError):
            await register.list(sort_dir="sideways")


class TestSearch:
    """Tests for query search."""

    @pytest.fixture
    def vendors(self):
        return [
            {"vendor": "ACME", "amount": 100},
            {"vendor": "Acme Corp", "amount": 50},
            {"vendor": "Other", "amount": 500},
        ]

    @pytest.mark.asyncio
    async def test_ranked_by_score(self, register, vendors):
        """Hits are ordered by summed operator weights."""
        for i, data in enumerate(vendors):
            await register.add(data, entry_id=f"v{i}")

        result = await register.search({"vendor": {"$regex": "^acme"}, "amount": {"$gt": 75}})

        assert [hit.entry.id for hit in result.results] == ["v0", "v1", "v2"]
        assert result.results[0].score == pytest.approx(1.6)
        assert result.results[0].matched_fields == ["vendor", "amount"]
        assert result.results[2].matched_fields == ["amount"]
        assert result.total == 3

    @pytest.mark.asyncio
    async def test_limit_keeps_total(self, register, vendors):
        for data in vendors:
            await register.add(data)

        result = await register.search({"vendor": {"$contains": "c"}}, limit=1)

        assert len(result.results) == 1
        assert result.total == 1

    @pytest.mark.asyncio
    async def test_no_hits(self, register, vendors):
        for data in vendors:
            await register.add(data)

        result = await register.search({"vendor": "Nobody"})

        assert result.results == []
        assert result.total == 0

    @pytest.mark.asyncio
    async def test_status_filter(self, register):
        await register.add({"vendor": "ACME"}, entry_id="x")
        await register.archive("x")

        result = await register.search({"vendor": "ACME"}, status="active")

        assert result.total == 0

    @pytest.mark.asyncio
    async def test_invalid_query(self, register):
        """Unknown operators are rejected before scanning."""
        with pytest.raises(InvalidQueryError) as exc_info:
            await register.search({"vendor": {"$near": 1}})
        assert exc_info.value.field_name == "vendor"


class TestExportImport:
    """Tests for export and import."""

    @pytest.mark.asyncio
    async def test_round_trip(self, register):
        """Export then import into a fresh register preserves versions."""
        await add_amount_history(register)
        await register.add({"amount": 7}, entry_id="inv-2", category="invoice")

        payload = await register.export()
        fresh = VersionedRegister(MemoryStorage(), RegisterSettings())
        result = await fresh.import_entries(payload)

        assert payload["register_name"] == "invoices"
        assert payload["total_entries"] == 2
        assert result.imported == 2
        assert result.errors == []
        assert (await fresh.get("inv-1", version=1)).data == {"amount": 100}
        assert (await fresh.get("inv-1", as_of="2024-01-15")).version == 1
        assert (await fresh.get("inv-1")).to_dict() == (await register.get("inv-1")).to_dict()
        assert (await fresh.list(category="invoice")).total == 1

    @pytest.mark.asyncio
    async def test_export_filters_and_audit(self, register):
        await fill(register)

        payload = await register.export(category="invoice", include_audit_log=True)

        assert [e["id"] for e in payload["entries"]] == ["a", "b"]
        assert len(payload["audit_log"]) == 4

    @pytest.mark.asyncio
    async def test_duplicates_reported(self, register):
        """Existing ids are per-item errors unless skipped."""
        await add_amount_history(register)
        payload = await register.export()

        result = await register.import_entries(payload)

        assert result.imported == 0
        (error,) = result.errors
        assert error.entry_id == "inv-1"
        assert error.index == 0
        assert "already exists" in error.message

    @pytest.mark.asyncio
    async def test_skip_existing(self, register):
        await add_amount_history(register)
        payload = await register.export()

        result = await register.import_entries(payload, skip_existing=True)

        assert result.skipped == 1
        assert result.errors == []
        assert (await register.get("inv-1")).version == 2

    @pytest.mark.asyncio
    async def test_bare_items_and_bad_items(self, register):
        """A plain list is accepted; bad items do not stop the import."""
        result = await register.import_entries([
            {"amount": 1},
            "not an entry",
            {"id": "z", "data": {"amount": 2}, "effective_from": "not-a-date"},
            {"id": "y", "data": {"amount": 3}},
        ])

        assert result.imported == 2
        assert [e.index for e in result.errors] == [1, 2]
        assert result.errors[1].entry_id == "z"
        assert (await register.get("y")).data == {"amount": 3}

    @pytest.mark.asyncio
    async def test_import_audited(self, register):
        await register.import_entries([{"id": "y", "data": {"a": 1}}])

        (record,) = register.get_audit_log(document_id="y")
        assert record.action == AuditAction.ADD
        assert record.details["source"] == "import"

    @pytest.mark.asyncio
    async def test_version_must_match_history(self, register):
        """Entries whose version and history disagree are rejected."""
        result = await register.import_entries([
            {"id": "z", "version": 3, "data": {"amount": 1}},
            {
                "id": "w",
                "version": 2,
                "data": {"amount": 2},
                "history": [{"version": 2, "data": {"amount": 1},
                             "effective_from": "2024-01-01"}],
            },
        ])

        assert result.imported == 0
        assert [(e.entry_id, e.index) for e in result.errors] == [("z", 0), ("w", 1)]
        assert not await register.exists("z")
        assert not await register.exists("w")

    @pytest.mark.asyncio
    async def test_exported_audit_log_restored(self, register):
        """An export with its audit log carries the records to the new register."""
        await add_amount_history(register)
        payload = await register.export(include_audit_log=True)

        fresh = VersionedRegister(MemoryStorage(), RegisterSettings())
        result = await fresh.import_entries(payload)

        assert result.errors == []
        restored = fresh.get_audit_log(document_id="inv-1")
        assert [r.action for r in restored] == [AuditAction.ADD, AuditAction.UPDATE]
        assert [r.to_dict() for r in restored] == [
            r.to_dict() for r in register.get_audit_log(document_id="inv-1")
        ]

    @pytest.mark.asyncio
    async def test_audit_restore_opt_out(self, register):
        await add_amount_history(register)
        payload = await register.export(include_audit_log=True)

        fresh = VersionedRegister(MemoryStorage(), RegisterSettings())
        await fresh.import_entries(payload, restore_audit_log=False)

        (record,) = fresh.get_audit_log(document_id="inv-1")
        assert record.details["source"] == "import"

    @pytest.mark.asyncio
    async def test_audit_records_of_skipped_entries_not_restored(self, register):
        """Only records for entries actually imported are restored."""
        await add_amount_history(register)
        payload = await register.export(include_audit_log=True)
        before = len(register.get_audit_log())

        result = await register.import_entries(payload, skip_existing=True)

        assert result.skipped == 1
        assert len(register.get_audit_log()) == before


class TestConcurrency:
    """Tests for concurrent mutation."""

    @pytest.mark.asyncio
    async def test_concurrent_updates_lose_nothing(self, register):
        """N concurrent updates yield exactly N new versions."""
        await register.add({"n": 0}, entry_id="x", effective_from="2024-01-01")

        await asyncio.gather(*(register.update("x", {"n": i}) for i in range(1, 11)))

        entry = await register.get("x")
        assert entry.version == 11
        assert [h.version for h in entry.history] == list(range(1, 11))

    @pytest.mark.asyncio
    async def test_add_many_keeps_order(self, register):
        """Results come back in input order; options are forwarded."""
        entries = await register.add_many(
            [{"n": 1}, ({"n": 2}, {"entry_id": "second", "category": "invoice"}), {"n": 3}],
            concurrency=2,
        )

        assert [e.data["n"] for e in entries] == [1, 2, 3]
        assert entries[1].id == "second"
        assert entries[1].metadata.category == "invoice"
        assert (await register.list()).total == 3

    @pytest.mark.asyncio
    async def test_add_many_rejects_bad_concurrency(self, register):
        with pytest.raises(ValueError):
            await register.add_many([{"n": 1}], concurrency=0)

    @pytest.mark.asyncio
    async def test_locks_released_after_use(self, register):
        """Per-id locks do not accumulate for missing or finished ids."""
        for i in range(100):
            with pytest.raises(EntryNotFoundError):
                await register.update(f"missing-{i}", {"n": i})
        await register.add({"n": 0}, entry_id="x")
        await asyncio.gather(*(register.update("x", {"n": i}) for i in range(1, 6)))
        gc.collect()

        assert len(register._locks) == 0
        assert (await register.get("x")).version == 6


class TestAuditLog:
    """Tests for audit records of mutations."""

    @pytest.mark.asyncio
    async def test_lifecycle_is_audited(self, register):
        """add, update and archive each leave one record."""
        await add_amount_history(register)
        await register.archive("inv-1", reason="paid", actor="ops")

        log = register.get_audit_log(document_id="inv-1")

        assert [r.action for r in log] == [AuditAction.ADD, AuditAction.UPDATE, AuditAction.ARCHIVE]
        assert log[1].details["previous_version"] == 1
        assert log[1].details["new_version"] == 2
        assert log[1].details["change_reason"] == "corrected"
        assert log[2].details["reason"] == "paid"
        assert log[2].details["actor"] == "ops"

    @pytest.mark.asyncio
    async def test_filter_by_action(self, register):
        await add_amount_history(register)

        (record,) = register.get_audit_log(action="UPDATE")

        assert record.document_id == "inv-1"

    @pytest.mark.asyncio
    async def test_disabled(self):
        """With auditing off, the log stays empty."""
        register = VersionedRegister(MemoryStorage(), RegisterSettings(enable_audit_log=False))

        await register.add({"a": 1})

        assert register.audit_log is None
        assert register.get_audit_log() == []
