"""
REST API over the document register and comparator.

This module exposes:
- Entry lifecycle: add, update, archive, get (current, by version, as of)
- Listing, history, search and the audit log
- Comparison, version timelines, conflict and overlap detection
- Export and import

All routes live under /api/v1; /health is served at the root. Register
errors are returned as {"error", "error_code", "details"} bodies with a
404 status for missing entries or versions.

Invariants:
    - The API never mutates the register except through its public methods
    - Comparison endpoints are read-only
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncGenerator, Literal

from fastapi import APIRouter, Body, Depends, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .. import __version__
from ..compare.comparator import Comparator
from ..compare.report import generate_diff_report
from ..config import RegisterSettings
from ..errors import (
    DuplicateEntryError,
    EntryNotFoundError,
    RegisterError,
    VersionNotFoundError,
)
from ..register.core import VersionedRegister
from ..register.types import EntryStatus, ExtractedRecord

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Document Register"])


# --- Request Models ---


class RecordFields(BaseModel):
    """Extracted record fields shared by add and update."""

    data: dict[str, Any] = Field(..., description="Extracted field values")
    schema_id: str | None = Field(None, description="Schema the data was extracted against")
    schema_version: str | None = Field(None, description="Version of that schema")
    extraction_id: str | None = Field(None, description="Upstream extraction run id")
    confidence: float | None = Field(None, ge=0.0, le=1.0, description="Extraction confidence")

    def to_record(self) -> ExtractedRecord:
        return ExtractedRecord(
            data=self.data,
            schema_id=self.schema_id,
            schema_version=self.schema_version,
            extraction_id=self.extraction_id,
            confidence=self.confidence,
        )


class AddEntryRequest(RecordFields):
    """Request to add an entry."""

    id: str | None = Field(None, description="Entry id (generated if omitted)")
    effective_from: datetime | None = None
    effective_to: datetime | None = None
    status: EntryStatus = EntryStatus.ACTIVE
    category: str | None = None
    tags: list[str] | None = None
    source: str | None = None
    metadata: dict[str, Any] | None = None
    actor: str | None = None


class UpdateEntryRequest(RecordFields):
    """Request to store a new version of an entry."""

    effective_from: datetime | None = None
    effective_to: datetime | None = None
    supersede_at: datetime | None = Field(None, description="Closes the previous version's interval")
    category: str | None = None
    tags: list[str] | None = None
    source: str | None = None
    metadata: dict[str, Any] | None = None
    actor: str | None = None
    change_reason: str | None = None


class ArchiveRequest(BaseModel):
    """Request to archive an entry."""

    reason: str | None = None
    actor: str | None = None
    effective_to: datetime | None = None


class SearchRequest(BaseModel):
    """Search query over entry data."""

    query: dict[str, Any] = Field(..., description="Field -> literal or operator object")
    limit: int | None = Field(None, ge=1)
    status: EntryStatus | None = None


class DocumentSpec(BaseModel):
    """A document to compare: inline data, or a register entry reference."""

    id: str | None = None
    version: int | None = None
    as_of: datetime | None = None
    data: dict[str, Any] | None = None


class CompareRequest(BaseModel):
    """Request to compare two documents."""

    document_a: DocumentSpec
    document_b: DocumentSpec
    report_format: Literal["text", "json", "html"] | None = Field(
        None, description="Also render a diff report in this format"
    )


class ConflictsRequest(BaseModel):
    """Conflict detection over register entries or inline documents.

    With neither ids nor documents, every entry in the register is checked.
    """

    ids: list[str] | None = None
    documents: list[dict[str, Any]] | None = None
    conflict_fields: list[str] | None = None


class OverlapsRequest(BaseModel):
    """Overlap detection over register entries or inline documents."""

    ids: list[str] | None = None
    documents: list[dict[str, Any]] | None = None
    group_by_fields: list[str] | None = None
    similarity_threshold: float | None = Field(None, ge=0.0, le=1.0)


# --- Dependencies ---


def get_register(request: Request) -> VersionedRegister:
    """Get the register from app state."""
    return request.app.state.register


def get_comparator(request: Request) -> Comparator:
    """Get the comparator from app state."""
    return request.app.state.comparator


async def _resolve_document(register: VersionedRegister, spec: DocumentSpec) -> Any:
    if spec.data is not None:
        if spec.id is None:
            return spec.data
        return {"id": spec.id, "version": spec.version, "data": spec.data}
    if spec.id is None:
        raise RegisterError("Document needs either 'data' or 'id'", code="INVALID_DOCUMENT")

    document = await register.get(spec.id, version=spec.version, as_of=spec.as_of)
    if document is None:
        raise RegisterError(
            f"Document {spec.id} was not in force at {spec.as_of.isoformat()}",
            code="NOT_IN_FORCE",
            details={"entry_id": spec.id, "as_of": spec.as_of.isoformat()},
        )
    return document


async def _collect_documents(
    register: VersionedRegister,
    ids: list[str] | None,
    documents: list[dict[str, Any]] | None,
) -> list[Any]:
    collected: list[Any] = list(documents or [])
    for entry_id in ids or []:
        collected.append(await register.get(entry_id))
    if ids is None and documents is None:
        collected = (await register.export())["entries"]
    return collected


# --- Entry Routes ---


@router.post("/entries", status_code=201)
async def add_entry(
    request: AddEntryRequest,
    register: VersionedRegister = Depends(get_register),
) -> dict[str, Any]:
    """Add a new entry at version 1."""
    entry = await register.add(
        request.to_record(),
        entry_id=request.id,
        effective_from=request.effective_from,
        effective_to=request.effective_to,
        status=request.status,
        category=request.category,
        tags=request.tags,
        source=request.source,
        metadata=request.metadata,
        actor=request.actor,
    )
    return entry.to_dict()


@router.get("/entries")
async def list_entries(
    status: EntryStatus | None = Query(None),
    category: str | None = Query(None),
    tags: list[str] | None = Query(None),
    effective_at: datetime | None = Query(None),
    schema_id: str | None = Query(None),
    sort_by: str = Query("updated_at"),
    sort_dir: Literal["asc", "desc"] = Query("desc"),
    offset: int = Query(0, ge=0),
    limit: int | None = Query(None, ge=1, le=1000),
    include_data: bool = Query(False),
    register: VersionedRegister = Depends(get_register),
) -> dict[str, Any]:
    """List entries with filtering, sorting and pagination."""
    page = await register.list(
        status=status,
        category=category,
        tags=tags,
        effective_at=effective_at,
        schema_id=schema_id,
        sort_by=sort_by,
        sort_dir=sort_dir,
        offset=offset,
        limit=limit,
        include_data=include_data,
    )
    return page.to_dict()


@router.get("/entries/{entry_id}")
async def get_entry(
    entry_id: str,
    version: int | None = Query(None, ge=1),
    as_of: datetime | None = Query(None),
    register: VersionedRegister = Depends(get_register),
) -> dict[str, Any] | None:
    """Get the current entry, a specific version, or the version in force at as_of.

    An as_of with no version in force returns null.
    """
    result = await register.get(entry_id, version=version, as_of=as_of)
    return result.to_dict() if result is not None else None


@router.put("/entries/{entry_id}")
async def update_entry(
    entry_id: str,
    request: UpdateEntryRequest,
    register: VersionedRegister = Depends(get_register),
) -> dict[str, Any]:
    """Store a new version of an entry."""
    entry = await register.update(
        entry_id,
        request.to_record(),
        effective_from=request.effective_from,
        effective_to=request.effective_to,
        supersede_at=request.supersede_at,
        category=request.category,
        tags=request.tags,
        source=request.source,
        metadata=request.metadata,
        actor=request.actor,
        change_reason=request.change_reason,
    )
    return entry.to_dict()


@router.post("/entries/{entry_id}/archive")
async def archive_entry(
    entry_id: str,
    request: ArchiveRequest | None = None,
    register: VersionedRegister = Depends(get_register),
) -> dict[str, Any]:
    """Archive an entry (soft delete)."""
    request = request or ArchiveRequest()
    entry = await register.archive(
        entry_id,
        reason=request.reason,
        actor=request.actor,
        effective_to=request.effective_to,
    )
    return entry.to_dict()


@router.get("/entries/{entry_id}/history")
async def get_entry_history(
    entry_id: str,
    register: VersionedRegister = Depends(get_register),
) -> dict[str, Any]:
    """Version summaries, newest first."""
    history = await register.get_history(entry_id)
    return history.to_dict()


@router.get("/entries/{entry_id}/timeline")
async def get_entry_timeline(
    entry_id: str,
    register: VersionedRegister = Depends(get_register),
    comparator: Comparator = Depends(get_comparator),
) -> dict[str, Any]:
    """Field changes between consecutive versions."""
    entry = await register.get(entry_id)
    return comparator.compare_versions(entry).to_dict()


# --- Search and Audit Routes ---


@router.post("/search")
async def search_entries(
    request: SearchRequest,
    register: VersionedRegister = Depends(get_register),
) -> dict[str, Any]:
    """Score entries against a query and return ranked hits."""
    result = await register.search(request.query, limit=request.limit, status=request.status)
    return result.to_dict()


@router.get("/audit")
async def get_audit_log(
    document_id: str | None = Query(None),
    action: Literal["ADD", "UPDATE", "ARCHIVE"] | None = Query(None),
    since: datetime | None = Query(None),
    until: datetime | None = Query(None),
    limit: int = Query(1000, ge=1),
    register: VersionedRegister = Depends(get_register),
) -> dict[str, Any]:
    """Query the audit log."""
    entries = register.get_audit_log(
        document_id=document_id,
        action=action,
        since=since,
        until=until,
        limit=limit,
    )
    return {"entries": [e.to_dict() for e in entries], "total": len(entries)}


# --- Comparison Routes ---


@router.post("/compare")
async def compare_documents(
    request: CompareRequest,
    register: VersionedRegister = Depends(get_register),
    comparator: Comparator = Depends(get_comparator),
) -> dict[str, Any]:
    """Diff two documents, inline or from the register."""
    doc_a = await _resolve_document(register, request.document_a)
    doc_b = await _resolve_document(register, request.document_b)
    comparison = comparator.compare(doc_a, doc_b)

    response = comparison.to_dict()
    if request.report_format is not None:
        response["report"] = generate_diff_report(comparison, request.report_format)
    return response


@router.post("/conflicts")
async def detect_conflicts(
    request: ConflictsRequest,
    register: VersionedRegister = Depends(get_register),
    comparator: Comparator = Depends(get_comparator),
) -> dict[str, Any]:
    """Find fields on which temporally overlapping documents disagree."""
    documents = await _collect_documents(register, request.ids, request.documents)
    report = comparator.find_conflicts(documents, conflict_fields=request.conflict_fields)
    return report.to_dict()


@router.post("/overlaps")
async def detect_overlaps(
    request: OverlapsRequest,
    register: VersionedRegister = Depends(get_register),
    comparator: Comparator = Depends(get_comparator),
) -> dict[str, Any]:
    """Find duplicate groups and highly similar documents."""
    documents = await _collect_documents(register, request.ids, request.documents)
    report = comparator.find_overlaps(
        documents,
        group_by_fields=request.group_by_fields,
        similarity_threshold=request.similarity_threshold,
    )
    return report.to_dict()


# --- Export / Import Routes ---


@router.get("/export")
async def export_register(
    include_audit_log: bool = Query(False),
    status: EntryStatus | None = Query(None),
    category: str | None = Query(None),
    schema_id: str | None = Query(None),
    register: VersionedRegister = Depends(get_register),
) -> dict[str, Any]:
    """Export entries (with history) and optionally the audit log."""
    return await register.export(
        include_audit_log=include_audit_log,
        status=status,
        category=category,
        schema_id=schema_id,
    )


@router.post("/import")
async def import_register(
    payload: dict[str, Any] | list[dict[str, Any]] = Body(...),
    skip_existing: bool = Query(False),
    restore_audit_log: bool = Query(True),
    register: VersionedRegister = Depends(get_register),
) -> dict[str, Any]:
    """Import an export payload or a bare list of entries."""
    result = await register.import_entries(
        payload, skip_existing=skip_existing, restore_audit_log=restore_audit_log
    )
    return result.to_dict()


# --- App Factory ---


def _status_for(error: RegisterError) -> int:
    if isinstance(error, (EntryNotFoundError, VersionNotFoundError)):
        return 404
    if isinstance(error, DuplicateEntryError):
        return 409
    return 400


def create_http_app(
    register: VersionedRegister | None = None,
    comparator: Comparator | None = None,
    settings: RegisterSettings | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        register: Register to serve (in-memory register if omitted)
        comparator: Comparator for comparison routes (defaults from env)
        settings: Register settings (CORS origins)
    """
    settings = settings or (register.settings if register is not None else RegisterSettings())
    register = register or VersionedRegister(settings=settings)
    comparator = comparator or Comparator.from_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        indexed = await register.rebuild_indexes()
        logger.info(f"Register '{register.name}' ready with {indexed} entries")
        yield

    app = FastAPI(
        title="Document Register",
        description="Versioned, effective-dated register of extracted documents.",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.register = register
    app.state.comparator = comparator
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RegisterError)
    async def register_error_handler(request: Request, exc: RegisterError) -> JSONResponse:
        return JSONResponse(status_code=_status_for(exc), content=exc.to_dict())

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
        return JSONResponse(
            status_code=400,
            content={"error": str(exc), "error_code": "INVALID_ARGUMENT", "details": {}},
        )

    app.include_router(router, prefix="/api/v1")

    @app.get("/health")
    async def health() -> dict[str, Any]:
        return {"status": "healthy", "service": "docregister", "register": register.name}

    return app
