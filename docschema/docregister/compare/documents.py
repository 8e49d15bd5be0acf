"""
Uniform view over the document shapes the comparator accepts.

compare(), find_conflicts() and find_overlaps() take register entries,
single versions, history records, exported entry mappings or bare data
mappings. as_document() reduces each of them to its data plus a
DocumentRef (id, version and validity interval, any of which may be
unknown for bare data).
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any

from ..register.types import Entry, EntryVersion, HistoryRecord, format_ts, to_utc

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DocumentRef:
    """Identity and validity interval of a compared document."""

    id: str | None = None
    version: int | None = None
    effective_from: datetime | None = None
    effective_to: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "version": self.version,
            "effective_from": format_ts(self.effective_from),
            "effective_to": format_ts(self.effective_to),
        }


@dataclass(frozen=True)
class Document:
    data: Mapping[str, Any]
    ref: DocumentRef


def _lenient_ts(value: Any) -> datetime | None:
    try:
        return to_utc(value)
    except (TypeError, ValueError):
        logger.debug("Ignoring unparseable timestamp", extra={"value": repr(value)})
        return None


def as_document(doc: Any) -> Document:
    """Reduce any accepted document shape to data + ref.

    A mapping whose 'data' value is itself a mapping is read as an
    entry-shaped mapping; any other mapping is bare data.

    Raises:
        TypeError: If doc is not one of the accepted shapes
    """
    if isinstance(doc, Document):
        return doc
    if isinstance(doc, (Entry, EntryVersion)):
        return Document(
            data=doc.data,
            ref=DocumentRef(doc.id, doc.version, doc.effective_from, doc.effective_to),
        )
    if isinstance(doc, HistoryRecord):
        return Document(
            data=doc.data,
            ref=DocumentRef(None, doc.version, doc.effective_from, doc.effective_to),
        )
    if isinstance(doc, Mapping):
        if isinstance(doc.get("data"), Mapping):
            version = doc.get("version")
            return Document(
                data=doc["data"],
                ref=DocumentRef(
                    id=doc.get("id"),
                    version=int(version) if isinstance(version, int) else None,
                    effective_from=_lenient_ts(doc.get("effective_from")),
                    effective_to=_lenient_ts(doc.get("effective_to")),
                ),
            )
        return Document(data=doc, ref=DocumentRef())
    raise TypeError(f"Cannot compare object of type {type(doc).__name__}")


def document_versions(entry: Any) -> tuple[str | None, list[Document]]:
    """Every version of an entry as documents, ascending by version.

    Accepts an Entry or an entry-shaped mapping. Mappings are read
    leniently: only 'data' and 'version' are needed on the head and on
    each history item, and unparseable timestamps become None.

    Returns:
        (entry id, versions)

    Raises:
        TypeError: If entry is neither an Entry nor a mapping with a
            'data' mapping
    """
    if isinstance(entry, Entry):
        return entry.id, [as_document(v) for v in entry.all_versions()]
    if not isinstance(entry, Mapping) or not isinstance(entry.get("data"), Mapping):
        raise TypeError(f"Expected an entry, got {type(entry).__name__}")

    entry_id = entry.get("id")
    versions = [as_document(entry)]
    for item in entry.get("history") or ():
        if not isinstance(item, Mapping) or not isinstance(item.get("data"), Mapping):
            logger.warning("Skipping malformed history item", extra={"entry_id": entry_id})
            continue
        document = as_document(item)
        versions.append(Document(document.data, replace(document.ref, id=entry_id)))

    versions.sort(key=lambda d: d.ref.version if d.ref.version is not None else 0)
    return entry_id, versions
