"""Persistent section index storage and build orchestration."""

from __future__ import annotations

import json
import time
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

from ctx_index.cache.store import atomic_write_text
from ctx_index.index.models import (
    IndexUnavailableError,
    LoadedIndex,
    Section,
    SectionDeclaration,
    StructuralError,
    StructuralIndexError,
)
from ctx_index.index.sections import build_section_index, render_document, verify_section_hashes

INDEX_SCHEMA_VERSION = 1
INDEX_FORMAT_VERSION = "1.1.0"
DOCUMENT_NAME = "AGENTS.md"
INDEX_NAME = "index.json"
DEFAULT_CONTEXTS = {
    "agents": DOCUMENT_NAME,
    "contracts": "context/contracts",
    "decisions": "context/DECISIONS.jsonl",
    "design_system": "design-system.json",
    "hypotheses": "context/HYPOTHESES.jsonl",
    "ledger": "context/refactor-ledger.md",
}


@dataclass(slots=True, frozen=True)
class IndexStatus:
    """Current index status snapshot."""

    index_status: str
    last_build_timestamp: str | None
    section_count: int
    drifted_section_ids: tuple[str, ...]


class IndexManager:
    """Builds and loads the section index under one output directory."""

    def __init__(self, output_dir: Path) -> None:
        self._output_dir = output_dir.resolve()
        self._document_path = self._output_dir / DOCUMENT_NAME
        self._index_path = self._output_dir / INDEX_NAME

    @property
    def output_dir(self) -> Path:
        """Return resolved output directory."""
        return self._output_dir

    def build(
        self,
        declarations: Sequence[SectionDeclaration],
        metadata: dict[str, object] | None = None,
    ) -> dict[str, object]:
        """Render, validate and atomically persist the document and its index.

        Raises ``StructuralIndexError`` before anything is written when the
        rendered document and the manifest disagree.
        """
        start = time.perf_counter()
        document = render_document(declarations)
        result = build_section_index(document, declarations)
        if isinstance(result, StructuralError):
            raise StructuralIndexError(reason=result.reason, section_id=result.section_id)

        timestamp = _utc_now_iso()
        payload = {
            "schema_version": INDEX_SCHEMA_VERSION,
            "version": INDEX_FORMAT_VERSION,
            "timestamp": timestamp,
            "contexts": dict(DEFAULT_CONTEXTS),
            "metadata": dict(metadata or {}),
            "sections": [section.to_dict() for section in result.sections],
        }
        self._output_dir.mkdir(parents=True, exist_ok=True)
        atomic_write_text(self._document_path, document)
        atomic_write_text(self._index_path, json.dumps(payload, sort_keys=True, indent=2) + "\n")
        return {
            "section_count": len(result.sections),
            "section_ids": [section.id for section in result.sections],
            "timestamp": timestamp,
            "document_path": DOCUMENT_NAME,
            "index_path": INDEX_NAME,
            "duration_ms": int((time.perf_counter() - start) * 1000),
        }

    def status(self) -> IndexStatus:
        """Return status derived from index.json, with drift against the live document."""
        payload = self._read_index_payload()
        if payload is None:
            return IndexStatus(
                index_status="not_indexed",
                last_build_timestamp=None,
                section_count=0,
                drifted_section_ids=(),
            )
        schema = payload.get("schema_version")
        if not isinstance(schema, int) or schema != INDEX_SCHEMA_VERSION:
            return IndexStatus(
                index_status="schema_mismatch",
                last_build_timestamp=None,
                section_count=0,
                drifted_section_ids=(),
            )
        sections = _parse_sections(payload.get("sections"))
        document = self._read_document()
        if document is None:
            drifted = tuple(section.id for section in sections)
        else:
            drifted = verify_section_hashes(sections, document)
        return IndexStatus(
            index_status="ready",
            last_build_timestamp=_as_optional_str(payload.get("timestamp")),
            section_count=len(sections),
            drifted_section_ids=drifted,
        )

    def load(self) -> LoadedIndex:
        """Load sections and document text, or raise ``IndexUnavailableError``."""
        if not self._index_path.exists():
            raise IndexUnavailableError(reason=f"Index not found: {INDEX_NAME}")
        payload = self._read_index_payload()
        if payload is None:
            raise IndexUnavailableError(reason=f"Index is unreadable: {INDEX_NAME}")
        schema = payload.get("schema_version")
        if not isinstance(schema, int) or schema != INDEX_SCHEMA_VERSION:
            raise IndexUnavailableError(
                reason=f"Unsupported index schema {schema!r}; expected {INDEX_SCHEMA_VERSION}"
            )
        document = self._read_document()
        if document is None:
            raise IndexUnavailableError(reason=f"Document not found: {DOCUMENT_NAME}")
        raw_metadata = payload.get("metadata")
        return LoadedIndex(
            sections=_parse_sections(payload.get("sections")),
            document=document,
            timestamp=_as_optional_str(payload.get("timestamp")),
            metadata=raw_metadata if isinstance(raw_metadata, dict) else {},
        )

    def _read_index_payload(self) -> dict[str, object] | None:
        try:
            with self._index_path.open("r", encoding="utf-8") as handle:
                payload = json.load(handle)
        except (OSError, json.JSONDecodeError):
            return None
        if not isinstance(payload, dict):
            return None
        return payload

    def _read_document(self) -> str | None:
        try:
            return self._document_path.read_text(encoding="utf-8")
        except OSError:
            return None


def _parse_sections(raw_sections: object) -> tuple[Section, ...]:
    if not isinstance(raw_sections, list):
        return ()
    output: list[Section] = []
    for obj in raw_sections:
        if not isinstance(obj, dict):
            continue
        section_id = obj.get("id")
        start_line = obj.get("start_line")
        end_line = obj.get("end_line")
        content_hash = obj.get("content_hash")
        if not isinstance(section_id, str):
            continue
        if not isinstance(start_line, int):
            continue
        if not isinstance(end_line, int):
            continue
        if not isinstance(content_hash, str):
            continue
        raw_tags = obj.get("tags")
        tags = (
            tuple(tag for tag in raw_tags if isinstance(tag, str))
            if isinstance(raw_tags, list)
            else ()
        )
        output.append(
            Section(
                id=section_id,
                title=_as_optional_str(obj.get("title")) or section_id,
                type=_as_optional_str(obj.get("type")) or "",
                tags=tags,
                priority=_as_optional_str(obj.get("priority")) or "low",
                source=_as_optional_str(obj.get("source")) or "",
                start_line=start_line,
                end_line=end_line,
                content_hash=content_hash,
            )
        )
    return tuple(output)


def _utc_now_iso() -> str:
    return datetime.now(tz=UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _as_optional_str(value: object) -> str | None:
    if isinstance(value, str):
        return value
    return None
