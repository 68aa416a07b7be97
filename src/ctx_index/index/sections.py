"""Marker-delimited section parsing, validation and rendering."""

from __future__ import annotations

import hashlib
import re
from collections.abc import Iterable, Sequence

from ctx_index.index.models import (
    Section,
    SectionDeclaration,
    SectionIndexResult,
    SectionMarker,
    StructuralError,
)

DOCUMENT_HEADER = "# Project Context"
EMPTY_BODY = "(No context available)"

_START_MARKER = re.compile(r"^<!--\s*ctx:section\s+(?P<attrs>.*?)\s*-->$")
_END_MARKER = re.compile(r"^<!--\s*/ctx:section\s+(?P<attrs>.*?)\s*-->$")
_ATTRIBUTE = re.compile(r"([A-Za-z_][A-Za-z0-9_-]*)=(\S+)")


def hash_content(text: str) -> str:
    """Return the short content hash used for drift detection."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()[:16]


def slice_lines(lines: Sequence[str], start_line: int, end_line: int) -> str:
    """Return trimmed text for a 1-based inclusive line range."""
    return "\n".join(lines[max(0, start_line - 1) : end_line]).strip()


def parse_marker_attributes(raw: str) -> dict[str, str]:
    """Parse ``key=value`` pairs from a marker line."""
    return {key: value for key, value in _ATTRIBUTE.findall(raw)}


def find_marker_line(text: str) -> str | None:
    """Return the first line of ``text`` shaped like a section marker, if any."""
    for raw_line in text.split("\n"):
        line = raw_line.strip()
        if _START_MARKER.match(line) or _END_MARKER.match(line):
            return line
    return None


def parse_section_markers(text: str) -> tuple[SectionMarker, ...] | StructuralError:
    """Pair start and end markers in document order."""
    markers: list[SectionMarker] = []
    seen: set[str] = set()
    open_id: str | None = None
    open_attributes: dict[str, str] = {}
    open_line = 0

    for line_number, raw_line in enumerate(text.split("\n"), start=1):
        line = raw_line.strip()
        start = _START_MARKER.match(line)
        if start is not None:
            if open_id is not None:
                return StructuralError(reason="unterminated start marker", section_id=open_id)
            attributes = parse_marker_attributes(start.group("attrs"))
            section_id = attributes.get("id")
            if not section_id:
                return StructuralError(reason="start marker without id")
            if section_id in seen:
                return StructuralError(reason="duplicate section id", section_id=section_id)
            open_id = section_id
            open_attributes = attributes
            open_line = line_number
            continue

        end = _END_MARKER.match(line)
        if end is None:
            continue
        end_id = parse_marker_attributes(end.group("attrs")).get("id")
        if open_id is None:
            return StructuralError(reason="end marker without start marker", section_id=end_id)
        if end_id != open_id:
            return StructuralError(reason="end marker id mismatch", section_id=open_id)
        seen.add(open_id)
        markers.append(
            SectionMarker(
                id=open_id,
                attributes=open_attributes,
                start_marker_line=open_line,
                end_marker_line=line_number,
            )
        )
        open_id = None
        open_attributes = {}

    if open_id is not None:
        return StructuralError(reason="unterminated start marker", section_id=open_id)
    return tuple(markers)


def build_section_index(
    text: str,
    declarations: Sequence[SectionDeclaration],
) -> SectionIndexResult | StructuralError:
    """Parse markers, cross-check them against the manifest, and hash each body."""
    parsed = parse_section_markers(text)
    if isinstance(parsed, StructuralError):
        return parsed

    declared: dict[str, SectionDeclaration] = {}
    for declaration in declarations:
        if declaration.id in declared:
            return StructuralError(reason="duplicate manifest id", section_id=declaration.id)
        declared[declaration.id] = declaration

    by_id = {marker.id: marker for marker in parsed}
    for declaration in declarations:
        if declaration.id not in by_id:
            return StructuralError(
                reason="manifest id has no marker pair", section_id=declaration.id
            )
    for marker in parsed:
        if marker.id not in declared:
            return StructuralError(
                reason="marker id not declared in manifest", section_id=marker.id
            )

    lines = text.split("\n")
    sections: list[Section] = []
    for marker in parsed:
        start_line = marker.start_marker_line + 1
        end_line = marker.end_marker_line - 1
        if start_line > end_line:
            return StructuralError(reason="inverted range", section_id=marker.id)
        declaration = declared[marker.id]
        sections.append(
            Section(
                id=declaration.id,
                title=declaration.title,
                type=declaration.type,
                tags=declaration.tags,
                priority=declaration.priority,
                source=declaration.source,
                start_line=start_line,
                end_line=end_line,
                content_hash=hash_content(slice_lines(lines, start_line, end_line)),
            )
        )
    return SectionIndexResult(sections=tuple(sections))


def render_document(declarations: Iterable[SectionDeclaration]) -> str:
    """Render declarations into a marker-delimited document."""
    lines = [DOCUMENT_HEADER, ""]
    for declaration in declarations:
        body = (declaration.content or "").strip() or EMPTY_BODY
        lines.append(
            "<!-- ctx:section "
            f"id={declaration.id} "
            f"type={_attribute_value(declaration.type)} "
            f"priority={_attribute_value(declaration.priority)} "
            f"source={_attribute_value(declaration.source)} "
            f"tags={_attribute_value(','.join(declaration.tags))} -->"
        )
        lines.append(f"## {declaration.title}")
        lines.append("")
        lines.append(body)
        lines.append(f"<!-- /ctx:section id={declaration.id} -->")
        lines.append("")
    return "\n".join(lines)


def verify_section_hashes(sections: Iterable[Section], document: str) -> tuple[str, ...]:
    """Return ids whose live body no longer matches the stored hash."""
    lines = document.split("\n")
    drifted: list[str] = []
    for section in sections:
        if section.start_line < 1 or section.end_line > len(lines):
            drifted.append(section.id)
            continue
        live_hash = hash_content(slice_lines(lines, section.start_line, section.end_line))
        if live_hash != section.content_hash:
            drifted.append(section.id)
    return tuple(drifted)


def _attribute_value(value: str) -> str:
    return "_".join(value.split()) or "-"
