"""Typed models for section indexing."""

from __future__ import annotations

from dataclasses import dataclass

PRIORITY_WEIGHTS = {"high": 2, "medium": 1, "low": 0}
SECTION_TYPES = (
    "architecture",
    "database",
    "business-logic",
    "codebase",
    "design-system",
    "memory",
    "capabilities",
    "retrieval",
    "runbook",
)


@dataclass(slots=True, frozen=True)
class SectionDeclaration:
    """Manifest entry describing one expected section."""

    id: str
    title: str
    type: str
    tags: tuple[str, ...]
    priority: str
    source: str
    content: str | None = None


@dataclass(slots=True, frozen=True)
class Section:
    """Indexed section with its line range and content hash."""

    id: str
    title: str
    type: str
    tags: tuple[str, ...]
    priority: str
    source: str
    start_line: int
    end_line: int
    content_hash: str

    def to_dict(self) -> dict[str, object]:
        """Return the index.json form of this section."""
        return {
            "id": self.id,
            "title": self.title,
            "type": self.type,
            "tags": list(self.tags),
            "priority": self.priority,
            "source": self.source,
            "start_line": self.start_line,
            "end_line": self.end_line,
            "content_hash": self.content_hash,
        }


@dataclass(slots=True, frozen=True)
class SectionMarker:
    """A matched start/end marker pair; line numbers are the marker lines."""

    id: str
    attributes: dict[str, str]
    start_marker_line: int
    end_marker_line: int


@dataclass(slots=True, frozen=True)
class StructuralError:
    """Failed section index build."""

    reason: str
    section_id: str | None = None


@dataclass(slots=True, frozen=True)
class SectionIndexResult:
    """Successful section index build."""

    sections: tuple[Section, ...]


@dataclass(slots=True, frozen=True)
class LoadedIndex:
    """Index payload loaded together with its document text."""

    sections: tuple[Section, ...]
    document: str
    timestamp: str | None
    metadata: dict[str, object]


@dataclass(slots=True, frozen=True)
class StructuralIndexError(Exception):
    """Raised when the document and manifest are out of lockstep."""

    reason: str
    section_id: str | None = None


@dataclass(slots=True, frozen=True)
class IndexUnavailableError(Exception):
    """Raised when the index or its document cannot be loaded."""

    reason: str
