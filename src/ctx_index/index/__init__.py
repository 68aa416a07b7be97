"""Section indexing package."""

from .manager import INDEX_SCHEMA_VERSION, IndexManager, IndexStatus
from .models import (
    IndexUnavailableError,
    LoadedIndex,
    Section,
    SectionDeclaration,
    SectionIndexResult,
    SectionMarker,
    StructuralError,
    StructuralIndexError,
)
from .sections import (
    build_section_index,
    find_marker_line,
    hash_content,
    parse_section_markers,
    render_document,
    slice_lines,
    verify_section_hashes,
)

__all__ = [
    "INDEX_SCHEMA_VERSION",
    "IndexManager",
    "IndexStatus",
    "IndexUnavailableError",
    "LoadedIndex",
    "Section",
    "SectionDeclaration",
    "SectionIndexResult",
    "SectionMarker",
    "StructuralError",
    "StructuralIndexError",
    "build_section_index",
    "find_marker_line",
    "hash_content",
    "parse_section_markers",
    "render_document",
    "slice_lines",
    "verify_section_hashes",
]
