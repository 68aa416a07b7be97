from __future__ import annotations

from ctx_index.index.models import SectionDeclaration, SectionIndexResult, StructuralError
from ctx_index.index.sections import (
    build_section_index,
    find_marker_line,
    hash_content,
    parse_section_markers,
    render_document,
    slice_lines,
    verify_section_hashes,
)


def _declaration(section_id: str, content: str | None = "Body text.") -> SectionDeclaration:
    return SectionDeclaration(
        id=section_id,
        title=section_id.replace(".", " ").title(),
        type="architecture",
        tags=("layers", "patterns"),
        priority="high",
        source="architecture.md",
        content=content,
    )


def _start(section_id: str) -> str:
    return (
        f"<!-- ctx:section id={section_id} type=architecture "
        "priority=high source=a.md tags=x -->"
    )


def _end(section_id: str) -> str:
    return f"<!-- /ctx:section id={section_id} -->"


def test_rendered_document_builds_consistent_index() -> None:
    declarations = [
        _declaration("architecture.overview", "Layers:\n- api\n- core"),
        _declaration("codebase.overview", None),
    ]
    document = render_document(declarations)

    result = build_section_index(document, declarations)

    assert isinstance(result, SectionIndexResult)
    lines = document.split("\n")
    assert [section.id for section in result.sections] == [
        "architecture.overview",
        "codebase.overview",
    ]
    for section in result.sections:
        assert section.start_line <= section.end_line
        assert lines[section.start_line - 1].startswith("## ")
        body = slice_lines(lines, section.start_line, section.end_line)
        assert hash_content(body) == section.content_hash
    assert "(No context available)" in document


def test_reindexing_unchanged_document_is_idempotent() -> None:
    declarations = [_declaration("a"), _declaration("b", "Other body.")]

    first = build_section_index(render_document(declarations), declarations)
    second = build_section_index(render_document(declarations), declarations)

    assert isinstance(first, SectionIndexResult)
    assert isinstance(second, SectionIndexResult)
    assert [s.content_hash for s in first.sections] == [s.content_hash for s in second.sections]


def test_line_ranges_cover_lines_between_markers() -> None:
    document = "\n".join(["# Project Context", "", _start("a"), "## A", "body", _end("a"), ""])

    result = build_section_index(document, [_declaration("a")])

    assert isinstance(result, SectionIndexResult)
    section = result.sections[0]
    assert (section.start_line, section.end_line) == (4, 5)
    assert section.content_hash == hash_content("## A\nbody")


def test_parse_returns_marker_attributes() -> None:
    document = "\n".join([_start("a"), "## A", _end("a")])

    markers = parse_section_markers(document)

    assert not isinstance(markers, StructuralError)
    assert markers[0].attributes["priority"] == "high"
    assert (markers[0].start_marker_line, markers[0].end_marker_line) == (1, 3)


def test_manifest_id_without_markers_is_structural_error() -> None:
    document = "\n".join([_start("a"), "## A", _end("a")])

    result = build_section_index(document, [_declaration("a"), _declaration("b")])

    assert result == StructuralError(reason="manifest id has no marker pair", section_id="b")


def test_duplicate_marker_id_is_structural_error() -> None:
    document = "\n".join([_start("a"), "## A", _end("a"), _start("a"), "## A again", _end("a")])

    result = build_section_index(document, [_declaration("a")])

    assert result == StructuralError(reason="duplicate section id", section_id="a")


def test_duplicate_manifest_id_is_structural_error() -> None:
    declarations = [_declaration("a"), _declaration("a")]
    document = "\n".join([_start("a"), "## A", _end("a")])

    result = build_section_index(document, declarations)

    assert result == StructuralError(reason="duplicate manifest id", section_id="a")


def test_empty_body_is_inverted_range() -> None:
    document = "\n".join([_start("a"), _end("a")])

    result = build_section_index(document, [_declaration("a")])

    assert result == StructuralError(reason="inverted range", section_id="a")


def test_unbalanced_markers_are_structural_errors() -> None:
    unterminated = "\n".join([_start("a"), "## A"])
    orphan_end = "\n".join(["## A", _end("a")])
    mismatched = "\n".join([_start("a"), "## A", _end("b")])
    nested = "\n".join([_start("a"), _start("b"), _end("b"), _end("a")])

    assert parse_section_markers(unterminated) == StructuralError(
        reason="unterminated start marker", section_id="a"
    )
    assert parse_section_markers(orphan_end) == StructuralError(
        reason="end marker without start marker", section_id="a"
    )
    assert parse_section_markers(mismatched) == StructuralError(
        reason="end marker id mismatch", section_id="a"
    )
    assert parse_section_markers(nested) == StructuralError(
        reason="unterminated start marker", section_id="a"
    )


def test_undeclared_marker_is_structural_error() -> None:
    document = "\n".join([_start("a"), "## A", _end("a"), _start("z"), "## Z", _end("z")])

    result = build_section_index(document, [_declaration("a")])

    assert result == StructuralError(reason="marker id not declared in manifest", section_id="z")


def test_verify_section_hashes_reports_drift() -> None:
    declarations = [_declaration("a", "Alpha body."), _declaration("b", "Beta body.")]
    document = render_document(declarations)
    result = build_section_index(document, declarations)
    assert isinstance(result, SectionIndexResult)

    assert verify_section_hashes(result.sections, document) == ()

    edited = document.replace("Beta body.", "Beta body, edited.")
    assert verify_section_hashes(result.sections, edited) == ("b",)

    truncated = "\n".join(document.split("\n")[:8])
    assert verify_section_hashes(result.sections, truncated) == ("b",)


def test_find_marker_line_detects_marker_shaped_body_lines() -> None:
    body = "Markers look like:\n  <!-- /ctx:section id=codebase.docs -->\nend"

    assert find_marker_line(body) == "<!-- /ctx:section id=codebase.docs -->"
    assert find_marker_line(_start("a")) == _start("a")
    assert find_marker_line("<!-- plain comment -->\nctx:section id=a") is None
