"""Deterministic two-stage section ranking with budgeted multi-category selection."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from pathlib import Path
from typing import TypeVar

from ctx_index.index.manager import IndexManager
from ctx_index.index.models import PRIORITY_WEIGHTS, IndexUnavailableError, Section
from ctx_index.index.sections import hash_content, slice_lines
from ctx_index.retrieval.models import (
    RankedSection,
    RetrievalError,
    RetrievalRequest,
    RetrievalResult,
    RetrievalTotals,
)
from ctx_index.retrieval.sources import (
    DEFAULT_STATE_WINDOW,
    load_contract_chunks,
    load_design_system,
    load_ledger,
    load_routed_chunks,
    load_state_entries,
)
from ctx_index.routing.classifier import classify

DEFAULT_STAGE1_KEEP = 24
INDEX_UNAVAILABLE = "INDEX_UNAVAILABLE"
NO_MATCH_MESSAGE = "No sections matched the requested filters."

# Each group scores once: metadata hit +4, otherwise body hit +2.
CRITICALITY_TERM_GROUPS: tuple[tuple[str, ...], ...] = (
    ("invariant",),
    ("constraint",),
    ("edge case", "edge-case", "edge_case"),
    ("migration",),
    ("contract",),
    ("decision",),
    ("rollback",),
)
CRITICALITY_METADATA_WEIGHT = 4
CRITICALITY_BODY_WEIGHT = 2
CRITICALITY_HIGH_PRIORITY_BONUS = 1

T = TypeVar("T")


def retrieve(
    output_dir: Path,
    request: RetrievalRequest,
    *,
    stage1_keep: int = DEFAULT_STAGE1_KEEP,
    state_window: int = DEFAULT_STATE_WINDOW,
) -> RetrievalResult:
    """Answer one query against the index under ``output_dir``.

    Raises ``RetrievalError`` when the index or its document is missing, or when
    the index holds no sections.
    """
    if request.limit < 1:
        raise ValueError("limit must be >= 1")
    if request.max_words < 1:
        raise ValueError("max_words must be >= 1")
    try:
        loaded = IndexManager(output_dir).load()
    except IndexUnavailableError as error:
        raise RetrievalError(code=INDEX_UNAVAILABLE, message=error.reason) from error
    if not loaded.sections:
        raise RetrievalError(
            code=INDEX_UNAVAILABLE,
            message="No section metadata found in index.json; rebuild the index.",
        )

    decision = classify(request.query, routes=request.routes, level=request.level)
    tokens = list(decision.tokens)
    filtered = filter_sections(loaded.sections, request.type_filter, request.tags)
    if not filtered:
        return RetrievalResult(
            query=request.query,
            output_dir=str(output_dir),
            routing=decision,
            contracts=(),
            routed=(),
            design_system=None,
            state=(),
            ledger=None,
            selected=(),
            totals=RetrievalTotals(words=0, max_words=request.max_words, limit=request.limit),
            warnings=(),
            message=NO_MATCH_MESSAGE,
        )

    warnings: list[str] = []
    survivors = rank_stage1(filtered, tokens, keep=stage1_keep)
    ranked = rank_stage2(survivors, loaded.document, tokens, warnings)[: request.limit]

    contracts = load_contract_chunks(output_dir, decision.contracts)
    routed = load_routed_chunks(output_dir, decision)
    design = load_design_system(output_dir) if decision.design_profile else None
    state = load_state_entries(output_dir, window=state_window) if request.include_state else []
    ledger = load_ledger(output_dir) if (request.include_state or decision.ledger) else None

    budget = WordBudget(request.max_words)
    picked_contracts = budget.admit(contracts, lambda chunk: count_words(chunk.content))
    picked_routed = budget.admit(routed, lambda chunk: count_words(chunk.content))
    picked_design = budget.admit(
        [] if design is None else [design],
        lambda chunk: count_words(chunk.content),
    )
    picked_state = budget.admit(state, lambda entry: count_words(entry.text))
    picked_ledger = budget.admit(
        [] if ledger is None else [ledger],
        lambda chunk: count_words(chunk.content),
    )
    picked_sections = budget.admit(ranked, lambda item: count_words(item.content))

    return RetrievalResult(
        query=request.query,
        output_dir=str(output_dir),
        routing=decision,
        contracts=tuple(picked_contracts),
        routed=tuple(picked_routed),
        design_system=picked_design[0] if picked_design else None,
        state=tuple(picked_state),
        ledger=picked_ledger[0] if picked_ledger else None,
        selected=tuple(picked_sections),
        totals=RetrievalTotals(
            words=budget.used,
            max_words=request.max_words,
            limit=request.limit,
        ),
        warnings=tuple(warnings),
    )


def filter_sections(
    sections: Sequence[Section],
    type_filter: str | None,
    tags: Sequence[str],
) -> list[Section]:
    """Apply the exact type filter and the all-tags-must-match filter."""
    wanted_type = type_filter.strip().lower() if type_filter else None
    wanted_tags = [tag.strip().lower() for tag in tags if tag.strip()]
    output: list[Section] = []
    for section in sections:
        if wanted_type is not None and section.type.lower() != wanted_type:
            continue
        section_tags = {tag.lower() for tag in section.tags}
        if any(tag not in section_tags for tag in wanted_tags):
            continue
        output.append(section)
    return output


def metadata_score(section: Section, tokens: Sequence[str]) -> int:
    """Priority weight plus 3 for every token found in id, title, type or tags."""
    haystack = _metadata_text(section)
    score = PRIORITY_WEIGHTS.get(section.priority, 0)
    for token in tokens:
        if token in haystack:
            score += 3
    return score


def content_score(content: str, tokens: Sequence[str]) -> int:
    """Two points for every token found in the body."""
    lowered = content.lower()
    return sum(2 for token in tokens if token in lowered)


def criticality_score(section: Section, content: str) -> int:
    """Score risk vocabulary in metadata or body, plus a high-priority bonus."""
    metadata = _metadata_text(section)
    body = content.lower()
    score = 0
    for group in CRITICALITY_TERM_GROUPS:
        if any(term in metadata for term in group):
            score += CRITICALITY_METADATA_WEIGHT
        elif any(term in body for term in group):
            score += CRITICALITY_BODY_WEIGHT
    if section.priority == "high":
        score += CRITICALITY_HIGH_PRIORITY_BONUS
    return score


def rank_stage1(
    sections: Sequence[Section],
    tokens: Sequence[str],
    *,
    keep: int = DEFAULT_STAGE1_KEEP,
) -> list[tuple[Section, int]]:
    """Coarse metadata ranking; returns the top ``keep`` with their scores."""
    scored = [(section, metadata_score(section, tokens)) for section in sections]
    scored.sort(key=lambda item: (-item[1], item[0].id, item[0].start_line))
    return scored[:keep]


def rank_stage2(
    survivors: Sequence[tuple[Section, int]],
    document: str,
    tokens: Sequence[str],
    warnings: list[str],
) -> list[RankedSection]:
    """Fine ranking on live body text; hash drift warns but never excludes."""
    lines = document.split("\n")
    ranked: list[RankedSection] = []
    for section, stage1 in survivors:
        content = slice_lines(lines, section.start_line, section.end_line)
        stale = hash_content(content) != section.content_hash
        if stale:
            warnings.append(f"Section hash mismatch for {section.id}; rebuild the index.")
        criticality = criticality_score(section, content)
        ranked.append(
            RankedSection(
                section=section,
                stage1_score=stage1,
                criticality_score=criticality,
                score=stage1 * 2 + content_score(content, tokens) + criticality,
                content=content,
                stale=stale,
            )
        )
    ranked.sort(
        key=lambda item: (
            -item.score,
            -item.criticality_score,
            -item.stage1_score,
            item.section.id,
            item.section.start_line,
        )
    )
    return ranked


def count_words(text: str) -> int:
    return len(text.split())


class WordBudget:
    """Shared word budget consumed category by category."""

    def __init__(self, max_words: int) -> None:
        self.max_words = max_words
        self.used = 0

    def admit(self, items: Sequence[T], words_of: Callable[[T], int]) -> list[T]:
        """Admit items greedily, stopping at the first that would overflow.

        The first item of a non-empty category is always admitted.
        """
        admitted: list[T] = []
        for item in items:
            words = words_of(item)
            if admitted and self.used + words > self.max_words:
                break
            admitted.append(item)
            self.used += words
        return admitted


def _metadata_text(section: Section) -> str:
    return f"{section.id} {section.title} {section.type} {' '.join(section.tags)}".lower()
