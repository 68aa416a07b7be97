from __future__ import annotations

from ctx_index.index.models import Section
from ctx_index.index.sections import hash_content
from ctx_index.retrieval.engine import (
    WordBudget,
    content_score,
    count_words,
    criticality_score,
    filter_sections,
    metadata_score,
    rank_stage1,
    rank_stage2,
)


def _section(
    section_id: str,
    *,
    title: str = "Title",
    section_type: str = "runbook",
    tags: tuple[str, ...] = (),
    priority: str = "medium",
    start_line: int = 1,
    end_line: int = 1,
    content_hash: str = "0" * 16,
) -> Section:
    return Section(
        id=section_id,
        title=title,
        type=section_type,
        tags=tags,
        priority=priority,
        source="AGENTS.md",
        start_line=start_line,
        end_line=end_line,
        content_hash=content_hash,
    )


def test_metadata_score_adds_priority_and_token_hits() -> None:
    section = _section(
        "auth.session",
        title="Session Handling",
        section_type="business-logic",
        tags=("auth", "jwt"),
        priority="high",
    )

    assert metadata_score(section, ["session", "jwt", "nothing"]) == 8
    assert metadata_score(_section("x", priority="low"), []) == 0


def test_content_score_counts_body_hits() -> None:
    assert content_score("Rotate JWT keys nightly", ["jwt", "keys", "absent"]) == 4


def test_criticality_prefers_metadata_over_body() -> None:
    section = _section("a", title="A", tags=("invariant",), priority="high")
    body = "Rollback steps cover every edge case."

    assert criticality_score(section, body) == 4 + 2 + 2 + 1
    assert criticality_score(_section("b", title="B"), "plain text") == 0


def test_stage1_orders_by_score_then_id_and_truncates() -> None:
    sections = [
        _section("c"),
        _section("b"),
        _section("a", tags=("auth",)),
        _section("d", priority="low"),
    ]

    ranked = rank_stage1(sections, ["auth"], keep=3)

    assert [(section.id, score) for section, score in ranked] == [("a", 4), ("b", 1), ("c", 1)]


def test_stage2_scores_live_body_and_flags_hash_drift() -> None:
    document = "intro\nuses jwt tokens\ninvariant: one session\n"
    drifted = _section("drifted", start_line=3, end_line=3)
    fresh = _section(
        "fresh", start_line=2, end_line=2, content_hash=hash_content("uses jwt tokens")
    )
    warnings: list[str] = []

    ranked = rank_stage2([(fresh, 2), (drifted, 1)], document, ["jwt"], warnings)

    assert [item.section.id for item in ranked] == ["fresh", "drifted"]
    assert ranked[0].score == 2 * 2 + 2
    assert ranked[0].stale is False
    assert ranked[1].stale is True
    assert ranked[1].criticality_score == 2
    assert warnings == ["Section hash mismatch for drifted; rebuild the index."]


def test_filter_sections_by_type_and_all_tags() -> None:
    sections = [
        _section("a", section_type="database", tags=("db", "sql")),
        _section("b", section_type="database", tags=("db",)),
        _section("c", section_type="runbook", tags=("db", "sql")),
    ]

    assert [s.id for s in filter_sections(sections, "Database", ["SQL", "db"])] == ["a"]
    assert [s.id for s in filter_sections(sections, None, [])] == ["a", "b", "c"]
    assert filter_sections(sections, "memory", []) == []


def test_word_budget_stops_at_first_overflow() -> None:
    budget = WordBudget(10)

    first = budget.admit(["a b c d", "e f g h", "i j k l", "m"], count_words)
    second = budget.admit(["n"], count_words)

    assert first == ["a b c d", "e f g h"]
    assert second == ["n"]
    assert budget.used == 9


def test_word_budget_always_admits_first_item_of_category() -> None:
    budget = WordBudget(3)

    admitted = budget.admit(["one two three four five", "six"], count_words)

    assert admitted == ["one two three four five"]
    assert budget.used == 5
