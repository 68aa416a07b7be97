"""Markdown rendering of retrieval results."""

from __future__ import annotations

from ctx_index.retrieval.models import RetrievalResult


def render_markdown(result: RetrievalResult) -> str:
    """Render a retrieval result as a markdown document with the same information."""
    routing = result.routing
    lines = [
        "# Retrieved Context",
        "",
        f"Query: {result.query or '(none)'}",
        f"Routes: {', '.join(routing.routes) or '(none)'}",
        f"Contracts: {', '.join(routing.contracts) or '(none)'}",
        f"Escalation level: {routing.escalation_level}",
        f"Selected sections: {len(result.selected)}",
        f"Words: {result.totals.words}/{result.totals.max_words}",
        "",
    ]
    if result.message:
        lines.extend([result.message, ""])

    for chunk in result.contracts:
        lines.extend([f"## Contract: {chunk.contract}", "", f"Source: `{chunk.source}`", ""])
        lines.extend([chunk.content, ""])

    for chunk in result.routed:
        lines.extend([f"## Route: {chunk.route} (level {chunk.level})", ""])
        lines.extend([f"Source: `{chunk.source}`", "", chunk.content, ""])

    if result.design_system is not None:
        design = result.design_system
        lines.extend([f"## {design.title}", "", f"Source: `{design.source}`", ""])
        lines.extend([design.content, ""])

    if result.state:
        lines.extend(["## Recent State", ""])
        for entry in result.state:
            status = f" [{entry.status}]" if entry.status else ""
            lines.append(f"- {entry.timestamp} {entry.kind}{status}: {entry.text}")
        lines.append("")

    if result.ledger is not None:
        lines.extend(["## Refactor Ledger", "", f"Source: `{result.ledger.source}`", ""])
        lines.extend([result.ledger.content, ""])

    for item in result.selected:
        section = item.section
        tags = ", ".join(f"`{tag}`" for tag in section.tags) or "(none)"
        lines.extend(
            [
                f"## {section.title}",
                "",
                f"- ID: `{section.id}`",
                f"- Type: `{section.type}`",
                f"- Tags: {tags}",
                f"- Source: `{section.source}`",
                f"- Lines: `{section.start_line}-{section.end_line}`",
                f"- Score: {item.score} (stage1 {item.stage1_score}, "
                f"criticality {item.criticality_score})",
            ]
        )
        if item.stale:
            lines.append("- Stale: yes")
        lines.extend(["", item.content, ""])

    if result.warnings:
        lines.extend(["## Warnings", ""])
        lines.extend(f"- {warning}" for warning in result.warnings)
        lines.append("")
    return "\n".join(lines).strip() + "\n"
