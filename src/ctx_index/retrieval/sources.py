"""Readers for optional routed, contract, design, state and ledger files."""

from __future__ import annotations

import json
from collections.abc import Iterable
from pathlib import Path

from ctx_index.retrieval.models import (
    ContractChunk,
    DesignSystemChunk,
    LedgerChunk,
    RoutedChunk,
    StateEntry,
)
from ctx_index.routing.classifier import RoutingDecision, route_files

CONTRACTS_DIR = "context/contracts"
DESIGN_SYSTEM_FILE = "design-system.json"
DESIGN_SYSTEM_TITLE = "Design System Context"
LEDGER_FILE = "context/refactor-ledger.md"
LEDGER_TAIL_LINES = 80
STATE_LOGS: tuple[tuple[str, str, str], ...] = (
    ("decision", "context/DECISIONS.jsonl", "decision"),
    ("hypothesis", "context/HYPOTHESES.jsonl", "hypothesis"),
)
DEFAULT_STATE_WINDOW = 20
MAX_STATE_ENTRIES = 8


def read_optional_text(path: Path) -> str | None:
    """Return trimmed file text, or ``None`` when missing, unreadable or empty."""
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError):
        return None
    stripped = text.strip()
    return stripped or None


def load_contract_chunks(output_dir: Path, contracts: Iterable[str]) -> list[ContractChunk]:
    output: list[ContractChunk] = []
    for contract in contracts:
        source = f"{CONTRACTS_DIR}/{contract}.md"
        content = read_optional_text(output_dir / source)
        if content is None:
            continue
        output.append(ContractChunk(contract=contract, source=source, content=content))
    return output


def load_routed_chunks(output_dir: Path, decision: RoutingDecision) -> list[RoutedChunk]:
    output: list[RoutedChunk] = []
    for route, level, source in route_files(decision):
        content = read_optional_text(output_dir / source)
        if content is None:
            continue
        output.append(RoutedChunk(route=route, level=level, source=source, content=content))
    return output


def load_design_system(output_dir: Path) -> DesignSystemChunk | None:
    """Summarize design-system.json; a missing or malformed profile is not available."""
    raw = read_optional_text(output_dir / DESIGN_SYSTEM_FILE)
    if raw is None:
        return None
    try:
        profile = json.loads(raw)
    except json.JSONDecodeError:
        return None
    if not isinstance(profile, dict):
        return None
    return DesignSystemChunk(
        title=DESIGN_SYSTEM_TITLE,
        source=DESIGN_SYSTEM_FILE,
        content=summarize_design_profile(profile),
    )


def summarize_design_profile(profile: dict[str, object]) -> str:
    name = profile.get("name") if isinstance(profile.get("name"), str) else "design-system"
    version = profile.get("version") if isinstance(profile.get("version"), str) else "unversioned"
    lines = [
        f"- Profile: {name} ({version})",
        f"- Allowed component imports: {_joined(profile.get('allowedComponentImports'))}",
        f"- Token sources: {_joined(profile.get('tokenSources'))}",
        f"- Required wrappers: {_joined(profile.get('requiredWrappers'))}",
    ]
    rules = profile.get("bannedRegexRules")
    if isinstance(rules, list):
        messages = [
            f"{rule.get('id')}: {rule.get('message')}"
            for rule in rules
            if isinstance(rule, dict) and isinstance(rule.get("id"), str)
        ]
        lines.append(f"- Banned patterns: {len(messages)}")
        lines.extend(f"  - {message}" for message in messages)
    motion = profile.get("motion")
    if isinstance(motion, dict):
        lines.append(
            "- Motion: "
            f"reduced_motion_required={motion.get('reducedMotionRequired') is not False}, "
            f"max_duration_ms={motion.get('maxDurationMs', 900)}, "
            f"forbid_infinite_animations={motion.get('forbidInfiniteAnimations') is not False}"
        )
    return "\n".join(lines)


def load_state_entries(
    output_dir: Path,
    window: int = DEFAULT_STATE_WINDOW,
    cap: int = MAX_STATE_ENTRIES,
) -> list[StateEntry]:
    """Read the last ``window`` lines of each state log, newest first, capped."""
    entries: list[StateEntry] = []
    for kind, source, text_field in STATE_LOGS:
        try:
            raw_text = (output_dir / source).read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError):
            continue
        lines = [line for line in raw_text.splitlines() if line.strip()]
        for line in lines[-window:]:
            entry = _parse_state_line(line, kind=kind, text_field=text_field)
            if entry is not None:
                entries.append(entry)
    entries.sort(key=lambda item: item.text)
    entries.sort(key=lambda item: item.kind)
    entries.sort(key=lambda item: item.timestamp, reverse=True)
    return entries[:cap]


def load_ledger(output_dir: Path, tail_lines: int = LEDGER_TAIL_LINES) -> LedgerChunk | None:
    raw = read_optional_text(output_dir / LEDGER_FILE)
    if raw is None:
        return None
    tail = "\n".join(raw.splitlines()[-tail_lines:]).strip()
    return LedgerChunk(source=LEDGER_FILE, content=tail)


def _parse_state_line(line: str, *, kind: str, text_field: str) -> StateEntry | None:
    try:
        obj = json.loads(line)
    except json.JSONDecodeError:
        return None
    if not isinstance(obj, dict):
        return None
    timestamp = obj.get("timestamp")
    text = obj.get(text_field)
    if not isinstance(timestamp, str) or not isinstance(text, str) or not text.strip():
        return None
    source = obj.get("source")
    note = obj.get("note")
    status = obj.get("status")
    return StateEntry(
        kind=kind,
        timestamp=timestamp,
        source=source if isinstance(source, str) else "",
        note=note if isinstance(note, str) else "",
        text=text.strip(),
        status=status if isinstance(status, str) else None,
    )


def _joined(value: object) -> str:
    if not isinstance(value, list):
        return "(none)"
    items = [item for item in value if isinstance(item, str)]
    return ", ".join(items) or "(none)"
