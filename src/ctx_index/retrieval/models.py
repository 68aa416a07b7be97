"""Typed models for ranked, budgeted retrieval."""

from __future__ import annotations

from dataclasses import dataclass

from ctx_index.index.models import Section
from ctx_index.routing.classifier import RoutingDecision

OUTPUT_FORMATS = ("json", "markdown")


@dataclass(slots=True, frozen=True)
class RetrievalRequest:
    """Normalized retrieval input."""

    query: str
    type_filter: str | None = None
    tags: tuple[str, ...] = ()
    routes: tuple[str, ...] | None = None
    level: int | None = None
    include_state: bool = False
    limit: int = 6
    max_words: int = 1400
    output_format: str = "json"


@dataclass(slots=True, frozen=True)
class ContractChunk:
    """Contract document for one technical domain."""

    contract: str
    source: str
    content: str

    def to_dict(self) -> dict[str, object]:
        return {"contract": self.contract, "source": self.source, "content": self.content}


@dataclass(slots=True, frozen=True)
class RoutedChunk:
    """Depth-tiered routed context file."""

    route: str
    level: int
    source: str
    content: str

    def to_dict(self) -> dict[str, object]:
        return {
            "route": self.route,
            "level": self.level,
            "source": self.source,
            "content": self.content,
        }


@dataclass(slots=True, frozen=True)
class DesignSystemChunk:
    """Summarized design profile."""

    title: str
    source: str
    content: str

    def to_dict(self) -> dict[str, object]:
        return {"title": self.title, "source": self.source, "content": self.content}


@dataclass(slots=True, frozen=True)
class StateEntry:
    """One recent decision or hypothesis log entry."""

    kind: str
    timestamp: str
    source: str
    note: str
    text: str
    status: str | None = None

    def to_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {
            "kind": self.kind,
            "timestamp": self.timestamp,
            "source": self.source,
            "note": self.note,
            "text": self.text,
        }
        if self.status is not None:
            payload["status"] = self.status
        return payload


@dataclass(slots=True, frozen=True)
class LedgerChunk:
    """Tail of the refactor ledger."""

    source: str
    content: str

    def to_dict(self) -> dict[str, object]:
        return {"source": self.source, "content": self.content}


@dataclass(slots=True, frozen=True)
class RankedSection:
    """Section with its stage scores and live body text."""

    section: Section
    stage1_score: int
    criticality_score: int
    score: int
    content: str
    stale: bool

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.section.id,
            "title": self.section.title,
            "type": self.section.type,
            "tags": list(self.section.tags),
            "priority": self.section.priority,
            "source": self.section.source,
            "start_line": self.section.start_line,
            "end_line": self.section.end_line,
            "score": self.score,
            "stage1_score": self.stage1_score,
            "criticality_score": self.criticality_score,
            "stale": self.stale,
            "content": self.content,
        }


@dataclass(slots=True, frozen=True)
class RetrievalTotals:
    """Word usage against the requested budget."""

    words: int
    max_words: int
    limit: int


@dataclass(slots=True, frozen=True)
class RetrievalResult:
    """Final retrieval artifact."""

    query: str
    output_dir: str
    routing: RoutingDecision
    contracts: tuple[ContractChunk, ...]
    routed: tuple[RoutedChunk, ...]
    design_system: DesignSystemChunk | None
    state: tuple[StateEntry, ...]
    ledger: LedgerChunk | None
    selected: tuple[RankedSection, ...]
    totals: RetrievalTotals
    warnings: tuple[str, ...]
    message: str | None = None

    def to_dict(self) -> dict[str, object]:
        """Return the structured payload."""
        payload: dict[str, object] = {
            "query": self.query,
            "output_dir": self.output_dir,
            "routing": self.routing.to_dict(),
            "contracts": [chunk.to_dict() for chunk in self.contracts],
            "routed": [chunk.to_dict() for chunk in self.routed],
            "design_system": None if self.design_system is None else self.design_system.to_dict(),
            "state": [entry.to_dict() for entry in self.state],
            "ledger": None if self.ledger is None else self.ledger.to_dict(),
            "selected": [item.to_dict() for item in self.selected],
            "totals": {
                "words": self.totals.words,
                "max_words": self.totals.max_words,
                "limit": self.totals.limit,
            },
            "warnings": list(self.warnings),
        }
        if self.message is not None:
            payload["message"] = self.message
        return payload


@dataclass(slots=True, frozen=True)
class RetrievalError(Exception):
    """Raised when retrieval has nothing to rank."""

    code: str
    message: str
