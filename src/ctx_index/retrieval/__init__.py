"""Ranked, budgeted retrieval over the section index."""

from .engine import (
    INDEX_UNAVAILABLE,
    WordBudget,
    criticality_score,
    filter_sections,
    metadata_score,
    rank_stage1,
    rank_stage2,
    retrieve,
)
from .models import RetrievalError, RetrievalRequest, RetrievalResult
from .render import render_markdown

__all__ = [
    "INDEX_UNAVAILABLE",
    "RetrievalError",
    "RetrievalRequest",
    "RetrievalResult",
    "WordBudget",
    "criticality_score",
    "filter_sections",
    "metadata_score",
    "rank_stage1",
    "rank_stage2",
    "render_markdown",
    "retrieve",
]
