"""Query routing and escalation classification."""

from .classifier import (
    CONTRACT_TABLE,
    ESCALATION_TABLE,
    ROUTE_TABLE,
    RoutingDecision,
    classify,
    disambiguate,
    escalation_for,
    normalize_routes,
    route_files,
    tokenize,
)

__all__ = [
    "CONTRACT_TABLE",
    "ESCALATION_TABLE",
    "ROUTE_TABLE",
    "RoutingDecision",
    "classify",
    "disambiguate",
    "escalation_for",
    "normalize_routes",
    "route_files",
    "tokenize",
]
