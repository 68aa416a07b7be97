"""Query routing, contract detection and escalation as ordered decision tables."""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass

MIN_TOKEN_LENGTH = 2
MIN_LEVEL = 1
MAX_LEVEL = 3

AMBIGUOUS_TOKEN_TERMS = frozenset({"token", "tokens"})
DESIGN_VOCABULARY = frozenset(
    {"design", "theme", "spacing", "typography", "color", "colors", "component", "components"}
)
DESIGN_TOKEN = "design-token"
AUTH_TOKEN = "auth-token"

ROUTE_TABLE: tuple[tuple[str, frozenset[str]], ...] = (
    (
        "auth",
        frozenset(
            {
                AUTH_TOKEN,
                "auth",
                "authentication",
                "authorization",
                "claims",
                "jwt",
                "login",
                "logout",
                "oauth",
                "password",
                "permission",
                "permissions",
                "rbac",
                "session",
                "sessions",
                "sso",
            }
        ),
    ),
    (
        "db",
        frozenset(
            {
                "column",
                "columns",
                "database",
                "db",
                "mysql",
                "orm",
                "postgres",
                "postgresql",
                "prisma",
                "schema",
                "sql",
                "sqlite",
                "table",
                "tables",
                "transaction",
                "transactions",
            }
        ),
    ),
    (
        "ui",
        frozenset(
            {
                DESIGN_TOKEN,
                "a11y",
                "accessibility",
                "animation",
                "component",
                "components",
                "css",
                "csr",
                "design",
                "framer",
                "frontend",
                "hydration",
                "layout",
                "motion",
                "spacing",
                "ssr",
                "theme",
                "typography",
                "ui",
                "ux",
            }
        ),
    ),
)

CONTRACT_TABLE: tuple[tuple[str, frozenset[str]], ...] = (
    ("http", frozenset({"econnrefused", "http", "listen", "port", "proxy", "upstream"})),
    (
        "middleware",
        frozenset({"ctx", "helper", "helpers", "middleware", "next", "req", "res", "signature"}),
    ),
    ("auth", frozenset({AUTH_TOKEN, "auth", "claims", "jwt", "session"})),
    (
        "ui",
        frozenset(
            {
                DESIGN_TOKEN,
                "a11y",
                "component",
                "csr",
                "frontend",
                "hydration",
                "layout",
                "ssr",
                "ui",
                "ux",
            }
        ),
    ),
    (
        "motion",
        frozenset(
            {"animation", "framer", "gsap", "keyframes", "lottie", "motion", "reduced-motion"}
        ),
    ),
    ("go", frozenset({"echo", "fiber", "gin", "go", "golang", "goroutine"})),
    ("python", frozenset({"django", "fastapi", "flask", "pydantic", "python"})),
    ("next", frozenset({"app-router", "next", "nextjs", "server-component"})),
    ("php", frozenset({"composer", "php", "php-fpm"})),
    ("laravel", frozenset({"artisan", "eloquent", "laravel", "passport", "sanctum"})),
)

# Highest tier first; the first matching row wins.
ESCALATION_TABLE: tuple[tuple[int, frozenset[str]], ...] = (
    (
        3,
        frozenset(
            {
                "cross-module",
                "debug",
                "incident",
                "migrate",
                "migration",
                "migrations",
                "outage",
                "refactor",
                "refactoring",
                "regression",
                "rewrite",
            }
        ),
    ),
    (
        2,
        frozenset(
            {
                "behavior",
                "behaviour",
                "change",
                "changes",
                "contract",
                "contracts",
                "invariant",
                "invariants",
                "modify",
                "modifying",
            }
        ),
    ),
)

DESIGN_PROFILE_TERMS = frozenset({"a11y", "accessibility", "hydration", "ui", "ux"})
LEDGER_TERMS = frozenset(
    {"migrate", "migration", "migrations", "refactor", "refactoring", "rewrite"}
)

ROUTE_DEPTH_FILES: tuple[tuple[int, str], ...] = (
    (1, "summary.md"),
    (2, "details.md"),
    (3, "deep-dive.md"),
)

_NON_TOKEN = re.compile(r"[^a-z0-9_\s-]")


@dataclass(slots=True, frozen=True)
class RoutingDecision:
    """Routes, contract domains and depth tier derived from one query."""

    tokens: tuple[str, ...]
    routes: tuple[str, ...]
    contracts: tuple[str, ...]
    escalation_level: int
    design_profile: bool
    ledger: bool

    def to_dict(self) -> dict[str, object]:
        """Return serializable routing summary."""
        return {
            "routes": list(self.routes),
            "contracts": list(self.contracts),
            "escalation_level": self.escalation_level,
        }


def tokenize(query: str) -> list[str]:
    """Lower-case, replace punctuation with spaces, keep tokens of length >= 2."""
    cleaned = _NON_TOKEN.sub(" ", query.lower())
    return [token for token in cleaned.split() if len(token) >= MIN_TOKEN_LENGTH]


def disambiguate(tokens: Iterable[str]) -> frozenset[str]:
    """Return the token set with bare token terms resolved to a ui or auth sense."""
    token_set = set(tokens)
    if token_set & AMBIGUOUS_TOKEN_TERMS:
        token_set -= AMBIGUOUS_TOKEN_TERMS
        if token_set & DESIGN_VOCABULARY:
            token_set.add(DESIGN_TOKEN)
        else:
            token_set.add(AUTH_TOKEN)
    return frozenset(token_set)


def match_table(
    table: tuple[tuple[str, frozenset[str]], ...],
    tokens: frozenset[str],
) -> tuple[str, ...]:
    """Return every tag whose keyword set intersects the tokens, in table order."""
    return tuple(tag for tag, keywords in table if keywords & tokens)


def escalation_for(tokens: frozenset[str], level: int | None = None) -> int:
    """Return the depth tier; an explicit level wins and is clamped to 1..3."""
    if level is not None:
        return max(MIN_LEVEL, min(MAX_LEVEL, level))
    for tier, keywords in ESCALATION_TABLE:
        if keywords & tokens:
            return tier
    return MIN_LEVEL


def normalize_routes(routes: Iterable[str]) -> tuple[str, ...]:
    """Drop unknown and duplicate route names, keeping table order."""
    requested = {route.strip().lower() for route in routes}
    return tuple(tag for tag, _ in ROUTE_TABLE if tag in requested)


def classify(
    query: str,
    routes: Iterable[str] | None = None,
    level: int | None = None,
) -> RoutingDecision:
    """Classify a query into routes, contract domains and an escalation tier.

    Explicit ``routes`` replace the derived routes when given.
    """
    tokens = tokenize(query)
    resolved = disambiguate(tokens)
    raw_tokens = frozenset(tokens)
    selected_routes = (
        normalize_routes(routes) if routes is not None else match_table(ROUTE_TABLE, resolved)
    )
    return RoutingDecision(
        tokens=tuple(tokens),
        routes=selected_routes,
        contracts=match_table(CONTRACT_TABLE, resolved),
        escalation_level=escalation_for(raw_tokens, level),
        design_profile="ui" in selected_routes or bool(DESIGN_PROFILE_TERMS & raw_tokens),
        ledger=bool(LEDGER_TERMS & raw_tokens),
    )


def route_files(decision: RoutingDecision) -> list[tuple[str, int, str]]:
    """Return ``(route, level, relative path)`` candidates for the decision's tier."""
    output: list[tuple[str, int, str]] = []
    for route in decision.routes:
        for depth, filename in ROUTE_DEPTH_FILES:
            if depth > decision.escalation_level:
                break
            output.append((route, depth, f"context/{route}/{filename}"))
    return output
