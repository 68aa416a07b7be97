"""Configuration loading and deterministic merge order."""

from __future__ import annotations

import tomllib
from dataclasses import dataclass
from pathlib import Path

MAX_LIMIT_CAP = 50
MAX_WORDS_CAP = 50_000
STAGE1_KEEP_CAP = 500
STATE_WINDOW_CAP = 500
DISCOVERY_TTL_SECONDS_CAP = 24 * 60 * 60
DISCOVERY_MAX_ENTRIES_CAP = 256
CONTENT_BUDGET_BYTES_CAP = 256 * 1024 * 1024
SCAN_CONCURRENCY_CAP = 256

DEFAULT_OUTPUT_DIR_NAME = ".ctx_index"
DEFAULT_SCAN_INCLUDE = "**/*.{md,py,ts,tsx,js,jsx,go,rs,java,rb,php,sql}"
DEFAULT_SCAN_IGNORE = (
    ".git/",
    "node_modules/",
    "__pycache__/",
    ".venv/",
    "dist/",
    "build/",
    f"{DEFAULT_OUTPUT_DIR_NAME}/",
)


@dataclass(slots=True, frozen=True)
class RetrievalConfig:
    """Retrieval defaults and ranking bounds."""

    default_limit: int = 6
    default_max_words: int = 1400
    stage1_keep: int = 24
    state_window: int = 20


@dataclass(slots=True, frozen=True)
class CacheConfig:
    """Cache tuning for discovery, structured and content caches."""

    discovery_ttl_seconds: int = 30
    discovery_max_entries: int = 16
    compress_above_bytes: int = 512 * 1024
    content_budget_bytes: int = 8 * 1024 * 1024
    cacheable_content_max_bytes: int = 24 * 1024
    scan_concurrency: int = 24


@dataclass(slots=True, frozen=True)
class ScanConfig:
    """Default file discovery patterns."""

    include: str = DEFAULT_SCAN_INCLUDE
    ignore: tuple[str, ...] = DEFAULT_SCAN_IGNORE


@dataclass(slots=True, frozen=True)
class ServerConfig:
    """Fully merged server configuration."""

    repo_root: Path
    output_dir: Path
    retrieval: RetrievalConfig
    cache: CacheConfig
    scan: ScanConfig

    def to_public_dict(self) -> dict[str, object]:
        """Return serializable config snapshot for tool responses."""
        return {
            "repo_root": str(self.repo_root),
            "output_dir": str(self.output_dir),
            "retrieval": {
                "default_limit": self.retrieval.default_limit,
                "default_max_words": self.retrieval.default_max_words,
                "stage1_keep": self.retrieval.stage1_keep,
                "state_window": self.retrieval.state_window,
            },
            "cache": {
                "discovery_ttl_seconds": self.cache.discovery_ttl_seconds,
                "discovery_max_entries": self.cache.discovery_max_entries,
                "compress_above_bytes": self.cache.compress_above_bytes,
                "content_budget_bytes": self.cache.content_budget_bytes,
                "cacheable_content_max_bytes": self.cache.cacheable_content_max_bytes,
                "scan_concurrency": self.cache.scan_concurrency,
            },
            "scan": {
                "include": self.scan.include,
                "ignore": list(self.scan.ignore),
            },
        }


@dataclass(slots=True, frozen=True)
class CliOverrides:
    """Optional startup overrides applied at highest precedence."""

    output_dir: Path | None = None
    default_limit: int | None = None
    default_max_words: int | None = None
    discovery_ttl_seconds: int | None = None
    scan_concurrency: int | None = None


def default_config(repo_root: Path) -> ServerConfig:
    """Build default config for a given repository root."""
    resolved_root = repo_root.resolve()
    return ServerConfig(
        repo_root=resolved_root,
        output_dir=resolved_root / DEFAULT_OUTPUT_DIR_NAME,
        retrieval=RetrievalConfig(),
        cache=CacheConfig(),
        scan=ScanConfig(),
    )


def load_repo_config_file(repo_root: Path) -> dict[str, object]:
    """Load optional ctx_index.toml from repo root."""
    config_path = repo_root / "ctx_index.toml"
    if not config_path.exists():
        return {}
    with config_path.open("rb") as handle:
        payload = tomllib.load(handle)
    if not isinstance(payload, dict):
        raise ValueError("ctx_index.toml must contain a top-level table.")
    return payload


def _get_table(payload: dict[str, object], key: str) -> dict[str, object]:
    value = payload.get(key, {})
    if not isinstance(value, dict):
        raise ValueError(f"Config section '{key}' must be a table.")
    return value


def _tuple_of_strings(value: object, section: str, field: str) -> tuple[str, ...]:
    if not isinstance(value, list):
        raise ValueError(f"Config field '{section}.{field}' must be a list of strings.")
    output: list[str] = []
    for item in value:
        if not isinstance(item, str):
            raise ValueError(f"Config field '{section}.{field}' must contain only strings.")
        output.append(item)
    return tuple(output)


def merge_config(
    base: ServerConfig, repo_payload: dict[str, object], overrides: CliOverrides
) -> ServerConfig:
    """Merge defaults, repo config, then CLI/startup overrides."""
    retrieval_payload = _get_table(repo_payload, "retrieval")
    cache_payload = _get_table(repo_payload, "cache")
    scan_payload = _get_table(repo_payload, "scan")

    retrieval = RetrievalConfig(
        default_limit=_optional_positive_int_with_cap(
            retrieval_payload.get("default_limit"),
            "retrieval.default_limit",
            base.retrieval.default_limit,
            MAX_LIMIT_CAP,
        ),
        default_max_words=_optional_positive_int_with_cap(
            retrieval_payload.get("default_max_words"),
            "retrieval.default_max_words",
            base.retrieval.default_max_words,
            MAX_WORDS_CAP,
        ),
        stage1_keep=_optional_positive_int_with_cap(
            retrieval_payload.get("stage1_keep"),
            "retrieval.stage1_keep",
            base.retrieval.stage1_keep,
            STAGE1_KEEP_CAP,
        ),
        state_window=_optional_positive_int_with_cap(
            retrieval_payload.get("state_window"),
            "retrieval.state_window",
            base.retrieval.state_window,
            STATE_WINDOW_CAP,
        ),
    )
    cache = CacheConfig(
        discovery_ttl_seconds=_optional_positive_int_with_cap(
            cache_payload.get("discovery_ttl_seconds"),
            "cache.discovery_ttl_seconds",
            base.cache.discovery_ttl_seconds,
            DISCOVERY_TTL_SECONDS_CAP,
        ),
        discovery_max_entries=_optional_positive_int_with_cap(
            cache_payload.get("discovery_max_entries"),
            "cache.discovery_max_entries",
            base.cache.discovery_max_entries,
            DISCOVERY_MAX_ENTRIES_CAP,
        ),
        compress_above_bytes=_optional_positive_int(
            cache_payload.get("compress_above_bytes"),
            "cache.compress_above_bytes",
            base.cache.compress_above_bytes,
        ),
        content_budget_bytes=_optional_positive_int_with_cap(
            cache_payload.get("content_budget_bytes"),
            "cache.content_budget_bytes",
            base.cache.content_budget_bytes,
            CONTENT_BUDGET_BYTES_CAP,
        ),
        cacheable_content_max_bytes=_optional_positive_int(
            cache_payload.get("cacheable_content_max_bytes"),
            "cache.cacheable_content_max_bytes",
            base.cache.cacheable_content_max_bytes,
        ),
        scan_concurrency=_optional_positive_int_with_cap(
            cache_payload.get("scan_concurrency"),
            "cache.scan_concurrency",
            base.cache.scan_concurrency,
            SCAN_CONCURRENCY_CAP,
        ),
    )

    include = base.scan.include
    if "include" in scan_payload:
        raw_include = scan_payload["include"]
        if not isinstance(raw_include, str) or not raw_include.strip():
            raise ValueError("Config field 'scan.include' must be a non-empty string.")
        include = raw_include
    ignore = base.scan.ignore
    if "ignore" in scan_payload:
        ignore = _tuple_of_strings(scan_payload["ignore"], "scan", "ignore")

    merged = ServerConfig(
        repo_root=base.repo_root,
        output_dir=base.output_dir,
        retrieval=retrieval,
        cache=cache,
        scan=ScanConfig(include=include, ignore=ignore),
    )
    return apply_cli_overrides(merged, overrides)


def apply_cli_overrides(config: ServerConfig, overrides: CliOverrides) -> ServerConfig:
    """Apply startup overrides at highest precedence."""
    retrieval = RetrievalConfig(
        default_limit=_optional_positive_int_with_cap(
            overrides.default_limit,
            "overrides.default_limit",
            config.retrieval.default_limit,
            MAX_LIMIT_CAP,
        ),
        default_max_words=_optional_positive_int_with_cap(
            overrides.default_max_words,
            "overrides.default_max_words",
            config.retrieval.default_max_words,
            MAX_WORDS_CAP,
        ),
        stage1_keep=config.retrieval.stage1_keep,
        state_window=config.retrieval.state_window,
    )
    cache = CacheConfig(
        discovery_ttl_seconds=_optional_positive_int_with_cap(
            overrides.discovery_ttl_seconds,
            "overrides.discovery_ttl_seconds",
            config.cache.discovery_ttl_seconds,
            DISCOVERY_TTL_SECONDS_CAP,
        ),
        discovery_max_entries=config.cache.discovery_max_entries,
        compress_above_bytes=config.cache.compress_above_bytes,
        content_budget_bytes=config.cache.content_budget_bytes,
        cacheable_content_max_bytes=config.cache.cacheable_content_max_bytes,
        scan_concurrency=_optional_positive_int_with_cap(
            overrides.scan_concurrency,
            "overrides.scan_concurrency",
            config.cache.scan_concurrency,
            SCAN_CONCURRENCY_CAP,
        ),
    )
    output_dir = overrides.output_dir or config.output_dir
    if not output_dir.is_absolute():
        output_dir = config.repo_root / output_dir
    return ServerConfig(
        repo_root=config.repo_root,
        output_dir=output_dir.resolve(),
        retrieval=retrieval,
        cache=cache,
        scan=config.scan,
    )


def load_effective_config(repo_root: Path, overrides: CliOverrides | None = None) -> ServerConfig:
    """Load effective config using merge order defaults -> repo config -> overrides."""
    resolved_root = repo_root.resolve()
    base = default_config(resolved_root)
    payload = load_repo_config_file(resolved_root)
    return merge_config(base, payload, overrides or CliOverrides())


def _optional_positive_int(value: object, name: str, default: int) -> int:
    return _optional_positive_int_with_cap(value, name, default, cap=None)


def _optional_positive_int_with_cap(
    value: object,
    name: str,
    default: int,
    cap: int | None,
) -> int:
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ValueError(f"Config field '{name}' must be a positive integer.")
    if cap is not None and value > cap:
        raise ValueError(f"Config field '{name}' must be <= {cap}.")
    return value
