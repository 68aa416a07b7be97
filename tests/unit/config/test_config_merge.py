from __future__ import annotations

from pathlib import Path

import pytest

from ctx_index.config import (
    DEFAULT_OUTPUT_DIR_NAME,
    DEFAULT_SCAN_IGNORE,
    CliOverrides,
    load_effective_config,
)
from ctx_index.server import create_server


def _write_config(root: Path, *lines: str) -> None:
    (root / "ctx_index.toml").write_text("\n".join(lines), encoding="utf-8")


def test_defaults_without_config_file(tmp_path: Path) -> None:
    config = load_effective_config(tmp_path)

    assert config.repo_root == tmp_path.resolve()
    assert config.output_dir == tmp_path.resolve() / DEFAULT_OUTPUT_DIR_NAME
    assert config.retrieval.default_limit == 6
    assert config.retrieval.default_max_words == 1400
    assert config.cache.discovery_ttl_seconds == 30
    assert config.scan.ignore == DEFAULT_SCAN_IGNORE


def test_merge_order_defaults_then_repo_then_cli(tmp_path: Path) -> None:
    _write_config(
        tmp_path,
        "[retrieval]",
        "default_limit = 4",
        "default_max_words = 800",
        "",
        "[cache]",
        "discovery_ttl_seconds = 10",
        "",
        "[scan]",
        'include = "**/*.md"',
        'ignore = ["vendor/"]',
    )
    server = create_server(
        repo_root=str(tmp_path),
        cli_overrides=CliOverrides(default_limit=9, scan_concurrency=4),
    )

    response = server.handle_payload({"id": "req-merge", "method": "context.status", "params": {}})
    effective = response["result"]["effective_config"]

    assert effective["retrieval"]["default_limit"] == 9
    assert effective["retrieval"]["default_max_words"] == 800
    assert effective["cache"]["discovery_ttl_seconds"] == 10
    assert effective["cache"]["scan_concurrency"] == 4
    assert effective["scan"] == {"include": "**/*.md", "ignore": ["vendor/"]}


def test_output_dir_override_has_highest_precedence(tmp_path: Path) -> None:
    custom = tmp_path / "custom_out"
    server = create_server(repo_root=str(tmp_path), output_dir=str(custom))

    response = server.handle_payload({"id": "req-out", "method": "context.status", "params": {}})

    assert response["result"]["output_dir"] == str(custom.resolve())
    assert response["result"]["effective_config"]["output_dir"] == str(custom.resolve())


def test_relative_output_dir_resolves_against_repo_root(tmp_path: Path) -> None:
    config = load_effective_config(tmp_path, CliOverrides(output_dir=Path("artifacts")))

    assert config.output_dir == tmp_path.resolve() / "artifacts"


def test_invalid_value_type_raises_value_error(tmp_path: Path) -> None:
    _write_config(tmp_path, "[retrieval]", 'default_limit = "six"')

    with pytest.raises(ValueError, match="retrieval.default_limit"):
        create_server(repo_root=str(tmp_path))


def test_value_above_cap_raises_value_error(tmp_path: Path) -> None:
    _write_config(tmp_path, "[retrieval]", "default_limit = 51")

    with pytest.raises(ValueError, match="<= 50"):
        load_effective_config(tmp_path)


def test_invalid_section_type_raises_value_error(tmp_path: Path) -> None:
    _write_config(tmp_path, 'cache = "not-a-table"')

    with pytest.raises(ValueError, match="section 'cache'"):
        load_effective_config(tmp_path)


def test_invalid_cli_override_raises_value_error(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="overrides.scan_concurrency"):
        load_effective_config(tmp_path, CliOverrides(scan_concurrency=0))


def test_bool_is_not_accepted_as_integer(tmp_path: Path) -> None:
    _write_config(tmp_path, "[cache]", "scan_concurrency = true")

    with pytest.raises(ValueError, match="cache.scan_concurrency"):
        load_effective_config(tmp_path)


def test_scan_ignore_must_be_list_of_strings(tmp_path: Path) -> None:
    _write_config(tmp_path, "[scan]", "ignore = [1, 2]")

    with pytest.raises(ValueError, match="scan.ignore"):
        load_effective_config(tmp_path)
