from __future__ import annotations

import gzip
from pathlib import Path

from ctx_index.cache.store import compressed_path, read_cache_json, write_cache_json


def test_small_value_writes_plain_file_only(tmp_path: Path) -> None:
    path = tmp_path / "cache" / "value.json"

    written = write_cache_json(path, {"b": 2, "a": 1}, compress_above_bytes=1024)

    assert written == path
    assert path.exists()
    assert not compressed_path(path).exists()
    assert path.read_text(encoding="utf-8") == '{"a":1,"b":2}'
    assert read_cache_json(path) == {"a": 1, "b": 2}


def test_value_at_threshold_switches_to_gzip_and_removes_plain(tmp_path: Path) -> None:
    path = tmp_path / "value.json"
    write_cache_json(path, {"items": []}, compress_above_bytes=1024)
    assert path.exists()

    large = {"items": ["x" * 64 for _ in range(64)]}
    written = write_cache_json(path, large, compress_above_bytes=1024)

    assert written == compressed_path(path)
    assert not path.exists()
    assert compressed_path(path).exists()
    assert read_cache_json(path) == large


def test_shrinking_value_removes_stale_gzip_sibling(tmp_path: Path) -> None:
    path = tmp_path / "value.json"
    write_cache_json(path, {"items": ["y" * 200]}, compress_above_bytes=100)
    assert compressed_path(path).exists()

    write_cache_json(path, {"items": []}, compress_above_bytes=100)

    assert path.exists()
    assert not compressed_path(path).exists()
    assert read_cache_json(path) == {"items": []}


def test_missing_or_corrupt_cache_reads_as_absent(tmp_path: Path) -> None:
    path = tmp_path / "value.json"
    assert read_cache_json(path) is None

    path.write_text("{not json", encoding="utf-8")
    assert read_cache_json(path) is None

    path.unlink()
    compressed_path(path).write_bytes(b"not gzip data")
    assert read_cache_json(path) is None


def test_plain_file_wins_over_gzip_sibling(tmp_path: Path) -> None:
    path = tmp_path / "value.json"
    path.write_text('{"form":"plain"}', encoding="utf-8")
    compressed_path(path).write_bytes(gzip.compress(b'{"form":"gzip"}'))

    assert read_cache_json(path) == {"form": "plain"}


def test_write_leaves_no_temporary_files(tmp_path: Path) -> None:
    path = tmp_path / "value.json"
    write_cache_json(path, {"a": 1})
    write_cache_json(path, {"a": 2})

    assert sorted(item.name for item in tmp_path.iterdir()) == ["value.json"]


def test_corrupt_plain_file_falls_back_to_gzip_sibling(tmp_path: Path) -> None:
    path = tmp_path / "value.json"
    path.write_text("{truncated", encoding="utf-8")
    compressed_path(path).write_bytes(gzip.compress(b'{"form":"gzip"}'))

    assert read_cache_json(path) == {"form": "gzip"}
