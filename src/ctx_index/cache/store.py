"""Structured JSON cache files with atomic replace and gzip siblings."""

from __future__ import annotations

import gzip
import json
import os
import time
from pathlib import Path

DEFAULT_COMPRESS_ABOVE_BYTES = 512 * 1024
GZIP_SUFFIX = ".gz"


def compressed_path(path: Path) -> Path:
    """Return the gzip sibling for a plain cache path."""
    return path.with_name(path.name + GZIP_SUFFIX)


def read_cache_json(path: Path) -> object | None:
    """Read a cache value, trying the plain file first and then the gzip sibling.

    A corrupt plain file falls through to the gzip sibling. Anything missing,
    unreadable, or corrupt reads as ``None``.
    """
    raw = _try_read(path)
    if raw is not None:
        try:
            return json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError):
            pass

    packed = _try_read(compressed_path(path))
    if packed is None:
        return None
    try:
        return json.loads(gzip.decompress(packed).decode("utf-8"))
    except (OSError, EOFError, UnicodeDecodeError, json.JSONDecodeError):
        return None


def write_cache_json(
    path: Path,
    value: object,
    *,
    compress_above_bytes: int = DEFAULT_COMPRESS_ABOVE_BYTES,
    pretty: bool = False,
) -> Path:
    """Serialize ``value`` atomically and remove whichever sibling form is stale.

    Returns the path that now holds the value. Raises ``OSError`` on write failure;
    callers treat that as a cache miss on the next run.
    """
    if pretty:
        text = json.dumps(value, sort_keys=True, indent=2)
    else:
        text = json.dumps(value, sort_keys=True, separators=(",", ":"))
    payload = text.encode("utf-8")
    path.parent.mkdir(parents=True, exist_ok=True)

    gz_path = compressed_path(path)
    if len(payload) >= compress_above_bytes:
        atomic_write_bytes(gz_path, gzip.compress(payload, mtime=0))
        _remove_if_present(path)
        return gz_path

    atomic_write_bytes(path, payload)
    _remove_if_present(gz_path)
    return path


def atomic_write_bytes(path: Path, data: bytes) -> None:
    """Write to a unique temp path, then rename over the final path."""
    tmp = path.with_name(f"{path.name}.tmp-{os.getpid()}-{time.monotonic_ns()}")
    try:
        with tmp.open("wb") as handle:
            handle.write(data)
        tmp.replace(path)
    except OSError:
        _remove_if_present(tmp)
        raise


def atomic_write_text(path: Path, text: str) -> None:
    """UTF-8 variant of :func:`atomic_write_bytes`."""
    atomic_write_bytes(path, text.encode("utf-8"))


def _try_read(path: Path) -> bytes | None:
    try:
        return path.read_bytes()
    except OSError:
        return None


def _remove_if_present(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        return
