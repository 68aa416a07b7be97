"""File discovery cache with TTL and directory-mtime staleness checks."""

from __future__ import annotations

import hashlib
import os
import re
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from pathlib import Path

import pathspec

from ctx_index.cache.store import DEFAULT_COMPRESS_ABOVE_BYTES, read_cache_json, write_cache_json

STORE_VERSION = 2
DEFAULT_TTL_SECONDS = 30
DEFAULT_MAX_ENTRIES = 16
FILE_LIST_CACHE_NAME = "file-list.json"

_BRACE_PATTERN = re.compile(r"\{([^{}]*)\}")

Clock = Callable[[], int]
WalkFn = Callable[[Path, str, tuple[str, ...]], list[str]]


@dataclass(slots=True, frozen=True)
class FileListEntry:
    """One cached discovery result with its directory snapshot."""

    created_at_ms: int
    files: tuple[str, ...]
    dir_mtimes: dict[str, int]


@dataclass(slots=True, frozen=True)
class FileListResult:
    """Files returned by a cached discovery pass."""

    files: tuple[str, ...]
    cache_hit: bool


def wall_clock_ms() -> int:
    """Return current wall-clock time in milliseconds."""
    return time.time_ns() // 1_000_000


def cache_key(root: Path, include: str, ignore: Iterable[str]) -> str:
    """Build a stable key from root, include pattern and sorted ignore set."""
    stable = f"{root.resolve().as_posix()}::{include}::{','.join(sorted(set(ignore)))}"
    return hashlib.sha256(stable.encode("utf-8")).hexdigest()[:16]


class FileListCache:
    """Explicit handle over the on-disk discovery store.

    Load once at operation start, :meth:`persist` once at the end.
    """

    def __init__(
        self,
        path: Path,
        entries: dict[str, FileListEntry] | None = None,
        *,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        clock: Clock = wall_clock_ms,
    ) -> None:
        self._path = path
        self._entries: dict[str, FileListEntry] = dict(entries or {})
        self._ttl_ms = ttl_seconds * 1000
        self._max_entries = max_entries
        self._clock = clock
        self._dirty = False

    @classmethod
    def load(
        cls,
        path: Path,
        *,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        clock: Clock = wall_clock_ms,
    ) -> FileListCache:
        """Load the store, treating any unreadable or foreign-version file as empty."""
        return cls(
            path,
            _parse_store(read_cache_json(path)),
            ttl_seconds=ttl_seconds,
            max_entries=max_entries,
            clock=clock,
        )

    @property
    def path(self) -> Path:
        """Return on-disk store path."""
        return self._path

    @property
    def dirty(self) -> bool:
        """Return True when the handle holds unsaved changes."""
        return self._dirty

    def keys(self) -> tuple[str, ...]:
        """Return cached keys in deterministic order."""
        return tuple(sorted(self._entries))

    def entry(self, key: str) -> FileListEntry | None:
        """Return a raw entry by key."""
        return self._entries.get(key)

    def lookup(self, root: Path, include: str, ignore: Iterable[str]) -> tuple[str, ...] | None:
        """Return cached files when the entry is within TTL and its snapshot is fresh."""
        entry = self._entries.get(cache_key(root, include, ignore))
        if entry is None:
            return None
        if self._clock() - entry.created_at_ms > self._ttl_ms:
            return None
        if not is_snapshot_fresh(root, entry.dir_mtimes):
            return None
        return entry.files

    def store(
        self,
        root: Path,
        include: str,
        ignore: Iterable[str],
        files: Iterable[str],
    ) -> FileListEntry:
        """Record a fresh walk result and retain only the most recent entries."""
        ordered = tuple(sorted(files))
        entry = FileListEntry(
            created_at_ms=self._clock(),
            files=ordered,
            dir_mtimes=snapshot_dir_mtimes(root, ordered),
        )
        self._entries[cache_key(root, include, ignore)] = entry
        newest = sorted(
            self._entries.items(),
            key=lambda item: (-item[1].created_at_ms, item[0]),
        )
        self._entries = dict(newest[: self._max_entries])
        self._dirty = True
        return entry

    def to_payload(self) -> dict[str, object]:
        """Return serializable store payload."""
        return {
            "version": STORE_VERSION,
            "entries": {
                key: {
                    "created_at_ms": entry.created_at_ms,
                    "files": list(entry.files),
                    "dir_mtimes": dict(sorted(entry.dir_mtimes.items())),
                }
                for key, entry in sorted(self._entries.items())
            },
        }

    def persist(self, *, compress_above_bytes: int = DEFAULT_COMPRESS_ABOVE_BYTES) -> list[str]:
        """Write the store if it changed; return warnings instead of raising."""
        if not self._dirty:
            return []
        try:
            write_cache_json(
                self._path,
                self.to_payload(),
                compress_above_bytes=compress_above_bytes,
            )
        except (OSError, TypeError, ValueError) as error:
            return [f"Failed to write file list cache: {error}"]
        self._dirty = False
        return []


def list_files_with_cache(
    cache: FileListCache,
    root: Path,
    include: str,
    ignore: Iterable[str],
    walk: WalkFn | None = None,
) -> FileListResult:
    """Return cached files on a hit, otherwise walk the tree and update the handle."""
    ignore_tuple = tuple(ignore)
    cached = cache.lookup(root, include, ignore_tuple)
    if cached is not None:
        return FileListResult(files=cached, cache_hit=True)
    walker = walk or walk_files
    entry = cache.store(root, include, ignore_tuple, walker(root, include, ignore_tuple))
    return FileListResult(files=entry.files, cache_hit=False)


def walk_files(root: Path, include: str, ignore: tuple[str, ...]) -> list[str]:
    """Walk tree deterministically, pruning ignored directories."""
    resolved = root.resolve()
    include_spec = pathspec.PathSpec.from_lines("gitwildmatch", expand_braces(include))
    ignore_spec = pathspec.PathSpec.from_lines("gitwildmatch", ignore)
    output: list[str] = []
    stack: list[Path] = [resolved]
    while stack:
        current = stack.pop()
        try:
            with os.scandir(current) as entries:
                ordered_entries = sorted(entries, key=lambda item: item.name)
        except OSError:
            continue
        for entry in reversed(ordered_entries):
            full_path = Path(entry.path)
            relative = full_path.relative_to(resolved).as_posix()
            if entry.is_dir(follow_symlinks=False):
                if ignore_spec.match_file(f"{relative}/"):
                    continue
                stack.append(full_path)
                continue
            if not entry.is_file(follow_symlinks=False):
                continue
            if ignore_spec.match_file(relative):
                continue
            if not include_spec.match_file(relative):
                continue
            output.append(relative)
    output.sort()
    return output


def expand_braces(pattern: str) -> list[str]:
    """Expand one ``{a,b}`` group into alternative patterns."""
    match = _BRACE_PATTERN.search(pattern)
    if match is None:
        return [pattern]
    head = pattern[: match.start()]
    tail = pattern[match.end() :]
    return [f"{head}{option.strip()}{tail}" for option in match.group(1).split(",")]


def snapshot_dir_mtimes(root: Path, files: Iterable[str]) -> dict[str, int]:
    """Record mtimes for the root and every directory holding a listed file."""
    dirs = {"."}
    for file in files:
        parent = Path(file).parent.as_posix()
        dirs.add(parent or ".")
    output: dict[str, int] = {}
    for rel_dir in sorted(dirs):
        target = root if rel_dir == "." else root / rel_dir
        try:
            output[rel_dir] = target.stat().st_mtime_ns
        except OSError:
            continue
    return output


def is_snapshot_fresh(root: Path, dir_mtimes: dict[str, int]) -> bool:
    """Return True when every recorded directory still has its recorded mtime."""
    if not dir_mtimes:
        return False
    for rel_dir, recorded in dir_mtimes.items():
        target = root if rel_dir == "." else root / rel_dir
        try:
            current = target.stat().st_mtime_ns
        except OSError:
            return False
        if current != recorded:
            return False
    return True


def _parse_store(payload: object) -> dict[str, FileListEntry]:
    if not isinstance(payload, dict):
        return {}
    if payload.get("version") != STORE_VERSION:
        return {}
    raw_entries = payload.get("entries")
    if not isinstance(raw_entries, dict):
        return {}
    output: dict[str, FileListEntry] = {}
    for key, raw in raw_entries.items():
        if not isinstance(key, str) or not isinstance(raw, dict):
            continue
        created_at_ms = raw.get("created_at_ms")
        files = raw.get("files")
        dir_mtimes = raw.get("dir_mtimes")
        if not isinstance(created_at_ms, int):
            continue
        if not isinstance(files, list) or not all(isinstance(item, str) for item in files):
            continue
        if not isinstance(dir_mtimes, dict):
            continue
        mtimes = {
            str(rel_dir): value
            for rel_dir, value in dir_mtimes.items()
            if isinstance(value, int)
        }
        output[key] = FileListEntry(
            created_at_ms=created_at_ms,
            files=tuple(files),
            dir_mtimes=mtimes,
        )
    return output
