"""Per-file content cache with size/mtime reuse and a raw-content byte budget."""

from __future__ import annotations

import asyncio
import hashlib
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from pathlib import Path

from ctx_index.cache.store import DEFAULT_COMPRESS_ABOVE_BYTES, read_cache_json, write_cache_json

STORE_VERSION = 1
CONTENT_CACHE_NAME = "content-cache.json"
DEFAULT_BUDGET_BYTES = 8 * 1024 * 1024
DEFAULT_CACHEABLE_CONTENT_MAX_BYTES = 24 * 1024
DEFAULT_MAX_CONCURRENCY = 24
_MAX_HEADINGS = 5

DeriveFn = Callable[[str], object]


@dataclass(slots=True)
class ContentCacheEntry:
    """Cached derivation for one file; ``content`` may be evicted, ``result`` is kept."""

    size: int
    mtime_ns: int
    result: object
    content: str | None = None


@dataclass(slots=True, frozen=True)
class ScanOutcome:
    """Derived results and cache counters for one scan."""

    results: dict[str, object]
    hits: int
    misses: int
    skipped: tuple[str, ...]


@dataclass(slots=True, frozen=True)
class _FileScan:
    path: str
    size: int
    mtime_ns: int
    result: object
    content: str | None
    cache_hit: bool


class ContentCache:
    """Explicit handle over the per-file content store."""

    def __init__(
        self,
        path: Path,
        signature: str,
        entries: dict[str, ContentCacheEntry] | None = None,
    ) -> None:
        self._path = path
        self._signature = signature
        self._entries: dict[str, ContentCacheEntry] = dict(entries or {})
        self._dirty = False

    @classmethod
    def load(cls, path: Path, signature: str) -> ContentCache:
        """Load the store; a version or signature mismatch starts empty."""
        payload = read_cache_json(path)
        cache = cls(path, signature, _parse_store(payload, signature))
        if payload is not None and not cache._entries:
            cache._dirty = True
        return cache

    @property
    def signature(self) -> str:
        """Return the derivation signature entries were computed under."""
        return self._signature

    @property
    def entries(self) -> dict[str, ContentCacheEntry]:
        """Return a shallow copy of entries keyed by relative path."""
        return dict(self._entries)

    def get(self, path: str, size: int, mtime_ns: int) -> ContentCacheEntry | None:
        """Return an entry only when size and mtime match the current file."""
        entry = self._entries.get(path)
        if entry is None:
            return None
        if entry.size != size or entry.mtime_ns != mtime_ns:
            return None
        return entry

    def put(self, path: str, entry: ContentCacheEntry) -> None:
        """Insert or replace an entry."""
        self._entries[path] = entry
        self._dirty = True

    def prune(self, active: Iterable[str]) -> tuple[str, ...]:
        """Remove entries for files no longer in the active set."""
        active_set = set(active)
        removed = tuple(sorted(path for path in self._entries if path not in active_set))
        for path in removed:
            del self._entries[path]
        if removed:
            self._dirty = True
        return removed

    def enforce_budget(self, budget_bytes: int) -> tuple[str, ...]:
        """Drop raw content beyond ``budget_bytes``; derived results stay."""
        dropped = enforce_content_budget(self._entries, budget_bytes)
        if dropped:
            self._dirty = True
        return dropped

    def to_payload(self) -> dict[str, object]:
        """Return serializable store payload."""
        files: dict[str, object] = {}
        for path in sorted(self._entries):
            entry = self._entries[path]
            row: dict[str, object] = {
                "size": entry.size,
                "mtime_ns": entry.mtime_ns,
                "result": entry.result,
            }
            if entry.content is not None:
                row["content"] = entry.content
            files[path] = row
        return {"version": STORE_VERSION, "signature": self._signature, "files": files}

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
            return [f"Failed to write content cache: {error}"]
        self._dirty = False
        return []


def enforce_content_budget(
    entries: dict[str, ContentCacheEntry],
    budget_bytes: int,
) -> tuple[str, ...]:
    """Walk entries in path order, keeping raw content while it fits the budget."""
    used = 0
    dropped: list[str] = []
    for path in sorted(entries):
        entry = entries[path]
        if entry.content is None:
            continue
        size = len(entry.content.encode("utf-8"))
        if used + size <= budget_bytes:
            used += size
            continue
        entry.content = None
        dropped.append(path)
    return tuple(dropped)


async def scan_files(
    root: Path,
    files: Iterable[str],
    cache: ContentCache,
    derive: DeriveFn,
    *,
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
    cacheable_content_max_bytes: int = DEFAULT_CACHEABLE_CONTENT_MAX_BYTES,
) -> ScanOutcome:
    """Stat and read files with bounded concurrency, reusing matching cache entries.

    At most ``max_concurrency`` files are in flight; further files wait on the
    semaphore in arrival order. A failed stat or read skips that file.
    """
    if max_concurrency < 1:
        raise ValueError("max_concurrency must be >= 1")
    ordered = list(files)
    semaphore = asyncio.Semaphore(max_concurrency)

    async def scan_one(rel_path: str) -> _FileScan | None:
        async with semaphore:
            full_path = root / rel_path
            try:
                stat = await asyncio.to_thread(full_path.stat)
            except OSError:
                return None
            cached = cache.get(rel_path, stat.st_size, stat.st_mtime_ns)
            if cached is not None:
                return _FileScan(
                    path=rel_path,
                    size=stat.st_size,
                    mtime_ns=stat.st_mtime_ns,
                    result=cached.result,
                    content=cached.content,
                    cache_hit=True,
                )
            try:
                text = await asyncio.to_thread(full_path.read_text, encoding="utf-8")
            except (OSError, UnicodeDecodeError):
                return None
            return _FileScan(
                path=rel_path,
                size=stat.st_size,
                mtime_ns=stat.st_mtime_ns,
                result=derive(text),
                content=text if stat.st_size <= cacheable_content_max_bytes else None,
                cache_hit=False,
            )

    scanned = await asyncio.gather(*(scan_one(rel_path) for rel_path in ordered))

    results: dict[str, object] = {}
    skipped: list[str] = []
    hits = 0
    misses = 0
    for rel_path, item in zip(ordered, scanned, strict=True):
        if item is None:
            skipped.append(rel_path)
            continue
        results[rel_path] = item.result
        if item.cache_hit:
            hits += 1
            continue
        misses += 1
        cache.put(
            rel_path,
            ContentCacheEntry(
                size=item.size,
                mtime_ns=item.mtime_ns,
                result=item.result,
                content=item.content,
            ),
        )
    return ScanOutcome(results=results, hits=hits, misses=misses, skipped=tuple(skipped))


def run_scan(
    root: Path,
    files: Iterable[str],
    cache: ContentCache,
    derive: DeriveFn,
    *,
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
    cacheable_content_max_bytes: int = DEFAULT_CACHEABLE_CONTENT_MAX_BYTES,
) -> ScanOutcome:
    """Run :func:`scan_files` to completion from synchronous code."""
    return asyncio.run(
        scan_files(
            root,
            files,
            cache,
            derive,
            max_concurrency=max_concurrency,
            cacheable_content_max_bytes=cacheable_content_max_bytes,
        )
    )


def summarize_text(text: str) -> dict[str, object]:
    """Default derivation: short hash, line/word counts and leading markdown headings."""
    lines = text.splitlines()
    headings = [line.lstrip("#").strip() for line in lines if line.startswith("#")]
    return {
        "sha256": hashlib.sha256(text.encode("utf-8")).hexdigest()[:16],
        "lines": len(lines),
        "words": len(text.split()),
        "headings": headings[:_MAX_HEADINGS],
    }


SUMMARY_SIGNATURE = f"summarize_text:v1:{_MAX_HEADINGS}"


def _parse_store(payload: object, signature: str) -> dict[str, ContentCacheEntry]:
    if not isinstance(payload, dict):
        return {}
    if payload.get("version") != STORE_VERSION:
        return {}
    if payload.get("signature") != signature:
        return {}
    raw_files = payload.get("files")
    if not isinstance(raw_files, dict):
        return {}
    output: dict[str, ContentCacheEntry] = {}
    for path, raw in raw_files.items():
        if not isinstance(path, str) or not isinstance(raw, dict):
            continue
        size = raw.get("size")
        mtime_ns = raw.get("mtime_ns")
        if not isinstance(size, int) or not isinstance(mtime_ns, int):
            continue
        if "result" not in raw:
            continue
        content = raw.get("content")
        output[path] = ContentCacheEntry(
            size=size,
            mtime_ns=mtime_ns,
            result=raw["result"],
            content=content if isinstance(content, str) else None,
        )
    return output
