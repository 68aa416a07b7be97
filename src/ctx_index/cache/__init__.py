"""Cache layer: structured JSON store, discovery cache and content cache."""

from .content import (
    ContentCache,
    ContentCacheEntry,
    ScanOutcome,
    enforce_content_budget,
    run_scan,
    scan_files,
    summarize_text,
)
from .file_list import FileListCache, FileListEntry, FileListResult, list_files_with_cache
from .store import read_cache_json, write_cache_json

__all__ = [
    "ContentCache",
    "ContentCacheEntry",
    "FileListCache",
    "FileListEntry",
    "FileListResult",
    "ScanOutcome",
    "enforce_content_budget",
    "list_files_with_cache",
    "read_cache_json",
    "run_scan",
    "scan_files",
    "summarize_text",
    "write_cache_json",
]
