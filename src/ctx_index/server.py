"""STDIO tool server entrypoint."""

from __future__ import annotations

import argparse
import json
import sys
import time
from dataclasses import dataclass
from pathlib import Path
from typing import TextIO

from ctx_index.cache.content import (
    CONTENT_CACHE_NAME,
    SUMMARY_SIGNATURE,
    ContentCache,
    run_scan,
    summarize_text,
)
from ctx_index.cache.file_list import FILE_LIST_CACHE_NAME, FileListCache, list_files_with_cache
from ctx_index.config import CliOverrides, ServerConfig, load_effective_config
from ctx_index.index import IndexManager, SectionDeclaration, StructuralIndexError
from ctx_index.logging import AuditEvent, JsonlAuditLogger, sanitize_arguments, utc_timestamp
from ctx_index.retrieval import RetrievalError, RetrievalRequest, render_markdown, retrieve
from ctx_index.tools.builtin import register_builtin_tools
from ctx_index.tools.registry import ToolDispatchError, ToolRegistry

AUDIT_LOG_NAME = "audit.jsonl"
CACHE_DIR_NAME = "cache"


@dataclass(slots=True, frozen=True)
class Request:
    """Normalized incoming request."""

    request_id: str
    method: str
    params: dict[str, object]


def build_arg_parser() -> argparse.ArgumentParser:
    """Build argument parser for server startup configuration."""
    parser = argparse.ArgumentParser(prog="ctx-index")
    parser.add_argument("--repo-root", required=False, default=".")
    parser.add_argument("--output-dir", required=False, default=None)
    parser.add_argument("--default-limit", type=int, required=False, default=None)
    parser.add_argument("--default-max-words", type=int, required=False, default=None)
    parser.add_argument("--discovery-ttl-seconds", type=int, required=False, default=None)
    parser.add_argument("--scan-concurrency", type=int, required=False, default=None)
    return parser


class StdioServer:
    """Minimal deterministic STDIO server for tool routing."""

    def __init__(self, config: ServerConfig) -> None:
        self._repo_root = config.repo_root
        self._output_dir = config.output_dir
        self._config = config
        self._audit_logger = JsonlAuditLogger(path=self._output_dir / AUDIT_LOG_NAME)
        self._index_manager = IndexManager(self._output_dir)
        self._registry = ToolRegistry()
        register_builtin_tools(
            self._registry,
            config=self._config,
            read_index_status=self._index_manager.status,
            build_index=self._build_index,
            retrieve_context=self._retrieve,
            scan_files=self._scan_files,
            read_audit_entries=self._audit_logger.read,
        )
        self._fallback_request_counter = 0

    @property
    def config(self) -> ServerConfig:
        """Return effective configuration."""
        return self._config

    def serve(self, in_stream: TextIO, out_stream: TextIO) -> None:
        """Process JSON-line requests from stdin and write JSON-line responses."""
        for raw_line in in_stream:
            line = raw_line.strip()
            if not line:
                continue
            response = self.handle_json_line(line)
            out_stream.write(f"{json.dumps(response, sort_keys=True)}\n")
            out_stream.flush()

    def handle_json_line(self, raw_line: str) -> dict[str, object]:
        """Handle a single JSON-line request."""
        try:
            payload = json.loads(raw_line)
        except json.JSONDecodeError:
            request_id = self.next_request_id()
            response = self.error_response(
                request_id=request_id,
                code="INVALID_JSON",
                message="Request must be valid JSON.",
            )
            self.log_request(
                request_id=request_id,
                tool_name="invalid_json",
                arguments={"raw_line_length": len(raw_line)},
                response=response,
            )
            return response
        return self.handle_payload(payload)

    def handle_payload(self, payload: object) -> dict[str, object]:
        """Validate and dispatch a parsed payload."""
        started = time.perf_counter()
        parsed = self.parse_request(payload)
        if isinstance(parsed, dict):
            request_id_value = parsed.get("request_id")
            request_id = (
                request_id_value if isinstance(request_id_value, str) else self.next_request_id()
            )
            self.log_request(
                request_id=request_id,
                tool_name="invalid_request",
                arguments={},
                response=parsed,
            )
            return parsed

        request = parsed
        if request.method == "tools/list":
            return self.success_response(
                request_id=request.request_id,
                result={"tools": self._registry.describe()},
            )

        tool_name: str
        arguments: dict[str, object]
        if request.method == "tools/call":
            tool_name_value = request.params.get("name")
            arguments_value = request.params.get("arguments", {})
            if not isinstance(tool_name_value, str) or not tool_name_value:
                return self.error_response(
                    request_id=request.request_id,
                    code="INVALID_PARAMS",
                    message="tools/call params.name must be a non-empty string.",
                )
            if not isinstance(arguments_value, dict):
                return self.error_response(
                    request_id=request.request_id,
                    code="INVALID_PARAMS",
                    message="tools/call params.arguments must be an object.",
                )
            tool_name = tool_name_value
            arguments = arguments_value
        else:
            tool_name = request.method
            arguments = request.params

        try:
            result = self._registry.dispatch(name=tool_name, arguments=arguments)
        except ToolDispatchError as error:
            response = self.error_response(
                request_id=request.request_id,
                code=error.code,
                message=error.message,
            )
        except StructuralIndexError as error:
            location = f" ({error.section_id})" if error.section_id else ""
            response = self.error_response(
                request_id=request.request_id,
                code="STRUCTURAL_ERROR",
                message=f"Section index build refused: {error.reason}{location}.",
            )
        except RetrievalError as error:
            response = self.error_response(
                request_id=request.request_id,
                code=error.code,
                message=f"{error.message} Run context.build_index first.",
            )
        except Exception:
            response = self.error_response(
                request_id=request.request_id,
                code="INTERNAL_ERROR",
                message="Unhandled server error while executing tool.",
            )
        else:
            response = self.success_response(
                request_id=request.request_id,
                result=result,
                warnings=_extract_result_warnings(result),
            )
        self.log_request(
            request_id=request.request_id,
            tool_name=tool_name,
            arguments=arguments,
            response=response,
            duration_ms=int((time.perf_counter() - started) * 1000),
        )
        return response

    def parse_request(self, payload: object) -> Request | dict[str, object]:
        """Validate request payload and return normalized Request."""
        if not isinstance(payload, dict):
            return self.error_response(
                request_id=self.next_request_id(),
                code="INVALID_REQUEST",
                message="Request must be an object.",
            )

        request_id = self.extract_request_id(payload.get("id"))
        method = payload.get("method")
        params = payload.get("params", {})

        if not isinstance(method, str) or not method:
            return self.error_response(
                request_id=request_id,
                code="INVALID_REQUEST",
                message="Request method must be a non-empty string.",
            )
        if not isinstance(params, dict):
            return self.error_response(
                request_id=request_id,
                code="INVALID_PARAMS",
                message="Request params must be an object.",
            )

        return Request(request_id=request_id, method=method, params=params)

    def extract_request_id(self, request_id: object) -> str:
        """Extract request ID from payload or synthesize deterministic fallback."""
        if isinstance(request_id, str) and request_id:
            return request_id
        if isinstance(request_id, int) and not isinstance(request_id, bool):
            return str(request_id)
        return self.next_request_id()

    def next_request_id(self) -> str:
        """Generate deterministic fallback request IDs for invalid/missing IDs."""
        self._fallback_request_counter += 1
        return f"req-{self._fallback_request_counter:06d}"

    @staticmethod
    def success_response(
        request_id: str,
        result: dict[str, object],
        warnings: list[str] | None = None,
    ) -> dict[str, object]:
        """Build success envelope."""
        return {
            "request_id": request_id,
            "ok": True,
            "result": result,
            "warnings": warnings or [],
            "blocked": False,
        }

    @staticmethod
    def error_response(request_id: str, code: str, message: str) -> dict[str, object]:
        """Build explicit error envelope."""
        return {
            "request_id": request_id,
            "ok": False,
            "result": {},
            "warnings": [],
            "blocked": False,
            "error": {"code": code, "message": message},
        }

    def log_request(
        self,
        request_id: str,
        tool_name: str,
        arguments: dict[str, object],
        response: dict[str, object],
        duration_ms: int = 0,
    ) -> None:
        """Log one sanitized request event."""
        error_payload = response.get("error")
        error_code: str | None = None
        if isinstance(error_payload, dict):
            code_value = error_payload.get("code")
            if isinstance(code_value, str):
                error_code = code_value
        warnings = response.get("warnings")
        event = AuditEvent(
            timestamp=utc_timestamp(),
            request_id=request_id,
            tool=tool_name,
            ok=bool(response.get("ok", False)),
            error_code=error_code,
            warning_count=len(warnings) if isinstance(warnings, list) else 0,
            duration_ms=duration_ms,
            metadata=sanitize_arguments(arguments),
        )
        self._audit_logger.append(event)

    def _build_index(
        self,
        declarations: list[SectionDeclaration],
        metadata: dict[str, object],
    ) -> dict[str, object]:
        return self._index_manager.build(declarations, metadata)

    def _retrieve(self, request: RetrievalRequest) -> dict[str, object]:
        result = retrieve(
            self._output_dir,
            request,
            stage1_keep=self._config.retrieval.stage1_keep,
            state_window=self._config.retrieval.state_window,
        )
        if request.output_format == "markdown":
            return {
                "query": result.query,
                "format": "markdown",
                "content": render_markdown(result),
                "__warnings__": list(result.warnings),
            }
        payload = result.to_dict()
        payload["format"] = "json"
        payload["__warnings__"] = list(result.warnings)
        return payload

    def _scan_files(
        self,
        include: str | None,
        ignore: tuple[str, ...] | None,
    ) -> dict[str, object]:
        started = time.perf_counter()
        cache_config = self._config.cache
        cache_dir = self._output_dir / CACHE_DIR_NAME
        include_pattern = include or self._config.scan.include
        ignore_patterns = tuple(ignore) if ignore is not None else self._config.scan.ignore
        internal = self._internal_ignore_pattern()
        if internal is not None and internal not in ignore_patterns:
            ignore_patterns = (*ignore_patterns, internal)

        file_cache = FileListCache.load(
            cache_dir / FILE_LIST_CACHE_NAME,
            ttl_seconds=cache_config.discovery_ttl_seconds,
            max_entries=cache_config.discovery_max_entries,
        )
        listing = list_files_with_cache(
            file_cache, self._repo_root, include_pattern, ignore_patterns
        )

        content_cache = ContentCache.load(cache_dir / CONTENT_CACHE_NAME, SUMMARY_SIGNATURE)
        outcome = run_scan(
            self._repo_root,
            listing.files,
            content_cache,
            summarize_text,
            max_concurrency=cache_config.scan_concurrency,
            cacheable_content_max_bytes=cache_config.cacheable_content_max_bytes,
        )
        pruned = content_cache.prune(listing.files)
        evicted = content_cache.enforce_budget(cache_config.content_budget_bytes)

        warnings = file_cache.persist(compress_above_bytes=cache_config.compress_above_bytes)
        warnings.extend(
            content_cache.persist(compress_above_bytes=cache_config.compress_above_bytes)
        )
        warnings.extend(f"Skipped unreadable file: {path}" for path in outcome.skipped)
        return {
            "include": include_pattern,
            "ignore": list(ignore_patterns),
            "file_count": len(listing.files),
            "discovery_cache_hit": listing.cache_hit,
            "content_cache": {
                "hits": outcome.hits,
                "misses": outcome.misses,
                "skipped": len(outcome.skipped),
                "pruned": len(pruned),
                "content_evicted": len(evicted),
            },
            "files": [
                {"path": path, "summary": outcome.results[path]}
                for path in listing.files
                if path in outcome.results
            ],
            "duration_ms": int((time.perf_counter() - started) * 1000),
            "__warnings__": warnings,
        }

    def _internal_ignore_pattern(self) -> str | None:
        if not self._output_dir.is_relative_to(self._repo_root):
            return None
        relative = self._output_dir.relative_to(self._repo_root).as_posix()
        if relative == ".":
            return None
        return f"/{relative}/"


def create_server(
    repo_root: str,
    output_dir: str | None = None,
    cli_overrides: CliOverrides | None = None,
) -> StdioServer:
    """Create a configured STDIO server instance."""
    overrides = cli_overrides or CliOverrides()
    if output_dir is not None:
        overrides = CliOverrides(
            output_dir=Path(output_dir).resolve(),
            default_limit=overrides.default_limit,
            default_max_words=overrides.default_max_words,
            discovery_ttl_seconds=overrides.discovery_ttl_seconds,
            scan_concurrency=overrides.scan_concurrency,
        )
    config = load_effective_config(repo_root=Path(repo_root).resolve(), overrides=overrides)
    return StdioServer(config=config)


def main(argv: list[str] | None = None) -> int:
    """Entrypoint for the context index server process."""
    parser = build_arg_parser()
    args = parser.parse_args(argv)
    overrides = CliOverrides(
        output_dir=Path(args.output_dir).resolve() if args.output_dir is not None else None,
        default_limit=args.default_limit,
        default_max_words=args.default_max_words,
        discovery_ttl_seconds=args.discovery_ttl_seconds,
        scan_concurrency=args.scan_concurrency,
    )
    server = create_server(repo_root=args.repo_root, cli_overrides=overrides)
    server.serve(in_stream=sys.stdin, out_stream=sys.stdout)
    return 0


def _extract_result_warnings(result: dict[str, object]) -> list[str]:
    raw = result.pop("__warnings__", None)
    if not isinstance(raw, list):
        return []
    warnings: list[str] = []
    for item in raw:
        if isinstance(item, str):
            warnings.append(item)
    return warnings


if __name__ == "__main__":
    raise SystemExit(main())
