"""Built-in context tools."""

from __future__ import annotations

import re
from collections.abc import Callable

from ctx_index.config import MAX_LIMIT_CAP, MAX_WORDS_CAP, ServerConfig
from ctx_index.index import IndexStatus, SectionDeclaration
from ctx_index.index.models import PRIORITY_WEIGHTS, SECTION_TYPES
from ctx_index.index.sections import find_marker_line
from ctx_index.retrieval.models import OUTPUT_FORMATS, RetrievalRequest
from ctx_index.tools.registry import ToolDispatchError, ToolHandler, ToolRegistry

AUDIT_LOG_DEFAULT_LIMIT = 50
AUDIT_LOG_MAX_LIMIT = 500
DEFAULT_SECTION_PRIORITY = "medium"
DEFAULT_SECTION_SOURCE = "AGENTS.md"

_SECTION_ID = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.:-]*$")

BuildIndexFn = Callable[[list[SectionDeclaration], dict[str, object]], dict[str, object]]
RetrieveFn = Callable[[RetrievalRequest], dict[str, object]]
ScanFilesFn = Callable[[str | None, tuple[str, ...] | None], dict[str, object]]


def register_builtin_tools(
    registry: ToolRegistry,
    config: ServerConfig,
    read_index_status: Callable[[], IndexStatus],
    build_index: BuildIndexFn,
    retrieve_context: RetrieveFn,
    scan_files: ScanFilesFn,
    read_audit_entries: Callable[[str | None, int], list[dict[str, object]]],
) -> None:
    """Register the context tool set."""
    registry.register(
        "context.status",
        _status_handler(config, read_index_status),
        "Report index status, drifted sections and effective configuration.",
    )
    registry.register(
        "context.build_index",
        _build_index_handler(build_index),
        "Render the section document and rebuild index.json from declarations.",
    )
    registry.register(
        "context.retrieve",
        _retrieve_handler(config, retrieve_context),
        "Rank sections and gather routed, contract and state context for a query.",
    )
    registry.register(
        "context.scan_files",
        _scan_files_handler(scan_files),
        "List repository files through the discovery cache and summarize them.",
    )
    registry.register(
        "context.audit_log",
        _audit_log_handler(read_audit_entries),
        "Return recent sanitized audit events.",
    )


def _status_handler(
    config: ServerConfig,
    read_index_status: Callable[[], IndexStatus],
) -> ToolHandler:
    def handler(_: dict[str, object]) -> dict[str, object]:
        index_status = read_index_status()
        result: dict[str, object] = {
            "repo_root": str(config.repo_root),
            "output_dir": str(config.output_dir),
            "index_status": index_status.index_status,
            "last_build_timestamp": index_status.last_build_timestamp,
            "section_count": index_status.section_count,
            "drifted_section_ids": list(index_status.drifted_section_ids),
            "effective_config": config.to_public_dict(),
        }
        if index_status.drifted_section_ids:
            result["__warnings__"] = [
                f"{len(index_status.drifted_section_ids)} section(s) changed since the last "
                "build; rebuild the index."
            ]
        return result

    return handler


def _build_index_handler(build_index: BuildIndexFn) -> ToolHandler:
    def handler(arguments: dict[str, object]) -> dict[str, object]:
        raw_sections = arguments.get("sections")
        if not isinstance(raw_sections, list) or not raw_sections:
            raise ToolDispatchError(
                code="INVALID_PARAMS",
                message="context.build_index sections must be a non-empty list.",
            )
        declarations = [
            _parse_declaration(raw, position) for position, raw in enumerate(raw_sections)
        ]

        raw_metadata = arguments.get("metadata", {})
        if not isinstance(raw_metadata, dict):
            raise ToolDispatchError(
                code="INVALID_PARAMS",
                message="context.build_index metadata must be an object.",
            )
        metadata: dict[str, object] = {}
        for key, value in raw_metadata.items():
            if not isinstance(value, (bool, int, str)):
                raise ToolDispatchError(
                    code="INVALID_PARAMS",
                    message=(
                        f"context.build_index metadata.{key} must be a boolean, "
                        "integer or string."
                    ),
                )
            metadata[str(key)] = value
        return build_index(declarations, metadata)

    return handler


def _parse_declaration(raw: object, position: int) -> SectionDeclaration:
    label = f"context.build_index sections[{position}]"
    if not isinstance(raw, dict):
        raise ToolDispatchError(code="INVALID_PARAMS", message=f"{label} must be an object.")

    section_id = raw.get("id")
    if not isinstance(section_id, str) or not _SECTION_ID.match(section_id):
        raise ToolDispatchError(
            code="INVALID_PARAMS",
            message=f"{label}.id must match [A-Za-z0-9][A-Za-z0-9_.:-]*.",
        )
    title = raw.get("title")
    if not isinstance(title, str) or not title.strip():
        raise ToolDispatchError(
            code="INVALID_PARAMS", message=f"{label}.title must be a non-empty string."
        )
    section_type = raw.get("type")
    if section_type not in SECTION_TYPES:
        raise ToolDispatchError(
            code="INVALID_PARAMS",
            message=f"{label}.type must be one of: {', '.join(SECTION_TYPES)}.",
        )
    priority = raw.get("priority", DEFAULT_SECTION_PRIORITY)
    if priority not in PRIORITY_WEIGHTS:
        raise ToolDispatchError(
            code="INVALID_PARAMS", message=f"{label}.priority must be high, medium or low."
        )
    source = raw.get("source", DEFAULT_SECTION_SOURCE)
    if not isinstance(source, str) or not source.strip():
        raise ToolDispatchError(
            code="INVALID_PARAMS", message=f"{label}.source must be a non-empty string."
        )
    content = raw.get("content")
    if content is not None and not isinstance(content, str):
        raise ToolDispatchError(
            code="INVALID_PARAMS", message=f"{label}.content must be a string."
        )
    marker_line = find_marker_line(content) if content is not None else None
    if marker_line is not None:
        raise ToolDispatchError(
            code="INVALID_PARAMS",
            message=f"{label}.content must not contain section marker lines: {marker_line}",
        )
    return SectionDeclaration(
        id=section_id,
        title=title.strip(),
        type=section_type,
        tags=_string_list(raw.get("tags", []), f"{label}.tags"),
        priority=priority,
        source=source.strip(),
        content=content,
    )


def _retrieve_handler(config: ServerConfig, retrieve_context: RetrieveFn) -> ToolHandler:
    def handler(arguments: dict[str, object]) -> dict[str, object]:
        query = arguments.get("query")
        if not isinstance(query, str) or not query.strip():
            raise ToolDispatchError(
                code="INVALID_PARAMS",
                message="context.retrieve query must be a non-empty string.",
            )
        type_value = arguments.get("type")
        if type_value is not None and not isinstance(type_value, str):
            raise ToolDispatchError(
                code="INVALID_PARAMS", message="context.retrieve type must be a string."
            )
        routes_value = arguments.get("routes")
        routes = (
            None if routes_value is None else _string_list(routes_value, "context.retrieve routes")
        )
        level = arguments.get("level")
        if level is not None and (isinstance(level, bool) or not isinstance(level, int)):
            raise ToolDispatchError(
                code="INVALID_PARAMS", message="context.retrieve level must be an integer."
            )
        include_state = arguments.get("include_state", False)
        if not isinstance(include_state, bool):
            raise ToolDispatchError(
                code="INVALID_PARAMS",
                message="context.retrieve include_state must be a boolean.",
            )
        output_format = arguments.get("format", "json")
        if output_format not in OUTPUT_FORMATS:
            raise ToolDispatchError(
                code="INVALID_PARAMS",
                message="context.retrieve format must be 'json' or 'markdown'.",
            )
        request = RetrievalRequest(
            query=query,
            type_filter=type_value,
            tags=_string_list(arguments.get("tags", []), "context.retrieve tags"),
            routes=routes,
            level=level,
            include_state=include_state,
            limit=_bounded_int(
                arguments.get("limit"),
                "context.retrieve limit",
                config.retrieval.default_limit,
                MAX_LIMIT_CAP,
            ),
            max_words=_bounded_int(
                arguments.get("max_words"),
                "context.retrieve max_words",
                config.retrieval.default_max_words,
                MAX_WORDS_CAP,
            ),
            output_format=output_format,
        )
        return retrieve_context(request)

    return handler


def _scan_files_handler(scan_files: ScanFilesFn) -> ToolHandler:
    def handler(arguments: dict[str, object]) -> dict[str, object]:
        include = arguments.get("include")
        if include is not None and (not isinstance(include, str) or not include.strip()):
            raise ToolDispatchError(
                code="INVALID_PARAMS",
                message="context.scan_files include must be a non-empty string.",
            )
        ignore_value = arguments.get("ignore")
        ignore = (
            None
            if ignore_value is None
            else _string_list(ignore_value, "context.scan_files ignore")
        )
        return scan_files(include, ignore)

    return handler


def _audit_log_handler(
    read_audit_entries: Callable[[str | None, int], list[dict[str, object]]],
) -> ToolHandler:
    def handler(arguments: dict[str, object]) -> dict[str, object]:
        since_value = arguments.get("since")
        limit_value = arguments.get("limit", AUDIT_LOG_DEFAULT_LIMIT)

        since: str | None = since_value if isinstance(since_value, str) else None
        limit = limit_value if isinstance(limit_value, int) else AUDIT_LOG_DEFAULT_LIMIT
        if limit < 1:
            limit = 1
        if limit > AUDIT_LOG_MAX_LIMIT:
            limit = AUDIT_LOG_MAX_LIMIT

        return {"entries": read_audit_entries(since, limit)}

    return handler


def _string_list(value: object, label: str) -> tuple[str, ...]:
    """Accept a list of strings or a comma-separated string."""
    if isinstance(value, str):
        return tuple(item.strip() for item in value.split(",") if item.strip())
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise ToolDispatchError(
            code="INVALID_PARAMS", message=f"{label} must be a list of strings."
        )
    return tuple(item.strip() for item in value if item.strip())


def _bounded_int(value: object, label: str, default: int, cap: int) -> int:
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ToolDispatchError(code="INVALID_PARAMS", message=f"{label} must be >= 1.")
    if value > cap:
        raise ToolDispatchError(code="INVALID_PARAMS", message=f"{label} must be <= {cap}.")
    return value
