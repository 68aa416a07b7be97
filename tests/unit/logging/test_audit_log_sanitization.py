from __future__ import annotations

import json
from pathlib import Path

from ctx_index.logging.audit import sanitize_arguments
from ctx_index.server import create_server


def test_audit_log_never_stores_query_text(tmp_path: Path) -> None:
    server = create_server(repo_root=str(tmp_path))
    server.handle_payload(
        {
            "id": "req-200",
            "method": "context.retrieve",
            "params": {"query": "rotate API_KEY=top-secret", "limit": 3},
        }
    )

    audit_path = tmp_path / ".ctx_index" / "audit.jsonl"
    entries = [json.loads(line) for line in audit_path.read_text(encoding="utf-8").splitlines()]
    event = entries[-1]

    metadata = event["metadata"]
    assert metadata["query_present"] is True
    assert metadata["query_length"] == len("rotate API_KEY=top-secret")
    assert metadata["limit"] == 3
    assert "query" not in metadata
    assert "top-secret" not in json.dumps(event, sort_keys=True)


def test_sanitize_keeps_known_scalars_and_shapes_everything_else() -> None:
    sanitized = sanitize_arguments(
        {
            "query": "   ",
            "format": "markdown",
            "type": "database",
            "level": 2,
            "include_state": True,
            "custom_note": "token=abc123",
            "tags": ["auth", "jwt"],
            "metadata": {"b": 1, "a": 2},
        }
    )

    assert sanitized == {
        "custom_note_length": len("token=abc123"),
        "custom_note_present": True,
        "format": "markdown",
        "include_state": True,
        "level": 2,
        "metadata_keys": ["a", "b"],
        "metadata_type": "dict",
        "query_length": 3,
        "query_present": False,
        "tags_length": 2,
        "tags_type": "list",
        "type": "database",
    }


def test_build_index_sections_are_not_logged(tmp_path: Path) -> None:
    server = create_server(repo_root=str(tmp_path))
    server.handle_payload(
        {
            "id": "req-201",
            "method": "context.build_index",
            "params": {
                "sections": [
                    {
                        "id": "memory.notes",
                        "title": "Notes",
                        "type": "memory",
                        "content": "password=hunter2",
                    }
                ]
            },
        }
    )

    audit_path = tmp_path / ".ctx_index" / "audit.jsonl"
    raw = audit_path.read_text(encoding="utf-8")
    event = json.loads(raw.splitlines()[-1])

    assert event["metadata"] == {"sections_length": 1, "sections_type": "list"}
    assert "hunter2" not in raw
