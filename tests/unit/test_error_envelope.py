from __future__ import annotations

import json
from pathlib import Path

from ctx_index.server import create_server


def test_malformed_json_returns_invalid_json_error(tmp_path: Path) -> None:
    server = create_server(repo_root=str(tmp_path))

    response = server.handle_json_line("{not-json")

    assert response["ok"] is False
    assert response["error"] == {
        "code": "INVALID_JSON",
        "message": "Request must be valid JSON.",
    }
    assert str(response["request_id"]).startswith("req-")


def test_unknown_tool_returns_explicit_error(tmp_path: Path) -> None:
    server = create_server(repo_root=str(tmp_path))

    response = server.handle_payload(
        {"id": "abc-123", "method": "context.unknown", "params": {"k": "v"}}
    )

    assert response["ok"] is False
    assert response["request_id"] == "abc-123"
    assert response["error"] == {
        "code": "UNKNOWN_TOOL",
        "message": "Unknown tool: context.unknown",
    }


def test_invalid_tools_call_params_returns_invalid_params_error(tmp_path: Path) -> None:
    server = create_server(repo_root=str(tmp_path))
    payload = {
        "id": 7,
        "method": "tools/call",
        "params": {"name": "context.status", "arguments": []},
    }

    response = server.handle_payload(json.loads(json.dumps(payload)))

    assert response["ok"] is False
    assert response["request_id"] == "7"
    assert response["error"] == {
        "code": "INVALID_PARAMS",
        "message": "tools/call params.arguments must be an object.",
    }


def test_structural_error_message_names_reason_and_section(tmp_path: Path) -> None:
    server = create_server(repo_root=str(tmp_path))
    section = {"id": "memory.notes", "title": "Notes", "type": "memory"}

    response = server.handle_payload(
        {
            "id": "req-struct",
            "method": "context.build_index",
            "params": {"sections": [section, section]},
        }
    )

    assert response["error"]["code"] == "STRUCTURAL_ERROR"
    assert response["error"]["message"].startswith("Section index build refused: ")
    assert response["error"]["message"].endswith("(memory.notes).")
