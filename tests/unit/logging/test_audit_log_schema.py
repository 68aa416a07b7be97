from __future__ import annotations

import json
from pathlib import Path

from ctx_index.server import create_server


def test_audit_log_writes_jsonl_schema(tmp_path: Path) -> None:
    server = create_server(repo_root=str(tmp_path))
    server.handle_payload({"id": "req-100", "method": "context.status", "params": {}})

    audit_path = tmp_path / ".ctx_index" / "audit.jsonl"
    assert audit_path.exists()

    lines = audit_path.read_text(encoding="utf-8").splitlines()
    assert len(lines) == 1
    event = json.loads(lines[-1])

    assert set(event.keys()) == {
        "duration_ms",
        "error_code",
        "metadata",
        "ok",
        "request_id",
        "timestamp",
        "tool",
        "warning_count",
    }
    assert event["request_id"] == "req-100"
    assert event["tool"] == "context.status"
    assert event["ok"] is True
    assert event["error_code"] is None
    assert event["warning_count"] == 0
    assert isinstance(event["duration_ms"], int)
    assert event["timestamp"].endswith("Z")


def test_failed_request_records_error_code(tmp_path: Path) -> None:
    server = create_server(repo_root=str(tmp_path))
    server.handle_payload({"id": "req-101", "method": "context.unknown", "params": {}})

    audit_path = tmp_path / ".ctx_index" / "audit.jsonl"
    event = json.loads(audit_path.read_text(encoding="utf-8").splitlines()[-1])

    assert event["ok"] is False
    assert event["error_code"] == "UNKNOWN_TOOL"
    assert event["tool"] == "context.unknown"


def test_invalid_json_line_is_logged(tmp_path: Path) -> None:
    server = create_server(repo_root=str(tmp_path))

    response = server.handle_json_line("{not json")

    assert response["error"]["code"] == "INVALID_JSON"
    assert response["request_id"] == "req-000001"
    audit_path = tmp_path / ".ctx_index" / "audit.jsonl"
    event = json.loads(audit_path.read_text(encoding="utf-8").splitlines()[-1])
    assert event["tool"] == "invalid_json"
    assert event["metadata"] == {"raw_line_length": len("{not json")}
