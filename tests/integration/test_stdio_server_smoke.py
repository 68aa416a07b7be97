from __future__ import annotations

import io
import json
from pathlib import Path

from ctx_index.server import create_server


def test_stdio_server_routes_multiple_requests(tmp_path: Path) -> None:
    server = create_server(repo_root=str(tmp_path))
    in_stream = io.StringIO(
        "\n".join(
            [
                json.dumps({"id": "req-1", "method": "context.status", "params": {}}),
                "",
                json.dumps(
                    {
                        "id": "req-2",
                        "method": "tools/call",
                        "params": {"name": "context.audit_log", "arguments": {"limit": 1}},
                    }
                ),
                "not json",
            ]
        )
        + "\n"
    )
    out_stream = io.StringIO()

    server.serve(in_stream=in_stream, out_stream=out_stream)
    lines = [line for line in out_stream.getvalue().splitlines() if line]

    assert len(lines) == 3
    first, second, third = (json.loads(line) for line in lines)

    assert first["request_id"] == "req-1"
    assert first["ok"] is True
    assert first["result"]["index_status"] == "not_indexed"

    assert second["request_id"] == "req-2"
    assert second["ok"] is True
    assert len(second["result"]["entries"]) == 1

    assert third["ok"] is False
    assert third["error"]["code"] == "INVALID_JSON"


def test_envelope_shape_for_invalid_requests(tmp_path: Path) -> None:
    server = create_server(repo_root=str(tmp_path))

    not_object = server.handle_payload(["context.status"])
    no_method = server.handle_payload({"id": 7, "params": {}})
    bad_params = server.handle_payload({"id": "req-3", "method": "context.status", "params": []})
    bad_call = server.handle_payload(
        {"id": "req-4", "method": "tools/call", "params": {"name": "", "arguments": {}}}
    )

    assert not_object["error"]["code"] == "INVALID_REQUEST"
    assert not_object["request_id"] == "req-000001"
    assert no_method["request_id"] == "7"
    assert no_method["error"]["code"] == "INVALID_REQUEST"
    assert bad_params["error"]["code"] == "INVALID_PARAMS"
    assert bad_call["error"]["code"] == "INVALID_PARAMS"
    for response in (not_object, no_method, bad_params, bad_call):
        assert set(response) == {"request_id", "ok", "result", "warnings", "blocked", "error"}
        assert response["ok"] is False
        assert response["result"] == {}
