from __future__ import annotations

import pytest

from ctx_index.tools.registry import ToolDispatchError, ToolRegistry


def _echo(arguments: dict[str, object]) -> dict[str, object]:
    return {"echo": arguments}


def test_registry_preserves_registration_order() -> None:
    registry = ToolRegistry()
    registry.register("b.tool", _echo, "B")
    registry.register("a.tool", _echo)

    assert registry.names() == ("b.tool", "a.tool")
    assert registry.describe() == [
        {"name": "b.tool", "description": "B"},
        {"name": "a.tool", "description": ""},
    ]


def test_duplicate_registration_is_rejected() -> None:
    registry = ToolRegistry()
    registry.register("a.tool", _echo)

    with pytest.raises(ValueError, match="a.tool"):
        registry.register("a.tool", _echo)


def test_dispatch_routes_to_handler_and_rejects_unknown() -> None:
    registry = ToolRegistry()
    registry.register("a.tool", _echo)

    assert registry.dispatch("a.tool", {"x": 1}) == {"echo": {"x": 1}}
    with pytest.raises(ToolDispatchError) as excinfo:
        registry.dispatch("missing.tool", {})
    assert excinfo.value.code == "UNKNOWN_TOOL"
