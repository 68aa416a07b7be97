from __future__ import annotations

from pathlib import Path


def test_required_package_paths_exist() -> None:
    root = Path(__file__).resolve().parents[1]
    required = [
        "src/ctx_index/server.py",
        "src/ctx_index/config.py",
        "src/ctx_index/tools/__init__.py",
        "src/ctx_index/index/__init__.py",
        "src/ctx_index/routing/__init__.py",
        "src/ctx_index/retrieval/__init__.py",
        "src/ctx_index/cache/__init__.py",
        "src/ctx_index/logging/__init__.py",
    ]
    for rel in required:
        assert (root / rel).exists(), rel
