"""Test packaging metadata and installation extras."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Any

PROJECT_ROOT = Path(__file__).resolve().parents[1]


def _load_pyproject() -> dict[str, Any]:
    pyproject_path = PROJECT_ROOT / "pyproject.toml"
    raw = pyproject_path.read_text(encoding="utf-8")
    if sys.version_info >= (3, 11):
        import tomllib

        return tomllib.loads(raw)

    import tomli

    return tomli.loads(raw)


def _names(requirements: list[str]) -> set[str]:
    names = set()
    for item in requirements:
        name = str(item).split(";")[0]
        for sep in (">=", "==", "<", ">", "~="):
            name = name.split(sep)[0]
        names.add(name.strip().lower())
    return names


def test_pyproject_declares_test_extras() -> None:
    """Ensure `pyproject.toml` declares pytest under `[project.optional-dependencies].test`."""
    data = _load_pyproject()
    test_deps = data.get("project", {}).get("optional-dependencies", {}).get("test", [])
    assert "pytest" in _names(test_deps)


def test_pyproject_declares_runtime_dependencies() -> None:
    data = _load_pyproject()
    deps = _names(data.get("project", {}).get("dependencies", []))
    assert {"filelock", "loguru", "pydantic", "pyyaml"} <= deps


def test_package_exports_engine() -> None:
    import task_graph

    assert "TaskEngine" in task_graph.__all__
    assert task_graph.TaskEngine.__name__ == "TaskEngine"
