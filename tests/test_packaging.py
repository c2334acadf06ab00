from __future__ import annotations

import tomllib
from pathlib import Path

PYPROJECT = Path(__file__).resolve().parents[1] / "pyproject.toml"


def test_project_metadata() -> None:
    project = tomllib.loads(PYPROJECT.read_text(encoding="utf-8"))["project"]

    assert project["name"] == "discussion-gateway"
    assert "readme" not in project
    assert project["scripts"]["discussion-gateway"] == "discussion_gateway.main:main"
    declared = {dep.split(">")[0].split("=")[0] for dep in project["dependencies"]}
    assert {"fastapi", "uvicorn", "httpx", "pydantic", "pydantic-settings"} <= declared
