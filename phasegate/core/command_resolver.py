"""Resolve build/test/lint/typecheck/migration/start commands from a snapshot."""

from __future__ import annotations

from enum import Enum
from typing import Any, Mapping

from phasegate.models.checks import ResolvedCommands
from phasegate.models.snapshot import RepoSnapshot

PYTHON_CONFIGS: frozenset[str] = frozenset({"pyproject.toml", "requirements.txt", "setup.py"})
OVERRIDABLE_FIELDS: tuple[str, ...] = ("build", "test", "lint", "typecheck", "migrations", "start")


class ProjectType(str, Enum):
    NODE = "node"
    PYTHON = "python"
    MIXED = "mixed"
    UNKNOWN = "unknown"


def _config_types(snapshot: RepoSnapshot) -> set[str]:
    return {c.type for c in snapshot.config_files}


def detect_project_type(snapshot: RepoSnapshot) -> ProjectType:
    types = _config_types(snapshot)
    has_node = "package.json" in types
    has_python = bool(types & PYTHON_CONFIGS)
    if has_node and has_python:
        return ProjectType.MIXED
    if has_node:
        return ProjectType.NODE
    if has_python:
        return ProjectType.PYTHON
    return ProjectType.UNKNOWN


def _node_commands(snapshot: RepoSnapshot) -> dict[str, Any]:
    pm = snapshot.package_manager or "npm"
    run = pm if pm in ("yarn", "pnpm") else f"{pm} run"
    npx = {"pnpm": "pnpm exec", "yarn": "yarn"}.get(pm, "npx")
    scripts = snapshot.scripts
    cmds: dict[str, Any] = {"resolved_from": "package.json"}

    if "build" in scripts:
        cmds["build"] = f"{run} build"

    if "test" in scripts:
        cmds["test"] = f"{run} test"
    elif snapshot.test_framework == "vitest":
        cmds["test"] = f"{npx} vitest run"
    elif snapshot.test_framework == "jest":
        cmds["test"] = f"{npx} jest"

    if "lint" in scripts:
        cmds["lint"] = f"{run} lint"

    if "typecheck" in scripts:
        cmds["typecheck"] = f"{run} typecheck"
    elif "typescript" in snapshot.languages_detected:
        cmds["typecheck"] = f"{npx} tsc --noEmit"

    if "prisma/schema.prisma" in _config_types(snapshot):
        cmds["migrations"] = f"{npx} prisma migrate deploy"

    if "start" in scripts:
        cmds["start"] = f"{run} start"
    elif "dev" in scripts:
        cmds["start"] = f"{run} dev"
    return cmds


def _python_commands(snapshot: RepoSnapshot) -> dict[str, Any]:
    types = _config_types(snapshot)
    source = next(
        (c.path for c in snapshot.config_files if c.type in ("pyproject.toml", "requirements.txt")),
        "python-defaults",
    )
    cmds: dict[str, Any] = {
        "resolved_from": source,
        "test": "pytest tests/",
        "lint": "ruff check ." if "pyproject.toml" in types else "flake8 src/",
        "build": "python -m build",
        "start": "uvicorn main:app --host 0.0.0.0 --port 8000",
    }
    if "python" in snapshot.languages_detected:
        cmds["typecheck"] = "mypy src/"
    if "alembic.ini" in types:
        cmds["migrations"] = "alembic upgrade head"
    return cmds


def resolve_commands(
    snapshot: RepoSnapshot, overrides: Mapping[str, str | None] | None = None
) -> ResolvedCommands:
    """Pick commands for the detected project type, then apply *overrides*.

    Mixed projects prefer Node commands and fall back to the Python test
    command when ``package.json`` has no test.
    """
    project_type = detect_project_type(snapshot)
    if project_type == ProjectType.NODE:
        cmds = _node_commands(snapshot)
    elif project_type == ProjectType.PYTHON:
        cmds = _python_commands(snapshot)
    elif project_type == ProjectType.MIXED:
        cmds = _node_commands(snapshot)
        cmds.setdefault("test", _python_commands(snapshot)["test"])
    else:
        cmds = {"resolved_from": "none"}

    for field in OVERRIDABLE_FIELDS:
        value = (overrides or {}).get(field)
        if value:
            cmds[field] = value
    return ResolvedCommands(**cmds)
