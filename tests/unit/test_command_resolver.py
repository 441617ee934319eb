"""Unit tests for project type detection and command resolution."""

from __future__ import annotations

from phasegate.core.command_resolver import ProjectType, detect_project_type, resolve_commands
from phasegate.models.snapshot import ConfigFileEntry, RepoSnapshot


def _snapshot(*config_types: str, **overrides) -> RepoSnapshot:
    configs = [ConfigFileEntry(path=t, type=t, content_hash="0" * 16) for t in config_types]
    return RepoSnapshot(snapshot_id="s", config_files=configs, **overrides)


class TestDetectProjectType:
    def test_node(self):
        assert detect_project_type(_snapshot("package.json")) == ProjectType.NODE

    def test_python(self):
        assert detect_project_type(_snapshot("pyproject.toml")) == ProjectType.PYTHON
        assert detect_project_type(_snapshot("requirements.txt")) == ProjectType.PYTHON

    def test_mixed(self):
        assert detect_project_type(_snapshot("package.json", "setup.py")) == ProjectType.MIXED

    def test_unknown(self):
        assert detect_project_type(_snapshot("Makefile")) == ProjectType.UNKNOWN


class TestResolveCommands:
    def test_node_scripts(self):
        snap = _snapshot(
            "package.json",
            package_manager="pnpm",
            scripts={"build": "vite build", "test": "vitest", "lint": "eslint ."},
            languages_detected=["typescript"],
        )
        cmds = resolve_commands(snap)
        assert cmds.build == "pnpm build"
        assert cmds.test == "pnpm test"
        assert cmds.lint == "pnpm lint"
        assert cmds.typecheck == "pnpm exec tsc --noEmit"
        assert cmds.resolved_from == "package.json"

    def test_node_framework_fallback(self):
        cmds = resolve_commands(_snapshot("package.json", test_framework="jest"))
        assert cmds.test == "npx jest"

    def test_prisma_migrations(self):
        cmds = resolve_commands(_snapshot("package.json", "prisma/schema.prisma"))
        assert cmds.migrations == "npx prisma migrate deploy"

    def test_python_defaults(self):
        cmds = resolve_commands(_snapshot("pyproject.toml", "alembic.ini", languages_detected=["python"]))
        assert cmds.test == "pytest tests/"
        assert cmds.lint == "ruff check ."
        assert cmds.typecheck == "mypy src/"
        assert cmds.migrations == "alembic upgrade head"
        assert cmds.resolved_from == "pyproject.toml"

    def test_mixed_falls_back_to_python_test(self):
        cmds = resolve_commands(_snapshot("package.json", "requirements.txt"))
        assert cmds.test == "pytest tests/"

    def test_unknown_resolves_nothing(self):
        cmds = resolve_commands(_snapshot())
        assert cmds.test is None
        assert cmds.resolved_from == "none"

    def test_overrides_win(self):
        cmds = resolve_commands(
            _snapshot("pyproject.toml"), {"test": "pytest -q", "lint": None, "start": ""}
        )
        assert cmds.test == "pytest -q"
        assert cmds.lint == "ruff check ."
        assert cmds.start.startswith("uvicorn")
