"""Deterministic repo snapshots, regenerated before gates for drift detection.

The generator walks the project tree to a bounded depth, fingerprints known
config files, classifies languages, and counts code lines. Line counts are
cached per generator instance keyed by path and mtime, so repeated snapshots
within a run do not re-read unchanged files.
"""

from __future__ import annotations

import json
import logging
import os
import re
import tomllib
import uuid
from pathlib import Path
from typing import Any

from phasegate.core.artifact_store import ArtifactStore
from phasegate.core.hasher import short_hash
from phasegate.models.artifacts import ArtifactEntry, ArtifactType
from phasegate.models.phases import PipelinePhase
from phasegate.models.snapshot import ConfigFileEntry, PortEntry, RepoSnapshot, SnapshotDiff

logger = logging.getLogger(__name__)

EXCLUDE_DIRS: frozenset[str] = frozenset({
    "node_modules", ".git", "dist", "__pycache__", ".next",
    ".nuxt", "build", "coverage", ".turbo", ".cache",
    ".venv", "venv", "env",
})

CONFIG_FILES: tuple[str, ...] = (
    "package.json", "pyproject.toml", "docker-compose.yml",
    "docker-compose.yaml", "Dockerfile", "tsconfig.json",
    "vite.config.ts", "vite.config.js", "next.config.js",
    "next.config.mjs", "next.config.ts", "webpack.config.js",
    "tailwind.config.ts", "tailwind.config.js",
    "jest.config.ts", "jest.config.js", "vitest.config.ts",
    "vitest.config.js", ".eslintrc.js", ".eslintrc.json",
    "eslint.config.js", "eslint.config.mjs",
    "prisma/schema.prisma", "alembic.ini",
    "requirements.txt", "setup.py", "setup.cfg",
    "Makefile", "Procfile",
)

CODE_EXTENSIONS: frozenset[str] = frozenset({
    ".ts", ".tsx", ".js", ".jsx", ".py", ".go", ".rs",
    ".java", ".rb", ".php", ".vue", ".svelte", ".astro",
    ".css", ".scss", ".html", ".sql", ".prisma",
})

LANGUAGE_BY_EXTENSION: dict[str, str] = {
    ".ts": "typescript", ".tsx": "typescript",
    ".js": "javascript", ".jsx": "javascript",
    ".py": "python", ".go": "go", ".rs": "rust",
    ".java": "java", ".rb": "ruby", ".php": "php",
}

MIGRATION_DIRS: tuple[str, ...] = (
    "migrations", "prisma/migrations", "alembic/versions", "db/migrate",
)

# Lock file -> package manager, checked in order.
PACKAGE_MANAGER_MARKERS: tuple[tuple[str, str], ...] = (
    ("pnpm-lock.yaml", "pnpm"),
    ("yarn.lock", "yarn"),
    ("bun.lockb", "bun"),
    ("package-lock.json", "npm"),
    ("requirements.txt", "pip"),
    ("pyproject.toml", "poetry"),
)

TREE_DEPTH = 3
TREE_MAX_ENTRIES = 50
LANGUAGE_SCAN_DEPTH = 3
COUNT_WALK_DEPTH = 8
DEFAULT_COMPOSE_PORT = 3000

_COMPOSE_PORT_RE = re.compile(r"""^\s*-\s*["']?(?:[\d.]+:)?(\d+):\d+""", re.MULTILINE)
_START_PORT_RE = re.compile(r"(?:PORT|port)[=: ]?(\d+)")


class SnapshotGenerator:
    """Builds ``RepoSnapshot`` objects for a project directory."""

    def __init__(self) -> None:
        # path -> (mtime_ns, line count)
        self._line_cache: dict[str, tuple[int, int]] = {}

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def generate(self, project_dir: Path) -> RepoSnapshot:
        project_dir = Path(project_dir)
        config_files = self._scan_config_files(project_dir)
        scripts = _extract_scripts(config_files)
        total_files, total_lines = self._count_files_and_lines(project_dir)

        return RepoSnapshot(
            snapshot_id=uuid.uuid4().hex[:16],
            tree_summary=_tree_summary(project_dir, "", TREE_DEPTH),
            config_files=config_files,
            languages_detected=_detect_languages(project_dir),
            package_manager=_detect_package_manager(project_dir),
            scripts=scripts,
            test_framework=_detect_test_framework(config_files, scripts),
            build_tool=_detect_build_tool(config_files, scripts),
            env_files=_find_env_files(project_dir),
            migrations_present=any((project_dir / d).exists() for d in MIGRATION_DIRS),
            ports_entrypoints=_detect_ports(project_dir, config_files),
            total_files=total_files,
            total_lines=total_lines,
        )

    def store(
        self, snapshot: RepoSnapshot, store: ArtifactStore, phase: PipelinePhase
    ) -> ArtifactEntry:
        """Persist *snapshot* as a ``repo_snapshot`` artifact."""
        return store.store_structured(ArtifactType.REPO_SNAPSHOT, snapshot, phase)

    def capture(
        self, project_dir: Path, store: ArtifactStore, phase: PipelinePhase
    ) -> tuple[RepoSnapshot, ArtifactEntry]:
        snapshot = self.generate(project_dir)
        entry = self.store(snapshot, store, phase)
        logger.info(
            "Snapshot %s: %d files, %d lines, languages=%s",
            snapshot.snapshot_id,
            snapshot.total_files,
            snapshot.total_lines,
            ",".join(snapshot.languages_detected) or "-",
        )
        return snapshot, entry

    def clear_cache(self) -> None:
        self._line_cache.clear()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _scan_config_files(self, project_dir: Path) -> list[ConfigFileEntry]:
        configs: list[ConfigFileEntry] = []
        for name in CONFIG_FILES:
            path = project_dir / name
            if not path.is_file():
                continue
            try:
                data = path.read_bytes()
            except OSError as exc:
                logger.debug("Unreadable config %s: %s", name, exc)
                continue
            configs.append(
                ConfigFileEntry(
                    path=name,
                    type=name,
                    content_hash=short_hash(data),
                    key_fields=_extract_key_fields(name, data.decode("utf-8", errors="replace")),
                )
            )
        return configs

    def _count_lines(self, path: Path) -> int:
        try:
            mtime = path.stat().st_mtime_ns
        except OSError:
            return 0
        key = str(path)
        cached = self._line_cache.get(key)
        if cached and cached[0] == mtime:
            return cached[1]
        try:
            text = path.read_text(encoding="utf-8", errors="replace")
        except OSError:
            return 0
        lines = text.count("\n") + 1
        self._line_cache[key] = (mtime, lines)
        return lines

    def _count_files_and_lines(self, project_dir: Path) -> tuple[int, int]:
        total_files = 0
        total_lines = 0
        for path in _walk_files(project_dir, COUNT_WALK_DEPTH):
            if path.suffix in CODE_EXTENSIONS:
                total_files += 1
                total_lines += self._count_lines(path)
        return total_files, total_lines


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------


def diff_snapshots(before: RepoSnapshot, after: RepoSnapshot) -> SnapshotDiff:
    """Compare two snapshots. Pure: depends only on its arguments."""
    before_configs = {c.path: c.content_hash for c in before.config_files}
    after_configs = {c.path: c.content_hash for c in after.config_files}

    added = [p for p in after_configs if p not in before_configs]
    removed = [p for p in before_configs if p not in after_configs]
    changed = [
        p for p, h in after_configs.items()
        if p in before_configs and before_configs[p] != h
    ]
    files_delta = after.total_files - before.total_files
    lines_delta = after.total_lines - before.total_lines

    return SnapshotDiff(
        added_configs=added,
        removed_configs=removed,
        changed_configs=changed,
        files_delta=files_delta,
        lines_delta=lines_delta,
        has_changes=bool(added or removed or changed or files_delta or lines_delta),
    )


def _listdir(directory: Path) -> list[os.DirEntry[str]]:
    try:
        with os.scandir(directory) as it:
            return sorted(it, key=lambda e: e.name)
    except OSError:
        return []


def _walk_files(root: Path, max_depth: int, depth: int = 0):
    if depth > max_depth:
        return
    for entry in _listdir(root):
        if entry.name in EXCLUDE_DIRS:
            continue
        if entry.is_dir(follow_symlinks=False):
            yield from _walk_files(Path(entry.path), max_depth, depth + 1)
        elif entry.is_file():
            yield Path(entry.path)


def _tree_summary(directory: Path, prefix: str, max_depth: int) -> str:
    if max_depth <= 0:
        return ""
    entries = [
        e for e in _listdir(directory)
        if e.name not in EXCLUDE_DIRS and not e.name.startswith(".")
    ]
    lines: list[str] = []
    for entry in entries[:TREE_MAX_ENTRIES]:
        is_dir = entry.is_dir(follow_symlinks=False)
        lines.append(f"{prefix}{entry.name}{'/' if is_dir else ''}")
        if is_dir and max_depth > 1:
            sub = _tree_summary(Path(entry.path), prefix + "  ", max_depth - 1)
            if sub:
                lines.append(sub)
    if len(entries) > TREE_MAX_ENTRIES:
        lines.append(f"{prefix}... (+{len(entries) - TREE_MAX_ENTRIES} more)")
    return "\n".join(lines)


def _extract_key_fields(name: str, content: str) -> dict[str, Any]:
    try:
        if name == "package.json":
            pkg = json.loads(content)
            return {
                "name": pkg.get("name"),
                "version": pkg.get("version"),
                "scripts": pkg.get("scripts") or {},
                "dependencies": sorted((pkg.get("dependencies") or {}).keys()),
                "devDependencies": sorted((pkg.get("devDependencies") or {}).keys()),
            }
        if name == "tsconfig.json":
            options = json.loads(content).get("compilerOptions") or {}
            return {
                "target": options.get("target"),
                "module": options.get("module"),
                "outDir": options.get("outDir"),
            }
        if name == "pyproject.toml":
            project = tomllib.loads(content).get("project") or {}
            return {
                "name": project.get("name"),
                "version": project.get("version"),
                "dependencies": list(project.get("dependencies") or []),
            }
        if name in ("docker-compose.yml", "docker-compose.yaml"):
            return {"ports": [int(p) for p in _COMPOSE_PORT_RE.findall(content)]}
    except (ValueError, AttributeError, tomllib.TOMLDecodeError) as exc:
        logger.debug("Could not parse %s: %s", name, exc)
    return {}


def _detect_languages(project_dir: Path) -> list[str]:
    languages = {
        LANGUAGE_BY_EXTENSION[p.suffix]
        for p in _walk_files(project_dir, LANGUAGE_SCAN_DEPTH)
        if p.suffix in LANGUAGE_BY_EXTENSION
    }
    return sorted(languages)


def _find_env_files(project_dir: Path) -> list[str]:
    return sorted(
        e.name for e in _listdir(project_dir)
        if e.name.startswith(".env") and e.is_file()
    )


def _detect_package_manager(project_dir: Path) -> str | None:
    for marker, manager in PACKAGE_MANAGER_MARKERS:
        if (project_dir / marker).exists():
            return manager
    return None


def _extract_scripts(config_files: list[ConfigFileEntry]) -> dict[str, str]:
    for config in config_files:
        if config.type == "package.json":
            scripts = config.key_fields.get("scripts")
            if isinstance(scripts, dict):
                return {str(k): str(v) for k, v in scripts.items()}
    return {}


def _detect_ports(project_dir: Path, config_files: list[ConfigFileEntry]) -> list[PortEntry]:
    ports: list[PortEntry] = []
    for config in config_files:
        if config.type in ("docker-compose.yml", "docker-compose.yaml"):
            found = config.key_fields.get("ports") or [DEFAULT_COMPOSE_PORT]
            ports.extend(PortEntry(port=p, service="app", source=config.path) for p in found)

    start_script = _extract_scripts(config_files).get("start", "")
    match = _START_PORT_RE.search(start_script)
    if match:
        ports.append(PortEntry(port=int(match.group(1)), service="start", source="package.json"))
    return ports


def _detect_test_framework(
    config_files: list[ConfigFileEntry], scripts: dict[str, str]
) -> str | None:
    test_script = scripts.get("test", "")
    for tool in ("vitest", "jest", "pytest", "mocha"):
        if tool in test_script:
            return tool
    types = [c.type for c in config_files]
    if any(t.startswith("vitest.config") for t in types):
        return "vitest"
    if any(t.startswith("jest.config") for t in types):
        return "jest"
    if "pyproject.toml" in types or "setup.cfg" in types:
        return "pytest"
    return None


def _detect_build_tool(
    config_files: list[ConfigFileEntry], scripts: dict[str, str]
) -> str | None:
    build_script = scripts.get("build", "")
    for tool in ("tsc", "vite", "webpack", "next", "turbo"):
        if tool in build_script:
            return tool
    types = [c.type for c in config_files]
    if any(t.startswith("vite.config") for t in types):
        return "vite"
    if any(t.startswith("next.config") for t in types):
        return "next"
    return None
