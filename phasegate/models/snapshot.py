"""Repo snapshot models for drift detection between planning and execution."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ConfigFileEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    path: str
    type: str
    content_hash: str  # first 16 hex chars of SHA-256
    key_fields: dict[str, Any] = {}


class PortEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    port: int
    service: str
    source: str


class RepoSnapshot(BaseModel):
    """Timestamped capture of project structure, config, and size."""

    model_config = ConfigDict(frozen=True)

    snapshot_id: str
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    tree_summary: str = ""
    config_files: list[ConfigFileEntry] = []
    languages_detected: list[str] = []
    package_manager: str | None = None
    scripts: dict[str, str] = {}
    test_framework: str | None = None
    build_tool: str | None = None
    env_files: list[str] = []
    migrations_present: bool = False
    ports_entrypoints: list[PortEntry] = []
    total_files: int = 0
    total_lines: int = 0


class SnapshotDiff(BaseModel):
    """Difference between two snapshots. Produced by ``diff_snapshots``."""

    model_config = ConfigDict(frozen=True)

    added_configs: list[str] = []
    removed_configs: list[str] = []
    changed_configs: list[str] = []
    files_delta: int = 0
    lines_delta: int = 0
    has_changes: bool = False
