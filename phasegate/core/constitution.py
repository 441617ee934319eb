"""Governance document tracking: hash at intake, verify at every gate.

The constitution lives at ``skills/PHASEGATE_CONSTITUTION.md``. Its hash is
recorded in the pipeline state at INTAKE; any later edit or deletion makes
verification fail closed.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import NamedTuple

from phasegate.core.artifact_store import ArtifactStore
from phasegate.core.atomic_io import write_text_atomic
from phasegate.core.hasher import sha256_hex
from phasegate.models.artifacts import ArtifactEntry, ArtifactType
from phasegate.models.phases import PipelinePhase
from phasegate.models.state import PipelineState

logger = logging.getLogger(__name__)

CONSTITUTION_FILENAME = "PHASEGATE_CONSTITUTION.md"
SKILLS_DIR = Path("skills")

DEFAULT_CONSTITUTION = """\
# Phasegate Constitution

## Governance
1. No phase advances without passing its gate.
2. Consensus phases require independent reviewer approval at or above the
   configured threshold, from at least the configured quorum.
3. A single blocking issue from any reviewer vetoes approval.
4. Artifacts are immutable. A revision is a new version, never an edit.
5. This document must not change while a pipeline run is in progress.

## Execution
1. Build, test, lint and typecheck commands run sandboxed in the project root.
2. Placeholders (TODO, FIXME, mock data) are not shippable.
3. Every failure produces a root cause analysis before retrying.
"""


class ConstitutionCheck(NamedTuple):
    valid: bool
    reason: str | None = None


def constitution_path(project_dir: Path, skills_dir: Path = SKILLS_DIR) -> Path:
    skills = skills_dir if skills_dir.is_absolute() else Path(project_dir) / skills_dir
    return skills / CONSTITUTION_FILENAME


def compute_constitution_hash(project_dir: Path, skills_dir: Path = SKILLS_DIR) -> str:
    """SHA-256 of the constitution file, or ``""`` when it does not exist."""
    path = constitution_path(project_dir, skills_dir)
    if not path.is_file():
        return ""
    return sha256_hex(path.read_bytes())


def ensure_constitution(project_dir: Path, skills_dir: Path = SKILLS_DIR) -> Path:
    """Write the default constitution if the project has none."""
    path = constitution_path(project_dir, skills_dir)
    if not path.exists():
        logger.info("No constitution found; writing default to %s", path)
        write_text_atomic(path, DEFAULT_CONSTITUTION)
    return path


def create_constitution_artifact(
    project_dir: Path, store: ArtifactStore, skills_dir: Path = SKILLS_DIR
) -> ArtifactEntry | None:
    """Store the constitution as an INTAKE artifact, or None if missing."""
    path = constitution_path(project_dir, skills_dir)
    if not path.is_file():
        return None
    return store.store(
        ArtifactType.CONSTITUTION, path.read_text(encoding="utf-8"), PipelinePhase.INTAKE
    )


def verify_constitution(
    state: PipelineState, project_dir: Path, skills_dir: Path = SKILLS_DIR
) -> ConstitutionCheck:
    """Compare the live constitution hash with the one recorded at intake."""
    if not state.constitution_hash:
        return ConstitutionCheck(valid=True)

    current = compute_constitution_hash(project_dir, skills_dir)
    if not current:
        return ConstitutionCheck(
            valid=False, reason="Constitution file not found: may have been deleted"
        )
    if current != state.constitution_hash:
        return ConstitutionCheck(
            valid=False, reason="Constitution has been modified since pipeline start"
        )
    return ConstitutionCheck(valid=True)
