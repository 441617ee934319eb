"""Bridge from the older three-phase workflow state to ``PipelineState``."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, assert_never

from pydantic import BaseModel, ConfigDict

from phasegate.models.phases import LegacyPhase, PipelinePhase, PipelineRole
from phasegate.models.state import PipelineState

logger = logging.getLogger(__name__)

LEGACY_STATE_PATH = Path(".phasegate/project-state.json")

R = PipelineRole

BASE_ROLES: list[PipelineRole] = [
    R.DISPATCHER, R.ARCHITECT, R.REVIEWER, R.ARBITRATOR, R.DEBUGGER,
    R.AUDITOR, R.JOURNALIST, R.RELEASE_MANAGER, R.QA_TESTER,
]

# Extra roles by project language; anything unlisted gets a backend programmer.
LANGUAGE_ROLES: dict[str, list[PipelineRole]] = {
    "fullstack": [
        R.DB_EXPERT, R.BACKEND_PROGRAMMER, R.FRONTEND_PROGRAMMER,
        R.WEBSITE_PROGRAMMER, R.UI_UX_SPECIALIST,
    ],
    "all": [
        R.DB_EXPERT, R.BACKEND_PROGRAMMER, R.FRONTEND_PROGRAMMER,
        R.WEBSITE_PROGRAMMER, R.UI_UX_SPECIALIST,
    ],
    "python": [R.BACKEND_PROGRAMMER],
    "typescript": [R.BACKEND_PROGRAMMER],
    "website": [R.WEBSITE_PROGRAMMER, R.MARKETING_EXPERT, R.SOCIAL_EXPERT],
}


class LegacyProjectState(BaseModel):
    """The subset of the old workflow state that migration reads."""

    model_config = ConfigDict(extra="ignore")

    name: str = ""
    phase: LegacyPhase = LegacyPhase.PLAN
    language: str = "python"


def to_pipeline_phase(legacy: LegacyPhase) -> PipelinePhase:
    match legacy:
        case LegacyPhase.PLAN:
            return PipelinePhase.INTAKE
        case LegacyPhase.EXECUTION:
            return PipelinePhase.IMPLEMENTATION
        case LegacyPhase.COMPLETE:
            return PipelinePhase.DONE
        case _:
            assert_never(legacy)


def to_legacy_phase(phase: PipelinePhase) -> LegacyPhase:
    match phase:
        case (
            PipelinePhase.INTAKE
            | PipelinePhase.CONSENSUS_MASTER_PLAN
            | PipelinePhase.ARCHITECTURE
            | PipelinePhase.CONSENSUS_ARCHITECTURE
            | PipelinePhase.ROLE_PLANNING
            | PipelinePhase.CONSENSUS_ROLE_PLANS
        ):
            return LegacyPhase.PLAN
        case (
            PipelinePhase.IMPLEMENTATION
            | PipelinePhase.QA_VALIDATION
            | PipelinePhase.REVIEW
            | PipelinePhase.AUDIT
            | PipelinePhase.PRODUCTION_GATE
            | PipelinePhase.RECOVERY_LOOP
            | PipelinePhase.STUCK
        ):
            return LegacyPhase.EXECUTION
        case PipelinePhase.DONE:
            return LegacyPhase.COMPLETE
        case _:
            assert_never(phase)


def derive_active_roles(language: str) -> list[PipelineRole]:
    extra = LANGUAGE_ROLES.get(language.lower(), [R.BACKEND_PROGRAMMER])
    return BASE_ROLES + extra


def migrate_legacy_state(legacy: LegacyProjectState) -> PipelineState:
    state = PipelineState(
        pipeline_phase=to_pipeline_phase(legacy.phase),
        active_roles=derive_active_roles(legacy.language),
    )
    logger.info(
        "Migrated legacy state %r: %s -> %s",
        legacy.name, legacy.phase.value, state.pipeline_phase.value,
    )
    return state


def needs_migration(raw: dict[str, Any]) -> bool:
    """True for a legacy state document that has not been given a pipeline yet."""
    return "pipeline" not in raw


def load_legacy_state(project_dir: Path, path: Path = LEGACY_STATE_PATH) -> LegacyProjectState | None:
    """Read a legacy state file if the project has one that still needs migrating."""
    full = path if path.is_absolute() else Path(project_dir) / path
    if not full.is_file():
        return None
    raw = json.loads(full.read_text(encoding="utf-8"))
    if not needs_migration(raw):
        logger.info("Legacy state at %s already carries a pipeline; skipping", full)
        return None
    return LegacyProjectState.model_validate(raw)
