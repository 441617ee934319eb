"""INTAKE: governance baseline, repo snapshot, resolved commands, master plan.

Outputs:
    constitution        -- the governance document, hashed into the state once.
    additional_context  -- the run brief, when one was given.
    repo_snapshot       -- the project as found.
    resolved_commands   -- build/test/lint/... commands for later checks.
    master_plan         -- written by the dispatcher.
"""

from __future__ import annotations

from phasegate.core.command_resolver import ProjectType, detect_project_type
from phasegate.core.constitution import (
    compute_constitution_hash,
    create_constitution_artifact,
    ensure_constitution,
)
from phasegate.core.migration import derive_active_roles
from phasegate.models.artifacts import ArtifactEntry, ArtifactType
from phasegate.models.phases import PipelinePhase, PipelineRole
from phasegate.models.state import PhaseResult
from phasegate.phases.base import (
    BasePhase,
    PhaseContext,
    capture_snapshot,
    compose,
    resolve_and_store_commands,
    success_result,
)

PROJECT_LANGUAGE: dict[ProjectType, str] = {
    ProjectType.NODE: "typescript",
    ProjectType.PYTHON: "python",
    ProjectType.MIXED: "fullstack",
    ProjectType.UNKNOWN: "python",
}

MASTER_PLAN_INSTRUCTIONS = """\
Write the master plan for this project as markdown.

It must contain these sections:
## Goals
## Milestones
## Success Criteria

Be concrete: every milestone needs an owner role and a verifiable outcome.

## Repository Overview
{tree}
"""


class IntakePhase(BasePhase):
    """INTAKE: bootstraps a run and drafts the master plan."""

    @property
    def phase(self) -> PipelinePhase:
        return PipelinePhase.INTAKE

    @property
    def display_name(self) -> str:
        return "Intake"

    def execute(self, ctx: PhaseContext) -> PhaseResult:
        state = ctx.state
        skills_dir = ctx.settings.skills_dir
        artifacts: list[ArtifactEntry] = []
        ctx.store.ensure_docs_structure()

        # --- Governance baseline -----------------------------------------
        ensure_constitution(ctx.project_dir, skills_dir)
        if not state.constitution_hash:
            state.constitution_hash = compute_constitution_hash(ctx.project_dir, skills_dir)
        if not state.has_artifact(ArtifactType.CONSTITUTION, self.phase):
            entry = create_constitution_artifact(ctx.project_dir, ctx.store, skills_dir)
            if entry is not None:
                artifacts.append(entry)

        if state.brief and not state.has_artifact(ArtifactType.ADDITIONAL_CONTEXT):
            artifacts.append(
                ctx.store.store(ArtifactType.ADDITIONAL_CONTEXT, state.brief, self.phase)
            )

        # --- Snapshot and commands ---------------------------------------
        snapshot, entry = capture_snapshot(ctx, self.phase)
        artifacts.append(entry)
        artifacts.append(resolve_and_store_commands(ctx, snapshot, self.phase))

        if not state.active_roles:
            language = PROJECT_LANGUAGE[detect_project_type(snapshot)]
            state.active_roles = derive_active_roles(language)

        # --- Master plan -------------------------------------------------
        plan = compose(
            ctx,
            PipelineRole.DISPATCHER,
            MASTER_PLAN_INSTRUCTIONS.format(tree=snapshot.tree_summary or "(empty)"),
        )
        artifacts.append(ctx.store.store(ArtifactType.MASTER_PLAN, plan, self.phase))

        return success_result(
            self.phase,
            artifacts,
            f"Master plan drafted; {len(state.active_roles)} active roles",
        )
