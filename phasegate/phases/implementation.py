"""IMPLEMENTATION: implementing roles carry out their approved plans.

The author collaborator is expected to change the project tree while
composing; what it returns is kept as the role's implementation log. The
phase then snapshots the result, re-resolves commands (new config files may
have appeared) and runs migrations when the project has them.
"""

from __future__ import annotations

from phasegate.core.check_runner import store_check_results
from phasegate.models.artifacts import ArtifactEntry, ArtifactType
from phasegate.models.checks import GateCheckResult, GateCheckType
from phasegate.models.phases import PipelinePhase, PipelineRole
from phasegate.models.state import PhaseResult
from phasegate.phases.base import (
    BasePhase,
    PhaseContext,
    PhaseExecutionError,
    capture_snapshot,
    compose,
    resolve_and_store_commands,
    success_result,
)
from phasegate.phases.role_planning import role_plan_group

R = PipelineRole

IMPLEMENTING_ROLES: list[PipelineRole] = [
    R.DB_EXPERT,
    R.BACKEND_PROGRAMMER,
    R.FRONTEND_PROGRAMMER,
    R.WEBSITE_PROGRAMMER,
    R.UI_UX_SPECIALIST,
]

IMPLEMENTATION_INSTRUCTIONS = """\
Implement your approved role plan in the project at {project_dir}.

Write real, complete code: no placeholders, TODOs or mock data.
Reply with a short implementation log listing the files you changed.

## Approved Role Plan
{plan}
"""


class ImplementationPhase(BasePhase):
    @property
    def phase(self) -> PipelinePhase:
        return PipelinePhase.IMPLEMENTATION

    @property
    def display_name(self) -> str:
        return "Implementation"

    def execute(self, ctx: PhaseContext) -> PhaseResult:
        state = ctx.state
        artifacts: list[ArtifactEntry] = []

        # --- Per-role implementation -------------------------------------
        implemented = 0
        for role in IMPLEMENTING_ROLES:
            if role not in state.active_roles:
                continue
            plans = [
                e for e in state.artifacts_of(ArtifactType.ROLE_PLAN)
                if e.group_id == role_plan_group(role)
            ]
            if not plans:
                continue
            plan = ctx.store.fetch(max(plans, key=lambda e: e.version))
            ctx.progress(self.phase, f"Implementing as {role.value}")
            log = compose(
                ctx,
                role,
                IMPLEMENTATION_INSTRUCTIONS.format(project_dir=ctx.project_dir, plan=plan),
            )
            artifacts.append(
                ctx.store.store(
                    ArtifactType.ADDITIONAL_CONTEXT, log, self.phase,
                    group_id=f"implementation:{role.value}",
                )
            )
            implemented += 1

        if implemented == 0:
            raise PhaseExecutionError("No approved role plan for any implementing role")

        # --- Post-implementation snapshot and migrations -----------------
        snapshot, snapshot_entry = capture_snapshot(ctx, self.phase)
        artifacts.append(snapshot_entry)
        artifacts.append(resolve_and_store_commands(ctx, snapshot, self.phase))

        results: list[GateCheckResult] = []
        migrations = state.resolved_commands.migrations if state.resolved_commands else None
        if migrations:
            results.append(
                ctx.checks.run_check(GateCheckType.MIGRATION, migrations, ctx.project_dir)
            )
            artifacts.extend(store_check_results(results, ctx.store, self.phase))
        state.gate_checks = {**state.gate_checks, self.phase: results}

        return success_result(
            self.phase, artifacts, f"{implemented} role(s) implemented"
        )
