"""DONE: release notes, deployment instructions and rollback plan."""

from __future__ import annotations

from phasegate.models.artifacts import ArtifactType
from phasegate.models.checks import ResolvedCommands
from phasegate.models.phases import PipelinePhase, PipelineRole
from phasegate.models.state import PhaseResult, PipelineState
from phasegate.phases.base import BasePhase, PhaseContext, compose, success_result


def artifact_summary(state: PipelineState) -> str:
    return "\n".join(f"- [{a.type.value}] v{a.version}: {a.path}" for a in state.artifacts)


def fallback_release_notes(state: PipelineState) -> str:
    approved = sorted({g.phase.value for g in state.gate_results.values() if g.passed})
    return "\n".join(
        [
            "# Release Notes",
            "",
            "## Gates Passed",
            *(f"- {phase}" for phase in approved),
            "",
            f"Recovery iterations: {state.recovery_count}",
            "",
            "## Artifacts",
            artifact_summary(state),
        ]
    )


def format_deployment(commands: ResolvedCommands | None) -> str:
    commands = commands or ResolvedCommands()
    steps = [
        ("Build", commands.build),
        ("Apply migrations", commands.migrations),
        ("Start", commands.start),
    ]
    lines = ["# Deployment Instructions", ""]
    present = [(label, cmd) for label, cmd in steps if cmd]
    if not present:
        lines.append("No build, migration or start command was resolved for this project.")
    for i, (label, cmd) in enumerate(present, start=1):
        lines += [f"{i}. {label}:", "", "   ```", f"   {cmd}", "   ```", ""]
    lines += ["", f"Commands resolved from: {commands.resolved_from}"]
    return "\n".join(lines)


def format_rollback(commands: ResolvedCommands | None) -> str:
    lines = [
        "# Rollback Plan",
        "",
        "1. Stop the running release.",
        "2. Redeploy the previous tagged version.",
    ]
    if commands is not None and commands.migrations:
        lines.append("3. Revert database migrations applied by this release before restarting.")
    lines += ["", "Roll back if any post-deploy health check fails."]
    return "\n".join(lines)


class DonePhase(BasePhase):
    @property
    def phase(self) -> PipelinePhase:
        return PipelinePhase.DONE

    @property
    def display_name(self) -> str:
        return "Done"

    def execute(self, ctx: PhaseContext) -> PhaseResult:
        state = ctx.state
        if ctx.collaborators.author is not None:
            notes = compose(
                ctx,
                PipelineRole.RELEASE_MANAGER,
                "Write release notes based on the artifacts produced during the pipeline.\n\n"
                "## Artifacts Summary\n" + artifact_summary(state),
            )
        else:
            notes = fallback_release_notes(state)

        artifacts = [
            ctx.store.store(ArtifactType.RELEASE_NOTES, notes, self.phase),
            ctx.store.store(
                ArtifactType.DEPLOYMENT, format_deployment(state.resolved_commands), self.phase
            ),
            ctx.store.store(
                ArtifactType.ROLLBACK, format_rollback(state.resolved_commands), self.phase
            ),
        ]
        ctx.store.update_index(state.artifacts + artifacts)
        return success_result(
            self.phase, artifacts, "Pipeline complete. Release artifacts created."
        )
