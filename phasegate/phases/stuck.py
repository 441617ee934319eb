"""STUCK: the safety valve once a retry budget is exhausted."""

from __future__ import annotations

from datetime import datetime, timezone

from phasegate.models.artifacts import ArtifactType
from phasegate.models.phases import PipelinePhase
from phasegate.models.state import PhaseResult
from phasegate.phases.base import BasePhase, PhaseContext, success_result


class StuckPhase(BasePhase):
    @property
    def phase(self) -> PipelinePhase:
        return PipelinePhase.STUCK

    @property
    def display_name(self) -> str:
        return "Stuck"

    def execute(self, ctx: PhaseContext) -> PhaseResult:
        state = ctx.state
        failed = state.failed_phase
        last_rca = state.latest_artifact(ArtifactType.RCA_REPORT)
        related = [a for a in state.artifacts if failed is not None and a.phase == failed]

        lines = [
            "# Stuck Report",
            "",
            f"**Timestamp:** {datetime.now(timezone.utc).isoformat()}",
            f"**Recovery Iterations:** {state.recovery_count} / {state.max_recovery_iterations}",
            f"**Failed Phase:** {failed.value if failed else 'unknown'}",
            f"**Last Failure:** {state.last_failure_reason or 'unknown'}",
            "",
            "## Last RCA",
            f"See: {last_rca.path}" if last_rca else "No RCA available",
            "",
            "## Suspected Resolution Paths",
            "1. Review the last RCA report for root cause details",
            "2. Check the failing gate conditions and resolve blockers manually",
            "3. Consider reverting to a known good state and re-running",
            "",
            "## Required Human Input",
            "- Review failing gate conditions",
            "- Determine if scope changes are needed",
            "- Decide which phase to restart from (`phasegate reset --to PHASE`)",
            "",
            "## Artifacts That May Need Update",
            *(f"- {a.type.value}: {a.path}" for a in related),
        ]
        entry = ctx.store.store(ArtifactType.STUCK_REPORT, "\n".join(lines), self.phase)
        ctx.store.update_index(state.artifacts + [entry])
        return success_result(
            self.phase, [entry], "Pipeline STUCK. Human intervention required."
        )
