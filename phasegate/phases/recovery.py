"""RECOVERY_LOOP: root cause analysis before any retry.

The RCA is built from the recorded gate result and check failures of the
failed phase, so recovery works without an author. When an author is
configured the debugger's analysis is attached as the root cause.

The rewind target tells the orchestrator where to resume:

* a failure at QA, AUDIT or PRODUCTION_GATE goes back to IMPLEMENTATION;
* a consensus failure goes back to the phase that wrote the artifact;
* anything else retries the failed phase.
"""

from __future__ import annotations

from phasegate.core.artifact_store import ArtifactStore
from phasegate.core.packet_builders import build_rca_packet
from phasegate.models.artifacts import ArtifactEntry, ArtifactType
from phasegate.models.checks import CheckStatus
from phasegate.models.packets import RCAPacket
from phasegate.models.phases import CONSENSUS_PREDECESSOR, PipelinePhase, PipelineRole
from phasegate.models.state import PhaseResult, PipelineState
from phasegate.phases.base import (
    BasePhase,
    PhaseContext,
    PhaseExecutionError,
    compose,
    success_result,
    trigger_journalist,
)

P = PipelinePhase

RCA_GROUP = ArtifactType.RCA_REPORT.value
RCA_TEXT_GROUP = "rca_report_text"

IMPLEMENTATION_REWIND: frozenset[PipelinePhase] = frozenset(
    {P.QA_VALIDATION, P.AUDIT, P.PRODUCTION_GATE}
)

RCA_INSTRUCTIONS = """\
Produce a root cause analysis for this gate failure:
1. Precise root cause
2. Origin phase
3. Responsible role
4. Corrective actions
5. Prevention recommendation

## Failure Evidence
{evidence}
"""


def determine_rewind_target(failed_phase: PipelinePhase) -> PipelinePhase:
    if failed_phase in IMPLEMENTATION_REWIND:
        return P.IMPLEMENTATION
    return CONSENSUS_PREDECESSOR.get(failed_phase, failed_phase)


def latest_rca(state: PipelineState, store: ArtifactStore) -> RCAPacket | None:
    """The most recent structured RCA, integrity-checked."""
    entries = [e for e in state.artifacts_of(ArtifactType.RCA_REPORT) if e.group_id == RCA_GROUP]
    if not entries:
        return None
    return store.fetch_structured(max(entries, key=lambda e: e.version), RCAPacket)


def failure_evidence(state: PipelineState, failed_phase: PipelinePhase) -> tuple[list[str], str]:
    """Symptoms and a readable evidence block for *failed_phase*."""
    gate = state.gate_results.get(failed_phase)
    symptoms = list(gate.blockers) if gate and gate.blockers else []
    if not symptoms and state.last_failure_reason:
        symptoms = [state.last_failure_reason]
    failed_checks = [c for c in state.checks_for(failed_phase) if c.status == CheckStatus.FAIL]

    lines = [f"Failed phase: {failed_phase.value}"]
    lines.append(f"Gate blockers: {'; '.join(symptoms)}" if symptoms else "No gate result available")
    if failed_checks:
        lines.append("Failed checks:")
        lines += [
            f"- {c.check_type.value} (exit {c.exit_code}): {(c.stderr_summary or 'no details')[:200]}"
            for c in failed_checks
        ]
    else:
        lines.append("No check failures")
    return symptoms or ["Gate failed"], "\n".join(lines)


class RecoveryPhase(BasePhase):
    @property
    def phase(self) -> PipelinePhase:
        return PipelinePhase.RECOVERY_LOOP

    @property
    def display_name(self) -> str:
        return "Recovery Loop"

    def execute(self, ctx: PhaseContext) -> PhaseResult:
        state = ctx.state
        failed_phase = state.failed_phase
        if failed_phase is None:
            raise PhaseExecutionError("Recovery entered without a failed phase")

        symptoms, evidence = failure_evidence(state, failed_phase)
        artifacts: list[ArtifactEntry] = []

        analysis = None
        if ctx.collaborators.author is not None:
            analysis = compose(
                ctx, PipelineRole.DEBUGGER, RCA_INSTRUCTIONS.format(evidence=evidence)
            )
            artifacts.append(
                ctx.store.store(
                    ArtifactType.RCA_REPORT,
                    f"# RCA Report\n\n{analysis}",
                    self.phase,
                    group_id=RCA_TEXT_GROUP,
                )
            )

        rewind_to = determine_rewind_target(failed_phase)
        rca = build_rca_packet(
            f"Gate failure at {failed_phase.value} "
            f"(recovery iteration {state.recovery_count})",
            analysis[:500] if analysis else symptoms[0],
            failed_phase.value,
            failed_phase,
            symptoms=symptoms,
            governance_gap="Detected during gate evaluation",
            corrective_actions=[f"Resolve: {s}" for s in symptoms],
            prevention="Address the blockers before re-entering the gate",
            rewind_to=rewind_to,
            requires_consensus_on=[failed_phase] if failed_phase in CONSENSUS_PREDECESSOR else [],
        )
        artifacts.append(ctx.store.store_structured(ArtifactType.RCA_REPORT, rca, self.phase))
        artifacts.append(trigger_journalist(ctx, self.phase, artifacts))

        return success_result(
            self.phase,
            artifacts,
            f"RCA complete: recovery iteration {state.recovery_count}, "
            f"rewind to {rewind_to.value}",
        )
