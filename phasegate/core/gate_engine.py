"""Gate engine: decides whether a phase may advance.

The engine never executes commands or calls reviewers. It reads the
pipeline state, re-reads artifacts through the integrity-checked store,
and checks them against the phase's :class:`GateDefinition`.

Evaluation order, stopping at the first category that blocks:

1. constitution
2. structural validators
3. required artifacts and inputs (hash-verified)
4. check results
5. consensus
"""

from __future__ import annotations

import logging

from phasegate.core.artifact_store import ArtifactStore, IntegrityError
from phasegate.core.constitution import ConstitutionCheck
from phasegate.core.validators import validate_artifact_completeness
from phasegate.models.artifacts import ArtifactEntry, ArtifactType
from phasegate.models.audit import AuditReport
from phasegate.models.checks import CheckStatus, GateCheckType
from phasegate.models.packets import ConsensusPacket, ConsensusStatus
from phasegate.models.phases import PHASE_SEQUENCE, VALID_TRANSITIONS, PipelinePhase
from phasegate.models.state import GateDefinition, GateResult, PipelineState

logger = logging.getLogger(__name__)

P = PipelinePhase
A = ArtifactType
C = GateCheckType

# Plan packets share the CONSENSUS type; the packet group separates them.
CONSENSUS_GROUP = A.CONSENSUS.value
PLAN_PACKET_GROUP = "plan_packet"


def build_gate_definitions(
    threshold: float = 0.95,
    quorum: int = 2,
    min_reviewers: int = 2,
    max_iterations: int = 3,
) -> dict[PipelinePhase, GateDefinition]:
    """Gate definitions for all 14 phases with the given consensus rules."""

    def consensus(phase: PipelinePhase, reviewed: ArtifactType) -> GateDefinition:
        return GateDefinition(
            phase=phase,
            required_artifacts=[A.CONSENSUS],
            required_inputs=[reviewed],
            validated_artifacts=[reviewed],
            consensus_threshold=threshold,
            quorum=quorum,
            min_reviewers=min_reviewers,
            max_iterations=max_iterations,
        )

    return {
        P.INTAKE: GateDefinition(
            phase=P.INTAKE,
            required_artifacts=[A.MASTER_PLAN, A.REPO_SNAPSHOT, A.CONSTITUTION],
        ),
        P.CONSENSUS_MASTER_PLAN: consensus(P.CONSENSUS_MASTER_PLAN, A.MASTER_PLAN),
        P.ARCHITECTURE: GateDefinition(
            phase=P.ARCHITECTURE,
            required_artifacts=[A.ARCHITECTURE, A.REPO_SNAPSHOT],
            required_inputs=[A.MASTER_PLAN],
        ),
        P.CONSENSUS_ARCHITECTURE: consensus(P.CONSENSUS_ARCHITECTURE, A.ARCHITECTURE),
        P.ROLE_PLANNING: GateDefinition(
            phase=P.ROLE_PLANNING,
            required_artifacts=[A.ROLE_PLAN],
            required_inputs=[A.ARCHITECTURE],
        ),
        P.CONSENSUS_ROLE_PLANS: consensus(P.CONSENSUS_ROLE_PLANS, A.ROLE_PLAN),
        P.IMPLEMENTATION: GateDefinition(
            phase=P.IMPLEMENTATION,
            required_artifacts=[A.REPO_SNAPSHOT],
            required_inputs=[A.ROLE_PLAN],
            optional_checks=[C.MIGRATION],
        ),
        P.QA_VALIDATION: GateDefinition(
            phase=P.QA_VALIDATION,
            required_artifacts=[A.QA_VALIDATION],
            validated_artifacts=[A.QA_VALIDATION],
            required_checks=[C.TEST],
        ),
        P.REVIEW: GateDefinition(
            phase=P.REVIEW,
            required_artifacts=[A.REVIEW_DECISION, A.REPO_SNAPSHOT],
        ),
        P.AUDIT: GateDefinition(
            phase=P.AUDIT,
            required_artifacts=[A.AUDIT_REPORT],
            validated_artifacts=[A.AUDIT_REPORT],
        ),
        P.PRODUCTION_GATE: GateDefinition(
            phase=P.PRODUCTION_GATE,
            required_artifacts=[A.PRODUCTION_READINESS],
            required_inputs=[A.AUDIT_REPORT],
            required_checks=[C.TEST],
            optional_checks=[
                C.BUILD, C.LINT, C.TYPECHECK, C.PLACEHOLDER_SCAN, C.START, C.ENV_CHECK,
            ],
        ),
        P.RECOVERY_LOOP: GateDefinition(
            phase=P.RECOVERY_LOOP,
            required_artifacts=[A.RCA_REPORT],
            fail_transition=P.STUCK,
        ),
        P.DONE: GateDefinition(
            phase=P.DONE,
            required_artifacts=[A.RELEASE_NOTES, A.DEPLOYMENT, A.ROLLBACK],
            fail_transition=P.DONE,  # terminal
        ),
        P.STUCK: GateDefinition(
            phase=P.STUCK,
            required_artifacts=[A.STUCK_REPORT],
            fail_transition=P.STUCK,  # terminal
        ),
    }


GATE_DEFINITIONS: dict[PipelinePhase, GateDefinition] = build_gate_definitions()


def latest_consensus_packet_entry(
    state: PipelineState, phase: PipelinePhase
) -> ArtifactEntry | None:
    packets = [
        a for a in state.artifacts_of(A.CONSENSUS, phase) if a.group_id == CONSENSUS_GROUP
    ]
    if not packets:
        return None
    return max(enumerate(packets), key=lambda ip: (ip[1].timestamp, ip[0]))[1]


class GateEngine:
    """Evaluate gates against a pipeline state.

    Parameters
    ----------
    store:
        Integrity-checked artifact store; every content read goes through it.
    definitions:
        Per-phase gate definitions. Defaults to :data:`GATE_DEFINITIONS`.
    """

    def __init__(
        self,
        store: ArtifactStore,
        definitions: dict[PipelinePhase, GateDefinition] | None = None,
    ) -> None:
        self._store = store
        self._definitions = dict(definitions or GATE_DEFINITIONS)

    def definition(self, phase: PipelinePhase) -> GateDefinition:
        return self._definitions[phase]

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def evaluate_gate(
        self,
        phase: PipelinePhase,
        state: PipelineState,
        constitution: ConstitutionCheck | None = None,
    ) -> GateResult:
        """Full gate evaluation for *phase*; see the module docstring for order."""
        gate = self.definition(phase)

        if constitution is not None and not constitution.valid:
            return self._fail(
                phase,
                [constitution.reason or "Constitution verification failed"],
                integrity_failure=True,
            )

        try:
            blockers = self._validate_structure(gate, state)
            if blockers:
                return self._fail(phase, blockers)

            missing, blockers = self._check_artifacts(gate, state)
            if blockers:
                return self._fail(phase, blockers, missing_artifacts=missing)

            failed, blockers = self._check_results(gate, state)
            if blockers:
                return self._fail(phase, blockers, failed_checks=failed)

            if gate.requires_consensus:
                return self._check_consensus(gate, state)
        except IntegrityError as exc:
            logger.error("Integrity failure at %s gate: %s", phase.value, exc)
            return self._fail(phase, [f"Integrity failure: {exc}"], integrity_failure=True)

        return GateResult(phase=phase, passed=True)

    def evaluate_structural(self, phase: PipelinePhase, state: PipelineState) -> GateResult:
        """Validators and check results only; run before any reviewer call."""
        gate = self.definition(phase)
        try:
            blockers = self._validate_structure(gate, state)
            if blockers:
                return self._fail(phase, blockers)
            failed, blockers = self._check_results(gate, state)
            if blockers:
                return self._fail(phase, blockers, failed_checks=failed)
        except IntegrityError as exc:
            return self._fail(phase, [f"Integrity failure: {exc}"], integrity_failure=True)
        return GateResult(phase=phase, passed=True)

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------

    @staticmethod
    def next_phase(current: PipelinePhase) -> PipelinePhase:
        """Next phase in the linear sequence; DONE for anything off the end."""
        if current not in PHASE_SEQUENCE:
            return P.DONE
        index = PHASE_SEQUENCE.index(current)
        if index >= len(PHASE_SEQUENCE) - 1:
            return P.DONE
        return PHASE_SEQUENCE[index + 1]

    @staticmethod
    def can_transition(from_phase: PipelinePhase, to_phase: PipelinePhase) -> bool:
        return to_phase in VALID_TRANSITIONS.get(from_phase, set())

    # ------------------------------------------------------------------
    # Categories
    # ------------------------------------------------------------------

    def _validate_structure(self, gate: GateDefinition, state: PipelineState) -> list[str]:
        blockers: list[str] = []
        for artifact_type in gate.validated_artifacts:
            entry = state.latest_artifact(artifact_type)
            if entry is None:
                if not gate.noop_without_artifact:
                    blockers.append(f"No {artifact_type.value} artifact to validate")
                continue
            result = validate_artifact_completeness(artifact_type, self._store.fetch(entry))
            blockers.extend(f"{artifact_type.value}: {err}" for err in result.errors)
            for warning in result.warnings:
                logger.info("%s validation warning: %s", artifact_type.value, warning)
        return blockers

    def _check_artifacts(
        self, gate: GateDefinition, state: PipelineState
    ) -> tuple[list[ArtifactType], list[str]]:
        missing: list[ArtifactType] = []
        blockers: list[str] = []

        for artifact_type in gate.required_artifacts:
            entry = state.latest_artifact(artifact_type, gate.phase)
            if entry is None:
                missing.append(artifact_type)
                blockers.append(f"Missing artifact: {artifact_type.value}")
            else:
                self._store.fetch(entry)

        for artifact_type in gate.required_inputs:
            entry = state.latest_artifact(artifact_type)
            if entry is None:
                missing.append(artifact_type)
                blockers.append(f"Missing input artifact: {artifact_type.value}")
            else:
                self._store.fetch(entry)

        if gate.phase == P.PRODUCTION_GATE and not blockers:
            blockers.extend(self._audit_blockers(state))
        return missing, blockers

    def _audit_blockers(self, state: PipelineState) -> list[str]:
        entry = state.latest_artifact(A.AUDIT_REPORT)
        if entry is None:
            return ["Audit report required before production gate"]
        report = self._store.fetch_structured(entry, AuditReport)
        if report.recovery_required:
            open_findings = sum(1 for f in report.findings if f.blocking)
            return [f"Audit requires recovery: {open_findings} blocking finding(s) open"]
        return []

    @staticmethod
    def _check_results(
        gate: GateDefinition, state: PipelineState
    ) -> tuple[list[GateCheckType], list[str]]:
        latest = {c.check_type: c for c in state.checks_for(gate.phase)}
        failed: list[GateCheckType] = []
        blockers: list[str] = []

        for check_type in gate.required_checks:
            result = latest.get(check_type)
            if result is None:
                failed.append(check_type)
                blockers.append(f"Missing check result: {check_type.value}")
            elif result.status == CheckStatus.SKIP:
                failed.append(check_type)
                blockers.append(f"Required check skipped: {check_type.value}")
            elif result.status == CheckStatus.FAIL:
                failed.append(check_type)
                blockers.append(f"Check failed: {check_type.value} (exit code {result.exit_code})")

        for check_type in gate.optional_checks:
            result = latest.get(check_type)
            if result is not None and result.status == CheckStatus.FAIL:
                failed.append(check_type)
                blockers.append(f"Check failed: {check_type.value} (exit code {result.exit_code})")
        return failed, blockers

    def _check_consensus(self, gate: GateDefinition, state: PipelineState) -> GateResult:
        entry = latest_consensus_packet_entry(state, gate.phase)
        if entry is None:
            return self._fail(gate.phase, ["No consensus packet found"], consensus_rejected=True)

        packet = self._store.fetch_structured(entry, ConsensusPacket)
        result = packet.consensus_result
        blockers: list[str] = []
        if packet.final_status == ConsensusStatus.REJECTED:
            blockers.extend(result.reasons or ["Consensus rejected"])
            blockers.extend(result.blocking_issues)
        threshold = gate.consensus_threshold or 0.0
        if packet.final_status != ConsensusStatus.ARBITRATED and result.weighted_score < threshold:
            message = (
                f"Consensus score {result.weighted_score:.2f} below threshold {threshold:.2f}"
            )
            if message not in blockers:
                blockers.append(message)

        if blockers:
            return self._fail(
                gate.phase,
                blockers,
                score=result.weighted_score,
                consensus_score=result.weighted_score,
                consensus_rejected=True,
            )
        return GateResult(
            phase=gate.phase,
            passed=True,
            score=result.weighted_score,
            consensus_score=result.weighted_score,
        )

    @staticmethod
    def _fail(phase: PipelinePhase, blockers: list[str], **fields) -> GateResult:
        logger.info("Gate %s blocked: %s", phase.value, "; ".join(blockers))
        return GateResult(phase=phase, passed=False, blockers=blockers, **fields)
