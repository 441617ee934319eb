"""Pipeline state aggregate, gate definitions, and gate/phase results.

``PipelineState`` is the single mutable model in the package. It is owned by
the orchestrator, changes only through phase transitions and handler
bookkeeping, and is persisted after every mutation.
"""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field

from phasegate.models.artifacts import ArtifactEntry, ArtifactRef, ArtifactType
from phasegate.models.checks import GateCheckResult, GateCheckType, ResolvedCommands
from phasegate.models.packets import ChangeRequestStatus, ChangeType
from phasegate.models.phases import PipelinePhase, PipelineRole


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class GateDefinition(BaseModel):
    """What a phase must produce and prove before it may advance."""

    model_config = ConfigDict(frozen=True)

    phase: PipelinePhase
    required_artifacts: list[ArtifactType] = []  # produced in this phase
    required_inputs: list[ArtifactType] = []  # produced in any earlier phase
    validated_artifacts: list[ArtifactType] = []  # structural validators
    required_checks: list[GateCheckType] = []  # must be present and pass
    optional_checks: list[GateCheckType] = []  # may be absent; fail still blocks
    consensus_threshold: float | None = None
    quorum: int = 2
    min_reviewers: int = 2
    max_iterations: int = 3
    noop_without_artifact: bool = False
    fail_transition: PipelinePhase = PipelinePhase.RECOVERY_LOOP

    @property
    def requires_consensus(self) -> bool:
        return self.consensus_threshold is not None


class GateResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    phase: PipelinePhase
    passed: bool
    score: float | None = None
    consensus_score: float | None = None
    blockers: list[str] = []
    missing_artifacts: list[ArtifactType] = []
    failed_checks: list[GateCheckType] = []
    consensus_rejected: bool = False
    integrity_failure: bool = False
    timestamp: datetime = Field(default_factory=_utcnow)

    @property
    def reason(self) -> str:
        return "; ".join(self.blockers) if self.blockers else "passed"


class PendingChangeRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    cr_id: str
    change_type: ChangeType
    target_phase: PipelinePhase
    status: ChangeRequestStatus = ChangeRequestStatus.PROPOSED
    dedupe_key: str = ""


class TransitionRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    from_phase: PipelinePhase
    to_phase: PipelinePhase
    reason: str = ""
    timestamp: datetime = Field(default_factory=_utcnow)


class PipelineState(BaseModel):
    """Root aggregate for one project's pipeline run."""

    model_config = ConfigDict(validate_assignment=True)

    pipeline_phase: PipelinePhase = PipelinePhase.INTAKE
    artifacts: list[ArtifactEntry] = []
    recovery_count: int = Field(default=0, ge=0)
    max_recovery_iterations: int = Field(default=5, ge=1)
    gate_results: dict[PipelinePhase, GateResult] = {}
    gate_checks: dict[PipelinePhase, list[GateCheckResult]] = {}
    active_roles: list[PipelineRole] = []
    constitution_hash: str = ""
    latest_repo_snapshot: ArtifactRef | None = None
    resolved_commands: ResolvedCommands | None = None
    failed_phase: PipelinePhase | None = None
    pending_change_requests: list[PendingChangeRequest] = []
    consensus_attempts: dict[PipelinePhase, int] = {}
    history: list[TransitionRecord] = []
    last_failure_reason: str | None = None
    brief: str = ""

    # ------------------------------------------------------------------
    # Artifact queries
    # ------------------------------------------------------------------

    def artifacts_of(
        self, artifact_type: ArtifactType, phase: PipelinePhase | None = None
    ) -> list[ArtifactEntry]:
        return [
            a for a in self.artifacts
            if a.type == artifact_type and (phase is None or a.phase == phase)
        ]

    def latest_artifact(
        self, artifact_type: ArtifactType, phase: PipelinePhase | None = None
    ) -> ArtifactEntry | None:
        """Most recent entry of *artifact_type* (optionally within *phase*)."""
        matches = self.artifacts_of(artifact_type, phase)
        if not matches:
            return None
        # Stable for equal timestamps: later appends win.
        return max(enumerate(matches), key=lambda im: (im[1].timestamp, im[0]))[1]

    def has_artifact(
        self, artifact_type: ArtifactType, phase: PipelinePhase | None = None
    ) -> bool:
        return bool(self.artifacts_of(artifact_type, phase))

    def add_artifacts(self, entries: list[ArtifactEntry]) -> None:
        known = {a.id for a in self.artifacts}
        self.artifacts = self.artifacts + [e for e in entries if e.id not in known]

    def checks_for(self, phase: PipelinePhase) -> list[GateCheckResult]:
        return list(self.gate_checks.get(phase, []))


class PhaseResult(BaseModel):
    """What a phase handler reports back to the orchestrator."""

    model_config = ConfigDict(frozen=True)

    phase: PipelinePhase
    success: bool
    artifacts: list[ArtifactEntry] = []
    message: str = ""
    error: str | None = None


class PipelineResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool
    final_phase: PipelinePhase
    artifacts: list[ArtifactEntry] = []
    recovery_iterations: int = 0
    error: str | None = None
