"""Structured packets exchanged between phases, reviewers, and the router.

Plan packets are proposals; consensus packets aggregate reviewer votes;
RCA packets explain a failure; change requests re-route the pipeline.
All of them are frozen once built.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from phasegate.models.artifacts import ArtifactRef
from phasegate.models.phases import PipelinePhase, PipelineRole


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Plan packet
# ---------------------------------------------------------------------------


class ConstraintType(str, Enum):
    TECHNICAL = "technical"
    BUSINESS = "business"
    TIMELINE = "timeline"
    COMPLIANCE = "compliance"
    SECURITY = "security"
    PERFORMANCE = "performance"


class Constraint(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: ConstraintType
    description: str
    source: ArtifactRef | None = None


class DependencyRelation(str, Enum):
    DEPENDS_ON = "depends_on"
    SUPERSEDES = "supersedes"
    REFERENCES = "references"


class DependencyEdge(BaseModel):
    model_config = ConfigDict(frozen=True)

    source: ArtifactRef
    target: ArtifactRef
    relationship: DependencyRelation = DependencyRelation.DEPENDS_ON


class PlanPacketMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    packet_id: str
    timestamp: datetime = Field(default_factory=_utcnow)
    phase: PipelinePhase
    submitted_by: PipelineRole
    version: int = Field(default=1, ge=1)


class PlanReferences(BaseModel):
    model_config = ConfigDict(frozen=True)

    master_plan: ArtifactRef | None = None
    constitution: ArtifactRef | None = None
    repo_snapshot: ArtifactRef | None = None


class PlanPacket(BaseModel):
    """A machine-checkable proposal submitted for consensus review."""

    model_config = ConfigDict(frozen=True)

    metadata: PlanPacketMetadata
    references: PlanReferences = PlanReferences()
    proposed_artifacts: list[ArtifactRef] = []
    acceptance_criteria: list[str] = []
    artifact_dependencies: list[DependencyEdge] = []
    constraints: list[Constraint] = []
    open_questions: list[str] = []


# ---------------------------------------------------------------------------
# Reviewer votes and consensus
# ---------------------------------------------------------------------------


class VoteDecision(str, Enum):
    APPROVE = "APPROVE"
    REJECT = "REJECT"
    CONDITIONAL = "CONDITIONAL"


class ReviewerVote(BaseModel):
    """One reviewer's independent judgment of a plan packet."""

    model_config = ConfigDict(frozen=True)

    reviewer_id: str
    provider: str
    model: str
    temperature: float = 0.0
    prompt_hash: str
    vote: VoteDecision
    confidence: float = Field(ge=0.0, le=1.0)
    blocking_issues: list[str] = []
    suggestions: list[str] = []
    evidence_refs: list[ArtifactRef] = []


class ConsensusRules(BaseModel):
    model_config = ConfigDict(frozen=True)

    threshold: float = Field(default=0.95, ge=0.0, le=1.0)
    quorum: int = Field(default=2, ge=1)
    min_reviewers: int = Field(default=2, ge=1)


class ConsensusResult(BaseModel):
    """Computed outcome of a vote set under a set of rules."""

    model_config = ConfigDict(frozen=True)

    approved: bool
    score: float = Field(ge=0.0, le=1.0)
    weighted_score: float = Field(ge=0.0, le=1.0)
    participating_reviewers: int
    blocking_issues: list[str] = []
    reasons: list[str] = []


class ArbitratorResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    decision: str
    merged_patch: str | None = None
    artifact_ref: ArtifactRef | None = None


class ConsensusStatus(str, Enum):
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    ARBITRATED = "ARBITRATED"


class ConsensusPacketMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    packet_id: str
    timestamp: datetime = Field(default_factory=_utcnow)
    plan_packet_id: str


class ConsensusPacket(BaseModel):
    """Aggregated votes and the decision reached. Never edited after creation."""

    model_config = ConfigDict(frozen=True)

    metadata: ConsensusPacketMetadata
    plan_packet_reference: ArtifactRef
    reviewer_votes: list[ReviewerVote]
    consensus_rules: ConsensusRules
    consensus_result: ConsensusResult
    arbitrator_result: ArbitratorResult | None = None
    final_status: ConsensusStatus


# ---------------------------------------------------------------------------
# Root cause analysis
# ---------------------------------------------------------------------------


class RCAPacket(BaseModel):
    model_config = ConfigDict(frozen=True)

    rca_id: str
    timestamp: datetime = Field(default_factory=_utcnow)
    incident_summary: str
    symptoms: list[str] = []
    root_cause: str
    responsible_layer: str
    origin_phase: PipelinePhase
    governance_gap: str = ""
    corrective_actions: list[str] = []
    prevention: str = ""
    requires_phase_rewind_to: PipelinePhase | None = None
    requires_consensus_on: list[PipelinePhase] = []


# ---------------------------------------------------------------------------
# Change requests
# ---------------------------------------------------------------------------


class ChangeType(str, Enum):
    SCOPE = "scope"
    ARCHITECTURE = "architecture"
    DEPENDENCY = "dependency"
    CONFIG = "config"
    REQUIREMENT = "requirement"


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ChangeRequestStatus(str, Enum):
    PROPOSED = "proposed"
    APPROVED = "approved"
    REJECTED = "rejected"


class ImpactAnalysis(BaseModel):
    model_config = ConfigDict(frozen=True)

    affected_artifacts: list[ArtifactRef] = []
    affected_phases: list[PipelinePhase] = []
    risk_level: RiskLevel = RiskLevel.MEDIUM


class ChangeRequest(BaseModel):
    """A routable request to re-enter an earlier phase."""

    model_config = ConfigDict(frozen=True)

    cr_id: str = Field(pattern=r"^CR-[0-9A-F]{8}$")
    timestamp: datetime = Field(default_factory=_utcnow)
    origin_phase: PipelinePhase
    requested_by: PipelineRole
    change_type: ChangeType
    description: str
    justification: str
    impact_analysis: ImpactAnalysis = ImpactAnalysis()
    status: ChangeRequestStatus = ChangeRequestStatus.PROPOSED
    approval_artifact: ArtifactRef | None = None
