"""Phasegate data models: Pydantic v2, frozen except for PipelineState."""

from phasegate.models.artifacts import ArtifactEntry, ArtifactRef, ArtifactType, ContentType
from phasegate.models.audit import (
    AuditCategory,
    AuditFinding,
    AuditReport,
    AuditSeverity,
    AuditStatus,
    ProductionReadiness,
)
from phasegate.models.checks import (
    CheckStatus,
    GateCheckResult,
    GateCheckType,
    ResolvedCommands,
)
from phasegate.models.packets import (
    ChangeRequest,
    ChangeType,
    ConsensusPacket,
    ConsensusResult,
    ConsensusRules,
    ConsensusStatus,
    Constraint,
    ConstraintType,
    PlanPacket,
    RCAPacket,
    ReviewerVote,
    VoteDecision,
)
from phasegate.models.phases import (
    PHASE_SEQUENCE,
    VALID_TRANSITIONS,
    LegacyPhase,
    PipelinePhase,
    PipelineRole,
)
from phasegate.models.snapshot import ConfigFileEntry, PortEntry, RepoSnapshot, SnapshotDiff
from phasegate.models.skills import SkillDefinition
from phasegate.models.state import (
    GateDefinition,
    GateResult,
    PendingChangeRequest,
    PhaseResult,
    PipelineResult,
    PipelineState,
    TransitionRecord,
)

__all__ = [
    # phases
    "PipelinePhase",
    "PipelineRole",
    "LegacyPhase",
    "PHASE_SEQUENCE",
    "VALID_TRANSITIONS",
    # artifacts
    "ArtifactType",
    "ContentType",
    "ArtifactRef",
    "ArtifactEntry",
    # checks
    "GateCheckType",
    "CheckStatus",
    "GateCheckResult",
    "ResolvedCommands",
    # snapshots
    "ConfigFileEntry",
    "PortEntry",
    "RepoSnapshot",
    "SnapshotDiff",
    # skills
    "SkillDefinition",
    # packets
    "ConstraintType",
    "Constraint",
    "PlanPacket",
    "VoteDecision",
    "ReviewerVote",
    "ConsensusRules",
    "ConsensusResult",
    "ConsensusStatus",
    "ConsensusPacket",
    "RCAPacket",
    "ChangeType",
    "ChangeRequest",
    # audit
    "AuditSeverity",
    "AuditCategory",
    "AuditStatus",
    "AuditFinding",
    "AuditReport",
    "ProductionReadiness",
    # state
    "GateDefinition",
    "GateResult",
    "PendingChangeRequest",
    "TransitionRecord",
    "PipelineState",
    "PhaseResult",
    "PipelineResult",
]
