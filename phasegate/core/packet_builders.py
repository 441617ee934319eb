"""Deterministic constructors for plan, RCA, and audit packets.

Identifiers and timestamps are generated here; everything else is derived
from the arguments so the same inputs always give the same decisions.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable

from phasegate.models.artifacts import ArtifactRef
from phasegate.models.audit import (
    BLOCKING_SEVERITIES,
    AuditCategory,
    AuditFinding,
    AuditReport,
    AuditSeverity,
    AuditStatus,
)
from phasegate.models.packets import (
    Constraint,
    DependencyEdge,
    PlanPacket,
    PlanPacketMetadata,
    PlanReferences,
    RCAPacket,
)
from phasegate.models.phases import PipelinePhase, PipelineRole

SEVERITY_WEIGHTS: dict[AuditSeverity, int] = {
    AuditSeverity.P0: 40,
    AuditSeverity.P1: 20,
    AuditSeverity.P2: 8,
    AuditSeverity.P3: 2,
}
MAX_RISK_SCORE = 100


def build_plan_packet(
    phase: PipelinePhase,
    submitted_by: PipelineRole,
    *,
    master_plan: ArtifactRef | None = None,
    constitution: ArtifactRef | None = None,
    repo_snapshot: ArtifactRef | None = None,
    proposed_artifacts: Iterable[ArtifactRef] = (),
    acceptance_criteria: Iterable[str] = (),
    dependencies: Iterable[DependencyEdge] = (),
    constraints: Iterable[Constraint] = (),
    open_questions: Iterable[str] = (),
    version: int = 1,
) -> PlanPacket:
    return PlanPacket(
        metadata=PlanPacketMetadata(
            packet_id=str(uuid.uuid4()),
            phase=phase,
            submitted_by=submitted_by,
            version=version,
        ),
        references=PlanReferences(
            master_plan=master_plan, constitution=constitution, repo_snapshot=repo_snapshot
        ),
        proposed_artifacts=list(proposed_artifacts),
        acceptance_criteria=list(acceptance_criteria),
        artifact_dependencies=list(dependencies),
        constraints=list(constraints),
        open_questions=list(open_questions),
    )


def build_rca_packet(
    incident_summary: str,
    root_cause: str,
    responsible_layer: str,
    origin_phase: PipelinePhase,
    *,
    symptoms: Iterable[str] = (),
    governance_gap: str = "",
    corrective_actions: Iterable[str] = (),
    prevention: str = "",
    rewind_to: PipelinePhase | None = None,
    requires_consensus_on: Iterable[PipelinePhase] = (),
) -> RCAPacket:
    return RCAPacket(
        rca_id=str(uuid.uuid4()),
        incident_summary=incident_summary,
        symptoms=list(symptoms),
        root_cause=root_cause,
        responsible_layer=responsible_layer,
        origin_phase=origin_phase,
        governance_gap=governance_gap,
        corrective_actions=list(corrective_actions),
        prevention=prevention,
        requires_phase_rewind_to=rewind_to,
        requires_consensus_on=list(requires_consensus_on),
    )


def make_finding(
    severity: AuditSeverity,
    category: AuditCategory,
    description: str,
    *,
    finding_id: str | None = None,
    suggested_owner: PipelineRole = PipelineRole.DEBUGGER,
    evidence: Iterable[ArtifactRef] = (),
    file_path: str | None = None,
    line_number: int | None = None,
) -> AuditFinding:
    """Build a finding whose ``blocking`` flag follows from its severity."""
    return AuditFinding(
        id=finding_id or f"F-{uuid.uuid4().hex[:8]}",
        severity=severity,
        category=category,
        description=description,
        evidence=list(evidence),
        file_path=file_path,
        line_number=line_number,
        suggested_owner=suggested_owner,
        blocking=severity in BLOCKING_SEVERITIES,
    )


def is_blocking(finding: AuditFinding) -> bool:
    return finding.blocking or finding.severity in BLOCKING_SEVERITIES


def compute_risk_score(findings: Iterable[AuditFinding]) -> int:
    return min(MAX_RISK_SCORE, sum(SEVERITY_WEIGHTS[f.severity] for f in findings))


def build_audit_report(
    findings: Iterable[AuditFinding], repo_snapshot: ArtifactRef | None = None
) -> AuditReport:
    """Aggregate findings into a report.

    The report fails if any finding blocks, and recovery is required when a
    blocking finding is P0 or P1.
    """
    findings = list(findings)
    blocking = [f for f in findings if is_blocking(f)]
    return AuditReport(
        audit_id=str(uuid.uuid4()),
        repo_snapshot=repo_snapshot,
        overall_status=AuditStatus.FAIL if blocking else AuditStatus.PASS,
        findings=findings,
        system_risk_score=compute_risk_score(findings),
        recovery_required=any(f.severity in BLOCKING_SEVERITIES for f in blocking),
    )
