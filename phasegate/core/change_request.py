"""Change requests: build, route, and register re-entry into earlier phases.

REVIEW raises change requests from snapshot drift and AUDIT raises them
from blocking findings. Routing is a pure lookup from change type to the
phase that must re-approve the change.

Each request carries a dedupe key of ``<origin>:<change_type>``. A key is
registered at most once per run, so a second REVIEW over the same drift
cannot send the pipeline around the same loop again.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable

from phasegate.core.packet_builders import is_blocking
from phasegate.models.artifacts import ArtifactRef
from phasegate.models.audit import AuditCategory, AuditFinding, AuditSeverity
from phasegate.models.packets import (
    ChangeRequest,
    ChangeRequestStatus,
    ChangeType,
    ImpactAnalysis,
    RiskLevel,
)
from phasegate.models.phases import PipelinePhase, PipelineRole
from phasegate.models.snapshot import SnapshotDiff
from phasegate.models.state import PendingChangeRequest, PipelineState

logger = logging.getLogger(__name__)

P = PipelinePhase

CATEGORY_CHANGE_TYPE: dict[AuditCategory, ChangeType] = {
    AuditCategory.INTEGRATION: ChangeType.ARCHITECTURE,
    AuditCategory.SCHEMA: ChangeType.ARCHITECTURE,
    AuditCategory.SECURITY: ChangeType.REQUIREMENT,
    AuditCategory.TESTS: ChangeType.CONFIG,
    AuditCategory.CONFIG: ChangeType.CONFIG,
    AuditCategory.DEPLOYMENT: ChangeType.CONFIG,
}

CHANGE_TYPE_ROUTING: dict[ChangeType, PipelinePhase] = {
    ChangeType.SCOPE: P.CONSENSUS_MASTER_PLAN,
    ChangeType.ARCHITECTURE: P.CONSENSUS_ARCHITECTURE,
    ChangeType.DEPENDENCY: P.CONSENSUS_ROLE_PLANS,
    ChangeType.CONFIG: P.QA_VALIDATION,
    ChangeType.REQUIREMENT: P.CONSENSUS_MASTER_PLAN,
}

SCOPE_DRIFT_LINES = 1000
HIGH_RISK_CONFIG_CHANGES = 3


# ---------------------------------------------------------------------------
# Routing
# ---------------------------------------------------------------------------

def route_change_request(cr: ChangeRequest) -> PipelinePhase:
    return CHANGE_TYPE_ROUTING[cr.change_type]


def route_finding(category: AuditCategory, severity: AuditSeverity) -> PipelinePhase | None:
    """Phase a finding should re-enter, or None for non-blocking severities."""
    if severity not in (AuditSeverity.P0, AuditSeverity.P1):
        return None
    return CHANGE_TYPE_ROUTING[CATEGORY_CHANGE_TYPE[category]]


def dedupe_key(cr: ChangeRequest) -> str:
    return f"{cr.origin_phase.value}:{cr.change_type.value}"


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------

def new_cr_id() -> str:
    return f"CR-{uuid.uuid4().hex[:8].upper()}"


def build_change_request(
    origin_phase: PipelinePhase,
    requested_by: PipelineRole,
    change_type: ChangeType,
    description: str,
    justification: str,
    *,
    affected_artifacts: Iterable[ArtifactRef] = (),
    affected_phases: Iterable[PipelinePhase] = (),
    risk_level: RiskLevel = RiskLevel.MEDIUM,
) -> ChangeRequest:
    return ChangeRequest(
        cr_id=new_cr_id(),
        origin_phase=origin_phase,
        requested_by=requested_by,
        change_type=change_type,
        description=description,
        justification=justification,
        impact_analysis=ImpactAnalysis(
            affected_artifacts=list(affected_artifacts),
            affected_phases=list(affected_phases),
            risk_level=risk_level,
        ),
    )


def format_change_request(cr: ChangeRequest) -> str:
    impact = cr.impact_analysis
    lines = [
        f"# Change Request {cr.cr_id}",
        "",
        f"**Status:** {cr.status.value}",
        f"**Type:** {cr.change_type.value}",
        f"**Origin Phase:** {cr.origin_phase.value}",
        f"**Requested By:** {cr.requested_by.value}",
        f"**Risk Level:** {impact.risk_level.value}",
        f"**Routed To:** {route_change_request(cr).value}",
        f"**Timestamp:** {cr.timestamp.isoformat()}",
        "",
        "## Description",
        cr.description,
        "",
        "## Justification",
        cr.justification,
        "",
        "## Impact Analysis",
        f"- Affected phases: {', '.join(p.value for p in impact.affected_phases) or 'none'}",
        f"- Affected artifacts: {len(impact.affected_artifacts)}",
        f"- Risk level: {impact.risk_level.value}",
    ]
    if cr.approval_artifact is not None:
        lines += ["", f"## Approval: {cr.approval_artifact.artifact_id}"]
    return "\n".join(lines)


def _signed(n: int) -> str:
    return f"+{n}" if n > 0 else str(n)


def drift_change_requests(diff: SnapshotDiff, snapshot_ref: ArtifactRef) -> list[ChangeRequest]:
    """Change requests for implementation drift found during REVIEW."""
    crs: list[ChangeRequest] = []
    if diff.changed_configs:
        crs.append(
            build_change_request(
                P.REVIEW,
                PipelineRole.REVIEWER,
                ChangeType.CONFIG,
                f"Config files changed during implementation: {', '.join(diff.changed_configs)}",
                "Detected by snapshot diff during review phase",
                affected_artifacts=[snapshot_ref],
                affected_phases=[P.IMPLEMENTATION, P.QA_VALIDATION],
                risk_level=(
                    RiskLevel.HIGH
                    if len(diff.changed_configs) > HIGH_RISK_CONFIG_CHANGES
                    else RiskLevel.MEDIUM
                ),
            )
        )
    if abs(diff.lines_delta) > SCOPE_DRIFT_LINES:
        crs.append(
            build_change_request(
                P.REVIEW,
                PipelineRole.REVIEWER,
                ChangeType.SCOPE,
                f"Significant scope drift detected: {_signed(diff.lines_delta)} lines",
                "Large line delta suggests scope changes beyond approved plans",
                affected_artifacts=[snapshot_ref],
                affected_phases=[P.CONSENSUS_MASTER_PLAN, P.IMPLEMENTATION],
                risk_level=RiskLevel.HIGH,
            )
        )
    return crs


_AUDIT_JUSTIFICATION: dict[ChangeType, str] = {
    ChangeType.ARCHITECTURE: "Blocking audit findings require architectural review before production",
    ChangeType.REQUIREMENT: "Security issues must be resolved before production deployment",
    ChangeType.CONFIG: "Blocking configuration, test or deployment findings must be fixed and revalidated",
}


def audit_change_requests(
    findings: Iterable[AuditFinding], snapshot_ref: ArtifactRef | None = None
) -> list[ChangeRequest]:
    """One change request per change type present among blocking findings."""
    grouped: dict[ChangeType, list[AuditFinding]] = {}
    for finding in findings:
        if is_blocking(finding):
            grouped.setdefault(CATEGORY_CHANGE_TYPE[finding.category], []).append(finding)

    crs: list[ChangeRequest] = []
    for change_type, group in grouped.items():
        summary = "; ".join(f.description[:80] for f in group)
        crs.append(
            build_change_request(
                P.AUDIT,
                PipelineRole.AUDITOR,
                change_type,
                f"{len(group)} blocking {change_type.value} finding(s): {summary}",
                _AUDIT_JUSTIFICATION[change_type],
                affected_artifacts=[snapshot_ref] if snapshot_ref else [],
                affected_phases=[CHANGE_TYPE_ROUTING[change_type], P.IMPLEMENTATION],
                risk_level=(
                    RiskLevel.HIGH
                    if any(f.severity == AuditSeverity.P0 for f in group)
                    or change_type == ChangeType.REQUIREMENT
                    else RiskLevel.MEDIUM
                ),
            )
        )
    return crs


# ---------------------------------------------------------------------------
# Pipeline state bookkeeping
# ---------------------------------------------------------------------------

def register_change_requests(
    state: PipelineState, crs: Iterable[ChangeRequest]
) -> list[ChangeRequest]:
    """Record new change requests on *state*; return those not deduplicated away."""
    known = {p.dedupe_key for p in state.pending_change_requests}
    registered: list[ChangeRequest] = []
    pending = list(state.pending_change_requests)
    for cr in crs:
        key = dedupe_key(cr)
        if key in known:
            logger.info("Skipping duplicate change request %s (%s)", cr.cr_id, key)
            continue
        known.add(key)
        pending.append(
            PendingChangeRequest(
                cr_id=cr.cr_id,
                change_type=cr.change_type,
                target_phase=route_change_request(cr),
                dedupe_key=key,
            )
        )
        registered.append(cr)
    state.pending_change_requests = pending
    return registered


def next_pending_change_request(
    state: PipelineState, origin: PipelinePhase | None = None
) -> PendingChangeRequest | None:
    """First proposed request, optionally limited to one originating phase."""
    for pending in state.pending_change_requests:
        if pending.status != ChangeRequestStatus.PROPOSED:
            continue
        if origin is not None and not pending.dedupe_key.startswith(f"{origin.value}:"):
            continue
        return pending
    return None


def resolve_change_request(
    state: PipelineState, cr_id: str, status: ChangeRequestStatus = ChangeRequestStatus.APPROVED
) -> None:
    state.pending_change_requests = [
        p.model_copy(update={"status": status}) if p.cr_id == cr_id else p
        for p in state.pending_change_requests
    ]
