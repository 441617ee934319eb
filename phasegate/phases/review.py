"""REVIEW: compare the implemented tree against the approved-plan baseline.

The baseline is the snapshot captured when role plans were approved. Drift
in config files or a large line delta raises change requests, which the
orchestrator routes back to the phase that must re-approve them.
"""

from __future__ import annotations

from datetime import datetime, timezone

from phasegate.core.change_request import (
    drift_change_requests,
    format_change_request,
    register_change_requests,
)
from phasegate.core.repo_snapshot import diff_snapshots
from phasegate.models.artifacts import ArtifactEntry, ArtifactType
from phasegate.models.packets import ChangeRequest
from phasegate.models.phases import PipelinePhase
from phasegate.models.snapshot import RepoSnapshot, SnapshotDiff
from phasegate.models.state import PhaseResult
from phasegate.phases.base import (
    BasePhase,
    PhaseContext,
    capture_snapshot,
    success_result,
)


def _signed(n: int) -> str:
    return f"+{n}" if n > 0 else str(n)


def format_drift(diff: SnapshotDiff) -> str:
    if not diff.has_changes:
        return "No drift detected between approved plans and implementation."
    lines = [
        "### Implementation Drift Detected",
        "",
        f"Files delta: {_signed(diff.files_delta)}",
        f"Lines delta: {_signed(diff.lines_delta)}",
    ]
    if diff.added_configs:
        lines.append(f"Added configs: {', '.join(diff.added_configs)}")
    if diff.removed_configs:
        lines.append(f"Removed configs: {', '.join(diff.removed_configs)}")
    if diff.changed_configs:
        lines.append(f"Changed configs: {', '.join(diff.changed_configs)}")
    return "\n".join(lines)


def format_review_decision(drift_report: str, has_drift: bool, crs: list[ChangeRequest]) -> str:
    lines = [
        "# Review Decision",
        "",
        f"**Timestamp:** {datetime.now(timezone.utc).isoformat()}",
        "**Phase:** REVIEW",
        f"**Drift Detected:** {'Yes' if has_drift else 'No'}",
        f"**Change Requests:** {len(crs)}",
        "",
        "## Drift Analysis",
        drift_report,
    ]
    if crs:
        lines += ["", "## Change Requests", *(f"- {cr.cr_id}: {cr.description}" for cr in crs)]
    lines += [
        "",
        "## Plan Alignment",
        "Implementation reviewed against approved role plans.",
        "",
        "## Decision",
        "Review flagged drift; change requests created for re-approval."
        if crs
        else "Review completed. See drift analysis above.",
    ]
    return "\n".join(lines)


class ReviewPhase(BasePhase):
    @property
    def phase(self) -> PipelinePhase:
        return PipelinePhase.REVIEW

    @property
    def display_name(self) -> str:
        return "Review"

    def execute(self, ctx: PhaseContext) -> PhaseResult:
        state = ctx.state
        artifacts: list[ArtifactEntry] = []

        # --- Fresh snapshot vs. the approval baseline --------------------
        current, snapshot_entry = capture_snapshot(ctx, self.phase)
        artifacts.append(snapshot_entry)
        snapshot_ref = snapshot_entry.to_ref()

        baseline_entry = state.latest_artifact(
            ArtifactType.REPO_SNAPSHOT, PipelinePhase.CONSENSUS_ROLE_PLANS
        )
        crs: list[ChangeRequest] = []
        has_drift = False
        if baseline_entry is None:
            drift_report = "No baseline snapshot found for drift detection."
        else:
            baseline = ctx.store.fetch_structured(baseline_entry, RepoSnapshot)
            diff = diff_snapshots(baseline, current)
            has_drift = diff.has_changes
            drift_report = format_drift(diff)
            crs = drift_change_requests(diff, snapshot_ref)

        # --- Change requests, deduplicated per run -----------------------
        registered = register_change_requests(state, crs)
        for cr in registered:
            artifacts.append(
                ctx.store.store(
                    ArtifactType.CHANGE_REQUEST, format_change_request(cr), self.phase,
                    group_id=cr.cr_id,
                )
            )

        artifacts.append(
            ctx.store.store(
                ArtifactType.REVIEW_DECISION,
                format_review_decision(drift_report, has_drift, registered),
                self.phase,
            )
        )
        return success_result(
            self.phase, artifacts, f"Review complete. {len(registered)} change request(s)."
        )
