"""PRODUCTION_GATE: binary production-ready decision.

Runs every resolved command plus the placeholder scan, the env check and
(when enabled and a start command exists) the start check. The verdict and
per-check statuses are stored as a structured ``production_readiness``
artifact alongside a readable report.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from phasegate.core.check_runner import run_env_check, run_placeholder_scan, store_check_results
from phasegate.models.artifacts import ArtifactEntry, ArtifactType
from phasegate.models.audit import AuditReport, AuditStatus, ProductionReadiness
from phasegate.models.checks import CheckStatus, GateCheckResult, GateCheckType
from phasegate.models.phases import PipelinePhase
from phasegate.models.state import PhaseResult
from phasegate.phases.base import (
    BasePhase,
    PhaseContext,
    capture_snapshot,
    resolve_and_store_commands,
    success_result,
    trigger_journalist,
)

REPORT_GROUP = "production_readiness_report"

_STATUS_LINES: tuple[tuple[str, GateCheckType], ...] = (
    ("Build", GateCheckType.BUILD),
    ("Tests", GateCheckType.TEST),
    ("Lint", GateCheckType.LINT),
    ("Typecheck", GateCheckType.TYPECHECK),
    ("Env", GateCheckType.ENV_CHECK),
    ("Start", GateCheckType.START),
)


def assess_readiness(
    results: list[GateCheckResult], audit: AuditReport | None
) -> ProductionReadiness:
    blockers = [
        f"{r.check_type.value} failed (exit code {r.exit_code})"
        for r in results
        if r.status == CheckStatus.FAIL
    ]
    if audit is None:
        blockers.append("No audit report")
    elif audit.recovery_required:
        blockers.append("Audit requires recovery")
    if not any(r.check_type == GateCheckType.TEST and r.passed for r in results):
        blockers.append("Tests did not pass")

    return ProductionReadiness(
        production_id=str(uuid.uuid4()),
        check_statuses={r.check_type.value: r.status for r in results},
        audit_status=audit.overall_status if audit else None,
        unresolved_blockers=blockers,
        final_verdict=AuditStatus.FAIL if blockers else AuditStatus.PASS,
    )


def format_readiness_report(
    readiness: ProductionReadiness, results: list[GateCheckResult]
) -> str:
    by_type = {r.check_type: r for r in results}
    placeholder = by_type.get(GateCheckType.PLACEHOLDER_SCAN)
    has_placeholders = placeholder is not None and placeholder.status == CheckStatus.FAIL

    lines = [
        "# Production Readiness Report",
        "",
        f"**Timestamp:** {datetime.now(timezone.utc).isoformat()}",
        f"**Verdict:** {readiness.final_verdict.value}",
        "",
        "## Check Results",
        "",
    ]
    for r in results:
        duration = f" ({r.duration_ms:.0f}ms)" if r.duration_ms > 0 else ""
        lines.append(f"- **{r.check_type.value}**: {r.status.value}{duration}")
    if has_placeholders:
        lines += ["", "## Warning: Placeholder content detected", placeholder.stderr_summary or ""]

    lines += ["", "## Gate Status"]
    for label, check_type in _STATUS_LINES:
        r = by_type.get(check_type)
        lines.append(f"- {label}: {r.status.value.upper() if r else 'SKIP'}")
    audit = readiness.audit_status.value if readiness.audit_status else "MISSING"
    lines.append(f"- Audit: {audit}")
    lines.append(f"- Placeholders: {'WARNING' if has_placeholders else 'CLEAN'}")

    if readiness.unresolved_blockers:
        lines += ["", "## Unresolved Blockers", *(f"- {b}" for b in readiness.unresolved_blockers)]
    return "\n".join(lines)


class ProductionGatePhase(BasePhase):
    @property
    def phase(self) -> PipelinePhase:
        return PipelinePhase.PRODUCTION_GATE

    @property
    def display_name(self) -> str:
        return "Production Gate"

    def execute(self, ctx: PhaseContext) -> PhaseResult:
        state = ctx.state
        artifacts: list[ArtifactEntry] = []

        # --- Commands from the final tree --------------------------------
        snapshot, snapshot_entry = capture_snapshot(ctx, self.phase)
        artifacts.append(snapshot_entry)
        artifacts.append(resolve_and_store_commands(ctx, snapshot, self.phase))
        commands = state.resolved_commands

        # --- Checks ------------------------------------------------------
        ctx.progress(self.phase, "Running build, test, lint, typecheck and migration checks")
        results = ctx.checks.run_all_checks(commands, ctx.project_dir)
        ctx.cancel_token.raise_if_cancelled()
        results.append(run_placeholder_scan(ctx.project_dir))
        results.append(run_env_check(ctx.project_dir))
        if ctx.settings.run_start_check and commands.start:
            ctx.progress(self.phase, f"Start check: {commands.start}")
            results.append(
                ctx.checks.run_start_check(
                    commands.start, ctx.project_dir, ctx.settings.start_check_timeout_seconds
                )
            )
        artifacts.extend(store_check_results(results, ctx.store, self.phase))
        state.gate_checks = {**state.gate_checks, self.phase: results}

        # --- Verdict -----------------------------------------------------
        audit_entry = state.latest_artifact(ArtifactType.AUDIT_REPORT, PipelinePhase.AUDIT)
        audit = (
            ctx.store.fetch_structured(audit_entry, AuditReport)
            if audit_entry is not None and audit_entry.group_id == ArtifactType.AUDIT_REPORT.value
            else None
        )
        readiness = assess_readiness(results, audit)
        artifacts.append(
            ctx.store.store(
                ArtifactType.PRODUCTION_READINESS,
                format_readiness_report(readiness, results),
                self.phase,
                group_id=REPORT_GROUP,
            )
        )
        artifacts.append(
            ctx.store.store_structured(ArtifactType.PRODUCTION_READINESS, readiness, self.phase)
        )
        artifacts.append(trigger_journalist(ctx, self.phase, artifacts))

        failed = sum(1 for r in results if r.status == CheckStatus.FAIL)
        message = (
            "Production Gate PASS"
            if readiness.final_verdict == AuditStatus.PASS
            else f"Production Gate FAIL: {failed} failed check(s)"
        )
        return success_result(self.phase, artifacts, message)
