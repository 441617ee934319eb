"""AUDIT: holistic system audit before the production gate.

The auditor's free text is kept verbatim; findings are extracted from lines
carrying a P0 to P3 severity marker and classified by keyword. Blocking
findings raise change requests.
"""

from __future__ import annotations

import re

from phasegate.core.change_request import (
    audit_change_requests,
    format_change_request,
    register_change_requests,
)
from phasegate.core.packet_builders import build_audit_report, make_finding
from phasegate.models.artifacts import ArtifactEntry, ArtifactRef, ArtifactType
from phasegate.models.audit import AuditCategory, AuditFinding, AuditSeverity
from phasegate.models.phases import PipelinePhase, PipelineRole
from phasegate.models.state import PhaseResult
from phasegate.phases.base import (
    BasePhase,
    PhaseContext,
    capture_snapshot,
    compose,
    success_result,
    trigger_journalist,
)

_SEVERITY = re.compile(r"\b(P[0-3])\b")
_FILE_REF = re.compile(r"([\w./-]+\.\w+):(\d+)")

# First match wins; anything unmatched is an integration finding.
CATEGORY_KEYWORDS: list[tuple[AuditCategory, re.Pattern[str]]] = [
    (AuditCategory.SECURITY, re.compile(r"secur|auth|secret|credential|inject|xss|csrf", re.I)),
    (AuditCategory.SCHEMA, re.compile(r"schema|migration|database|\bdb\b", re.I)),
    (AuditCategory.TESTS, re.compile(r"test|coverage", re.I)),
    (AuditCategory.CONFIG, re.compile(r"config|\benv\b|environment variable", re.I)),
    (AuditCategory.DEPLOYMENT, re.compile(r"deploy|docker|release|rollback", re.I)),
]

AUDIT_INSTRUCTIONS = """\
Perform a holistic system audit covering:
1. Integration (frontend to backend, backend to database)
2. Config and environment
3. Tests and coverage
4. Migrations
5. Basic security
6. Deployment readiness

Write one line per finding, starting with its severity (P0, P1, P2 or P3).
P0 and P1 findings block production.

## Repo Snapshot
Total files: {total_files}
Languages: {languages}
Test framework: {test_framework}
Build tool: {build_tool}
"""


def classify_finding(text: str) -> AuditCategory:
    for category, pattern in CATEGORY_KEYWORDS:
        if pattern.search(text):
            return category
    return AuditCategory.INTEGRATION


def parse_audit_findings(
    response: str, evidence: ArtifactRef | None = None
) -> list[AuditFinding]:
    """Best-effort extraction of findings from free-text audit output."""
    findings: list[AuditFinding] = []
    for line in response.splitlines():
        match = _SEVERITY.search(line)
        if not match:
            continue
        description = line.strip().lstrip("-*# ").strip()
        file_ref = _FILE_REF.search(line)
        findings.append(
            make_finding(
                AuditSeverity(match.group(1)),
                classify_finding(description),
                description,
                finding_id=f"finding-{len(findings) + 1}",
                suggested_owner=PipelineRole.DEBUGGER,
                evidence=[evidence] if evidence else [],
                file_path=file_ref.group(1) if file_ref else None,
                line_number=int(file_ref.group(2)) if file_ref else None,
            )
        )
    return findings


class AuditPhase(BasePhase):
    @property
    def phase(self) -> PipelinePhase:
        return PipelinePhase.AUDIT

    @property
    def display_name(self) -> str:
        return "Audit"

    def execute(self, ctx: PhaseContext) -> PhaseResult:
        artifacts: list[ArtifactEntry] = []

        snapshot, snapshot_entry = capture_snapshot(ctx, self.phase)
        artifacts.append(snapshot_entry)
        snapshot_ref = snapshot_entry.to_ref()

        response = compose(
            ctx,
            PipelineRole.AUDITOR,
            AUDIT_INSTRUCTIONS.format(
                total_files=snapshot.total_files,
                languages=", ".join(snapshot.languages_detected) or "none",
                test_framework=snapshot.test_framework or "none",
                build_tool=snapshot.build_tool or "none",
            ),
        )

        # Raw text first so the structured report is the latest audit_report.
        artifacts.append(
            ctx.store.store(
                ArtifactType.AUDIT_REPORT, response, self.phase, group_id="audit_report_text"
            )
        )
        findings = parse_audit_findings(response, snapshot_ref)
        report = build_audit_report(findings, snapshot_ref)
        artifacts.append(ctx.store.store_structured(ArtifactType.AUDIT_REPORT, report, self.phase))

        registered = register_change_requests(
            ctx.state, audit_change_requests(findings, snapshot_ref)
        )
        for cr in registered:
            artifacts.append(
                ctx.store.store(
                    ArtifactType.CHANGE_REQUEST, format_change_request(cr), self.phase,
                    group_id=cr.cr_id,
                )
            )

        artifacts.append(trigger_journalist(ctx, self.phase, artifacts))
        return success_result(
            self.phase,
            artifacts,
            f"Audit {report.overall_status.value}: {len(findings)} finding(s), "
            f"risk score {report.system_risk_score}, {len(registered)} change request(s)",
        )
