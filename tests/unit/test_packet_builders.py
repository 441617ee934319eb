"""Unit tests for plan, RCA, and audit packet builders."""

from __future__ import annotations

import pytest

from phasegate.core.packet_builders import (
    build_audit_report,
    build_plan_packet,
    build_rca_packet,
    compute_risk_score,
    make_finding,
)
from phasegate.models.audit import AuditCategory, AuditSeverity, AuditStatus
from phasegate.models.phases import PipelinePhase, PipelineRole

S = AuditSeverity
C = AuditCategory


class TestPlanPacket:
    def test_fields_are_copied(self):
        packet = build_plan_packet(
            PipelinePhase.CONSENSUS_ARCHITECTURE,
            PipelineRole.ARCHITECT,
            acceptance_criteria=(c for c in ["contracts explicit"]),
            open_questions=["auth provider?"],
            version=2,
        )
        assert packet.metadata.phase == PipelinePhase.CONSENSUS_ARCHITECTURE
        assert packet.metadata.submitted_by == PipelineRole.ARCHITECT
        assert packet.metadata.version == 2
        assert packet.acceptance_criteria == ["contracts explicit"]
        assert packet.open_questions == ["auth provider?"]
        assert packet.references.master_plan is None

    def test_ids_are_unique(self):
        a = build_plan_packet(PipelinePhase.INTAKE, PipelineRole.DISPATCHER)
        b = build_plan_packet(PipelinePhase.INTAKE, PipelineRole.DISPATCHER)
        assert a.metadata.packet_id != b.metadata.packet_id


class TestRcaPacket:
    def test_rewind_target(self):
        rca = build_rca_packet(
            "tests failed",
            "missing fixture",
            "tests",
            PipelinePhase.QA_VALIDATION,
            symptoms=["3 failed"],
            rewind_to=PipelinePhase.IMPLEMENTATION,
        )
        assert rca.requires_phase_rewind_to == PipelinePhase.IMPLEMENTATION
        assert rca.symptoms == ["3 failed"]
        assert rca.origin_phase == PipelinePhase.QA_VALIDATION


class TestFindings:
    @pytest.mark.parametrize(
        ("severity", "blocking"),
        [(S.P0, True), (S.P1, True), (S.P2, False), (S.P3, False)],
    )
    def test_blocking_follows_severity(self, severity, blocking):
        assert make_finding(severity, C.TESTS, "x").blocking is blocking

    def test_generated_id(self):
        assert make_finding(S.P2, C.CONFIG, "x").id.startswith("F-")

    def test_risk_score_weights_and_cap(self):
        assert compute_risk_score([]) == 0
        assert compute_risk_score([make_finding(s, C.TESTS, "x") for s in S]) == 70
        assert compute_risk_score([make_finding(S.P0, C.TESTS, "x")] * 3) == 100


class TestAuditReport:
    def test_non_blocking_findings_pass(self):
        report = build_audit_report([make_finding(S.P2, C.CONFIG, "x"), make_finding(S.P3, C.TESTS, "y")])
        assert report.overall_status == AuditStatus.PASS
        assert report.system_risk_score == 10
        assert not report.recovery_required

    def test_blocking_finding_fails(self):
        report = build_audit_report([make_finding(S.P1, C.SECURITY, "secret in repo")])
        assert report.overall_status == AuditStatus.FAIL
        assert report.recovery_required

    def test_empty_report_passes(self):
        report = build_audit_report([])
        assert report.overall_status == AuditStatus.PASS
        assert report.findings == []
