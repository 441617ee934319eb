"""Unit tests for change request routing, drift detection, and dedupe."""

from __future__ import annotations

import re

import pytest

from phasegate.core.change_request import (
    audit_change_requests,
    build_change_request,
    dedupe_key,
    drift_change_requests,
    format_change_request,
    new_cr_id,
    next_pending_change_request,
    register_change_requests,
    resolve_change_request,
    route_change_request,
    route_finding,
)
from phasegate.core.packet_builders import make_finding
from phasegate.models.artifacts import ArtifactRef, ArtifactType
from phasegate.models.audit import AuditCategory, AuditSeverity
from phasegate.models.packets import ChangeRequestStatus, ChangeType, RiskLevel
from phasegate.models.phases import PipelinePhase, PipelineRole
from phasegate.models.snapshot import SnapshotDiff
from phasegate.models.state import PipelineState

P = PipelinePhase
C = AuditCategory
S = AuditSeverity

SNAPSHOT_REF = ArtifactRef(
    artifact_id="snap", path="docs/snapshots/s.json", sha256="0" * 64, version=1,
    type=ArtifactType.REPO_SNAPSHOT,
)


def _cr(origin: PipelinePhase = P.REVIEW, change_type: ChangeType = ChangeType.CONFIG):
    return build_change_request(origin, PipelineRole.REVIEWER, change_type, "desc", "why")


class TestRouting:
    @pytest.mark.parametrize(
        ("change_type", "target"),
        [
            (ChangeType.SCOPE, P.CONSENSUS_MASTER_PLAN),
            (ChangeType.ARCHITECTURE, P.CONSENSUS_ARCHITECTURE),
            (ChangeType.DEPENDENCY, P.CONSENSUS_ROLE_PLANS),
            (ChangeType.CONFIG, P.QA_VALIDATION),
            (ChangeType.REQUIREMENT, P.CONSENSUS_MASTER_PLAN),
        ],
    )
    def test_change_type_routing(self, change_type, target):
        assert route_change_request(_cr(change_type=change_type)) == target

    @pytest.mark.parametrize(
        ("category", "target"),
        [
            (C.INTEGRATION, P.CONSENSUS_ARCHITECTURE),
            (C.SCHEMA, P.CONSENSUS_ARCHITECTURE),
            (C.SECURITY, P.CONSENSUS_MASTER_PLAN),
            (C.TESTS, P.QA_VALIDATION),
            (C.CONFIG, P.QA_VALIDATION),
            (C.DEPLOYMENT, P.QA_VALIDATION),
        ],
    )
    def test_blocking_finding_routing(self, category, target):
        assert route_finding(category, S.P0) == target
        assert route_finding(category, S.P1) == target

    def test_non_blocking_finding_is_not_routed(self):
        assert route_finding(C.SECURITY, S.P2) is None
        assert route_finding(C.SECURITY, S.P3) is None

    def test_cr_id_format(self):
        assert re.fullmatch(r"CR-[0-9A-F]{8}", new_cr_id())


class TestDriftChangeRequests:
    def test_no_drift(self):
        assert drift_change_requests(SnapshotDiff(), SNAPSHOT_REF) == []

    def test_config_drift(self):
        crs = drift_change_requests(
            SnapshotDiff(changed_configs=["package.json"], has_changes=True), SNAPSHOT_REF
        )
        assert len(crs) == 1
        assert crs[0].change_type == ChangeType.CONFIG
        assert crs[0].impact_analysis.risk_level == RiskLevel.MEDIUM
        assert "package.json" in crs[0].description

    def test_many_config_changes_are_high_risk(self):
        diff = SnapshotDiff(changed_configs=["a", "b", "c", "d"], has_changes=True)
        assert drift_change_requests(diff, SNAPSHOT_REF)[0].impact_analysis.risk_level == RiskLevel.HIGH

    def test_scope_drift_either_direction(self):
        for delta in (1001, -1500):
            crs = drift_change_requests(SnapshotDiff(lines_delta=delta, has_changes=True), SNAPSHOT_REF)
            assert [cr.change_type for cr in crs] == [ChangeType.SCOPE]
        assert drift_change_requests(SnapshotDiff(lines_delta=1000), SNAPSHOT_REF) == []

    def test_scope_description_is_signed(self):
        crs = drift_change_requests(SnapshotDiff(lines_delta=1200), SNAPSHOT_REF)
        assert "+1200 lines" in crs[0].description


class TestAuditChangeRequests:
    def test_grouped_by_change_type(self):
        findings = [
            make_finding(S.P1, C.INTEGRATION, "api mismatch"),
            make_finding(S.P0, C.SCHEMA, "missing index"),
            make_finding(S.P1, C.TESTS, "flaky test"),
            make_finding(S.P3, C.SECURITY, "minor header"),
        ]
        crs = audit_change_requests(findings)
        by_type = {cr.change_type: cr for cr in crs}
        assert set(by_type) == {ChangeType.ARCHITECTURE, ChangeType.CONFIG}
        assert by_type[ChangeType.ARCHITECTURE].description.startswith("2 blocking architecture")
        assert by_type[ChangeType.ARCHITECTURE].impact_analysis.risk_level == RiskLevel.HIGH
        assert by_type[ChangeType.CONFIG].impact_analysis.risk_level == RiskLevel.MEDIUM
        assert all(cr.origin_phase == P.AUDIT for cr in crs)

    def test_security_is_high_risk_requirement(self):
        crs = audit_change_requests([make_finding(S.P1, C.SECURITY, "token in logs")])
        assert crs[0].change_type == ChangeType.REQUIREMENT
        assert crs[0].impact_analysis.risk_level == RiskLevel.HIGH


class TestRegistration:
    def test_dedupe_by_origin_and_type(self):
        state = PipelineState()
        first = register_change_requests(state, [_cr(), _cr()])
        assert len(first) == 1
        assert register_change_requests(state, [_cr()]) == []
        assert len(state.pending_change_requests) == 1
        assert state.pending_change_requests[0].dedupe_key == "REVIEW:config"
        assert state.pending_change_requests[0].target_phase == P.QA_VALIDATION

    def test_different_origin_is_not_a_duplicate(self):
        state = PipelineState()
        register_change_requests(state, [_cr(P.REVIEW), _cr(P.AUDIT)])
        assert len(state.pending_change_requests) == 2

    def test_next_pending_filters_by_origin_and_status(self):
        state = PipelineState()
        review_cr, audit_cr = _cr(P.REVIEW), _cr(P.AUDIT, ChangeType.ARCHITECTURE)
        register_change_requests(state, [review_cr, audit_cr])

        assert next_pending_change_request(state).cr_id == review_cr.cr_id
        assert next_pending_change_request(state, P.AUDIT).cr_id == audit_cr.cr_id

        resolve_change_request(state, review_cr.cr_id)
        assert next_pending_change_request(state, P.REVIEW) is None
        assert state.pending_change_requests[0].status == ChangeRequestStatus.APPROVED

    def test_dedupe_key(self):
        assert dedupe_key(_cr(P.AUDIT, ChangeType.SCOPE)) == "AUDIT:scope"


class TestFormat:
    def test_markdown_rendering(self):
        text = format_change_request(_cr(change_type=ChangeType.DEPENDENCY))
        assert text.startswith("# Change Request CR-")
        assert "**Routed To:** CONSENSUS_ROLE_PLANS" in text
        assert "## Justification\nwhy" in text
