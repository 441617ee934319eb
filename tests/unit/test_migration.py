"""Unit tests for legacy workflow state migration."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from phasegate.core.migration import (
    BASE_ROLES,
    LEGACY_STATE_PATH,
    LegacyProjectState,
    derive_active_roles,
    load_legacy_state,
    migrate_legacy_state,
    needs_migration,
    to_legacy_phase,
    to_pipeline_phase,
)
from phasegate.models.phases import LegacyPhase, PipelinePhase, PipelineRole

P = PipelinePhase
L = LegacyPhase


class TestPhaseMapping:
    @pytest.mark.parametrize(
        ("legacy", "phase"),
        [(L.PLAN, P.INTAKE), (L.EXECUTION, P.IMPLEMENTATION), (L.COMPLETE, P.DONE)],
    )
    def test_forward(self, legacy, phase):
        assert to_pipeline_phase(legacy) == phase

    def test_every_phase_maps_back(self):
        for phase in PipelinePhase:
            assert isinstance(to_legacy_phase(phase), LegacyPhase)

    def test_reverse_groups(self):
        assert to_legacy_phase(P.CONSENSUS_ROLE_PLANS) == L.PLAN
        assert to_legacy_phase(P.STUCK) == L.EXECUTION
        assert to_legacy_phase(P.DONE) == L.COMPLETE

    def test_round_trip_from_legacy(self):
        for legacy in LegacyPhase:
            assert to_legacy_phase(to_pipeline_phase(legacy)) == legacy


class TestActiveRoles:
    def test_python(self):
        roles = derive_active_roles("Python")
        assert roles == BASE_ROLES + [PipelineRole.BACKEND_PROGRAMMER]
        assert len(BASE_ROLES) == 9

    def test_fullstack(self):
        roles = derive_active_roles("fullstack")
        assert PipelineRole.FRONTEND_PROGRAMMER in roles
        assert PipelineRole.DB_EXPERT in roles

    def test_unknown_language_defaults_to_backend(self):
        assert derive_active_roles("cobol")[-1] == PipelineRole.BACKEND_PROGRAMMER


class TestMigrate:
    def test_migrate(self):
        state = migrate_legacy_state(LegacyProjectState(name="svc", phase=L.EXECUTION, language="website"))
        assert state.pipeline_phase == P.IMPLEMENTATION
        assert PipelineRole.MARKETING_EXPERT in state.active_roles
        assert state.artifacts == []

    def test_load_missing(self, project_dir: Path):
        assert load_legacy_state(project_dir) is None

    def test_load_ignores_unknown_fields(self, project_dir: Path):
        path = project_dir / LEGACY_STATE_PATH
        path.parent.mkdir(parents=True)
        path.write_text(
            json.dumps({"name": "svc", "phase": "complete", "language": "python", "tasks": [1, 2]}),
            encoding="utf-8",
        )
        legacy = load_legacy_state(project_dir)
        assert legacy.phase == L.COMPLETE
        assert legacy.name == "svc"

    def test_needs_migration(self):
        assert needs_migration({"name": "svc", "phase": "plan"})
        assert not needs_migration({"name": "svc", "phase": "plan", "pipeline": {}})

    def test_load_skips_already_migrated(self, project_dir: Path):
        path = project_dir / LEGACY_STATE_PATH
        path.parent.mkdir(parents=True)
        path.write_text(
            json.dumps({"name": "svc", "phase": "execution", "pipeline": {"pipeline_phase": "REVIEW"}}),
            encoding="utf-8",
        )
        assert load_legacy_state(project_dir) is None
