"""Unit tests for the pipeline orchestrator's run loop and transitions."""

from __future__ import annotations

import json
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from phasegate.core.cancellation import CancellationToken
from phasegate.core.change_request import build_change_request, register_change_requests
from phasegate.core.collaborators import Collaborators
from phasegate.core.consensus import ProviderRegistry, ProviderReview
from phasegate.core.constitution import constitution_path
from phasegate.core.migration import LEGACY_STATE_PATH
from phasegate.core.orchestrator import Orchestrator, resume_pipeline, run_pipeline
from phasegate.core.state_store import StateNotFoundError
from phasegate.models.artifacts import ArtifactType
from phasegate.models.packets import ChangeRequestStatus, ChangeType, VoteDecision
from phasegate.models.phases import PipelinePhase, PipelineRole

P = PipelinePhase


@pytest.fixture
def make_orchestrator(project_dir: Path, settings) -> Callable[..., Orchestrator]:
    """Factory fixture: build an Orchestrator over the test project."""

    def _factory(collaborators: Collaborators | None = None, **overrides: Any) -> Orchestrator:
        defaults: dict[str, Any] = {
            "collaborators": collaborators or Collaborators(),
            "settings": settings,
        }
        defaults.update(overrides)
        return Orchestrator(project_dir, **defaults)

    return _factory


# ---------------------------------------------------------------------------
# Test: state lifecycle
# ---------------------------------------------------------------------------


class TestLifecycle:
    def test_start_persists_fresh_state(self, make_orchestrator):
        orch = make_orchestrator()
        state = orch.start("inventory api")
        assert state.pipeline_phase == P.INTAKE
        assert state.max_recovery_iterations == 2

        resumed = make_orchestrator().resume()
        assert resumed.brief == "inventory api"
        assert resumed.pipeline_phase == P.INTAKE

    def test_resume_without_state(self, make_orchestrator):
        with pytest.raises(StateNotFoundError):
            make_orchestrator().resume()

    def test_resume_migrates_legacy_state(self, make_orchestrator, project_dir: Path):
        path = project_dir / LEGACY_STATE_PATH
        path.parent.mkdir(parents=True)
        path.write_text(
            json.dumps({"name": "svc", "phase": "execution", "language": "python"}), encoding="utf-8"
        )
        orch = make_orchestrator()
        state = orch.resume()

        assert state.pipeline_phase == P.IMPLEMENTATION
        assert PipelineRole.BACKEND_PROGRAMMER in state.active_roles
        assert state.max_recovery_iterations == 2
        assert orch.state_store.exists()

    def test_reset_is_persisted(self, make_orchestrator):
        orch = make_orchestrator()
        orch.start()
        orch.run()
        assert orch.current_phase == P.STUCK

        orch.reset(P.INTAKE, "fixed the author config")
        resumed = make_orchestrator().resume()
        assert resumed.pipeline_phase == P.INTAKE
        assert resumed.recovery_count == 0
        assert resumed.history[-1].reason == "fixed the author config"

    def test_typed_accessors(self, make_orchestrator, collaborators):
        orch = make_orchestrator(collaborators)
        orch.start()
        orch.step()

        assert orch.current_phase == P.CONSENSUS_MASTER_PLAN
        assert PipelineRole.DISPATCHER in orch.active_roles
        refs = orch.artifact_refs()
        assert {r.artifact_id for r in refs} == {a.id for a in orch.state.artifacts}
        assert any(r.type == ArtifactType.MASTER_PLAN for r in refs)

    def test_repr(self, make_orchestrator):
        orch = make_orchestrator()
        assert "phase=unloaded" in repr(orch)
        orch.start()
        assert "phase=INTAKE" in repr(orch)


# ---------------------------------------------------------------------------
# Test: transitions
# ---------------------------------------------------------------------------


class TestStep:
    def test_pass_advances(self, make_orchestrator, collaborators):
        progress: list[str] = []
        orch = make_orchestrator(collaborators, on_progress=lambda phase, msg: progress.append(msg))
        orch.start()
        gate = orch.step()

        assert gate.passed, gate.blockers
        assert orch.current_phase == P.CONSENSUS_MASTER_PLAN
        assert orch.state.gate_results[P.INTAKE] == gate
        assert orch.state.history[-1].reason == "gate passed"
        assert "Gate passed -> CONSENSUS_MASTER_PLAN" in progress

    def test_handler_failure_enters_recovery(self, make_orchestrator):
        orch = make_orchestrator()
        orch.start()
        gate = orch.step()

        assert not gate.passed
        assert gate.blockers[0].startswith("Phase INTAKE failed: No author configured")
        assert orch.current_phase == P.RECOVERY_LOOP
        assert orch.state.recovery_count == 1
        assert orch.state.failed_phase == P.INTAKE
        assert orch.state.last_failure_reason.startswith("INTAKE: ")

    def test_recovery_rewinds_to_failed_phase(self, make_orchestrator):
        orch = make_orchestrator()
        orch.start()
        orch.step()
        gate = orch.step()

        assert gate.passed
        assert orch.current_phase == P.INTAKE
        assert orch.state.has_artifact(ArtifactType.RCA_REPORT, P.RECOVERY_LOOP)
        assert orch.state.history[-1].reason == "Recovery complete; rewind to INTAKE"

    def test_passing_clears_failure(self, make_orchestrator, collaborators):
        orch = make_orchestrator(collaborators)
        state = orch.start()
        state.failed_phase = P.INTAKE
        state.last_failure_reason = "INTAKE: earlier failure"
        orch.step()
        assert state.failed_phase is None
        assert state.last_failure_reason is None

    def test_constitution_tampering_is_stuck(self, make_orchestrator, collaborators, project_dir, settings):
        orch = make_orchestrator(collaborators)
        orch.start()
        orch.step()
        constitution_path(project_dir, settings.skills_dir).write_text("# Anything goes\n", encoding="utf-8")

        gate = orch.step()

        assert gate.integrity_failure
        assert gate.blockers == ["Constitution has been modified since pipeline start"]
        assert orch.current_phase == P.STUCK
        assert orch.state.recovery_count == 0

    def test_change_request_reroutes_after_review(self, make_orchestrator):
        orch = make_orchestrator()
        orch.start()
        orch.reset(P.REVIEW, "resume at review")
        cr = build_change_request(P.REVIEW, PipelineRole.REVIEWER, ChangeType.CONFIG, "tsconfig changed", "drift")
        register_change_requests(orch.state, [cr])

        gate = orch.step()

        assert gate.passed
        assert orch.current_phase == P.QA_VALIDATION
        assert orch.state.history[-1].reason == f"Change request {cr.cr_id} (config) routed to QA_VALIDATION"
        assert orch.state.pending_change_requests[0].status == ChangeRequestStatus.APPROVED


# ---------------------------------------------------------------------------
# Test: run loop
# ---------------------------------------------------------------------------


class TestRun:
    def test_recovery_budget_exhausted(self, make_orchestrator):
        orch = make_orchestrator()
        orch.start()
        result = orch.run()

        assert not result.success
        assert result.final_phase == P.STUCK
        assert result.recovery_iterations == 2
        assert result.error.startswith("INTAKE: ")
        assert [(h.from_phase, h.to_phase) for h in orch.state.history] == [
            (P.INTAKE, P.RECOVERY_LOOP),
            (P.RECOVERY_LOOP, P.INTAKE),
            (P.INTAKE, P.RECOVERY_LOOP),
            (P.RECOVERY_LOOP, P.INTAKE),
            (P.INTAKE, P.STUCK),
        ]
        assert orch.state.history[-1].reason.startswith("Recovery budget exhausted (2)")
        assert orch.state.has_artifact(ArtifactType.STUCK_REPORT, P.STUCK)

    def test_terminal_handler_runs_once(self, make_orchestrator):
        orch = make_orchestrator()
        orch.start()
        orch.run()
        orch.run()
        assert len(orch.state.artifacts_of(ArtifactType.STUCK_REPORT)) == 1

    def test_terminal_handler_reruns_after_reset(self, make_orchestrator):
        orch = make_orchestrator()
        orch.start()
        orch.run()
        first_gate = orch.state.gate_results[P.STUCK]

        orch.reset(P.INTAKE, "try again")
        result = orch.run()

        assert result.final_phase == P.STUCK
        reports = orch.state.artifacts_of(ArtifactType.STUCK_REPORT)
        assert len(reports) == 2
        assert orch.state.gate_results[P.STUCK].timestamp > first_gate.timestamp

        orch.run()
        assert len(orch.state.artifacts_of(ArtifactType.STUCK_REPORT)) == 2

    def test_consensus_rejection_is_bounded(self, make_orchestrator, author, make_reviewer, settings):
        rejecting = ProviderReview(
            decision=VoteDecision.REJECT, confidence=0.9, blocking_issues=["missing rollback plan"]
        )
        bundle = Collaborators(
            author=author,
            reviewers=ProviderRegistry(
                [make_reviewer("openai", result=rejecting), make_reviewer("gemini", result=rejecting)]
            ),
        )
        orch = make_orchestrator(
            bundle, settings=settings.model_copy(update={"consensus_max_iterations": 1})
        )
        orch.start()
        result = orch.run()

        assert result.final_phase == P.STUCK
        assert result.recovery_iterations == 2
        loops = [
            h for h in orch.state.history
            if h.from_phase == P.CONSENSUS_MASTER_PLAN and h.to_phase == P.INTAKE
        ]
        assert len(loops) == 1
        assert loops[0].reason.startswith("Consensus rejected (attempt 1/1)")
        assert "missing rollback plan" in orch.state.gate_results[P.CONSENSUS_MASTER_PLAN].blockers

    def test_cancelled_before_start(self, make_orchestrator):
        token = CancellationToken()
        token.cancel("user abort")
        orch = make_orchestrator(cancel_token=token)
        orch.start()
        result = orch.run()

        assert not result.success
        assert result.final_phase == P.INTAKE
        assert result.error == "cancelled: user abort"
        assert orch.state.history == []


class TestEntryPoints:
    def test_run_pipeline(self, project_dir: Path, settings):
        result = run_pipeline(project_dir, "inventory api", collaborators=Collaborators(), settings=settings)
        assert result.final_phase == P.STUCK

    def test_resume_pipeline_without_state(self, project_dir: Path, settings):
        with pytest.raises(StateNotFoundError):
            resume_pipeline(project_dir, collaborators=Collaborators(), settings=settings)
