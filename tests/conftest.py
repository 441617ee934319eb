"""Shared test fixtures for Phasegate."""

from __future__ import annotations

import asyncio
import shlex
import sys
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from phasegate.config import PhasegateConfig
from phasegate.core.artifact_store import ArtifactStore
from phasegate.core.cancellation import CancellationToken
from phasegate.core.check_runner import CheckRunner
from phasegate.core.collaborators import Collaborators
from phasegate.core.consensus import ConsensusRunner, ProviderRegistry, ProviderReview
from phasegate.core.gate_engine import GateEngine
from phasegate.core.repo_snapshot import SnapshotGenerator
from phasegate.core.skill_loader import SkillLoader
from phasegate.models.checks import CheckStatus, GateCheckResult, GateCheckType
from phasegate.models.packets import ReviewerVote, VoteDecision
from phasegate.models.phases import PipelineRole
from phasegate.models.state import PipelineState
from phasegate.phases.base import PhaseContext

PYTHON = shlex.quote(sys.executable)


def py_command(code: str) -> str:
    """Shell command running *code* with the current interpreter."""
    return f"{PYTHON} -c {shlex.quote(code)}"


# ---------------------------------------------------------------------------
# Scripted collaborators
# ---------------------------------------------------------------------------

MASTER_PLAN = """\
# Master Plan: Inventory Service

## Goals
- Deliver a small inventory API with persistent storage.
- Keep every endpoint covered by automated tests.

## Milestones
1. Milestone 1: storage schema and migrations (DB_EXPERT).
2. Milestone 2: REST endpoints with validation (BACKEND_PROGRAMMER).
3. Milestone 3: end to end test suite (QA_TESTER).

## Success Criteria
- All tests pass in CI.
- The service starts with a single command.
"""

ARCHITECTURE = """\
# Architecture

## Components
- `src/inventory/api.py`: HTTP handlers.
- `src/inventory/store.py`: persistence layer.

## Data Flow
Requests enter the API, are validated, then persisted through the store.
Each contract is documented alongside its handler.

## Tech Stack
Python 3.11, SQLite, pytest.
"""

ROLE_PLAN = """\
# Role Plan: {role}

## Tasks
- Implement the {role} slice of the inventory service.

## Dependencies
- Depends on the approved architecture.

## Acceptance Criteria
- Done when every task is covered by a passing test.
"""


class ScriptedAuthor:
    """Author returning section-complete content for every role."""

    def __init__(self, audit: str = "- P3 README wording could be clearer") -> None:
        self.audit = audit
        self.calls: list[tuple[PipelineRole, str]] = []

    def compose(self, role: PipelineRole, prompt: str) -> str:
        self.calls.append((role, prompt))
        if role == PipelineRole.DISPATCHER:
            return MASTER_PLAN
        if role == PipelineRole.ARCHITECT:
            return ARCHITECTURE
        if role == PipelineRole.AUDITOR:
            return self.audit
        if role == PipelineRole.DEBUGGER:
            return "Root cause: the failing gate's blockers were not addressed."
        if role == PipelineRole.RELEASE_MANAGER:
            return "# Release Notes\n\nFirst release of the inventory service."
        if "Write your role plan" in prompt:
            return ROLE_PLAN.format(role=role.value)
        return f"{role.value} implementation log: updated src/inventory/."

    def roles_called(self) -> list[PipelineRole]:
        return [role for role, _ in self.calls]


class StaticReviewer:
    """Async reviewer provider returning a fixed review."""

    def __init__(
        self,
        name: str,
        result: ProviderReview | None = None,
        *,
        error: Exception | None = None,
        delay: float = 0.0,
    ) -> None:
        self.name = name
        self.result = result or ProviderReview(decision=VoteDecision.APPROVE, confidence=0.99)
        self.error = error
        self.delay = delay
        self.prompts: list[str] = []

    async def review(self, prompt: str, *, model: str, temperature: float) -> ProviderReview:
        self.prompts.append(prompt)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.result


# ---------------------------------------------------------------------------
# Environment
# ---------------------------------------------------------------------------


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    """Provide an empty project directory."""
    path = tmp_path / "project"
    path.mkdir()
    return path


@pytest.fixture
def settings() -> PhasegateConfig:
    """Provide settings with a passing test command and no .env lookup."""
    return PhasegateConfig(
        _env_file=None,
        test_command=py_command("print('3 passed')"),
        run_start_check=False,
        reviewer_timeout_seconds=5.0,
        max_recovery_iterations=2,
        collaborators="",
    )


@pytest.fixture
def store(project_dir: Path) -> ArtifactStore:
    """Provide an ArtifactStore rooted at the project directory."""
    return ArtifactStore(project_dir)


@pytest.fixture
def py_cmd() -> Callable[[str], str]:
    """Build shell commands that run Python code with the test interpreter."""
    return py_command


@pytest.fixture
def make_author() -> Callable[..., ScriptedAuthor]:
    """Factory fixture: build a ScriptedAuthor."""

    def _factory(**overrides: Any) -> ScriptedAuthor:
        return ScriptedAuthor(**overrides)

    return _factory


@pytest.fixture
def author(make_author: Callable[..., ScriptedAuthor]) -> ScriptedAuthor:
    return make_author()


@pytest.fixture
def make_reviewer() -> Callable[..., StaticReviewer]:
    """Factory fixture: build a StaticReviewer."""

    def _factory(name: str = "openai", **overrides: Any) -> StaticReviewer:
        return StaticReviewer(name, **overrides)

    return _factory


@pytest.fixture
def reviewers(make_reviewer: Callable[..., StaticReviewer]) -> ProviderRegistry:
    """Approving providers registered under the default rotation names."""
    return ProviderRegistry([make_reviewer("openai"), make_reviewer("gemini")])


@pytest.fixture
def collaborators(author: ScriptedAuthor, reviewers: ProviderRegistry) -> Collaborators:
    return Collaborators(author=author, reviewers=reviewers)


# ---------------------------------------------------------------------------
# Model factories
# ---------------------------------------------------------------------------


@pytest.fixture
def make_check_result() -> Callable[..., GateCheckResult]:
    """Factory fixture: build a GateCheckResult with sensible defaults."""

    def _factory(
        check_type: GateCheckType = GateCheckType.TEST,
        status: CheckStatus = CheckStatus.PASS,
        **overrides: Any,
    ) -> GateCheckResult:
        defaults: dict[str, Any] = {
            "check_type": check_type,
            "status": status,
            "command": "pytest",
            "exit_code": 0 if status != CheckStatus.FAIL else 1,
        }
        defaults.update(overrides)
        return GateCheckResult(**defaults)

    return _factory


@pytest.fixture
def make_vote() -> Callable[..., ReviewerVote]:
    """Factory fixture: build a ReviewerVote with sensible defaults."""

    def _factory(
        vote: VoteDecision = VoteDecision.APPROVE,
        confidence: float = 0.99,
        **overrides: Any,
    ) -> ReviewerVote:
        defaults: dict[str, Any] = {
            "reviewer_id": "reviewer-test-0",
            "provider": "openai",
            "model": "gpt-4o",
            "prompt_hash": "0" * 64,
            "vote": vote,
            "confidence": confidence,
        }
        defaults.update(overrides)
        return ReviewerVote(**defaults)

    return _factory


@pytest.fixture
def make_context(
    project_dir: Path, store: ArtifactStore, settings: PhasegateConfig
) -> Callable[..., PhaseContext]:
    """Factory fixture: build a PhaseContext over the test project."""

    def _factory(
        state: PipelineState | None = None,
        collaborators: Collaborators | None = None,
        **overrides: Any,
    ) -> PhaseContext:
        token = overrides.pop("cancel_token", None) or CancellationToken()
        bundle = collaborators or Collaborators()
        defaults: dict[str, Any] = {
            "project_dir": project_dir,
            "state": state or PipelineState(),
            "store": store,
            "gate_engine": GateEngine(store),
            "skills": SkillLoader(project_dir / "skills"),
            "consensus": ConsensusRunner(
                bundle.reviewers,
                settings.reviewer_providers,
                timeout_seconds=settings.reviewer_timeout_seconds,
                cancel_token=token,
            ),
            "checks": CheckRunner(token),
            "snapshots": SnapshotGenerator(),
            "settings": settings,
            "collaborators": bundle,
            "cancel_token": token,
        }
        defaults.update(overrides)
        return PhaseContext(**defaults)

    return _factory


@pytest.fixture
def documents() -> dict[str, str]:
    """Section-complete planning documents keyed by artifact kind."""
    return {"master_plan": MASTER_PLAN, "architecture": ARCHITECTURE, "role_plan": ROLE_PLAN}
