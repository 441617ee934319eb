"""Abstract base phase with an enforced lifecycle.

Every concrete phase inherits from BasePhase and implements only
``execute()``. The ``run_phase()`` wrapper is **not overridable**: it logs,
wraps handler exceptions, and records produced artifacts on the pipeline
state so that every handler is bookkept the same way.

Handlers do not decide whether the pipeline advances; the gate engine
does, after the handler returns.
"""

from __future__ import annotations

import abc
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import final

from phasegate.config import PhasegateConfig
from phasegate.core.artifact_store import ArtifactStore, IntegrityError
from phasegate.core.cancellation import CancellationToken, PipelineCancelled
from phasegate.core.check_runner import CheckRunner
from phasegate.core.collaborators import Collaborators
from phasegate.core.command_resolver import resolve_commands
from phasegate.core.consensus import ConsensusRunner
from phasegate.core.gate_engine import GateEngine
from phasegate.core.repo_snapshot import SnapshotGenerator
from phasegate.core.skill_loader import SkillLoader
from phasegate.models.artifacts import ArtifactEntry, ArtifactType
from phasegate.models.phases import PipelinePhase, PipelineRole
from phasegate.models.snapshot import RepoSnapshot
from phasegate.models.state import PhaseResult, PipelineState

logger = logging.getLogger(__name__)


class PhaseExecutionError(RuntimeError):
    """Raised when a phase's execute() method fails."""


@dataclass
class PhaseContext:
    """Everything a phase handler may touch during one run."""

    project_dir: Path
    state: PipelineState
    store: ArtifactStore
    gate_engine: GateEngine
    skills: SkillLoader
    consensus: ConsensusRunner
    checks: CheckRunner
    snapshots: SnapshotGenerator
    settings: PhasegateConfig
    collaborators: Collaborators = field(default_factory=Collaborators)
    cancel_token: CancellationToken = field(default_factory=CancellationToken)

    def progress(self, phase: PipelinePhase, message: str) -> None:
        logger.info("[%s] %s", phase.value, message)
        if self.collaborators.on_progress is not None:
            self.collaborators.on_progress(phase, message)


# ---------------------------------------------------------------------------
# Result helpers
# ---------------------------------------------------------------------------

def success_result(
    phase: PipelinePhase, artifacts: list[ArtifactEntry], message: str
) -> PhaseResult:
    return PhaseResult(phase=phase, success=True, artifacts=artifacts, message=message)


def failure_result(
    phase: PipelinePhase,
    message: str,
    error: str | None = None,
    artifacts: list[ArtifactEntry] | None = None,
) -> PhaseResult:
    return PhaseResult(
        phase=phase, success=False, artifacts=artifacts or [], message=message, error=error
    )


# ---------------------------------------------------------------------------
# Shared handler helpers
# ---------------------------------------------------------------------------

def compose(ctx: PhaseContext, role: PipelineRole, instructions: str) -> str:
    """Ask the configured author for content as *role*.

    The role's skill prompt leads; the brief and the last failure reason
    follow when present so a retried phase sees why it was retried.
    """
    author = ctx.collaborators.author
    if author is None:
        raise PhaseExecutionError(f"No author configured to write as {role.value}")

    skill = ctx.skills.load_skill(role)
    parts = [skill.system_prompt, ""]
    if skill.constraints:
        parts += ["## Constraints", *(f"- {c}" for c in skill.constraints), ""]
    if ctx.state.brief:
        parts += ["## Project Brief", ctx.state.brief, ""]
    if ctx.state.last_failure_reason:
        parts += ["## Previous Attempt Failed", ctx.state.last_failure_reason, ""]
    parts.append(instructions)

    ctx.cancel_token.raise_if_cancelled()
    text = author.compose(role, "\n".join(parts))
    if not text or not text.strip():
        raise PhaseExecutionError(f"Author returned empty content for {role.value}")
    return text


def latest_content(ctx: PhaseContext, artifact_type: ArtifactType) -> str | None:
    """Integrity-checked content of the newest artifact of *artifact_type*."""
    entry = ctx.state.latest_artifact(artifact_type)
    return ctx.store.fetch(entry) if entry is not None else None


def capture_snapshot(
    ctx: PhaseContext, phase: PipelinePhase
) -> tuple[RepoSnapshot, ArtifactEntry]:
    snapshot, entry = ctx.snapshots.capture(ctx.project_dir, ctx.store, phase)
    ctx.state.latest_repo_snapshot = ctx.store.to_ref(entry)
    return snapshot, entry


def resolve_and_store_commands(
    ctx: PhaseContext, snapshot: RepoSnapshot, phase: PipelinePhase
) -> ArtifactEntry:
    """Resolve project commands, apply config overrides, and persist them."""
    commands = resolve_commands(snapshot, ctx.settings.command_overrides())
    ctx.state.resolved_commands = commands
    return ctx.store.store_structured(ArtifactType.RESOLVED_COMMANDS, commands, phase)


def trigger_journalist(
    ctx: PhaseContext, phase: PipelinePhase, artifacts: list[ArtifactEntry]
) -> ArtifactEntry:
    """Write a human-readable trace of *artifacts* and refresh INDEX.md."""
    skill = ctx.skills.load_skill(PipelineRole.JOURNALIST)
    lines = [
        f"# Journalist Trace: {phase.value}",
        "",
        f"**Phase:** {phase.value}",
        f"**Recovery iteration:** {ctx.state.recovery_count}",
        "",
        "## Artifacts Recorded",
        "",
        *(f"- [{a.type.value}] v{a.version}: {a.path} (sha256 {a.sha256[:12]})" for a in artifacts),
        "",
        f"## Recorded by {skill.role.value}",
        skill.system_prompt[:200],
    ]
    entry = ctx.store.store(ArtifactType.JOURNALIST_TRACE, "\n".join(lines), phase)
    ctx.store.update_index(ctx.state.artifacts + artifacts + [entry])
    return entry


# ---------------------------------------------------------------------------
# Base phase
# ---------------------------------------------------------------------------

class BasePhase(abc.ABC):
    """Abstract base for all pipeline phase handlers.

    Subclasses **must** implement:
        * ``phase`` -- the :class:`PipelinePhase` handled.
        * ``display_name`` -- human-readable name shown in progress output.
        * ``execute(ctx)`` -- the phase's core logic.

    Subclasses **must not** override ``run_phase()``.
    """

    @property
    @abc.abstractmethod
    def phase(self) -> PipelinePhase:
        ...

    @property
    @abc.abstractmethod
    def display_name(self) -> str:
        ...

    @abc.abstractmethod
    def execute(self, ctx: PhaseContext) -> PhaseResult:
        """Produce this phase's artifacts.

        Returns
        -------
        PhaseResult
            ``artifacts`` lists every entry stored during the call; they are
            added to the pipeline state by :meth:`run_phase`.
        """
        ...

    @final
    def run_phase(self, ctx: PhaseContext) -> PhaseResult:
        """Execute the handler and record its artifacts.  **Do not override.**

        Cancellation and integrity failures propagate to the orchestrator.
        Any other exception is wrapped in :class:`PhaseExecutionError` and
        reported as a failed result.
        """
        ctx.progress(self.phase, f"{self.display_name} started")
        try:
            result = self.execute(ctx)
        except (PipelineCancelled, IntegrityError):
            raise
        except Exception as exc:
            error = PhaseExecutionError(f"Phase {self.phase.value} failed: {exc}")
            error.__cause__ = exc
            logger.error("%s [%s] execution failed: %s", self.display_name, self.phase.value, exc)
            result = failure_result(self.phase, f"{self.display_name} failed", str(error))

        ctx.state.add_artifacts(result.artifacts)
        ctx.progress(self.phase, result.message if result.success else (result.error or result.message))
        return result

    def __repr__(self) -> str:
        return f"<{type(self).__name__} phase={self.phase.value!r}>"
