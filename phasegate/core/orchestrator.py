"""Pipeline orchestrator: the central coordinator for Phasegate runs.

The Orchestrator wires the ArtifactStore, GateEngine, PhaseMachine,
ConsensusRunner, CheckRunner and SnapshotGenerator into a single loop:

1. run the current phase's handler;
2. re-verify the constitution;
3. evaluate the phase gate and persist the result;
4. choose the next phase from the gate outcome.

Only an exhausted budget (recovery iterations, consensus iterations) or an
integrity failure moves a run to STUCK. State is persisted after every
transition, so a crashed or cancelled run resumes where it stopped.
"""

from __future__ import annotations

import dataclasses
import logging
from pathlib import Path

from phasegate.config import PhasegateConfig
from phasegate.core.artifact_store import ArtifactStore, IntegrityError
from phasegate.core.cancellation import CancellationToken, PipelineCancelled
from phasegate.core.change_request import next_pending_change_request, resolve_change_request
from phasegate.core.check_runner import CheckRunner
from phasegate.core.collaborators import Collaborators, ProgressCallback, load_collaborators
from phasegate.core.consensus import ConsensusRunner
from phasegate.core.constitution import verify_constitution
from phasegate.core.gate_engine import GateEngine, build_gate_definitions
from phasegate.core.migration import load_legacy_state, migrate_legacy_state
from phasegate.core.phase_machine import PhaseMachine
from phasegate.core.repo_snapshot import SnapshotGenerator
from phasegate.core.skill_loader import create_skill_loader
from phasegate.core.state_store import StateNotFoundError, StateStore
from phasegate.models.artifacts import ArtifactRef
from phasegate.models.phases import (
    CHANGE_REQUEST_ORIGINS,
    CONSENSUS_PREDECESSOR,
    TERMINAL_PHASES,
    PipelinePhase,
    PipelineRole,
)
from phasegate.models.state import GateDefinition, GateResult, PipelineResult, PipelineState
from phasegate.phases import get_phase
from phasegate.phases.base import PhaseContext
from phasegate.phases.recovery import latest_rca

logger = logging.getLogger(__name__)

P = PipelinePhase


class Orchestrator:
    """Central pipeline orchestrator for one project directory.

    Parameters
    ----------
    project_dir:
        Root of the project being delivered.
    collaborators:
        Author, reviewer providers and progress sink. Defaults to an empty
        bundle, in which case AI-authored phases fail their gates.
    settings:
        Runtime configuration. Defaults to the global ``config``.
    cancel_token:
        Run-level cancellation. Defaults to a token carrying
        ``settings.run_timeout_seconds`` as its deadline.
    on_progress:
        ``(phase, message)`` callback; overrides ``collaborators.on_progress``.
    gate_definitions:
        Per-phase gates. Defaults to the definitions built from *settings*.
    """

    def __init__(
        self,
        project_dir: Path,
        *,
        collaborators: Collaborators | None = None,
        settings: PhasegateConfig | None = None,
        cancel_token: CancellationToken | None = None,
        on_progress: ProgressCallback | None = None,
        gate_definitions: dict[PipelinePhase, GateDefinition] | None = None,
    ) -> None:
        if settings is None:
            from phasegate.config import config as settings

        self.project_dir = Path(project_dir).resolve()
        self.settings = settings
        self.collaborators = collaborators or Collaborators()
        if on_progress is not None:
            self.collaborators = dataclasses.replace(self.collaborators, on_progress=on_progress)
        self.cancel_token = cancel_token or CancellationToken(settings.run_timeout_seconds)

        # Core subsystems
        self.store = ArtifactStore(self.project_dir, settings.docs_dir)
        self.state_store = StateStore(self.project_dir, settings.state_path)
        self.gate_engine = GateEngine(
            self.store,
            gate_definitions
            or build_gate_definitions(
                threshold=settings.consensus_threshold,
                quorum=settings.consensus_quorum,
                min_reviewers=settings.min_reviewers,
                max_iterations=settings.consensus_max_iterations,
            ),
        )
        self.skills = create_skill_loader(self.project_dir, settings.skills_dir)
        self.consensus = ConsensusRunner(
            self.collaborators.reviewers,
            settings.reviewer_providers,
            mode=settings.consensus_mode,
            timeout_seconds=settings.reviewer_timeout_seconds,
            max_iterations=settings.consensus_max_iterations,
            cancel_token=self.cancel_token,
            reviser=self.collaborators.reviser,
        )
        self.checks = CheckRunner(self.cancel_token)
        self.snapshots = SnapshotGenerator()

        self._state: PipelineState | None = None
        self._machine: PhaseMachine | None = None

    # ------------------------------------------------------------------
    # State lifecycle
    # ------------------------------------------------------------------

    def start(self, brief: str = "") -> PipelineState:
        """Begin a fresh run at INTAKE, replacing any saved state."""
        state = PipelineState(
            max_recovery_iterations=self.settings.max_recovery_iterations,
            brief=brief,
        )
        self._attach(state)
        self.state_store.save(state)
        logger.info("Started pipeline run in %s", self.project_dir)
        return state

    def resume(self) -> PipelineState:
        """Load saved state, migrating a legacy workflow state if that is all there is.

        Raises
        ------
        StateNotFoundError
            If neither a pipeline state nor a legacy state exists.
        """
        if self.state_store.exists():
            state = self.state_store.load()
        else:
            legacy = load_legacy_state(self.project_dir)
            if legacy is None:
                raise StateNotFoundError(
                    f"No pipeline state to resume in {self.project_dir}"
                )
            state = migrate_legacy_state(legacy)
            state.max_recovery_iterations = self.settings.max_recovery_iterations
            self.state_store.save(state)
        self._attach(state)
        logger.info("Resuming pipeline at %s", state.pipeline_phase.value)
        return state

    def _attach(self, state: PipelineState) -> None:
        self._state = state
        self._machine = PhaseMachine(state, self.state_store)

    @property
    def state(self) -> PipelineState:
        if self._state is None:
            self.resume()
        return self._state

    @property
    def machine(self) -> PhaseMachine:
        if self._machine is None:
            self.resume()
        return self._machine

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def current_phase(self) -> PipelinePhase:
        return self.state.pipeline_phase

    @property
    def active_roles(self) -> list[PipelineRole]:
        return list(self.state.active_roles)

    def artifact_refs(self) -> list[ArtifactRef]:
        return [a.to_ref() for a in self.state.artifacts]

    def reset(self, to_phase: PipelinePhase, reason: str = "manual reset") -> None:
        """External intervention, e.g. to leave STUCK."""
        self.machine.reset(to_phase, reason)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def run(self) -> PipelineResult:
        """Drive the pipeline until it reaches DONE or STUCK, or is cancelled."""
        state = self.state
        try:
            while not self.machine.is_terminal:
                self.cancel_token.raise_if_cancelled()
                self.step()
            self._finish()
        except PipelineCancelled as exc:
            self.machine.save()
            logger.warning("Pipeline cancelled at %s: %s", state.pipeline_phase.value, exc)
            return PipelineResult(
                success=False,
                final_phase=state.pipeline_phase,
                artifacts=state.artifacts,
                recovery_iterations=state.recovery_count,
                error=f"cancelled: {exc}",
            )

        done = state.pipeline_phase == P.DONE
        return PipelineResult(
            success=done,
            final_phase=state.pipeline_phase,
            artifacts=state.artifacts,
            recovery_iterations=state.recovery_count,
            error=None if done else state.last_failure_reason,
        )

    def step(self) -> GateResult:
        """Run the current non-terminal phase once and transition on its gate."""
        state = self.state
        phase = state.pipeline_phase

        try:
            result = get_phase(phase).run_phase(self._context())
        except IntegrityError as exc:
            logger.error("Integrity failure during %s: %s", phase.value, exc)
            gate = GateResult(
                phase=phase, passed=False,
                blockers=[f"Integrity failure: {exc}"], integrity_failure=True,
            )
        else:
            # A cancelled phase is resumed, not judged.
            self.cancel_token.raise_if_cancelled()
            constitution = verify_constitution(state, self.project_dir, self.settings.skills_dir)
            gate = self.gate_engine.evaluate_gate(phase, state, constitution)
            if not result.success:
                message = result.error or result.message
                gate = gate.model_copy(
                    update={
                        "passed": False,
                        "blockers": [message] + [b for b in gate.blockers if b != message],
                    }
                )

        state.gate_results = {**state.gate_results, phase: gate}
        self.machine.save()
        self._advance(phase, gate)
        return gate

    def _finish(self) -> None:
        """Run the terminal handler once per arrival at the terminal phase."""
        state = self.state
        phase = state.pipeline_phase
        marker = self.gate_engine.definition(phase).required_artifacts[0]
        arrivals = [h for h in state.history if h.to_phase == phase]
        since = arrivals[-1].timestamp if arrivals else None
        if any(since is None or a.timestamp >= since for a in state.artifacts_of(marker, phase)):
            return
        result = get_phase(phase).run_phase(self._context())
        gate = self.gate_engine.evaluate_gate(phase, state)
        if not result.success and gate.passed:
            gate = gate.model_copy(update={"passed": False, "blockers": [result.error or result.message]})
        state.gate_results = {**state.gate_results, phase: gate}
        self.machine.save()

    def _context(self) -> PhaseContext:
        return PhaseContext(
            project_dir=self.project_dir,
            state=self.state,
            store=self.store,
            gate_engine=self.gate_engine,
            skills=self.skills,
            consensus=self.consensus,
            checks=self.checks,
            snapshots=self.snapshots,
            settings=self.settings,
            collaborators=self.collaborators,
            cancel_token=self.cancel_token,
        )

    def _progress(self, phase: PipelinePhase, message: str) -> None:
        if self.collaborators.on_progress is not None:
            self.collaborators.on_progress(phase, message)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _advance(self, phase: PipelinePhase, gate: GateResult) -> None:
        state = self.state
        machine = self.machine

        # --- Hard failure ------------------------------------------------
        if gate.integrity_failure:
            self._record_failure(phase, gate.reason)
            machine.transition(P.STUCK, gate.reason)
            self._progress(phase, f"Integrity failure: {gate.reason}")
            return

        # --- Pass --------------------------------------------------------
        if gate.passed:
            if phase == state.failed_phase:
                state.failed_phase = None
                state.last_failure_reason = None
            if phase in state.consensus_attempts:
                state.consensus_attempts = {
                    p: n for p, n in state.consensus_attempts.items() if p != phase
                }
            target, reason = self._next_after_pass(phase)
            machine.transition(target, reason)
            self._progress(phase, f"Gate passed -> {target.value}")
            return

        # --- Bounded consensus re-plan loop ------------------------------
        definition = self.gate_engine.definition(phase)
        attempts = state.consensus_attempts.get(phase, 0)
        if (
            gate.consensus_rejected
            and phase in CONSENSUS_PREDECESSOR
            and attempts < definition.max_iterations
        ):
            attempts += 1
            state.consensus_attempts = {**state.consensus_attempts, phase: attempts}
            self._record_failure(phase, gate.reason)
            target = CONSENSUS_PREDECESSOR[phase]
            machine.transition(
                target,
                f"Consensus rejected (attempt {attempts}/{definition.max_iterations}): {gate.reason}",
            )
            self._progress(phase, f"Consensus rejected -> {target.value}")
            return

        # --- Recovery or stuck -------------------------------------------
        self._record_failure(phase, gate.reason)
        if definition.fail_transition == P.STUCK:
            machine.transition(P.STUCK, f"{phase.value} failed: {gate.reason}")
        elif state.recovery_count < state.max_recovery_iterations:
            state.recovery_count += 1
            machine.transition(
                P.RECOVERY_LOOP,
                f"Recovery {state.recovery_count}/{state.max_recovery_iterations}: {gate.reason}",
            )
        else:
            machine.transition(
                P.STUCK,
                f"Recovery budget exhausted ({state.max_recovery_iterations}): {gate.reason}",
            )
        self._progress(phase, f"Gate failed -> {state.pipeline_phase.value}: {gate.reason}")

    def _record_failure(self, phase: PipelinePhase, reason: str) -> None:
        if phase != P.RECOVERY_LOOP:
            self.state.failed_phase = phase
        self.state.last_failure_reason = f"{phase.value}: {reason}"

    def _next_after_pass(self, phase: PipelinePhase) -> tuple[PipelinePhase, str]:
        state = self.state
        if phase in CHANGE_REQUEST_ORIGINS:
            pending = next_pending_change_request(state, origin=phase)
            if pending is not None:
                resolve_change_request(state, pending.cr_id)
                return (
                    pending.target_phase,
                    f"Change request {pending.cr_id} ({pending.change_type.value}) "
                    f"routed to {pending.target_phase.value}",
                )

        if phase == P.RECOVERY_LOOP:
            rca = latest_rca(state, self.store)
            target = (
                rca.requires_phase_rewind_to
                if rca is not None and rca.requires_phase_rewind_to is not None
                else state.failed_phase or P.INTAKE
            )
            if target in TERMINAL_PHASES or target == P.RECOVERY_LOOP:
                target = P.INTAKE
            return target, f"Recovery complete; rewind to {target.value}"

        return self.gate_engine.next_phase(phase), "gate passed"

    def __repr__(self) -> str:
        phase = self._state.pipeline_phase.value if self._state else "unloaded"
        return f"<Orchestrator project={str(self.project_dir)!r} phase={phase}>"


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------

def _build(
    project_dir: Path,
    collaborators: Collaborators | None,
    settings: PhasegateConfig | None,
    cancel_token: CancellationToken | None,
    on_progress: ProgressCallback | None,
) -> Orchestrator:
    if settings is None:
        from phasegate.config import config as settings
    if collaborators is None:
        collaborators = load_collaborators(settings.collaborators)
    return Orchestrator(
        project_dir,
        collaborators=collaborators,
        settings=settings,
        cancel_token=cancel_token,
        on_progress=on_progress,
    )


def run_pipeline(
    project_dir: Path,
    brief: str = "",
    *,
    collaborators: Collaborators | None = None,
    settings: PhasegateConfig | None = None,
    cancel_token: CancellationToken | None = None,
    on_progress: ProgressCallback | None = None,
) -> PipelineResult:
    """Start a new run in *project_dir* and drive it to DONE or STUCK.

    Collaborators default to the ``config.collaborators`` entry point.
    """
    orchestrator = _build(project_dir, collaborators, settings, cancel_token, on_progress)
    orchestrator.start(brief)
    return orchestrator.run()


def resume_pipeline(
    project_dir: Path,
    *,
    collaborators: Collaborators | None = None,
    settings: PhasegateConfig | None = None,
    cancel_token: CancellationToken | None = None,
    on_progress: ProgressCallback | None = None,
) -> PipelineResult:
    """Continue the saved run in *project_dir*.

    Raises
    ------
    StateNotFoundError
        If the project has neither a pipeline state nor a legacy state.
    """
    orchestrator = _build(project_dir, collaborators, settings, cancel_token, on_progress)
    orchestrator.resume()
    return orchestrator.run()
