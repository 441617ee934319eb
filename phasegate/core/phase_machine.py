"""Phase state machine: the only code path that changes ``pipeline_phase``.

Every move is checked against ``VALID_TRANSITIONS``, recorded in the state
history, and persisted before the call returns.
"""

from __future__ import annotations

import logging

from phasegate.core.state_store import StateStore
from phasegate.models.phases import TERMINAL_PHASES, VALID_TRANSITIONS, PipelinePhase
from phasegate.models.state import PipelineState, TransitionRecord

logger = logging.getLogger(__name__)


class InvalidTransitionError(RuntimeError):
    """Raised when a requested phase transition is not valid."""


class PhaseMachine:
    """Enforces phase transitions for one pipeline state.

    Parameters
    ----------
    state:
        The live pipeline state; mutated in place.
    store:
        Where the state is persisted after each transition.
    """

    def __init__(self, state: PipelineState, store: StateStore) -> None:
        self._state = state
        self._store = store

    @property
    def current(self) -> PipelinePhase:
        return self._state.pipeline_phase

    @property
    def is_terminal(self) -> bool:
        return self.current in TERMINAL_PHASES

    def allowed(self) -> set[PipelinePhase]:
        return set(VALID_TRANSITIONS.get(self.current, set()))

    def transition(self, to_phase: PipelinePhase, reason: str = "") -> TransitionRecord:
        current = self.current
        if to_phase not in VALID_TRANSITIONS.get(current, set()):
            raise InvalidTransitionError(
                f"Cannot transition from {current.value} to {to_phase.value}. "
                f"Allowed: {sorted(p.value for p in self.allowed())}"
            )
        return self._record(current, to_phase, reason)

    def reset(self, to_phase: PipelinePhase, reason: str = "manual reset") -> TransitionRecord:
        """External intervention: move anywhere except into a terminal phase.

        Clears the recovery budget and pending failure so the run can
        continue from *to_phase*.
        """
        if to_phase in TERMINAL_PHASES:
            raise InvalidTransitionError(f"Cannot reset into terminal phase {to_phase.value}")
        current = self.current
        self._state.recovery_count = 0
        self._state.consensus_attempts = {}
        self._state.failed_phase = None
        self._state.last_failure_reason = None
        return self._record(current, to_phase, reason)

    def save(self) -> None:
        self._store.save(self._state)

    def _record(self, from_phase: PipelinePhase, to_phase: PipelinePhase, reason: str) -> TransitionRecord:
        record = TransitionRecord(from_phase=from_phase, to_phase=to_phase, reason=reason)
        self._state.history = self._state.history + [record]
        self._state.pipeline_phase = to_phase
        self._store.save(self._state)
        logger.info("Phase %s -> %s (%s)", from_phase.value, to_phase.value, reason or "advance")
        return record
