"""Phasegate phase handlers: registry mapping each phase to its handler.

Usage::

    from phasegate.phases import PHASE_HANDLERS, get_phase

    handler = get_phase(PipelinePhase.INTAKE)
    result = handler.run_phase(ctx)
"""

from __future__ import annotations

from phasegate.models.phases import PipelinePhase
from phasegate.phases.architecture import ArchitecturePhase
from phasegate.phases.audit import AuditPhase
from phasegate.phases.base import BasePhase, PhaseContext, PhaseExecutionError
from phasegate.phases.consensus import (
    ArchitectureConsensusPhase,
    ConsensusPhase,
    MasterPlanConsensusPhase,
    RolePlansConsensusPhase,
)
from phasegate.phases.done import DonePhase
from phasegate.phases.implementation import ImplementationPhase
from phasegate.phases.intake import IntakePhase
from phasegate.phases.production_gate import ProductionGatePhase
from phasegate.phases.qa_validation import QAValidationPhase
from phasegate.phases.recovery import RecoveryPhase
from phasegate.phases.review import ReviewPhase
from phasegate.phases.role_planning import RolePlanningPhase
from phasegate.phases.stuck import StuckPhase

P = PipelinePhase

# ---------------------------------------------------------------------------
# Phase registry: phase -> handler class
# ---------------------------------------------------------------------------

PHASE_HANDLERS: dict[PipelinePhase, type[BasePhase]] = {
    P.INTAKE: IntakePhase,
    P.CONSENSUS_MASTER_PLAN: MasterPlanConsensusPhase,
    P.ARCHITECTURE: ArchitecturePhase,
    P.CONSENSUS_ARCHITECTURE: ArchitectureConsensusPhase,
    P.ROLE_PLANNING: RolePlanningPhase,
    P.CONSENSUS_ROLE_PLANS: RolePlansConsensusPhase,
    P.IMPLEMENTATION: ImplementationPhase,
    P.QA_VALIDATION: QAValidationPhase,
    P.REVIEW: ReviewPhase,
    P.AUDIT: AuditPhase,
    P.PRODUCTION_GATE: ProductionGatePhase,
    P.RECOVERY_LOOP: RecoveryPhase,
    P.DONE: DonePhase,
    P.STUCK: StuckPhase,
}


def get_phase(phase: PipelinePhase) -> BasePhase:
    """Instantiate and return the handler for *phase*.

    Raises ``KeyError`` if no handler is registered.
    """
    try:
        cls = PHASE_HANDLERS[phase]
    except KeyError:
        raise KeyError(
            f"No handler for phase {phase!r}. "
            f"Registered phases: {sorted(p.value for p in PHASE_HANDLERS)}"
        ) from None
    return cls()


__all__ = [
    # Base
    "BasePhase",
    "PhaseContext",
    "PhaseExecutionError",
    # Registry
    "PHASE_HANDLERS",
    "get_phase",
    # Concrete phases
    "IntakePhase",
    "ConsensusPhase",
    "MasterPlanConsensusPhase",
    "ArchitecturePhase",
    "ArchitectureConsensusPhase",
    "RolePlanningPhase",
    "RolePlansConsensusPhase",
    "ImplementationPhase",
    "QAValidationPhase",
    "ReviewPhase",
    "AuditPhase",
    "ProductionGatePhase",
    "RecoveryPhase",
    "DonePhase",
    "StuckPhase",
]
