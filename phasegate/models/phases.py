"""Pipeline phases, roles, and the fixed phase transition table."""

from __future__ import annotations

from enum import Enum


class PipelinePhase(str, Enum):
    """Every phase a pipeline run can be in."""

    INTAKE = "INTAKE"
    CONSENSUS_MASTER_PLAN = "CONSENSUS_MASTER_PLAN"
    ARCHITECTURE = "ARCHITECTURE"
    CONSENSUS_ARCHITECTURE = "CONSENSUS_ARCHITECTURE"
    ROLE_PLANNING = "ROLE_PLANNING"
    CONSENSUS_ROLE_PLANS = "CONSENSUS_ROLE_PLANS"
    IMPLEMENTATION = "IMPLEMENTATION"
    QA_VALIDATION = "QA_VALIDATION"
    REVIEW = "REVIEW"
    AUDIT = "AUDIT"
    PRODUCTION_GATE = "PRODUCTION_GATE"
    RECOVERY_LOOP = "RECOVERY_LOOP"
    DONE = "DONE"
    STUCK = "STUCK"


class PipelineRole(str, Enum):
    """Roles that author, review, or govern pipeline artifacts."""

    DISPATCHER = "DISPATCHER"
    ARCHITECT = "ARCHITECT"
    DB_EXPERT = "DB_EXPERT"
    BACKEND_PROGRAMMER = "BACKEND_PROGRAMMER"
    FRONTEND_PROGRAMMER = "FRONTEND_PROGRAMMER"
    WEBSITE_PROGRAMMER = "WEBSITE_PROGRAMMER"
    QA_TESTER = "QA_TESTER"
    REVIEWER = "REVIEWER"
    ARBITRATOR = "ARBITRATOR"
    DEBUGGER = "DEBUGGER"
    AUDITOR = "AUDITOR"
    JOURNALIST = "JOURNALIST"
    RELEASE_MANAGER = "RELEASE_MANAGER"
    MARKETING_EXPERT = "MARKETING_EXPERT"
    SOCIAL_EXPERT = "SOCIAL_EXPERT"
    UI_UX_SPECIALIST = "UI_UX_SPECIALIST"


class LegacyPhase(str, Enum):
    """Phases of the older single-track workflow."""

    PLAN = "plan"
    EXECUTION = "execution"
    COMPLETE = "complete"


# Happy-path order. RECOVERY_LOOP and STUCK are reached only on failure.
PHASE_SEQUENCE: list[PipelinePhase] = [
    PipelinePhase.INTAKE,
    PipelinePhase.CONSENSUS_MASTER_PLAN,
    PipelinePhase.ARCHITECTURE,
    PipelinePhase.CONSENSUS_ARCHITECTURE,
    PipelinePhase.ROLE_PLANNING,
    PipelinePhase.CONSENSUS_ROLE_PLANS,
    PipelinePhase.IMPLEMENTATION,
    PipelinePhase.QA_VALIDATION,
    PipelinePhase.REVIEW,
    PipelinePhase.AUDIT,
    PipelinePhase.PRODUCTION_GATE,
    PipelinePhase.DONE,
]

TERMINAL_PHASES: frozenset[PipelinePhase] = frozenset(
    {PipelinePhase.DONE, PipelinePhase.STUCK}
)

# Consensus phase -> the planning phase it loops back to on rejection.
CONSENSUS_PREDECESSOR: dict[PipelinePhase, PipelinePhase] = {
    PipelinePhase.CONSENSUS_MASTER_PLAN: PipelinePhase.INTAKE,
    PipelinePhase.CONSENSUS_ARCHITECTURE: PipelinePhase.ARCHITECTURE,
    PipelinePhase.CONSENSUS_ROLE_PLANS: PipelinePhase.ROLE_PLANNING,
}

# Phases whose findings may re-target any earlier phase.
CHANGE_REQUEST_ORIGINS: frozenset[PipelinePhase] = frozenset(
    {PipelinePhase.REVIEW, PipelinePhase.AUDIT}
)


def _build_transitions() -> dict[PipelinePhase, set[PipelinePhase]]:
    table: dict[PipelinePhase, set[PipelinePhase]] = {p: set() for p in PipelinePhase}
    non_terminal = [p for p in PipelinePhase if p not in TERMINAL_PHASES]

    for current, following in zip(PHASE_SEQUENCE, PHASE_SEQUENCE[1:]):
        table[current].add(following)

    for consensus_phase, predecessor in CONSENSUS_PREDECESSOR.items():
        table[consensus_phase].add(predecessor)

    for origin in CHANGE_REQUEST_ORIGINS:
        idx = PHASE_SEQUENCE.index(origin)
        table[origin].update(PHASE_SEQUENCE[:idx])

    for phase in non_terminal:
        if phase is not PipelinePhase.RECOVERY_LOOP:
            table[phase].add(PipelinePhase.RECOVERY_LOOP)
        table[phase].add(PipelinePhase.STUCK)

    table[PipelinePhase.RECOVERY_LOOP].update(
        p for p in non_terminal if p is not PipelinePhase.RECOVERY_LOOP
    )
    return table


# Valid phase transitions, enforced structurally by PhaseMachine.
# DONE and STUCK have no outgoing transitions; STUCK is left only via reset.
VALID_TRANSITIONS: dict[PipelinePhase, set[PipelinePhase]] = _build_transitions()
