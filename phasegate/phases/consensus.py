"""Consensus phases: independent reviewer votes on a planning artifact.

Each consensus phase follows the same protocol:

1. Run the structural validators. An incomplete artifact fails here and no
   reviewer is called.
2. Build a plan packet that references the artifact under review and store
   it (``plan_packet`` group).
3. Collect reviewer votes and store the resulting consensus packet
   (``consensus`` group).
4. Record a journalist trace.

The handler succeeds whether or not reviewers approve. Approval is the gate
engine's decision, made from the stored consensus packet.
"""

from __future__ import annotations

import logging
from typing import ClassVar

from phasegate.core.gate_engine import CONSENSUS_GROUP, PLAN_PACKET_GROUP
from phasegate.core.packet_builders import build_plan_packet
from phasegate.models.artifacts import ArtifactEntry, ArtifactType
from phasegate.models.packets import (
    Constraint,
    ConstraintType,
    ConsensusRules,
    DependencyEdge,
    PlanPacket,
)
from phasegate.models.phases import PipelinePhase, PipelineRole
from phasegate.models.state import PhaseResult
from phasegate.phases.base import (
    BasePhase,
    PhaseContext,
    capture_snapshot,
    failure_result,
    success_result,
    trigger_journalist,
)

logger = logging.getLogger(__name__)


def latest_per_group(ctx: PhaseContext, artifact_type: ArtifactType) -> list[ArtifactEntry]:
    """Newest version of every logical artifact of *artifact_type*."""
    newest: dict[str, ArtifactEntry] = {}
    for entry in ctx.state.artifacts_of(artifact_type):
        current = newest.get(entry.group_id)
        if current is None or entry.version >= current.version:
            newest[entry.group_id] = entry
    return sorted(newest.values(), key=lambda e: e.group_id)


class ConsensusPhase(BasePhase):
    """Shared protocol for the three consensus phases."""

    reviewed_type: ClassVar[ArtifactType]
    submitted_by: ClassVar[PipelineRole]
    depends_on: ClassVar[ArtifactType | None] = None

    def execute(self, ctx: PhaseContext) -> PhaseResult:
        state = ctx.state

        # --- Structural validation before any reviewer call --------------
        structural = ctx.gate_engine.evaluate_structural(self.phase, state)
        if not structural.passed:
            logger.warning(
                "%s: structural validation failed, skipping reviewers: %s",
                self.display_name, structural.reason,
            )
            return failure_result(
                self.phase, "Structural validation failed", structural.reason
            )

        reviewed = latest_per_group(ctx, self.reviewed_type)
        text = "\n\n---\n\n".join(ctx.store.fetch(e) for e in reviewed)
        artifacts: list[ArtifactEntry] = []

        # --- Plan packet -------------------------------------------------
        packet = self._build_packet(ctx, reviewed)
        plan_entry = ctx.store.store_structured(
            ArtifactType.CONSENSUS, packet, self.phase, group_id=PLAN_PACKET_GROUP
        )
        artifacts.append(plan_entry)

        # --- Reviewer votes ----------------------------------------------
        gate = ctx.gate_engine.definition(self.phase)
        rules = ConsensusRules(
            threshold=gate.consensus_threshold if gate.consensus_threshold is not None else 0.95,
            quorum=gate.quorum,
            min_reviewers=gate.min_reviewers,
        )
        ctx.progress(self.phase, f"Collecting reviewer votes on {self.reviewed_type.value}")
        consensus = ctx.consensus.run(packet, ctx.store.to_ref(plan_entry), rules, text)
        artifacts.append(
            ctx.store.store_structured(
                ArtifactType.CONSENSUS, consensus, self.phase, group_id=CONSENSUS_GROUP
            )
        )

        if self.phase == PipelinePhase.CONSENSUS_ROLE_PLANS:
            # Baseline for drift detection in REVIEW.
            _, snapshot_entry = capture_snapshot(ctx, self.phase)
            artifacts.append(snapshot_entry)

        artifacts.append(trigger_journalist(ctx, self.phase, artifacts))

        result = consensus.consensus_result
        return success_result(
            self.phase,
            artifacts,
            f"Consensus {consensus.final_status.value}: weighted score "
            f"{result.weighted_score:.2f} from {result.participating_reviewers} reviewer(s)",
        )

    def _build_packet(self, ctx: PhaseContext, reviewed: list[ArtifactEntry]) -> PlanPacket:
        state = ctx.state
        skill = ctx.skills.load_skill(self.submitted_by)
        constitution = state.latest_artifact(ArtifactType.CONSTITUTION)
        constitution_ref = constitution.to_ref() if constitution else None
        master_plan = state.latest_artifact(ArtifactType.MASTER_PLAN)

        constraints = [
            Constraint(type=ConstraintType.TECHNICAL, description=c) for c in skill.constraints
        ]
        constraints.append(
            Constraint(
                type=ConstraintType.COMPLIANCE,
                description="Must comply with the Phasegate constitution",
                source=constitution_ref,
            )
        )

        dependencies: list[DependencyEdge] = []
        if self.depends_on is not None:
            upstream = state.latest_artifact(self.depends_on)
            if upstream is not None:
                dependencies = [
                    DependencyEdge(source=e.to_ref(), target=upstream.to_ref()) for e in reviewed
                ]

        return build_plan_packet(
            self.phase,
            self.submitted_by,
            master_plan=master_plan.to_ref() if master_plan else None,
            constitution=constitution_ref,
            repo_snapshot=state.latest_repo_snapshot,
            proposed_artifacts=[e.to_ref() for e in reviewed],
            acceptance_criteria=[f"Provides {output}" for output in skill.required_outputs],
            dependencies=dependencies,
            constraints=constraints,
            version=state.consensus_attempts.get(self.phase, 0) + 1,
        )


class MasterPlanConsensusPhase(ConsensusPhase):
    reviewed_type = ArtifactType.MASTER_PLAN
    submitted_by = PipelineRole.DISPATCHER

    @property
    def phase(self) -> PipelinePhase:
        return PipelinePhase.CONSENSUS_MASTER_PLAN

    @property
    def display_name(self) -> str:
        return "Master Plan Consensus"


class ArchitectureConsensusPhase(ConsensusPhase):
    reviewed_type = ArtifactType.ARCHITECTURE
    submitted_by = PipelineRole.ARCHITECT
    depends_on = ArtifactType.MASTER_PLAN

    @property
    def phase(self) -> PipelinePhase:
        return PipelinePhase.CONSENSUS_ARCHITECTURE

    @property
    def display_name(self) -> str:
        return "Architecture Consensus"


class RolePlansConsensusPhase(ConsensusPhase):
    reviewed_type = ArtifactType.ROLE_PLAN
    submitted_by = PipelineRole.DISPATCHER
    depends_on = ArtifactType.ARCHITECTURE

    @property
    def phase(self) -> PipelinePhase:
        return PipelinePhase.CONSENSUS_ROLE_PLANS

    @property
    def display_name(self) -> str:
        return "Role Plans Consensus"
