"""ARCHITECTURE: the architect turns the approved master plan into a design."""

from __future__ import annotations

from phasegate.models.artifacts import ArtifactType
from phasegate.models.phases import PipelinePhase, PipelineRole
from phasegate.models.state import PhaseResult
from phasegate.phases.base import (
    BasePhase,
    PhaseContext,
    PhaseExecutionError,
    capture_snapshot,
    compose,
    latest_content,
    success_result,
)

ARCHITECTURE_INSTRUCTIONS = """\
Design the system architecture for the approved master plan below, as markdown.

It must contain these sections:
## Components
## Data Flow
## Tech Stack

Reference the concrete files and directories each component lives in.

## Approved Master Plan
{master_plan}

## Repository Overview
{tree}
"""


class ArchitecturePhase(BasePhase):
    @property
    def phase(self) -> PipelinePhase:
        return PipelinePhase.ARCHITECTURE

    @property
    def display_name(self) -> str:
        return "Architecture"

    def execute(self, ctx: PhaseContext) -> PhaseResult:
        master_plan = latest_content(ctx, ArtifactType.MASTER_PLAN)
        if master_plan is None:
            raise PhaseExecutionError("No master plan to design against")

        snapshot, snapshot_entry = capture_snapshot(ctx, self.phase)
        design = compose(
            ctx,
            PipelineRole.ARCHITECT,
            ARCHITECTURE_INSTRUCTIONS.format(
                master_plan=master_plan, tree=snapshot.tree_summary or "(empty)"
            ),
        )
        entry = ctx.store.store(ArtifactType.ARCHITECTURE, design, self.phase)
        return success_result(self.phase, [snapshot_entry, entry], "Architecture drafted")
