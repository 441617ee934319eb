"""ROLE_PLANNING: every active delivery role writes its own plan.

Plans are written in dependency order (a role's skill lists the roles it
depends on), and each role sees the plans it depends on. Every plan is a
separate logical artifact in group ``role_plan:<ROLE>``.
"""

from __future__ import annotations

import logging

from phasegate.models.artifacts import ArtifactEntry, ArtifactType
from phasegate.models.phases import PipelinePhase, PipelineRole
from phasegate.models.skills import SkillDefinition
from phasegate.models.state import PhaseResult
from phasegate.phases.base import (
    BasePhase,
    PhaseContext,
    PhaseExecutionError,
    compose,
    latest_content,
    success_result,
)

logger = logging.getLogger(__name__)

R = PipelineRole

# Roles that own a slice of the delivery work, in default planning order.
PLANNING_ROLES: list[PipelineRole] = [
    R.DB_EXPERT,
    R.BACKEND_PROGRAMMER,
    R.FRONTEND_PROGRAMMER,
    R.WEBSITE_PROGRAMMER,
    R.UI_UX_SPECIALIST,
    R.QA_TESTER,
    R.MARKETING_EXPERT,
    R.SOCIAL_EXPERT,
]

ROLE_PLAN_INSTRUCTIONS = """\
Write your role plan as {role}, as markdown.

It must contain these sections:
## Tasks
## Dependencies
## Acceptance Criteria

Name the roles you depend on and the artifacts you need from them.

## Approved Architecture
{architecture}
{upstream}"""


def role_plan_group(role: PipelineRole) -> str:
    return f"{ArtifactType.ROLE_PLAN.value}:{role.value}"


def order_by_dependencies(
    roles: list[PipelineRole], skills: dict[PipelineRole, SkillDefinition]
) -> list[PipelineRole]:
    """Stable topological order of *roles* by their skills' ``depends_on``.

    Dependencies outside *roles* are ignored. A cycle falls back to the
    given order for the roles involved.
    """
    remaining = list(roles)
    ordered: list[PipelineRole] = []
    while remaining:
        ready = [
            r for r in remaining
            if all(d in ordered or d not in remaining for d in skills[r].depends_on)
        ]
        if not ready:
            logger.warning("Role dependency cycle among %s", [r.value for r in remaining])
            ready = remaining[:1]
        for role in ready:
            ordered.append(role)
            remaining.remove(role)
    return ordered


class RolePlanningPhase(BasePhase):
    @property
    def phase(self) -> PipelinePhase:
        return PipelinePhase.ROLE_PLANNING

    @property
    def display_name(self) -> str:
        return "Role Planning"

    def execute(self, ctx: PhaseContext) -> PhaseResult:
        architecture = latest_content(ctx, ArtifactType.ARCHITECTURE)
        if architecture is None:
            raise PhaseExecutionError("No architecture to plan against")

        roles = [r for r in PLANNING_ROLES if r in ctx.state.active_roles]
        if not roles:
            raise PhaseExecutionError("No active delivery roles to plan for")
        skills = ctx.skills.load_all_skills(roles)

        plans: dict[PipelineRole, str] = {}
        artifacts: list[ArtifactEntry] = []
        for role in order_by_dependencies(roles, skills):
            upstream = "".join(
                f"\n## Plan from {dep.value}\n{plans[dep]}\n"
                for dep in skills[role].depends_on
                if dep in plans
            )
            ctx.progress(self.phase, f"Planning for {role.value}")
            plans[role] = compose(
                ctx,
                role,
                ROLE_PLAN_INSTRUCTIONS.format(
                    role=role.value, architecture=architecture, upstream=upstream
                ),
            )
            artifacts.append(
                ctx.store.store(
                    ArtifactType.ROLE_PLAN, plans[role], self.phase,
                    group_id=role_plan_group(role),
                )
            )

        return success_result(
            self.phase, artifacts, f"{len(artifacts)} role plan(s) written"
        )
