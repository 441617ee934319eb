"""QA_VALIDATION: run the test, lint and typecheck commands and report.

The report itself is deterministic, built from the check results, so the
gate never depends on an author to know whether tests passed. A QA tester
commentary is appended when an author is configured.
"""

from __future__ import annotations

from phasegate.core.check_runner import store_check_results
from phasegate.models.artifacts import ArtifactEntry, ArtifactType
from phasegate.models.checks import CheckStatus, GateCheckResult, GateCheckType
from phasegate.models.phases import PipelinePhase, PipelineRole
from phasegate.models.state import PhaseResult
from phasegate.phases.base import (
    BasePhase,
    PhaseContext,
    compose,
    success_result,
)

QA_CHECKS: tuple[GateCheckType, ...] = (
    GateCheckType.TEST,
    GateCheckType.LINT,
    GateCheckType.TYPECHECK,
)


def _skipped(check_type: GateCheckType) -> GateCheckResult:
    return GateCheckResult(
        check_type=check_type,
        status=CheckStatus.SKIP,
        command="",
        exit_code=0,
        stderr_summary="No command resolved",
    )


def format_qa_report(results: list[GateCheckResult], commentary: str | None = None) -> str:
    """Markdown QA report with pass/fail counts and per-check detail."""
    counts = {status: sum(1 for r in results if r.status == status) for status in CheckStatus}
    lines = [
        "# QA Validation Report",
        "",
        "## Test Results",
        "",
        f"{counts[CheckStatus.PASS]} passed, {counts[CheckStatus.FAIL]} failed, "
        f"{counts[CheckStatus.SKIP]} skipped",
        "",
        "| Check | Status | Exit Code | Duration (ms) | Command |",
        "|---|---|---|---|---|",
    ]
    for r in results:
        lines.append(
            f"| {r.check_type.value} | {r.status.value.upper()} | {r.exit_code} "
            f"| {r.duration_ms:.0f} | `{r.command or '-'}` |"
        )
    failures = [r for r in results if r.status == CheckStatus.FAIL and r.stderr_summary]
    if failures:
        lines += ["", "### Failures"]
        for r in failures:
            lines += ["", f"**{r.check_type.value}**", "```", r.stderr_summary, "```"]
    lines += [
        "",
        "## Coverage",
        "",
        "Coverage is reported by the project's own test command; see the test "
        "check output above.",
    ]
    if commentary:
        lines += ["", "## QA Notes", "", commentary]
    return "\n".join(lines)


class QAValidationPhase(BasePhase):
    @property
    def phase(self) -> PipelinePhase:
        return PipelinePhase.QA_VALIDATION

    @property
    def display_name(self) -> str:
        return "QA Validation"

    def execute(self, ctx: PhaseContext) -> PhaseResult:
        state = ctx.state
        commands = state.resolved_commands

        results: list[GateCheckResult] = []
        for check_type in QA_CHECKS:
            command = commands.for_check(check_type) if commands else None
            if not command:
                results.append(_skipped(check_type))
                continue
            ctx.cancel_token.raise_if_cancelled()
            ctx.progress(self.phase, f"Running {check_type.value}: {command}")
            results.append(ctx.checks.run_check(check_type, command, ctx.project_dir))

        artifacts: list[ArtifactEntry] = store_check_results(results, ctx.store, self.phase)
        state.gate_checks = {**state.gate_checks, self.phase: results}

        commentary = None
        if ctx.collaborators.author is not None:
            commentary = compose(
                ctx,
                PipelineRole.QA_TESTER,
                "Comment on these QA results and list any missing test coverage.\n\n"
                + format_qa_report(results),
            )
        artifacts.append(
            ctx.store.store(
                ArtifactType.QA_VALIDATION, format_qa_report(results, commentary), self.phase
            )
        )

        passed = sum(1 for r in results if r.passed)
        return success_result(
            self.phase, artifacts, f"QA checks: {passed}/{len(results)} passed"
        )
