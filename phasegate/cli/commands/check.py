"""``phasegate check PROJECT_DIR --type TYPE`` -- run one gate check."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.panel import Panel

from phasegate.config import config
from phasegate.core.check_runner import CheckRunner, run_env_check, run_placeholder_scan
from phasegate.core.command_resolver import resolve_commands
from phasegate.core.repo_snapshot import SnapshotGenerator
from phasegate.models.checks import GateCheckResult, GateCheckType

console = Console()


def _run(check_type: GateCheckType, project_dir: Path) -> GateCheckResult | None:
    if check_type == GateCheckType.PLACEHOLDER_SCAN:
        return run_placeholder_scan(project_dir)
    if check_type == GateCheckType.ENV_CHECK:
        return run_env_check(project_dir)

    snapshot = SnapshotGenerator().generate(project_dir)
    command = resolve_commands(snapshot, config.command_overrides()).for_check(check_type)
    if not command:
        return None
    console.print(f"[dim]$ {command}[/dim]")
    runner = CheckRunner()
    if check_type == GateCheckType.START:
        return runner.run_start_check(command, project_dir, config.start_check_timeout_seconds)
    return runner.run_check(check_type, command, project_dir)


def check_cmd(
    project_dir: Path = typer.Argument(
        ...,
        exists=True,
        file_okay=False,
        help="Project directory to check.",
    ),
    check_type: GateCheckType = typer.Option(
        GateCheckType.TEST,
        "--type",
        "-t",
        help="Which check to run.",
    ),
) -> None:
    """Run a single sandboxed check with the resolved command."""
    result = _run(check_type, project_dir)
    if result is None:
        console.print(f"[bold red]No {check_type.value} command resolved for this project.[/bold red]")
        raise typer.Exit(code=1)

    color = "green" if result.passed else "red"
    lines = [
        f"[bold {color}]{result.status.value.upper()}[/bold {color}]",
        "",
        f"[bold]Exit code:[/bold] {result.exit_code}",
        f"[bold]Duration:[/bold]  {result.duration_ms:.0f} ms",
    ]
    if result.stderr_summary:
        lines += ["", result.stderr_summary]
    console.print(
        Panel("\n".join(lines), title=f"[bold]{check_type.value}[/bold]", border_style=color)
    )
    if not result.passed:
        raise typer.Exit(code=1)
