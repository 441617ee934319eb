"""``phasegate run PROJECT_DIR`` -- start a new pipeline run.

Loads collaborators from ``PHASEGATE_COLLABORATORS``, starts at INTAKE,
streams phase progress, and prints a result panel.
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.panel import Panel

from phasegate.config import config
from phasegate.core.collaborators import CollaboratorLoadError, load_collaborators
from phasegate.core.orchestrator import run_pipeline
from phasegate.models.phases import PipelinePhase
from phasegate.models.state import PipelineResult

console = Console()


def print_progress(phase: PipelinePhase, message: str) -> None:
    console.print(f"[cyan]{phase.value:<24}[/cyan] {message}")


def print_result(result: PipelineResult) -> None:
    """Render a finished (or stopped) run as a panel."""
    if result.success:
        headline = "[bold green]Pipeline complete[/bold green]"
        border = "green"
    elif result.error and result.error.startswith("cancelled"):
        headline = "[bold yellow]Pipeline cancelled[/bold yellow] (resumable)"
        border = "yellow"
    else:
        headline = "[bold red]Pipeline stopped[/bold red]"
        border = "red"

    lines = [
        headline,
        "",
        f"[bold]Final phase:[/bold]         {result.final_phase.value}",
        f"[bold]Artifacts:[/bold]           {len(result.artifacts)}",
        f"[bold]Recovery iterations:[/bold] {result.recovery_iterations}",
    ]
    if result.error:
        lines += ["", f"[dim]{result.error}[/dim]"]

    console.print()
    console.print(
        Panel("\n".join(lines), title="[bold]Phasegate[/bold]", border_style=border, padding=(1, 2))
    )


def run_cmd(
    project_dir: Path = typer.Argument(
        ...,
        exists=True,
        file_okay=False,
        help="Project directory to run the pipeline in.",
    ),
    brief: str = typer.Option(
        "",
        "--brief",
        "-b",
        help="Project brief handed to the dispatcher at intake.",
    ),
) -> None:
    """Start a new pipeline run at INTAKE.

    Any saved state in the project is replaced. Use ``resume`` to continue
    an existing run instead.
    """
    try:
        collaborators = load_collaborators(config.collaborators)
    except CollaboratorLoadError as exc:
        console.print(f"[bold red]Collaborators:[/bold red] {exc}")
        raise typer.Exit(code=1)

    result = run_pipeline(
        project_dir,
        brief,
        collaborators=collaborators,
        settings=config,
        on_progress=print_progress,
    )
    print_result(result)
    if not result.success:
        raise typer.Exit(code=1)
